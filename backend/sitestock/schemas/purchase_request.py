"""SiteStock — Purchase request schemas."""
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field

from sitestock.models.purchase_request import PurchasePriority


class PurchaseRequestCreate(BaseModel):
    stock_item_id: UUID
    quantity: Decimal = Field(..., gt=0, decimal_places=4)
    priority: PurchasePriority | None = None
    notes: str | None = None
    originating_stock_request_id: UUID | None = None


class PurchaseComplete(BaseModel):
    unit_price: Decimal = Field(..., gt=0, decimal_places=4)
    invoice_number: str | None = Field(None, max_length=100)
    supplier_id: UUID | None = None


class PurchaseRequestResponse(BaseModel):
    id: UUID
    stock_item_id: UUID
    item_name_snapshot: str
    quantity: Decimal
    priority: str
    status: str
    requested_by_id: UUID
    processed_by_id: UUID | None
    ordered_at: datetime | None
    completed_at: datetime | None
    invoice_number: str | None
    unit_price: Decimal | None
    supplier_id: UUID | None
    originating_stock_request_id: UUID | None
    notes: str | None
    date: datetime

    class Config:
        from_attributes = True
