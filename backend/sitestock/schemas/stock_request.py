"""SiteStock — Stock request schemas."""
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field

from sitestock.schemas.purchase_request import PurchaseRequestResponse


class StockRequestCreate(BaseModel):
    project_id: UUID
    stock_item_id: UUID
    quantity: Decimal = Field(..., gt=0, decimal_places=4)
    notes: str | None = None


class StockRequestReject(BaseModel):
    reason: str | None = None


class StockRequestDeliver(BaseModel):
    quantity: Decimal = Field(..., gt=0, decimal_places=4)
    notes: str | None = None
    spawn_purchase_for_remainder: bool = False


class DeliveryResponse(BaseModel):
    id: UUID
    stock_request_id: UUID
    quantity: Decimal
    notes: str | None
    created_by_id: UUID
    created_at: datetime

    class Config:
        from_attributes = True


class StockRequestResponse(BaseModel):
    id: UUID
    project_id: UUID
    stock_item_id: UUID
    item_name_snapshot: str
    quantity_requested: Decimal
    quantity_delivered: Decimal
    quantity_remaining: Decimal
    status: str
    requested_by_id: UUID
    approved_by_id: UUID | None
    approved_at: datetime | None
    rejection_reason: str | None
    notes: str | None
    deliveries: list[DeliveryResponse] = []
    created_at: datetime

    class Config:
        from_attributes = True


class DeliveryOutcomeResponse(BaseModel):
    request: StockRequestResponse
    delivery: DeliveryResponse
    purchase_request: PurchaseRequestResponse | None = None

    class Config:
        from_attributes = True
