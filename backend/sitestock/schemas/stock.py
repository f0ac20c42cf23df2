"""SiteStock — Stock item, movement and KPI schemas."""
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field

from sitestock.models.stock import MovementType


class StockItemCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    unit: str = Field("un", min_length=1, max_length=20)
    min_quantity: Decimal = Field(Decimal("0"), ge=0, decimal_places=4)
    supplier_id: UUID | None = None


class StockItemUpdate(BaseModel):
    """Only fields present in the request body are applied."""

    name: str | None = Field(None, min_length=1, max_length=255)
    unit: str | None = Field(None, min_length=1, max_length=20)
    min_quantity: Decimal | None = Field(None, ge=0, decimal_places=4)
    supplier_id: UUID | None = None


class StockItemResponse(BaseModel):
    id: UUID
    name: str
    unit: str
    min_quantity: Decimal
    current_quantity: Decimal
    average_price: Decimal
    last_price: Decimal | None
    last_entry_date: datetime | None
    status: str
    supplier_id: UUID | None
    order: int
    created_at: datetime

    class Config:
        from_attributes = True


class StockItemPosition(BaseModel):
    id: UUID
    order: int = Field(..., ge=0)


class StockItemReorder(BaseModel):
    items: list[StockItemPosition] = Field(..., min_length=1)


class MovementCreate(BaseModel):
    type: MovementType
    quantity: Decimal = Field(..., gt=0, decimal_places=4)
    unit_price: Decimal | None = Field(None, ge=0, decimal_places=4)
    date: datetime | None = None
    responsible: str | None = Field(None, max_length=255)
    origin_or_destination: str | None = Field(None, max_length=255)
    project_id: UUID | None = None
    invoice_number: str | None = Field(None, max_length=100)
    supplier_id: UUID | None = None
    notes: str | None = None


class MovementResponse(BaseModel):
    id: UUID
    stock_item_id: UUID
    type: str
    quantity: Decimal
    unit_price: Decimal | None
    date: datetime
    responsible: str | None
    origin_or_destination: str
    project_id: UUID | None
    invoice_number: str | None
    supplier_id: UUID | None
    notes: str
    created_by_id: UUID | None
    created_at: datetime

    class Config:
        from_attributes = True


class MovementResult(BaseModel):
    movement: MovementResponse
    item: StockItemResponse


class StockKpis(BaseModel):
    total_items: int
    critical_items: int
    total_value: Decimal


class ReconciliationResponse(BaseModel):
    item_id: UUID
    movement_count: int
    cached_quantity: Decimal
    ledger_quantity: Decimal
    cached_average_price: Decimal
    ledger_average_price: Decimal
    in_balance: bool

    class Config:
        from_attributes = True
