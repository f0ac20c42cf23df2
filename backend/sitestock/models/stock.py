"""SiteStock — StockItem, StockMovement and PriceHistory models (the global stock pool)."""
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from sitestock.db.base import Base, utcnow


class StockStatus(str, Enum):
    NORMAL = "NORMAL"
    CRITICAL = "CRITICAL"
    OUT_OF_STOCK = "OUT_OF_STOCK"


class MovementType(str, Enum):
    ENTRY = "ENTRY"
    EXIT = "EXIT"


class StockItem(Base):
    """
    One material in a tenant's pool.
    current_quantity / average_price / status are a cache over the movement log
    and are only written by LedgerService.
    """

    __tablename__ = "stock_items"
    __table_args__ = (
        Index("ix_stock_items_tenant_status", "tenant_id", "status"),
        CheckConstraint("current_quantity >= 0", name="ck_stock_items_quantity_non_negative"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False, default="un")
    min_quantity: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    current_quantity: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    average_price: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    last_price: Mapped[Decimal | None] = mapped_column(Numeric(18, 4), nullable=True)
    last_entry_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=StockStatus.NORMAL.value)
    supplier_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now())


class StockMovement(Base):
    """Append-only ledger entry. No UPDATE or DELETE."""

    __tablename__ = "stock_movements"
    __table_args__ = (
        Index("ix_stock_movements_item_date", "stock_item_id", "date"),
        Index("ix_stock_movements_project_date", "project_id", "date"),
        CheckConstraint("quantity > 0", name="ck_stock_movements_quantity_positive"),
        CheckConstraint("type IN ('ENTRY', 'EXIT')", name="ck_stock_movements_type"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), index=True)
    stock_item_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("stock_items.id", ondelete="CASCADE"))
    type: Mapped[str] = mapped_column(String(10), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    unit_price: Mapped[Decimal | None] = mapped_column(Numeric(18, 4), nullable=True)
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    responsible: Mapped[str | None] = mapped_column(String(255), nullable=True)
    origin_or_destination: Mapped[str] = mapped_column(String(255), nullable=False)
    project_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("projects.id", ondelete="SET NULL"), nullable=True)
    invoice_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    supplier_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_by_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    @property
    def signed_quantity(self) -> Decimal:
        return self.quantity if self.type == MovementType.ENTRY.value else -self.quantity


class PriceHistory(Base):
    """Append-only; one row per priced ENTRY."""

    __tablename__ = "price_history"
    __table_args__ = (Index("ix_price_history_item_date", "stock_item_id", "date"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    stock_item_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("stock_items.id", ondelete="CASCADE"))
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    price: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    supplier_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
