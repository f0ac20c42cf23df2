"""SiteStock — StockRequest and StockRequestDelivery models (project-side demand)."""
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Numeric, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sitestock.db.base import Base, utcnow


class StockRequestStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    PARTIALLY_DELIVERED = "PARTIALLY_DELIVERED"
    DELIVERED = "DELIVERED"
    REJECTED = "REJECTED"


class StockRequest(Base):
    __tablename__ = "stock_requests"
    __table_args__ = (
        Index("ix_stock_requests_tenant_status", "tenant_id", "status"),
        Index("ix_stock_requests_project_status", "project_id", "status"),
        CheckConstraint(
            "quantity_delivered >= 0 AND quantity_delivered <= quantity_requested",
            name="ck_stock_requests_delivered_within_requested",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"))
    project_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("projects.id", ondelete="RESTRICT"))
    stock_item_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("stock_items.id", ondelete="CASCADE"), index=True)
    item_name_snapshot: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity_requested: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    quantity_delivered: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    status: Mapped[str] = mapped_column(String(30), nullable=False, default=StockRequestStatus.PENDING.value)
    requested_by_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="RESTRICT"))
    approved_by_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now())

    deliveries: Mapped[list["StockRequestDelivery"]] = relationship(
        "StockRequestDelivery",
        back_populates="stock_request",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="StockRequestDelivery.created_at.desc()",
    )

    @property
    def quantity_remaining(self) -> Decimal:
        return self.quantity_requested - self.quantity_delivered


class StockRequestDelivery(Base):
    """One row per (partial) shipment against a stock request."""

    __tablename__ = "stock_request_deliveries"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    stock_request_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("stock_requests.id", ondelete="CASCADE"), index=True)
    quantity: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="RESTRICT"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    stock_request: Mapped["StockRequest"] = relationship("StockRequest", back_populates="deliveries")
