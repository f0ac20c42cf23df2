"""SiteStock — StockItemService: catalogue of materials in the global pool."""
import logging
from decimal import Decimal
from uuid import UUID

from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from sitestock.core.exceptions import NotFoundError, ValidationError
from sitestock.db.base import utcnow
from sitestock.db.transaction import atomic
from sitestock.models.purchase_request import PurchaseRequest
from sitestock.models.stock import StockItem, StockMovement, StockStatus
from sitestock.models.stock_request import StockRequest
from sitestock.services.ledger_service import LedgerService, compute_status, to_amount

logger = logging.getLogger(__name__)

_UNSET = object()


class StockItemService:

    @staticmethod
    async def create_item(
        db: AsyncSession,
        tenant_id: UUID,
        name: str,
        unit: str = "un",
        min_quantity: Decimal = Decimal("0"),
        supplier_id: UUID | None = None,
    ) -> StockItem:
        """New items start empty and go to the top of the display order."""
        name = (name or "").strip()
        if not name:
            raise ValidationError("Item name is required")
        min_quantity = to_amount(min_quantity, "min_quantity")
        if min_quantity < 0:
            raise ValidationError("Minimum quantity cannot be negative")

        async with atomic(db):
            await db.execute(
                update(StockItem)
                .where(StockItem.tenant_id == tenant_id)
                .values(order=StockItem.order + 1)
            )
            item = StockItem(
                tenant_id=tenant_id,
                name=name,
                unit=unit or "un",
                min_quantity=min_quantity,
                current_quantity=Decimal("0"),
                average_price=Decimal("0"),
                status=compute_status(Decimal("0"), min_quantity).value,
                supplier_id=supplier_id,
                order=0,
            )
            db.add(item)
            await db.flush()

        logger.info("Stock item %s (%s) created for tenant %s", item.id, item.name, tenant_id)
        return item

    @staticmethod
    async def list_items(
        db: AsyncSession,
        tenant_id: UUID,
        status: str | None = None,
        search: str | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[StockItem], int]:
        q = select(StockItem).where(StockItem.tenant_id == tenant_id)
        count_q = select(func.count(StockItem.id)).where(StockItem.tenant_id == tenant_id)
        if status:
            q = q.where(StockItem.status == status)
            count_q = count_q.where(StockItem.status == status)
        if search:
            pattern = f"%{search}%"
            q = q.where(StockItem.name.ilike(pattern))
            count_q = count_q.where(StockItem.name.ilike(pattern))

        total = (await db.execute(count_q)).scalar_one()
        q = q.order_by(StockItem.order.asc(), StockItem.name.asc()).offset((page - 1) * page_size).limit(page_size)
        result = await db.execute(q)
        return list(result.scalars().all()), total

    @staticmethod
    async def get_item(db: AsyncSession, tenant_id: UUID, item_id: UUID) -> StockItem | None:
        return await LedgerService.get_item(db, tenant_id, item_id)

    @staticmethod
    async def update_item(
        db: AsyncSession,
        tenant_id: UUID,
        item_id: UUID,
        *,
        name=_UNSET,
        unit=_UNSET,
        min_quantity=_UNSET,
        supplier_id=_UNSET,
    ) -> StockItem:
        """
        Edit descriptive fields. Balance and average price are ledger-owned and
        not editable here. Changing min_quantity re-derives the status against
        the balance the database holds at update time.
        """
        item = await LedgerService.require_item(db, tenant_id, item_id)

        values = {}
        if name is not _UNSET:
            name = (name or "").strip()
            if not name:
                raise ValidationError("Item name is required")
            values["name"] = name
        if unit is not _UNSET:
            values["unit"] = unit or "un"
        if supplier_id is not _UNSET:
            values["supplier_id"] = supplier_id
        if min_quantity is not _UNSET:
            min_quantity = to_amount(min_quantity, "min_quantity")
            if min_quantity < 0:
                raise ValidationError("Minimum quantity cannot be negative")
            values["min_quantity"] = min_quantity
            values["status"] = case(
                (StockItem.current_quantity <= 0, StockStatus.OUT_OF_STOCK.value),
                (StockItem.current_quantity <= min_quantity, StockStatus.CRITICAL.value),
                else_=StockStatus.NORMAL.value,
            )
        if not values:
            return item

        values["updated_at"] = utcnow()
        async with atomic(db):
            result = await db.execute(
                update(StockItem)
                .where(StockItem.id == item_id, StockItem.tenant_id == tenant_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise NotFoundError("Stock item not found")

        await db.refresh(item)
        return item

    @staticmethod
    async def reorder_items(db: AsyncSession, tenant_id: UUID, positions: dict[UUID, int]) -> None:
        """Set display order from {item_id: order}. All-or-nothing: an unknown id aborts the whole reorder."""
        if any(order < 0 for order in positions.values()):
            raise ValidationError("Display order cannot be negative")
        async with atomic(db):
            for item_id, order in positions.items():
                result = await db.execute(
                    update(StockItem)
                    .where(StockItem.id == item_id, StockItem.tenant_id == tenant_id)
                    .values(order=order)
                )
                if result.rowcount == 0:
                    raise NotFoundError(f"Stock item {item_id} not found")
        logger.info("Reordered %d stock item(s) for tenant %s", len(positions), tenant_id)

    @staticmethod
    async def delete_item(db: AsyncSession, tenant_id: UUID, item_id: UUID) -> None:
        """
        Hard-delete a catalogue entry. Only items that never took part in the
        ledger or a workflow can go; anything with history must stay so the
        movement log keeps reconciling.
        """
        item = await LedgerService.require_item(db, tenant_id, item_id)
        for model, column in (
            (StockMovement, StockMovement.stock_item_id),
            (StockRequest, StockRequest.stock_item_id),
            (PurchaseRequest, PurchaseRequest.stock_item_id),
        ):
            used = (await db.execute(select(func.count()).select_from(model).where(column == item_id))).scalar_one()
            if used:
                raise ValidationError(f"Stock item '{item.name}' has history and cannot be deleted")

        async with atomic(db):
            await db.delete(item)
            await db.flush()
        logger.info("Stock item %s (%s) deleted for tenant %s", item_id, item.name, tenant_id)
