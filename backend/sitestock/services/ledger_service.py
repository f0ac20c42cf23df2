"""SiteStock — LedgerService: the only writer of stock balances.

Every balance change is a single conditional UPDATE evaluated by the database
(`current_quantity = current_quantity + :delta`, guarded by
`current_quantity >= :qty` for exits), applied in the same transaction as the
movement row it belongs to. The cached balance on StockItem can always be
recomputed from the movement log with `reconcile`.
"""
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from redis.exceptions import RedisError
from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from sitestock.config import get_settings
from sitestock.core.exceptions import InsufficientStockError, NotFoundError, ValidationError
from sitestock.core.permissions import WAREHOUSE_GROUP
from sitestock.core.redis import get_redis, kpi_cache_key
from sitestock.db.base import utcnow
from sitestock.db.transaction import atomic, queue_kpi_invalidation
from sitestock.models.stock import MovementType, PriceHistory, StockItem, StockMovement, StockStatus
from sitestock.services.notification_service import (
    EVENT_STOCK_CRITICAL,
    EVENT_STOCK_DEPLETED,
    NotificationEvent,
    notify,
)

logger = logging.getLogger(__name__)

PRICE_SCALE = 4
_PRICE_QUANTUM = Decimal(1).scaleb(-PRICE_SCALE)


def to_decimal(value, field: str = "quantity") -> Decimal:
    try:
        return value if isinstance(value, Decimal) else Decimal(str(value))
    except (ArithmeticError, ValueError):
        raise ValidationError(f"{field} must be a number, got {value!r}")


def to_amount(value, field: str = "quantity") -> Decimal:
    """
    Parse a caller-supplied quantity or price. Values finer than the stored
    scale (PRICE_SCALE places) are rejected, never rounded, so every comparison
    made here sees exactly what the database will store.
    """
    amount = to_decimal(value, field)
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    try:
        exact = amount == amount.quantize(_PRICE_QUANTUM)
    except ArithmeticError:
        exact = False
    if not exact:
        raise ValidationError(f"{field} supports at most {PRICE_SCALE} decimal places, got {value}")
    return amount


def compute_status(quantity: Decimal, min_quantity: Decimal) -> StockStatus:
    if quantity <= 0:
        return StockStatus.OUT_OF_STOCK
    if quantity <= min_quantity:
        return StockStatus.CRITICAL
    return StockStatus.NORMAL


def weighted_average(
    old_quantity: Decimal,
    old_average: Decimal,
    quantity: Decimal,
    unit_price: Decimal,
) -> Decimal:
    """Average unit cost after receiving `quantity` at `unit_price`, rounded to PRICE_SCALE places."""
    total = old_quantity + quantity
    if total == 0:
        return unit_price
    average = (old_quantity * old_average + quantity * unit_price) / total
    return average.quantize(_PRICE_QUANTUM, rounding=ROUND_HALF_UP)


@dataclass
class ReconciliationResult:
    item_id: UUID
    movement_count: int
    cached_quantity: Decimal
    ledger_quantity: Decimal
    cached_average_price: Decimal
    ledger_average_price: Decimal

    @property
    def in_balance(self) -> bool:
        return (
            self.cached_quantity == self.ledger_quantity
            and abs(self.cached_average_price - self.ledger_average_price) <= _PRICE_QUANTUM
        )


class LedgerService:
    """Append-only movement ledger with a transactionally maintained balance cache."""

    @staticmethod
    async def get_item(db: AsyncSession, tenant_id: UUID, item_id: UUID) -> StockItem | None:
        """Fresh read of an item (bypasses stale identity-map state)."""
        result = await db.execute(
            select(StockItem)
            .where(StockItem.id == item_id, StockItem.tenant_id == tenant_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def require_item(db: AsyncSession, tenant_id: UUID, item_id: UUID) -> StockItem:
        item = await LedgerService.get_item(db, tenant_id, item_id)
        if not item:
            raise NotFoundError("Stock item not found")
        return item

    @staticmethod
    async def _apply_delta(
        db: AsyncSession,
        tenant_id: UUID,
        item_id: UUID,
        delta: Decimal,
        *,
        require_available: Decimal | None = None,
        unit_price: Decimal | None = None,
        moved_at: datetime | None = None,
    ) -> tuple[Decimal, Decimal] | None:
        """
        Single atomic UPDATE of the balance. Returns (new_quantity, min_quantity),
        or None when the row is missing or the availability guard rejected it.
        SET expressions all read the pre-update row, so the average is weighted
        against the balance the database holds at that instant.
        """
        values = {"current_quantity": StockItem.current_quantity + delta}
        if unit_price is not None:
            new_total = StockItem.current_quantity + delta
            values["average_price"] = case(
                (new_total == 0, unit_price),
                else_=func.round(
                    (StockItem.current_quantity * StockItem.average_price + delta * unit_price) / new_total,
                    PRICE_SCALE,
                ),
            )
            values["last_price"] = unit_price
            values["last_entry_date"] = moved_at

        stmt = update(StockItem).where(StockItem.id == item_id, StockItem.tenant_id == tenant_id)
        if require_available is not None:
            stmt = stmt.where(StockItem.current_quantity >= require_available)
        stmt = (
            stmt.values(**values)
            .returning(StockItem.current_quantity, StockItem.min_quantity)
            .execution_options(synchronize_session=False)
        )
        row = (await db.execute(stmt)).one_or_none()
        if row is None:
            return None
        return to_decimal(row.current_quantity), to_decimal(row.min_quantity)

    @staticmethod
    async def try_debit(db: AsyncSession, tenant_id: UUID, item_id: UUID, quantity: Decimal) -> Decimal | None:
        """Decrement only if sufficient. Returns the new balance, or None if the pool cannot cover it."""
        quantity = to_amount(quantity)
        applied = await LedgerService._apply_delta(
            db, tenant_id, item_id, -quantity, require_available=quantity
        )
        return applied[0] if applied else None

    @staticmethod
    async def record_movement(
        db: AsyncSession,
        tenant_id: UUID,
        item_id: UUID,
        movement_type: MovementType | str,
        quantity: Decimal,
        *,
        unit_price: Decimal | None = None,
        actor_id: UUID | None = None,
        date: datetime | None = None,
        responsible: str | None = None,
        origin_or_destination: str | None = None,
        project_id: UUID | None = None,
        invoice_number: str | None = None,
        supplier_id: UUID | None = None,
        notes: str | None = None,
    ) -> tuple[StockMovement, StockItem]:
        """
        Append a movement and apply it to the item balance in one transaction.
        - EXIT fails with InsufficientStockError when quantity > current balance.
        - ENTRY with unit_price > 0 re-weights average_price, sets last_price /
          last_entry_date and appends a PriceHistory row. A zero or missing
          price leaves the average untouched.
        - Status is re-derived; an EXIT that moves the item into CRITICAL or
          OUT_OF_STOCK queues exactly one low-stock notification.
        - The KPI cache is invalidated after the caller commits.
        """
        try:
            movement_type = MovementType(movement_type)
        except ValueError:
            raise ValidationError(f"Unknown movement type: {movement_type}")
        quantity = to_amount(quantity)
        if quantity <= 0:
            raise ValidationError("Quantity must be greater than zero")
        if unit_price is not None:
            unit_price = to_amount(unit_price, "unit_price")
            if unit_price < 0:
                raise ValidationError("Unit price cannot be negative")

        item = await LedgerService.require_item(db, tenant_id, item_id)
        moved_at = date or utcnow()
        priced = movement_type == MovementType.ENTRY and unit_price is not None and unit_price > 0

        async with atomic(db):
            if movement_type == MovementType.EXIT:
                delta = -quantity
                applied = await LedgerService._apply_delta(
                    db, tenant_id, item_id, delta, require_available=quantity
                )
                if applied is None:
                    available = (await db.execute(
                        select(StockItem.current_quantity).where(StockItem.id == item_id)
                    )).scalar_one()
                    raise InsufficientStockError(
                        f"Insufficient stock for '{item.name}'. Available: {available} {item.unit}, requested: {quantity}",
                        available=to_decimal(available),
                        requested=quantity,
                    )
            else:
                delta = quantity
                applied = await LedgerService._apply_delta(
                    db, tenant_id, item_id, delta,
                    unit_price=unit_price if priced else None,
                    moved_at=moved_at,
                )
                if applied is None:
                    raise NotFoundError("Stock item not found")

            new_quantity, min_quantity = applied
            previous_status = compute_status(new_quantity - delta, min_quantity)
            new_status = compute_status(new_quantity, min_quantity)
            await db.execute(
                update(StockItem)
                .where(StockItem.id == item_id)
                .values(status=new_status.value)
                .execution_options(synchronize_session=False)
            )

            movement = StockMovement(
                tenant_id=tenant_id,
                stock_item_id=item_id,
                type=movement_type.value,
                quantity=quantity,
                unit_price=unit_price,
                date=moved_at,
                responsible=responsible,
                origin_or_destination=origin_or_destination or get_settings().DEFAULT_ORIGIN_LABEL,
                project_id=project_id,
                invoice_number=invoice_number,
                supplier_id=supplier_id,
                notes=notes or "",
                created_by_id=actor_id,
            )
            db.add(movement)
            if priced:
                db.add(PriceHistory(
                    stock_item_id=item_id,
                    date=moved_at,
                    price=unit_price,
                    supplier_id=supplier_id,
                ))
            await db.flush()

        await db.refresh(item)
        logger.info(
            "Stock %s %s x %s on item %s -> balance %s (%s)",
            movement_type.value, quantity, item.unit, item_id, new_quantity, new_status.value,
        )

        # Alert on the crossing only. Exits are the only movements that lower the
        # status; a restock landing in the critical band (OUT_OF_STOCK -> CRITICAL) stays silent.
        if (
            movement_type == MovementType.EXIT
            and previous_status != new_status
            and new_status != StockStatus.NORMAL
        ):
            LedgerService._notify_low_stock(db, tenant_id, item, new_quantity, new_status, actor_id)

        queue_kpi_invalidation(db, tenant_id)
        return movement, item

    @staticmethod
    def _notify_low_stock(
        db: AsyncSession,
        tenant_id: UUID,
        item: StockItem,
        quantity: Decimal,
        status: StockStatus,
        actor_id: UUID | None,
    ) -> None:
        depleted = status == StockStatus.OUT_OF_STOCK
        notify(db, NotificationEvent(
            tenant_id=tenant_id,
            event_type=EVENT_STOCK_DEPLETED if depleted else EVENT_STOCK_CRITICAL,
            title=f"Out of stock: {item.name}" if depleted else f"Critical stock: {item.name}",
            body=f'"{item.name}" is at {quantity} {item.unit} (minimum: {item.min_quantity})',
            priority="high" if depleted else "normal",
            actor_user_id=actor_id,
            permission_codes=list(WAREHOUSE_GROUP),
            metadata={"stock_item_id": str(item.id), "status": status.value},
        ))

    @staticmethod
    async def credit_from_purchase(
        db: AsyncSession,
        tenant_id: UUID,
        item_id: UUID,
        quantity: Decimal,
        unit_price: Decimal,
        *,
        actor_id: UUID | None = None,
        invoice_number: str | None = None,
        supplier_id: UUID | None = None,
    ) -> tuple[StockMovement, StockItem]:
        """ENTRY tagged as a purchase receipt."""
        return await LedgerService.record_movement(
            db, tenant_id, item_id, MovementType.ENTRY, quantity,
            unit_price=unit_price,
            actor_id=actor_id,
            origin_or_destination=get_settings().PURCHASE_ORIGIN_LABEL,
            invoice_number=invoice_number,
            supplier_id=supplier_id,
            notes=f"Purchase entry - invoice {invoice_number}" if invoice_number else "Purchase entry",
        )

    @staticmethod
    async def debit_for_project(
        db: AsyncSession,
        tenant_id: UUID,
        item_id: UUID,
        quantity: Decimal,
        project_id: UUID,
        project_label: str,
        *,
        actor_id: UUID | None = None,
    ) -> tuple[StockMovement, StockItem]:
        """EXIT tagged with the consuming project."""
        return await LedgerService.record_movement(
            db, tenant_id, item_id, MovementType.EXIT, quantity,
            actor_id=actor_id,
            project_id=project_id,
            origin_or_destination=project_label,
            notes=f"Delivered to project: {project_label}",
        )

    # ── Queries ───────────────────────────────────────────────────────────────

    @staticmethod
    async def item_movements(
        db: AsyncSession,
        tenant_id: UUID,
        item_id: UUID,
        *,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[StockMovement], int]:
        """Movements of one item, newest first."""
        await LedgerService.require_item(db, tenant_id, item_id)
        return await LedgerService.all_movements(
            db, tenant_id, item_id=item_id, page=page, page_size=page_size
        )

    @staticmethod
    async def all_movements(
        db: AsyncSession,
        tenant_id: UUID,
        *,
        item_id: UUID | None = None,
        project_id: UUID | None = None,
        movement_type: str | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[StockMovement], int]:
        """Paginated movement log for the tenant, newest first."""
        q = select(StockMovement).where(StockMovement.tenant_id == tenant_id)
        count_q = select(func.count(StockMovement.id)).where(StockMovement.tenant_id == tenant_id)
        if item_id:
            q = q.where(StockMovement.stock_item_id == item_id)
            count_q = count_q.where(StockMovement.stock_item_id == item_id)
        if project_id:
            q = q.where(StockMovement.project_id == project_id)
            count_q = count_q.where(StockMovement.project_id == project_id)
        if movement_type:
            q = q.where(StockMovement.type == movement_type)
            count_q = count_q.where(StockMovement.type == movement_type)

        total = (await db.execute(count_q)).scalar_one()
        q = (
            q.order_by(StockMovement.date.desc(), StockMovement.created_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        result = await db.execute(q)
        return list(result.scalars().all()), total

    @staticmethod
    async def kpis(db: AsyncSession, tenant_id: UUID) -> dict:
        """{total_items, critical_items, total_value}. Redis cache-aside; may lag in-flight writers."""
        key = kpi_cache_key(str(tenant_id))
        r = None
        try:
            r = await get_redis()
            cached = await r.get(key) if r else None
        except RedisError as exc:
            logger.warning("KPI cache read failed: %s", exc)
            r, cached = None, None
        if cached is not None:
            data = json.loads(cached)
            data["total_value"] = Decimal(data["total_value"])
            return data

        row = (await db.execute(
            select(
                func.count(StockItem.id),
                func.count(case((StockItem.status != StockStatus.NORMAL.value, 1))),
                func.coalesce(func.sum(StockItem.current_quantity * StockItem.average_price), 0),
            ).where(StockItem.tenant_id == tenant_id)
        )).one()
        data = {
            "total_items": row[0],
            "critical_items": row[1],
            "total_value": to_decimal(row[2]).quantize(_PRICE_QUANTUM, rounding=ROUND_HALF_UP),
        }

        if r is not None:
            try:
                await r.setex(
                    key,
                    get_settings().KPI_CACHE_TTL,
                    json.dumps({**data, "total_value": str(data["total_value"])}),
                )
            except RedisError as exc:
                logger.warning("KPI cache write failed: %s", exc)
        return data

    @staticmethod
    async def invalidate_kpis(tenant_id: UUID) -> None:
        """Drop the cached KPIs of a tenant. Called after commit, never inside a transaction."""
        try:
            r = await get_redis()
            if r is not None:
                await r.delete(kpi_cache_key(str(tenant_id)))
        except RedisError as exc:
            logger.warning("KPI cache invalidation failed: %s", exc)

    @staticmethod
    async def reconcile(db: AsyncSession, tenant_id: UUID, item_id: UUID) -> ReconciliationResult:
        """
        Recompute balance and weighted average by folding the movement log in
        application order, and compare with the cached values on the item.
        Verification only; never used on the write path.
        """
        item = await LedgerService.require_item(db, tenant_id, item_id)
        result = await db.execute(
            select(StockMovement)
            .where(StockMovement.stock_item_id == item_id)
            .order_by(StockMovement.created_at.asc(), StockMovement.id.asc())
        )
        movements = list(result.scalars().all())

        quantity = Decimal("0")
        average = Decimal("0")
        for mv in movements:
            mv_qty = to_decimal(mv.quantity)
            if mv.type == MovementType.ENTRY.value and mv.unit_price is not None and mv.unit_price > 0:
                average = weighted_average(quantity, average, mv_qty, to_decimal(mv.unit_price))
            quantity += mv.signed_quantity

        outcome = ReconciliationResult(
            item_id=item.id,
            movement_count=len(movements),
            cached_quantity=to_decimal(item.current_quantity),
            ledger_quantity=quantity,
            cached_average_price=to_decimal(item.average_price),
            ledger_average_price=average,
        )
        if not outcome.in_balance:
            logger.warning(
                "Ledger mismatch on item %s: cached %s @ %s, ledger %s @ %s",
                item_id, outcome.cached_quantity, outcome.cached_average_price,
                outcome.ledger_quantity, outcome.ledger_average_price,
            )
        return outcome
