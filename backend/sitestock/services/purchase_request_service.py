"""SiteStock — PurchaseRequestService: replenishment of the global pool.

PENDING → ORDERED → COMPLETED; PENDING | ORDERED → CANCELLED.
Completion is the only transition that moves stock (an ENTRY at the purchase price).
"""
import logging
from decimal import Decimal
from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from sitestock.core.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from sitestock.core.permissions import FINANCE_GROUP, WAREHOUSE_GROUP
from sitestock.db.base import utcnow
from sitestock.db.transaction import atomic
from sitestock.models.purchase_request import PurchasePriority, PurchaseRequest, PurchaseStatus
from sitestock.models.stock_request import StockRequest, StockRequestStatus
from sitestock.services.audit_service import ACTION_CREATE, ACTION_UPDATE, log_audit, snapshot
from sitestock.services.ledger_service import LedgerService, to_amount
from sitestock.services.notification_service import (
    EVENT_PURCHASE_COMPLETED,
    EVENT_PURCHASE_ORDERED,
    EVENT_PURCHASE_REQUESTED,
    NotificationEvent,
    notify,
)
from sitestock.services.project_directory import SqlProjectDirectory

logger = logging.getLogger(__name__)

# Pending first; within a status the most urgent first.
_STATUS_RANK = case(
    (PurchaseRequest.status == PurchaseStatus.PENDING.value, 0),
    (PurchaseRequest.status == PurchaseStatus.ORDERED.value, 1),
    (PurchaseRequest.status == PurchaseStatus.COMPLETED.value, 2),
    else_=3,
)
_PRIORITY_RANK = case(
    (PurchaseRequest.priority == PurchasePriority.HIGH.value, 2),
    (PurchaseRequest.priority == PurchasePriority.MEDIUM.value, 1),
    else_=0,
)

_CANCELLABLE = (PurchaseStatus.PENDING.value, PurchaseStatus.ORDERED.value)


class PurchaseRequestService:

    @staticmethod
    async def list_requests(
        db: AsyncSession,
        tenant_id: UUID,
        status: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[PurchaseRequest], int]:
        q = select(PurchaseRequest).where(PurchaseRequest.tenant_id == tenant_id)
        count_q = select(func.count(PurchaseRequest.id)).where(PurchaseRequest.tenant_id == tenant_id)
        if status:
            q = q.where(PurchaseRequest.status == status)
            count_q = count_q.where(PurchaseRequest.status == status)

        total = (await db.execute(count_q)).scalar_one()
        q = (
            q.order_by(_STATUS_RANK, _PRIORITY_RANK.desc(), PurchaseRequest.date.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        result = await db.execute(q)
        return list(result.scalars().all()), total

    @staticmethod
    async def get_request(
        db: AsyncSession, tenant_id: UUID, request_id: UUID, *, for_update: bool = False
    ) -> PurchaseRequest | None:
        q = select(PurchaseRequest).where(PurchaseRequest.id == request_id, PurchaseRequest.tenant_id == tenant_id)
        if for_update:
            q = q.with_for_update()
        result = await db.execute(q.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    @staticmethod
    async def _require(db: AsyncSession, tenant_id: UUID, request_id: UUID) -> PurchaseRequest:
        purchase = await PurchaseRequestService.get_request(db, tenant_id, request_id, for_update=True)
        if not purchase:
            raise NotFoundError("Purchase request not found")
        return purchase

    @staticmethod
    async def create(
        db: AsyncSession,
        tenant_id: UUID,
        user_id: UUID,
        stock_item_id: UUID,
        quantity: Decimal,
        priority: PurchasePriority | str | None = None,
        notes: str | None = None,
        originating_stock_request_id: UUID | None = None,
    ) -> PurchaseRequest:
        """
        Open a purchase request. Priority defaults to HIGH when the item is out
        of stock, MEDIUM otherwise. A linked stock request still PENDING is
        approved on the spot, since buying for it implies authorizing it.
        """
        quantity = to_amount(quantity)
        if quantity <= 0:
            raise ValidationError("Quantity must be greater than zero")
        if priority is not None:
            try:
                priority = PurchasePriority(priority)
            except ValueError:
                raise ValidationError(f"Unknown priority: {priority}")

        item = await LedgerService.require_item(db, tenant_id, stock_item_id)
        if priority is None:
            priority = PurchasePriority.HIGH if item.current_quantity <= 0 else PurchasePriority.MEDIUM

        async with atomic(db):
            if originating_stock_request_id is not None:
                from sitestock.services.stock_request_service import StockRequestService

                linked = await StockRequestService.get_request(db, tenant_id, originating_stock_request_id)
                if not linked:
                    raise NotFoundError("Originating stock request not found")
                if linked.stock_item_id != item.id:
                    raise ValidationError("Originating stock request is for a different item")
                if linked.status == StockRequestStatus.PENDING.value:
                    await StockRequestService.approve(db, tenant_id, user_id, linked.id)

            purchase = PurchaseRequest(
                tenant_id=tenant_id,
                stock_item_id=item.id,
                item_name_snapshot=item.name,
                quantity=quantity,
                priority=priority.value,
                status=PurchaseStatus.PENDING.value,
                requested_by_id=user_id,
                originating_stock_request_id=originating_stock_request_id,
                notes=notes,
                date=utcnow(),
            )
            db.add(purchase)
            await db.flush()
            await log_audit(db, tenant_id, user_id, ACTION_CREATE, "PurchaseRequest", purchase.id, after=snapshot(purchase))

        notify(db, NotificationEvent(
            tenant_id=tenant_id,
            event_type=EVENT_PURCHASE_REQUESTED,
            title=f"Purchase requested ({priority.value})",
            body=f"{quantity} {item.unit} of {item.name}",
            priority="high" if priority == PurchasePriority.HIGH else "normal",
            actor_user_id=user_id,
            permission_codes=list(FINANCE_GROUP),
            metadata={"purchase_request_id": str(purchase.id), "stock_item_id": str(item.id)},
        ))
        logger.info("Purchase request %s created: %s x %s (%s)", purchase.id, quantity, item.name, priority.value)
        return purchase

    @staticmethod
    async def mark_ordered(db: AsyncSession, tenant_id: UUID, user_id: UUID, request_id: UUID) -> PurchaseRequest:
        """PENDING → ORDERED."""
        async with atomic(db):
            purchase = await PurchaseRequestService._require(db, tenant_id, request_id)
            if purchase.status != PurchaseStatus.PENDING.value:
                raise InvalidTransitionError(
                    f"Cannot order a purchase in {purchase.status} status", current_status=purchase.status
                )
            before = snapshot(purchase)
            purchase.status = PurchaseStatus.ORDERED.value
            purchase.processed_by_id = user_id
            purchase.ordered_at = utcnow()
            await db.flush()
            await log_audit(db, tenant_id, user_id, ACTION_UPDATE, "PurchaseRequest", purchase.id, before, snapshot(purchase))

        notify(db, NotificationEvent(
            tenant_id=tenant_id,
            event_type=EVENT_PURCHASE_ORDERED,
            title="Purchase ordered",
            body=f"{purchase.quantity} of {purchase.item_name_snapshot} has been ordered",
            actor_user_id=user_id,
            target_user_ids=[purchase.requested_by_id],
            metadata={"purchase_request_id": str(purchase.id)},
        ))
        logger.info("Purchase request %s ordered by %s", purchase.id, user_id)
        return purchase

    @staticmethod
    async def complete(
        db: AsyncSession,
        tenant_id: UUID,
        user_id: UUID,
        request_id: UUID,
        unit_price: Decimal,
        invoice_number: str | None = None,
        supplier_id: UUID | None = None,
    ) -> PurchaseRequest:
        """ORDERED → COMPLETED, crediting the purchased quantity to the pool at unit_price."""
        unit_price = to_amount(unit_price, "unit_price")
        if unit_price <= 0:
            raise ValidationError("Unit price must be greater than zero")

        async with atomic(db):
            purchase = await PurchaseRequestService._require(db, tenant_id, request_id)
            if purchase.status != PurchaseStatus.ORDERED.value:
                raise InvalidTransitionError(
                    f"Cannot complete a purchase in {purchase.status} status", current_status=purchase.status
                )
            before = snapshot(purchase)
            _, item = await LedgerService.credit_from_purchase(
                db, tenant_id, purchase.stock_item_id, purchase.quantity, unit_price,
                actor_id=user_id,
                invoice_number=invoice_number,
                supplier_id=supplier_id,
            )
            purchase.status = PurchaseStatus.COMPLETED.value
            purchase.processed_by_id = user_id
            purchase.completed_at = utcnow()
            purchase.invoice_number = invoice_number
            purchase.unit_price = unit_price
            purchase.supplier_id = supplier_id
            await db.flush()
            await log_audit(db, tenant_id, user_id, ACTION_UPDATE, "PurchaseRequest", purchase.id, before, snapshot(purchase))

            linked_project = None
            if purchase.originating_stock_request_id:
                linked_project = (await db.execute(
                    select(StockRequest.project_id).where(StockRequest.id == purchase.originating_stock_request_id)
                )).scalar_one_or_none()

        if linked_project is not None:
            project_name = await SqlProjectDirectory(db, tenant_id).project_name(linked_project) or str(linked_project)
            title = f"Material ready for delivery: {purchase.item_name_snapshot}"
            body = (
                f"{purchase.quantity} {item.unit} received; project {project_name} "
                f"is waiting for delivery of its stock request"
            )
        else:
            title = f"Material arrived: {purchase.item_name_snapshot}"
            body = f"{purchase.quantity} {item.unit} received at {unit_price} per unit"
        notify(db, NotificationEvent(
            tenant_id=tenant_id,
            project_id=linked_project,
            event_type=EVENT_PURCHASE_COMPLETED,
            title=title,
            body=body,
            actor_user_id=user_id,
            target_user_ids=[purchase.requested_by_id],
            permission_codes=list(WAREHOUSE_GROUP) + list(FINANCE_GROUP),
            metadata={
                "purchase_request_id": str(purchase.id),
                "stock_item_id": str(purchase.stock_item_id),
                "originating_stock_request_id": (
                    str(purchase.originating_stock_request_id) if purchase.originating_stock_request_id else None
                ),
            },
        ))
        logger.info(
            "Purchase request %s completed: +%s @ %s, balance now %s",
            purchase.id, purchase.quantity, unit_price, item.current_quantity,
        )
        return purchase

    @staticmethod
    async def cancel(db: AsyncSession, tenant_id: UUID, user_id: UUID, request_id: UUID) -> PurchaseRequest:
        """PENDING | ORDERED → CANCELLED. Completed or already cancelled requests are rejected as bad input."""
        async with atomic(db):
            purchase = await PurchaseRequestService._require(db, tenant_id, request_id)
            if purchase.status not in _CANCELLABLE:
                raise ValidationError(f"Cannot cancel a purchase in {purchase.status} status")
            before = snapshot(purchase)
            purchase.status = PurchaseStatus.CANCELLED.value
            purchase.processed_by_id = user_id
            await db.flush()
            await log_audit(db, tenant_id, user_id, ACTION_UPDATE, "PurchaseRequest", purchase.id, before, snapshot(purchase))

        logger.info("Purchase request %s cancelled by %s", purchase.id, user_id)
        return purchase
