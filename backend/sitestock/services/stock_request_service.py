"""SiteStock — StockRequestService: project demand against the global pool.

PENDING → APPROVED | REJECTED; APPROVED → PARTIALLY_DELIVERED → DELIVERED.
Approval is an authorization gate only; stock leaves the pool at delivery.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from sitestock.core.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from sitestock.core.permissions import WAREHOUSE_GROUP
from sitestock.db.base import utcnow
from sitestock.db.transaction import atomic
from sitestock.models.purchase_request import PurchasePriority, PurchaseRequest
from sitestock.models.stock_request import StockRequest, StockRequestDelivery, StockRequestStatus
from sitestock.services.audit_service import ACTION_CREATE, ACTION_UPDATE, log_audit, snapshot
from sitestock.services.ledger_service import LedgerService, to_amount
from sitestock.services.notification_service import (
    EVENT_STOCK_REQUEST_APPROVED,
    EVENT_STOCK_REQUEST_DELIVERED,
    EVENT_STOCK_REQUEST_PARTIAL_DELIVERY,
    EVENT_STOCK_REQUEST_REJECTED,
    EVENT_STOCK_REQUESTED,
    NotificationEvent,
    notify,
)
from sitestock.services.project_directory import ProjectDirectory, SqlProjectDirectory
from sitestock.services.purchase_request_service import PurchaseRequestService

logger = logging.getLogger(__name__)

_STATUS_RANK = case(
    (StockRequest.status == StockRequestStatus.PENDING.value, 0),
    (StockRequest.status == StockRequestStatus.APPROVED.value, 1),
    (StockRequest.status == StockRequestStatus.PARTIALLY_DELIVERED.value, 2),
    (StockRequest.status == StockRequestStatus.DELIVERED.value, 3),
    else_=4,
)

_DELIVERABLE = (StockRequestStatus.APPROVED.value, StockRequestStatus.PARTIALLY_DELIVERED.value)


@dataclass
class DeliveryOutcome:
    request: StockRequest
    delivery: StockRequestDelivery
    purchase_request: PurchaseRequest | None = None


class StockRequestService:

    @staticmethod
    async def list_requests(
        db: AsyncSession,
        tenant_id: UUID,
        project_id: UUID | None = None,
        status: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[StockRequest], int]:
        """Open work first (pending, approved, partially delivered), then newest first."""
        q = select(StockRequest).where(StockRequest.tenant_id == tenant_id)
        count_q = select(func.count(StockRequest.id)).where(StockRequest.tenant_id == tenant_id)
        if project_id:
            q = q.where(StockRequest.project_id == project_id)
            count_q = count_q.where(StockRequest.project_id == project_id)
        if status:
            q = q.where(StockRequest.status == status)
            count_q = count_q.where(StockRequest.status == status)

        total = (await db.execute(count_q)).scalar_one()
        q = (
            q.order_by(_STATUS_RANK, StockRequest.created_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        result = await db.execute(q)
        return list(result.scalars().all()), total

    @staticmethod
    async def get_request(
        db: AsyncSession, tenant_id: UUID, request_id: UUID, *, for_update: bool = False
    ) -> StockRequest | None:
        q = select(StockRequest).where(StockRequest.id == request_id, StockRequest.tenant_id == tenant_id)
        if for_update:
            q = q.with_for_update()
        result = await db.execute(q.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    @staticmethod
    async def _require(db: AsyncSession, tenant_id: UUID, request_id: UUID, *, for_update: bool = True) -> StockRequest:
        request = await StockRequestService.get_request(db, tenant_id, request_id, for_update=for_update)
        if not request:
            raise NotFoundError("Stock request not found")
        return request

    @staticmethod
    async def create(
        db: AsyncSession,
        tenant_id: UUID,
        user_id: UUID,
        project_id: UUID,
        stock_item_id: UUID,
        quantity: Decimal,
        notes: str | None = None,
        projects: ProjectDirectory | None = None,
    ) -> StockRequest:
        quantity = to_amount(quantity)
        if quantity <= 0:
            raise ValidationError("Quantity must be greater than zero")

        projects = projects or SqlProjectDirectory(db, tenant_id)
        if not await projects.project_exists(project_id):
            raise NotFoundError("Project not found")
        if not await projects.user_has_project_access(user_id, project_id):
            raise NotFoundError("Project not found or access denied")
        item = await LedgerService.require_item(db, tenant_id, stock_item_id)

        async with atomic(db):
            request = StockRequest(
                tenant_id=tenant_id,
                project_id=project_id,
                stock_item_id=item.id,
                item_name_snapshot=item.name,
                quantity_requested=quantity,
                quantity_delivered=Decimal("0"),
                status=StockRequestStatus.PENDING.value,
                requested_by_id=user_id,
                notes=notes,
                deliveries=[],
            )
            db.add(request)
            await db.flush()
            await log_audit(db, tenant_id, user_id, ACTION_CREATE, "StockRequest", request.id, after=snapshot(request))

        project_name = await projects.project_name(project_id) or str(project_id)
        notify(db, NotificationEvent(
            tenant_id=tenant_id,
            project_id=project_id,
            event_type=EVENT_STOCK_REQUESTED,
            title="New stock request",
            body=f"{project_name} requested {quantity} {item.unit} of {item.name}",
            actor_user_id=user_id,
            permission_codes=list(WAREHOUSE_GROUP),
            metadata={"stock_request_id": str(request.id), "stock_item_id": str(item.id)},
        ))
        logger.info("Stock request %s created: %s x %s for project %s", request.id, quantity, item.name, project_id)
        return request

    @staticmethod
    async def approve(db: AsyncSession, tenant_id: UUID, user_id: UUID, request_id: UUID) -> StockRequest:
        """PENDING → APPROVED. Authorization only: no stock moves."""
        async with atomic(db):
            request = await StockRequestService._require(db, tenant_id, request_id)
            if request.status != StockRequestStatus.PENDING.value:
                raise InvalidTransitionError(
                    f"Cannot approve a request in {request.status} status", current_status=request.status
                )
            before = snapshot(request)
            request.status = StockRequestStatus.APPROVED.value
            request.approved_by_id = user_id
            request.approved_at = utcnow()
            await db.flush()
            await log_audit(db, tenant_id, user_id, ACTION_UPDATE, "StockRequest", request.id, before, snapshot(request))

        notify(db, NotificationEvent(
            tenant_id=tenant_id,
            project_id=request.project_id,
            event_type=EVENT_STOCK_REQUEST_APPROVED,
            title="Stock request approved",
            body=f"Your request for {request.quantity_requested} of {request.item_name_snapshot} was approved",
            actor_user_id=user_id,
            target_user_ids=[request.requested_by_id],
            metadata={"stock_request_id": str(request.id)},
        ))
        logger.info("Stock request %s approved by %s", request.id, user_id)
        return request

    @staticmethod
    async def reject(
        db: AsyncSession, tenant_id: UUID, user_id: UUID, request_id: UUID, reason: str | None = None
    ) -> StockRequest:
        """PENDING → REJECTED (terminal)."""
        async with atomic(db):
            request = await StockRequestService._require(db, tenant_id, request_id)
            if request.status != StockRequestStatus.PENDING.value:
                raise InvalidTransitionError(
                    f"Cannot reject a request in {request.status} status", current_status=request.status
                )
            before = snapshot(request)
            request.status = StockRequestStatus.REJECTED.value
            request.approved_by_id = user_id
            request.approved_at = utcnow()
            request.rejection_reason = reason
            await db.flush()
            await log_audit(db, tenant_id, user_id, ACTION_UPDATE, "StockRequest", request.id, before, snapshot(request))

        notify(db, NotificationEvent(
            tenant_id=tenant_id,
            project_id=request.project_id,
            event_type=EVENT_STOCK_REQUEST_REJECTED,
            title="Stock request rejected",
            body=f"Your request for {request.item_name_snapshot} was rejected"
            + (f": {reason}" if reason else ""),
            actor_user_id=user_id,
            target_user_ids=[request.requested_by_id],
            metadata={"stock_request_id": str(request.id)},
        ))
        logger.info("Stock request %s rejected by %s", request.id, user_id)
        return request

    @staticmethod
    async def deliver(
        db: AsyncSession,
        tenant_id: UUID,
        user_id: UUID,
        request_id: UUID,
        quantity: Decimal,
        notes: str | None = None,
        spawn_purchase_for_remainder: bool = False,
        projects: ProjectDirectory | None = None,
    ) -> DeliveryOutcome:
        """
        Ship `quantity` from the pool to the request's project.
        All-or-nothing: if the pool cannot cover it, InsufficientStockError
        propagates and neither the ledger nor the request changes.
        With spawn_purchase_for_remainder, a linked purchase request covers
        whatever is still outstanding after this shipment.
        """
        quantity = to_amount(quantity)
        if quantity <= 0:
            raise ValidationError("Quantity must be greater than zero")
        projects = projects or SqlProjectDirectory(db, tenant_id)

        purchase = None
        async with atomic(db):
            request = await StockRequestService._require(db, tenant_id, request_id)
            if request.status not in _DELIVERABLE:
                raise InvalidTransitionError(
                    f"Cannot deliver against a request in {request.status} status", current_status=request.status
                )
            remaining = request.quantity_remaining
            if quantity > remaining:
                raise ValidationError(f"Delivery of {quantity} exceeds remaining quantity {remaining}")

            project_label = await projects.project_name(request.project_id) or str(request.project_id)
            _, item = await LedgerService.debit_for_project(
                db, tenant_id, request.stock_item_id, quantity, request.project_id, project_label,
                actor_id=user_id,
            )

            before = snapshot(request)
            delivery = StockRequestDelivery(
                stock_request_id=request.id,
                quantity=quantity,
                notes=notes,
                created_by_id=user_id,
            )
            db.add(delivery)
            request.quantity_delivered = request.quantity_delivered + quantity
            fully_delivered = request.quantity_delivered >= request.quantity_requested
            request.status = (
                StockRequestStatus.DELIVERED.value if fully_delivered
                else StockRequestStatus.PARTIALLY_DELIVERED.value
            )
            await db.flush()
            await log_audit(db, tenant_id, user_id, ACTION_UPDATE, "StockRequest", request.id, before, snapshot(request))

            remaining_after = request.quantity_remaining
            if spawn_purchase_for_remainder and not fully_delivered and remaining_after > 0:
                priority = PurchasePriority.HIGH if item.current_quantity <= 0 else PurchasePriority.MEDIUM
                purchase = await PurchaseRequestService.create(
                    db, tenant_id, user_id, request.stock_item_id, remaining_after,
                    priority=priority,
                    notes=f"Shortfall of stock request for {project_label}",
                    originating_stock_request_id=request.id,
                )

        notify(db, NotificationEvent(
            tenant_id=tenant_id,
            project_id=request.project_id,
            event_type=EVENT_STOCK_REQUEST_DELIVERED if fully_delivered else EVENT_STOCK_REQUEST_PARTIAL_DELIVERY,
            title="Stock request delivered" if fully_delivered else "Partial delivery",
            body=(
                f"{request.item_name_snapshot}: {quantity} delivered "
                f"({request.quantity_delivered} of {request.quantity_requested})"
            ),
            actor_user_id=user_id,
            target_user_ids=[request.requested_by_id],
            metadata={"stock_request_id": str(request.id), "delivery_id": str(delivery.id)},
        ))
        await db.refresh(request, attribute_names=["deliveries"])
        logger.info(
            "Stock request %s: delivered %s (%s/%s) -> %s",
            request.id, quantity, request.quantity_delivered, request.quantity_requested, request.status,
        )
        return DeliveryOutcome(request=request, delivery=delivery, purchase_request=purchase)

    @staticmethod
    async def list_deliveries(db: AsyncSession, tenant_id: UUID, request_id: UUID) -> list[StockRequestDelivery]:
        """Deliveries of one request, newest first."""
        await StockRequestService._require(db, tenant_id, request_id, for_update=False)
        result = await db.execute(
            select(StockRequestDelivery)
            .where(StockRequestDelivery.stock_request_id == request_id)
            .order_by(StockRequestDelivery.created_at.desc())
        )
        return list(result.scalars().all())
