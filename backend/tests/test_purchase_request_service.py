"""PurchaseRequestService: PENDING → ORDERED → COMPLETED and cancellation."""
from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import update

from sitestock.core.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from sitestock.db.base import utcnow
from sitestock.db.transaction import commit_and_dispatch
from sitestock.models.purchase_request import PurchasePriority, PurchaseRequest, PurchaseStatus
from sitestock.models.stock_request import StockRequestStatus
from sitestock.services.ledger_service import LedgerService
from sitestock.services.notification_service import (
    EVENT_PURCHASE_COMPLETED,
    EVENT_PURCHASE_ORDERED,
    EVENT_STOCK_REQUEST_APPROVED,
)
from sitestock.services.purchase_request_service import PurchaseRequestService
from sitestock.services.stock_item_service import StockItemService
from sitestock.services.stock_request_service import StockRequestService


async def _ordered(db, tenant, item, requester, buyer, quantity):
    purchase = await PurchaseRequestService.create(db, tenant.id, requester.id, item.id, Decimal(quantity))
    await PurchaseRequestService.mark_ordered(db, tenant.id, buyer.id, purchase.id)
    await commit_and_dispatch(db)
    return purchase


class TestCreate:

    async def test_default_priority_high_when_out_of_stock(self, db, tenant, cement, warehouse_user):
        purchase = await PurchaseRequestService.create(db, tenant.id, warehouse_user.id, cement.id, Decimal("10"))
        assert purchase.priority == PurchasePriority.HIGH.value
        assert purchase.status == PurchaseStatus.PENDING.value
        assert purchase.item_name_snapshot == "Cement CP-II 50kg"

    async def test_default_priority_medium_when_stocked(self, db, tenant, stocked_cement, warehouse_user):
        purchase = await PurchaseRequestService.create(db, tenant.id, warehouse_user.id, stocked_cement.id, Decimal("10"))
        assert purchase.priority == PurchasePriority.MEDIUM.value

    async def test_explicit_priority_wins(self, db, tenant, cement, warehouse_user):
        purchase = await PurchaseRequestService.create(
            db, tenant.id, warehouse_user.id, cement.id, Decimal("10"), priority="LOW",
        )
        assert purchase.priority == PurchasePriority.LOW.value

    async def test_unknown_priority(self, db, tenant, cement, warehouse_user):
        with pytest.raises(ValidationError):
            await PurchaseRequestService.create(db, tenant.id, warehouse_user.id, cement.id, Decimal("1"), priority="URGENT")

    async def test_non_positive_quantity(self, db, tenant, cement, warehouse_user):
        with pytest.raises(ValidationError):
            await PurchaseRequestService.create(db, tenant.id, warehouse_user.id, cement.id, Decimal("0"))

    async def test_linked_pending_stock_request_is_approved(
        self, db, tenant, project, cement, site_user, warehouse_user, sink
    ):
        request = await StockRequestService.create(db, tenant.id, site_user.id, project.id, cement.id, Decimal("30"))
        purchase = await PurchaseRequestService.create(
            db, tenant.id, warehouse_user.id, cement.id, Decimal("30"), originating_stock_request_id=request.id,
        )
        await commit_and_dispatch(db)

        linked = await StockRequestService.get_request(db, tenant.id, request.id)
        assert linked.status == StockRequestStatus.APPROVED.value
        assert linked.approved_by_id == warehouse_user.id
        assert purchase.originating_stock_request_id == request.id
        assert len(sink.of_type(EVENT_STOCK_REQUEST_APPROVED)) == 1

    async def test_linked_request_must_exist_in_tenant(self, db, other_tenant, tenant, project, cement, site_user):
        request = await StockRequestService.create(db, tenant.id, site_user.id, project.id, cement.id, Decimal("3"))
        foreign_item = await StockItemService.create_item(db, other_tenant.id, "Cement CP-II 50kg")
        await db.commit()
        with pytest.raises(NotFoundError):
            await PurchaseRequestService.create(
                db, tenant.id, site_user.id, cement.id, Decimal("3"), originating_stock_request_id=uuid4(),
            )
        with pytest.raises(NotFoundError):
            await PurchaseRequestService.create(
                db, other_tenant.id, site_user.id, foreign_item.id, Decimal("3"),
                originating_stock_request_id=request.id,
            )

    async def test_linked_request_for_other_item_rejected(self, db, tenant, project, cement, site_user):
        rebar = await StockItemService.create_item(db, tenant.id, "Rebar 10mm")
        request = await StockRequestService.create(db, tenant.id, site_user.id, project.id, cement.id, Decimal("3"))
        with pytest.raises(ValidationError):
            await PurchaseRequestService.create(
                db, tenant.id, site_user.id, rebar.id, Decimal("3"), originating_stock_request_id=request.id,
            )


class TestTransitions:

    async def test_mark_ordered(self, db, tenant, cement, warehouse_user, finance_user, sink):
        purchase = await _ordered(db, tenant, cement, warehouse_user, finance_user, "10")
        assert purchase.status == PurchaseStatus.ORDERED.value
        assert purchase.processed_by_id == finance_user.id
        assert purchase.ordered_at is not None
        assert sink.of_type(EVENT_PURCHASE_ORDERED)[0].target_user_ids == [warehouse_user.id]

    async def test_order_twice_fails(self, db, tenant, cement, warehouse_user, finance_user):
        purchase = await _ordered(db, tenant, cement, warehouse_user, finance_user, "10")
        with pytest.raises(InvalidTransitionError):
            await PurchaseRequestService.mark_ordered(db, tenant.id, finance_user.id, purchase.id)

    async def test_complete_reweights_average_and_credits_pool(
        self, db, tenant, project, stocked_cement, site_user, warehouse_user, finance_user, sink
    ):
        # Bring the pool to 20 @ 5
        await LedgerService.record_movement(db, tenant.id, stocked_cement.id, "EXIT", Decimal("80"))
        purchase = await _ordered(db, tenant, stocked_cement, warehouse_user, finance_user, "200")

        completed = await PurchaseRequestService.complete(
            db, tenant.id, finance_user.id, purchase.id, Decimal("6"), invoice_number="NF-2041",
        )
        await commit_and_dispatch(db)

        assert completed.status == PurchaseStatus.COMPLETED.value
        assert completed.unit_price == Decimal("6")
        assert completed.invoice_number == "NF-2041"
        assert completed.completed_at is not None
        item = await LedgerService.get_item(db, tenant.id, stocked_cement.id)
        assert item.current_quantity == Decimal("220")
        assert item.average_price == Decimal("5.9091")
        assert item.last_price == Decimal("6")

        movements, _ = await LedgerService.all_movements(db, tenant.id, movement_type="ENTRY")
        assert movements[0].origin_or_destination == "purchase"
        assert movements[0].invoice_number == "NF-2041"

        event = sink.of_type(EVENT_PURCHASE_COMPLETED)[0]
        assert event.title.startswith("Material arrived")
        assert "stock.financial.view" in event.permission_codes
        assert "stock.warehouse.view" in event.permission_codes

    async def test_complete_linked_purchase_announces_waiting_project(
        self, db, tenant, project, cement, site_user, warehouse_user, finance_user, sink
    ):
        request = await StockRequestService.create(db, tenant.id, site_user.id, project.id, cement.id, Decimal("30"))
        purchase = await PurchaseRequestService.create(
            db, tenant.id, warehouse_user.id, cement.id, Decimal("30"), originating_stock_request_id=request.id,
        )
        await PurchaseRequestService.mark_ordered(db, tenant.id, finance_user.id, purchase.id)
        await PurchaseRequestService.complete(db, tenant.id, finance_user.id, purchase.id, Decimal("4.5"))
        await commit_and_dispatch(db)

        event = sink.of_type(EVENT_PURCHASE_COMPLETED)[0]
        assert event.title.startswith("Material ready for delivery")
        assert "Riverside Tower" in event.body
        assert event.project_id == project.id
        # Stock arrives in the pool; the request still has to be delivered
        linked = await StockRequestService.get_request(db, tenant.id, request.id)
        assert linked.status == StockRequestStatus.APPROVED.value

    @pytest.mark.parametrize("price", ["0", "-1"])
    async def test_complete_requires_positive_price(self, db, tenant, cement, warehouse_user, finance_user, price):
        purchase = await _ordered(db, tenant, cement, warehouse_user, finance_user, "10")
        with pytest.raises(ValidationError):
            await PurchaseRequestService.complete(db, tenant.id, finance_user.id, purchase.id, Decimal(price))

    async def test_complete_requires_ordered(self, db, tenant, cement, warehouse_user, finance_user):
        purchase = await PurchaseRequestService.create(db, tenant.id, warehouse_user.id, cement.id, Decimal("10"))
        with pytest.raises(InvalidTransitionError):
            await PurchaseRequestService.complete(db, tenant.id, finance_user.id, purchase.id, Decimal("5"))
        item = await LedgerService.get_item(db, tenant.id, cement.id)
        assert item.current_quantity == Decimal("0")

    @pytest.mark.parametrize("ordered", [False, True])
    async def test_cancel_open_purchase(self, db, tenant, cement, warehouse_user, finance_user, ordered):
        if ordered:
            purchase = await _ordered(db, tenant, cement, warehouse_user, finance_user, "10")
        else:
            purchase = await PurchaseRequestService.create(db, tenant.id, warehouse_user.id, cement.id, Decimal("10"))
        cancelled = await PurchaseRequestService.cancel(db, tenant.id, finance_user.id, purchase.id)
        assert cancelled.status == PurchaseStatus.CANCELLED.value
        assert cancelled.processed_by_id == finance_user.id

    async def test_cancel_closed_purchase_is_bad_request(self, db, tenant, cement, warehouse_user, finance_user):
        purchase = await _ordered(db, tenant, cement, warehouse_user, finance_user, "10")
        await PurchaseRequestService.complete(db, tenant.id, finance_user.id, purchase.id, Decimal("5"))
        with pytest.raises(ValidationError):
            await PurchaseRequestService.cancel(db, tenant.id, finance_user.id, purchase.id)

        other = await PurchaseRequestService.create(db, tenant.id, warehouse_user.id, cement.id, Decimal("1"))
        await PurchaseRequestService.cancel(db, tenant.id, finance_user.id, other.id)
        with pytest.raises(ValidationError):
            await PurchaseRequestService.cancel(db, tenant.id, finance_user.id, other.id)

    async def test_unknown_purchase(self, db, tenant, finance_user):
        with pytest.raises(NotFoundError):
            await PurchaseRequestService.mark_ordered(db, tenant.id, finance_user.id, uuid4())


class TestList:

    async def test_status_then_priority_then_newest(self, db, tenant, stocked_cement, warehouse_user, finance_user):
        user = warehouse_user.id
        low = await PurchaseRequestService.create(db, tenant.id, user, stocked_cement.id, Decimal("1"), priority="LOW")
        high_old = await PurchaseRequestService.create(db, tenant.id, user, stocked_cement.id, Decimal("1"), priority="HIGH")
        medium = await PurchaseRequestService.create(db, tenant.id, user, stocked_cement.id, Decimal("1"))
        high_new = await PurchaseRequestService.create(db, tenant.id, user, stocked_cement.id, Decimal("1"), priority="HIGH")
        ordered = await PurchaseRequestService.create(db, tenant.id, user, stocked_cement.id, Decimal("1"), priority="HIGH")
        await PurchaseRequestService.mark_ordered(db, tenant.id, finance_user.id, ordered.id)
        cancelled = await PurchaseRequestService.create(db, tenant.id, user, stocked_cement.id, Decimal("1"), priority="HIGH")
        await PurchaseRequestService.cancel(db, tenant.id, finance_user.id, cancelled.id)
        await db.execute(
            update(PurchaseRequest)
            .where(PurchaseRequest.id == high_old.id)
            .values(date=utcnow() - timedelta(days=3))
        )
        await db.commit()

        purchases, total = await PurchaseRequestService.list_requests(db, tenant.id)
        assert total == 6
        assert [p.id for p in purchases] == [high_new.id, high_old.id, medium.id, low.id, ordered.id, cancelled.id]

        only_ordered, total = await PurchaseRequestService.list_requests(db, tenant.id, status="ORDERED")
        assert total == 1 and only_ordered[0].id == ordered.id
