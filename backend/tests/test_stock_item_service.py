"""StockItemService: catalogue ordering and descriptive edits."""
from decimal import Decimal

import pytest
from sqlalchemy import select

from sitestock.core.exceptions import NotFoundError, ValidationError
from sitestock.db.transaction import commit_and_dispatch
from sitestock.models.stock import StockItem, StockStatus
from sitestock.services.ledger_service import LedgerService
from sitestock.services.stock_item_service import StockItemService
from sitestock.services.stock_request_service import StockRequestService


class TestCreateAndList:

    async def test_new_item_is_empty_and_first(self, db, tenant):
        sand = await StockItemService.create_item(db, tenant.id, "Sand", unit="m3")
        gravel = await StockItemService.create_item(db, tenant.id, "Gravel", unit="m3", min_quantity=Decimal("2"))
        await db.commit()

        items, total = await StockItemService.list_items(db, tenant.id)
        assert total == 2
        assert [i.name for i in items] == ["Gravel", "Sand"]
        assert [i.order for i in items] == [0, 1]
        assert gravel.current_quantity == Decimal("0")
        assert gravel.average_price == Decimal("0")
        assert gravel.status == StockStatus.OUT_OF_STOCK.value
        assert sand.unit == "m3"

    async def test_blank_name_rejected(self, db, tenant):
        with pytest.raises(ValidationError):
            await StockItemService.create_item(db, tenant.id, "   ")

    async def test_negative_minimum_rejected(self, db, tenant):
        with pytest.raises(ValidationError):
            await StockItemService.create_item(db, tenant.id, "Sand", min_quantity=Decimal("-1"))

    async def test_list_filters_and_tenant_scope(self, db, tenant, other_tenant, stocked_cement):
        await StockItemService.create_item(db, tenant.id, "Rebar 10mm")
        await StockItemService.create_item(db, other_tenant.id, "Foreign item")
        await db.commit()

        out_of_stock, total = await StockItemService.list_items(db, tenant.id, status=StockStatus.OUT_OF_STOCK.value)
        assert total == 1
        assert out_of_stock[0].name == "Rebar 10mm"
        found, _ = await StockItemService.list_items(db, tenant.id, search="cement")
        assert [i.id for i in found] == [stocked_cement.id]


class TestUpdate:

    async def test_rename_does_not_touch_balance(self, db, tenant, stocked_cement):
        item = await StockItemService.update_item(db, tenant.id, stocked_cement.id, name="Cement CP-III 50kg")
        assert item.name == "Cement CP-III 50kg"
        assert item.current_quantity == Decimal("100")
        assert item.average_price == Decimal("5.0000")

    async def test_raising_minimum_recomputes_status_without_event(self, db, tenant, stocked_cement, sink):
        item = await StockItemService.update_item(db, tenant.id, stocked_cement.id, min_quantity=Decimal("100"))
        await commit_and_dispatch(db)
        assert item.min_quantity == Decimal("100")
        assert item.status == StockStatus.CRITICAL.value
        assert sink.events == []

        item = await StockItemService.update_item(db, tenant.id, stocked_cement.id, min_quantity=Decimal("5"))
        assert item.status == StockStatus.NORMAL.value

    async def test_status_uses_balance_at_update_time(self, db, tenant, stocked_cement):
        await LedgerService.record_movement(db, tenant.id, stocked_cement.id, "EXIT", Decimal("60"))
        item = await StockItemService.update_item(db, tenant.id, stocked_cement.id, min_quantity=Decimal("40"))
        assert item.current_quantity == Decimal("40")
        assert item.status == StockStatus.CRITICAL.value

    async def test_no_fields_is_a_no_op(self, db, tenant, stocked_cement):
        item = await StockItemService.update_item(db, tenant.id, stocked_cement.id)
        assert item.id == stocked_cement.id

    async def test_unknown_item(self, db, other_tenant, cement):
        with pytest.raises(NotFoundError):
            await StockItemService.update_item(db, other_tenant.id, cement.id, name="x")


async def _orders(db, tenant_id) -> dict:
    rows = (await db.execute(select(StockItem.name, StockItem.order).where(StockItem.tenant_id == tenant_id))).all()
    return {name: order for name, order in rows}


class TestReorder:

    async def test_positions_drive_listing(self, db, tenant):
        sand = await StockItemService.create_item(db, tenant.id, "Sand")
        gravel = await StockItemService.create_item(db, tenant.id, "Gravel")
        rebar = await StockItemService.create_item(db, tenant.id, "Rebar 10mm")
        await db.commit()

        await StockItemService.reorder_items(db, tenant.id, {sand.id: 0, rebar.id: 1, gravel.id: 2})
        await db.commit()

        items, _ = await StockItemService.list_items(db, tenant.id)
        assert [i.name for i in items] == ["Sand", "Rebar 10mm", "Gravel"]

    async def test_foreign_item_aborts_whole_reorder(self, db, tenant, other_tenant):
        sand = await StockItemService.create_item(db, tenant.id, "Sand")
        foreign = await StockItemService.create_item(db, other_tenant.id, "Foreign item")
        await db.commit()
        before = await _orders(db, tenant.id)

        with pytest.raises(NotFoundError):
            await StockItemService.reorder_items(db, tenant.id, {sand.id: 7, foreign.id: 8})

        assert await _orders(db, tenant.id) == before
        assert await _orders(db, other_tenant.id) == {"Foreign item": 0}

    async def test_negative_position_rejected(self, db, tenant, cement):
        with pytest.raises(ValidationError):
            await StockItemService.reorder_items(db, tenant.id, {cement.id: -1})


class TestDelete:

    async def test_unused_item_is_removed(self, db, tenant, cement):
        await StockItemService.delete_item(db, tenant.id, cement.id)
        await db.commit()
        assert await LedgerService.get_item(db, tenant.id, cement.id) is None

    async def test_item_with_movements_is_kept(self, db, tenant, stocked_cement):
        with pytest.raises(ValidationError):
            await StockItemService.delete_item(db, tenant.id, stocked_cement.id)
        item = await LedgerService.get_item(db, tenant.id, stocked_cement.id)
        assert item.current_quantity == Decimal("100")

    async def test_item_with_open_request_is_kept(self, db, tenant, project, cement, site_user):
        await StockRequestService.create(db, tenant.id, site_user.id, project.id, cement.id, Decimal("3"))
        await db.commit()
        with pytest.raises(ValidationError):
            await StockItemService.delete_item(db, tenant.id, cement.id)

    async def test_other_tenant_cannot_delete(self, db, other_tenant, cement):
        with pytest.raises(NotFoundError):
            await StockItemService.delete_item(db, other_tenant.id, cement.id)
