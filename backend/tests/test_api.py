"""HTTP surface: auth, permissions, status codes and the response envelope."""
from decimal import Decimal
from uuid import uuid4

import httpx
import pytest

from sitestock.core.security import create_access_token
from sitestock.db.session import get_db
from sitestock.main import app

API = "/api/v1"


def _auth(user) -> dict:
    token = create_access_token(user.id, user.tenant_id, user.role, email=user.email)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def client(session_factory, sink):
    async def _get_test_db():
        async with session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_test_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


class TestAuth:

    async def test_health_is_public(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "service": "sitestock"}

    async def test_missing_token(self, client):
        response = await client.get(f"{API}/stock/items")
        assert response.status_code == 401

    async def test_garbage_token(self, client):
        response = await client.get(f"{API}/stock/items", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    async def test_site_user_cannot_edit_catalogue(self, client, site_user):
        response = await client.post(f"{API}/stock/items", json={"name": "Sand"}, headers=_auth(site_user))
        assert response.status_code == 403

    async def test_reconcile_needs_financial_view(self, client, warehouse_user, finance_user, stocked_cement):
        url = f"{API}/stock/items/{stocked_cement.id}/reconcile"
        assert (await client.get(url, headers=_auth(warehouse_user))).status_code == 403

        response = await client.get(url, headers=_auth(finance_user))
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["in_balance"] is True
        assert data["movement_count"] == 1


class TestStockEndpoints:

    async def test_create_and_list_items(self, client, warehouse_user):
        response = await client.post(
            f"{API}/stock/items",
            json={"name": "Sand", "unit": "m3", "min_quantity": "2"},
            headers=_auth(warehouse_user),
        )
        assert response.status_code == 201
        created = response.json()["data"]
        assert created["status"] == "OUT_OF_STOCK"
        assert Decimal(created["current_quantity"]) == 0

        listing = await client.get(f"{API}/stock/items", headers=_auth(warehouse_user))
        body = listing.json()
        assert body["meta"]["total_count"] == 1
        assert body["data"][0]["id"] == created["id"]
        assert body["error"] is None

    async def test_movement_then_overdraw_conflict(self, client, warehouse_user, cement):
        url = f"{API}/stock/items/{cement.id}/movements"
        entry = await client.post(
            url, json={"type": "ENTRY", "quantity": "100", "unit_price": "5"}, headers=_auth(warehouse_user),
        )
        assert entry.status_code == 201
        item = entry.json()["data"]["item"]
        assert Decimal(item["current_quantity"]) == Decimal("100")
        assert Decimal(item["average_price"]) == Decimal("5")
        assert item["status"] == "NORMAL"

        overdraw = await client.post(url, json={"type": "EXIT", "quantity": "150"}, headers=_auth(warehouse_user))
        assert overdraw.status_code == 409
        assert "Insufficient" in overdraw.json()["detail"]

        history = await client.get(url, headers=_auth(warehouse_user))
        assert history.json()["meta"]["total_count"] == 1

    async def test_invalid_movement_payload(self, client, warehouse_user, cement):
        url = f"{API}/stock/items/{cement.id}/movements"
        response = await client.post(url, json={"type": "TRANSFER", "quantity": "1"}, headers=_auth(warehouse_user))
        assert response.status_code == 422
        response = await client.post(url, json={"type": "EXIT", "quantity": "0"}, headers=_auth(warehouse_user))
        assert response.status_code == 422

    async def test_unknown_item(self, client, warehouse_user):
        response = await client.post(
            f"{API}/stock/items/{uuid4()}/movements",
            json={"type": "ENTRY", "quantity": "1"},
            headers=_auth(warehouse_user),
        )
        assert response.status_code == 404

    async def test_kpis(self, client, site_user, stocked_cement):
        response = await client.get(f"{API}/stock/kpis", headers=_auth(site_user))
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["total_items"] == 1
        assert data["critical_items"] == 0
        assert Decimal(data["total_value"]) == Decimal("500")


class TestWorkflowEndpoints:

    async def test_request_approve_deliver(self, client, site_user, warehouse_user, project, stocked_cement):
        created = await client.post(
            f"{API}/stock-requests",
            json={"project_id": str(project.id), "stock_item_id": str(stocked_cement.id), "quantity": "40"},
            headers=_auth(site_user),
        )
        assert created.status_code == 201
        request_id = created.json()["data"]["id"]
        assert created.json()["data"]["status"] == "PENDING"

        forbidden = await client.post(f"{API}/stock-requests/{request_id}/approve", headers=_auth(site_user))
        assert forbidden.status_code == 403

        approved = await client.post(f"{API}/stock-requests/{request_id}/approve", headers=_auth(warehouse_user))
        assert approved.json()["data"]["status"] == "APPROVED"

        again = await client.post(f"{API}/stock-requests/{request_id}/approve", headers=_auth(warehouse_user))
        assert again.status_code == 409

        delivered = await client.post(
            f"{API}/stock-requests/{request_id}/deliver",
            json={"quantity": "40"},
            headers=_auth(warehouse_user),
        )
        assert delivered.status_code == 200
        outcome = delivered.json()["data"]
        assert outcome["request"]["status"] == "DELIVERED"
        assert Decimal(outcome["request"]["quantity_remaining"]) == 0
        assert outcome["purchase_request"] is None

        deliveries = await client.get(f"{API}/stock-requests/{request_id}/deliveries", headers=_auth(site_user))
        assert len(deliveries.json()["data"]) == 1

    async def test_over_delivery_is_bad_request(self, client, site_user, warehouse_user, project, stocked_cement):
        created = await client.post(
            f"{API}/stock-requests",
            json={"project_id": str(project.id), "stock_item_id": str(stocked_cement.id), "quantity": "5"},
            headers=_auth(site_user),
        )
        request_id = created.json()["data"]["id"]
        await client.post(f"{API}/stock-requests/{request_id}/approve", headers=_auth(warehouse_user))
        response = await client.post(
            f"{API}/stock-requests/{request_id}/deliver", json={"quantity": "6"}, headers=_auth(warehouse_user),
        )
        assert response.status_code == 400

    async def test_purchase_lifecycle(self, client, warehouse_user, finance_user, stocked_cement):
        denied = await client.post(
            f"{API}/purchase-requests",
            json={"stock_item_id": str(stocked_cement.id), "quantity": "100"},
            headers=_auth(finance_user),
        )
        assert denied.status_code == 403

        created = await client.post(
            f"{API}/purchase-requests",
            json={"stock_item_id": str(stocked_cement.id), "quantity": "100"},
            headers=_auth(warehouse_user),
        )
        assert created.status_code == 201
        purchase = created.json()["data"]
        assert purchase["priority"] == "MEDIUM"

        early = await client.post(
            f"{API}/purchase-requests/{purchase['id']}/complete",
            json={"unit_price": "7"},
            headers=_auth(finance_user),
        )
        assert early.status_code == 409

        ordered = await client.post(f"{API}/purchase-requests/{purchase['id']}/order", headers=_auth(finance_user))
        assert ordered.json()["data"]["status"] == "ORDERED"

        completed = await client.post(
            f"{API}/purchase-requests/{purchase['id']}/complete",
            json={"unit_price": "7", "invoice_number": "NF-88"},
            headers=_auth(finance_user),
        )
        assert completed.status_code == 200
        assert completed.json()["data"]["status"] == "COMPLETED"

        cancel = await client.post(f"{API}/purchase-requests/{purchase['id']}/cancel", headers=_auth(finance_user))
        assert cancel.status_code == 400

        items = await client.get(f"{API}/stock/items", headers=_auth(finance_user))
        item = items.json()["data"][0]
        assert Decimal(item["current_quantity"]) == Decimal("200")
        assert Decimal(item["average_price"]) == Decimal("6")


class TestQuantityScale:

    async def test_movement_finer_than_four_places(self, client, warehouse_user, stocked_cement):
        url = f"{API}/stock/items/{stocked_cement.id}/movements"
        response = await client.post(url, json={"type": "EXIT", "quantity": "0.00001"}, headers=_auth(warehouse_user))
        assert response.status_code == 422
        accepted = await client.post(url, json={"type": "EXIT", "quantity": "0.0001"}, headers=_auth(warehouse_user))
        assert accepted.status_code == 201

    async def test_sub_scale_delivery_leaves_request_open(
        self, client, site_user, warehouse_user, project, stocked_cement
    ):
        created = await client.post(
            f"{API}/stock-requests",
            json={"project_id": str(project.id), "stock_item_id": str(stocked_cement.id), "quantity": "1"},
            headers=_auth(site_user),
        )
        request_id = created.json()["data"]["id"]
        await client.post(f"{API}/stock-requests/{request_id}/approve", headers=_auth(warehouse_user))

        url = f"{API}/stock-requests/{request_id}/deliver"
        rejected = await client.post(url, json={"quantity": "0.99999"}, headers=_auth(warehouse_user))
        assert rejected.status_code == 422

        delivered = await client.post(url, json={"quantity": "1"}, headers=_auth(warehouse_user))
        assert delivered.json()["data"]["request"]["status"] == "DELIVERED"


class TestCatalogueMaintenance:

    async def test_reorder(self, client, warehouse_user, site_user):
        ids = []
        for name in ("Sand", "Gravel"):
            created = await client.post(f"{API}/stock/items", json={"name": name}, headers=_auth(warehouse_user))
            ids.append(created.json()["data"]["id"])
        body = {"items": [{"id": ids[0], "order": 0}, {"id": ids[1], "order": 1}]}

        assert (await client.patch(f"{API}/stock/items/reorder", json=body, headers=_auth(site_user))).status_code == 403
        response = await client.patch(f"{API}/stock/items/reorder", json=body, headers=_auth(warehouse_user))
        assert response.status_code == 200
        assert response.json()["data"] == {"reordered": 2}

        listing = await client.get(f"{API}/stock/items", headers=_auth(warehouse_user))
        assert [i["name"] for i in listing.json()["data"]] == ["Sand", "Gravel"]

        unknown = {"items": [{"id": str(uuid4()), "order": 0}]}
        assert (await client.patch(f"{API}/stock/items/reorder", json=unknown, headers=_auth(warehouse_user))).status_code == 404

    async def test_delete(self, client, warehouse_user, stocked_cement):
        in_use = await client.delete(f"{API}/stock/items/{stocked_cement.id}", headers=_auth(warehouse_user))
        assert in_use.status_code == 400

        sand = await client.post(f"{API}/stock/items", json={"name": "Sand"}, headers=_auth(warehouse_user))
        sand_id = sand.json()["data"]["id"]
        response = await client.delete(f"{API}/stock/items/{sand_id}", headers=_auth(warehouse_user))
        assert response.status_code == 204
        assert (await client.delete(f"{API}/stock/items/{sand_id}", headers=_auth(warehouse_user))).status_code == 404
