"""Tests for API endpoints"""
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from cartsync.app import app
from cartsync.auth import StaticIdentity
from cartsync.cart import InMemoryCartStore
from cartsync.config import CRON_SECRET
from cartsync.errors import StoreUnavailable
from cartsync.routers import deps
from conftest import FakeInventory

GUEST_HEADERS = {"X-Session-Id": "sess-1"}
USER_HEADERS = {"X-User-Id": "u-1"}
LOGIN_HEADERS = {"X-User-Id": "u-1", "X-Session-Id": "sess-1"}


@pytest.fixture
def api_store():
    return InMemoryCartStore()


@pytest.fixture
def api_inventory():
    inventory = FakeInventory()
    inventory.set("prod-1", stock=5, price="10.00")
    inventory.set("prod-2", stock=2, price="25.00")
    inventory.set("prod-3", stock=0, price="5.00")
    return inventory


@pytest.fixture
def client(api_store, api_inventory):
    """Test client wired to in-memory collaborators"""
    deps.configure(store=api_store, inventory=api_inventory)
    with TestClient(app) as test_client:
        yield test_client
    deps.configure()


def test_health_check(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_requires_identity(client):
    response = client.get("/api/cart")
    assert response.status_code == 401


def test_empty_cart(client):
    response = client.get("/api/cart", headers=GUEST_HEADERS)

    assert response.status_code == 200
    assert response.json()["is_empty"] is True


def test_add_to_cart(client):
    response = client.post("/api/cart/items", json={"product_id": "prod-1", "quantity": 2}, headers=GUEST_HEADERS)

    assert response.status_code == 200
    data = response.json()
    assert data["total_items"] == 2
    assert data["subtotal"] == 20.0


def test_add_out_of_stock(client):
    response = client.post("/api/cart/items", json={"product_id": "prod-3"}, headers=GUEST_HEADERS)

    assert response.status_code == 400
    assert response.json()["detail"] == "Product is out of stock"


def test_add_unknown_product(client):
    response = client.post("/api/cart/items", json={"product_id": "nope"}, headers=GUEST_HEADERS)

    assert response.status_code == 400
    assert response.json()["detail"] == "Product not found or inactive"


def test_add_more_than_stock(client):
    response = client.post("/api/cart/items", json={"product_id": "prod-2", "quantity": 3}, headers=GUEST_HEADERS)

    assert response.status_code == 400
    assert "Only 2 items available" in response.json()["detail"]


def test_add_invalid_quantity(client):
    response = client.post("/api/cart/items", json={"product_id": "prod-1", "quantity": 0}, headers=GUEST_HEADERS)

    assert response.status_code == 422


def test_inventory_outage_on_add(client, api_inventory):
    api_inventory.fail("prod-1")

    response = client.post("/api/cart/items", json={"product_id": "prod-1"}, headers=GUEST_HEADERS)

    assert response.status_code == 503


def test_update_and_remove_item(client):
    client.post("/api/cart/items", json={"product_id": "prod-1", "quantity": 1}, headers=USER_HEADERS)

    updated = client.patch("/api/cart/items/prod-1", json={"quantity": 4}, headers=USER_HEADERS)
    assert updated.json()["total_items"] == 4

    removed = client.delete("/api/cart/items/prod-1", headers=USER_HEADERS)
    assert removed.json()["is_empty"] is True


def test_update_missing_item(client):
    client.post("/api/cart/items", json={"product_id": "prod-1"}, headers=USER_HEADERS)

    response = client.patch("/api/cart/items/prod-2", json={"quantity": 1}, headers=USER_HEADERS)

    assert response.status_code == 404
    assert response.json()["error"] == "NotFound"


def test_clear_cart(client):
    client.post("/api/cart/items", json={"product_id": "prod-1"}, headers=USER_HEADERS)

    response = client.delete("/api/cart", headers=USER_HEADERS)

    assert response.json()["is_empty"] is True


def test_merge_on_login(client):
    client.post("/api/cart/items", json={"product_id": "prod-1", "quantity": 2}, headers=GUEST_HEADERS)
    client.post("/api/cart/items", json={"product_id": "prod-1", "quantity": 1}, headers=USER_HEADERS)

    first = client.post("/api/cart/merge", headers=LOGIN_HEADERS)
    again = client.post("/api/cart/merge", headers=LOGIN_HEADERS)

    assert first.status_code == 200
    assert first.json()["state"] == "merged"
    assert first.json()["result"]["items_combined"] == ["prod-1"]
    assert again.json() == first.json()
    cart = client.get("/api/cart", headers=USER_HEADERS).json()
    assert cart["total_items"] == 3
    assert client.get("/api/cart", headers=GUEST_HEADERS).json()["is_empty"] is True


def test_merge_checks_configured_session_source(client, api_store, api_inventory):
    client.post("/api/cart/items", json={"product_id": "prod-1", "quantity": 2}, headers=GUEST_HEADERS)
    # Session source reports the user signed out by the time the merge lands
    deps.configure(store=api_store, inventory=api_inventory, session_identity=StaticIdentity(None))

    response = client.post("/api/cart/merge", headers=LOGIN_HEADERS)

    assert response.status_code == 200
    assert response.json()["state"] == "merged"
    assert response.json()["discarded"] is True
    assert response.json()["result"] is None


def test_merge_reports_pending_guest_cleanup(client, api_store):
    client.post("/api/cart/items", json={"product_id": "prod-1", "quantity": 2}, headers=GUEST_HEADERS)
    api_store.delete = AsyncMock(side_effect=StoreUnavailable("Cart service unavailable"))

    response = client.post("/api/cart/merge", headers=LOGIN_HEADERS)

    assert response.status_code == 200
    assert response.json()["state"] == "merged"
    assert response.json()["cleanup_pending"] is True
    assert client.get("/api/cart", headers=USER_HEADERS).json()["total_items"] == 2


def test_merge_requires_user(client):
    response = client.post("/api/cart/merge", headers=GUEST_HEADERS)
    assert response.status_code == 401


def test_merge_store_failure(client, api_store):
    api_store.get = AsyncMock(side_effect=StoreUnavailable("Cart service unavailable"))
    response = client.post("/api/cart/merge", headers=LOGIN_HEADERS)

    assert response.status_code == 503


def test_validate_cart(client, api_inventory):
    client.post("/api/cart/items", json={"product_id": "prod-1", "quantity": 5}, headers=USER_HEADERS)
    api_inventory.set("prod-1", stock=3, price="10.00")

    response = client.get("/api/cart/validate", headers=USER_HEADERS)

    assert response.status_code == 200
    data = response.json()
    assert data["valid"] is False
    assert data["capped_items"] == [{"item": "prod-1", "requested": 5, "allowed": 3}]
    # Read-only
    assert client.get("/api/cart", headers=USER_HEADERS).json()["total_items"] == 5


def test_apply_validation(client, api_inventory):
    client.post("/api/cart/items", json={"product_id": "prod-1", "quantity": 5}, headers=USER_HEADERS)
    api_inventory.set("prod-1", stock=3, price="10.00")

    response = client.post("/api/cart/validate/apply", headers=USER_HEADERS)

    assert response.json()["cart"]["total_items"] == 3


def test_checkout_preload(client):
    client.post("/api/cart/items", json={"product_id": "prod-1"}, headers=USER_HEADERS)

    response = client.get("/api/checkout/preload", headers=USER_HEADERS)

    assert response.status_code == 200
    data = response.json()
    assert data["user_id"] == "u-1"
    assert data["validation"]["valid"] is True


def test_cron_cleanup_requires_secret(client):
    response = client.get("/api/cron/cart-cleanup", headers={"Authorization": "Bearer wrong"})
    assert response.status_code == 401


def test_cron_cleanup(client):
    response = client.get("/api/cron/cart-cleanup", headers={"Authorization": f"Bearer {CRON_SECRET}"})

    assert response.status_code == 200
    assert response.json() == {"checked": 0, "deleted_carts": 0, "skipped": 0}
