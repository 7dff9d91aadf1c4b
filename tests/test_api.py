"""HTTP surface tests: routing, envelopes, status codes and token handling."""
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from shared.security_config import limiter
from shared.utils import create_access_token

from blossomhub import main
from blossomhub.main import app, get_order_service, get_user_service, get_wishlist_service
from blossomhub.models import ExternalIdentity, Role


@pytest.fixture
def client(order_service, user_service, wishlist_service):
    app.dependency_overrides[get_order_service] = lambda: order_service
    app.dependency_overrides[get_user_service] = lambda: user_service
    app.dependency_overrides[get_wishlist_service] = lambda: wishlist_service
    limiter.enabled = False
    yield TestClient(app)
    limiter.enabled = True
    app.dependency_overrides.clear()


def auth(account):
    token = create_access_token({"sub": account.id, "role": account.role.value})
    return {"Authorization": f"Bearer {token}"}


def create_order(client, account, **body):
    body.setdefault("items", [{"product_id": "p1", "quantity": 2}])
    return client.post("/orders", json=body, headers=auth(account))


# --- Orders ---

def test_create_order(client, customer):
    resp = create_order(client, customer, shipping_address=" 1 Petal Lane ")

    assert resp.status_code == 201
    body = resp.json()
    assert body["success"] is True
    order = body["data"]
    assert order["user_id"] == customer.id
    assert order["status"] == "pending"
    assert order["shipping_address"] == "1 Petal Lane"
    assert len(order["items"]) == 1
    assert order["items"][0]["product_id"] == "p1"
    assert order["items"][0]["quantity"] == 2
    assert float(order["items"][0]["price_at_purchase"]) == 10.0
    assert float(order["total_amount"]) == 20.0


def test_create_order_unknown_product(client, customer, order_repo):
    resp = create_order(client, customer, items=[{"product_id": "ghost", "quantity": 1}])

    assert resp.status_code == 400
    assert resp.json()["success"] is False
    assert resp.json()["error"] == "ProductNotFound"
    assert order_repo.docs == {}


def test_create_order_rejects_zero_quantity_at_validation(client, customer):
    resp = create_order(client, customer, items=[{"product_id": "p1", "quantity": 0}])

    assert resp.status_code == 422


def test_create_order_without_token(client):
    resp = client.post("/orders", json={"items": [{"product_id": "p1", "quantity": 1}]})

    assert resp.status_code == 401
    assert resp.json()["error"] == "Unauthenticated"
    assert resp.headers["WWW-Authenticate"] == "Bearer"


def test_invalid_token(client):
    resp = client.get("/orders", headers={"Authorization": "Bearer not-a-jwt"})

    assert resp.status_code == 401


def test_expired_token(client, customer):
    token = create_access_token({"sub": customer.id, "role": "customer"}, expires_delta=timedelta(minutes=-1))

    resp = client.get("/orders", headers={"Authorization": f"Bearer {token}"})

    assert resp.status_code == 401


def test_token_with_unknown_role(client, customer):
    token = create_access_token({"sub": customer.id, "role": "wizard"})

    resp = client.get("/orders", headers={"Authorization": f"Bearer {token}"})

    assert resp.status_code == 401


def test_get_order_owner_vs_stranger(client, customer, other_customer):
    order_id = create_order(client, customer).json()["data"]["id"]

    assert client.get(f"/orders/{order_id}", headers=auth(customer)).status_code == 200
    resp = client.get(f"/orders/{order_id}", headers=auth(other_customer))
    assert resp.status_code == 403
    assert resp.json()["error"] == "Forbidden"


def test_get_missing_order(client, admin):
    resp = client.get("/orders/665f1c2b9d1e8a0012345678", headers=auth(admin))

    assert resp.status_code == 404
    assert resp.json()["error"] == "NotFound"


def test_list_orders(client, customer, other_customer, admin):
    create_order(client, customer)
    create_order(client, other_customer)

    mine = client.get("/orders", headers=auth(customer)).json()["data"]
    everyone = client.get("/orders", headers=auth(admin)).json()["data"]
    filtered = client.get("/orders", params={"user_id": other_customer.id}, headers=auth(admin)).json()["data"]

    assert [o["user_id"] for o in mine] == [customer.id]
    assert len(everyone) == 2
    assert [o["user_id"] for o in filtered] == [other_customer.id]
    assert client.get("/orders", params={"user_id": other_customer.id}, headers=auth(customer)).status_code == 403


def test_update_status(client, customer, admin, clock):
    created = create_order(client, customer).json()["data"]
    clock.advance(minutes=10)

    resp = client.put(f"/orders/{created['id']}/status", json={"status": "shipped"}, headers=auth(admin))

    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "shipped"
    assert resp.json()["data"]["updated_at"] > created["updated_at"]


def test_update_status_invalid(client, customer, admin):
    order_id = create_order(client, customer).json()["data"]["id"]

    resp = client.put(f"/orders/{order_id}/status", json={"status": "paid"}, headers=auth(admin))

    assert resp.status_code == 400
    assert resp.json()["error"] == "InvalidStatus"


def test_update_status_by_customer(client, customer):
    order_id = create_order(client, customer).json()["data"]["id"]

    resp = client.put(f"/orders/{order_id}/status", json={"status": "delivered"}, headers=auth(customer))

    assert resp.status_code == 403


def test_delete_order(client, customer, admin):
    order_id = create_order(client, customer).json()["data"]["id"]

    assert client.delete(f"/orders/{order_id}", headers=auth(admin)).status_code == 200
    assert client.delete(f"/orders/{order_id}", headers=auth(admin)).status_code == 404


# --- Users ---

def test_get_me(client, customer):
    resp = client.get("/users/me", headers=auth(customer))

    assert resp.status_code == 200
    assert resp.json()["data"]["email"] == customer.email
    assert "github_id" not in resp.json()["data"]


def test_get_me_without_session(client):
    assert client.get("/users/me").status_code == 401


def test_get_other_user_forbidden(client, customer, other_customer):
    assert client.get(f"/users/{other_customer.id}", headers=auth(customer)).status_code == 403


def test_update_profile_and_role_guard(client, customer):
    ok = client.put("/users/me", json={"display_name": "Ally"}, headers=auth(customer))
    refused = client.put("/users/me", json={"role": "admin"}, headers=auth(customer))

    assert ok.status_code == 200
    assert ok.json()["data"]["display_name"] == "Ally"
    assert ok.json()["data"]["phone_number"] == customer.phone_number
    assert refused.status_code == 403


def test_admin_updates_role(client, admin, customer):
    resp = client.put(f"/users/{customer.id}", json={"role": "admin"}, headers=auth(admin))

    assert resp.status_code == 200
    assert resp.json()["data"]["role"] == "admin"


def test_admin_clears_a_field(client, admin, customer):
    resp = client.put(f"/users/{customer.id}", json={"phone_number": None}, headers=auth(admin))

    assert resp.status_code == 200
    assert resp.json()["data"]["phone_number"] is None
    assert resp.json()["data"]["address"] == customer.address


def test_demoted_admin_loses_admin_rights_at_once(client, admin, account_repo):
    headers = auth(admin)
    account_repo.docs[admin.id] = admin.model_copy(update={"role": Role.CUSTOMER})

    assert client.get("/users", headers=headers).status_code == 403


def test_token_of_deleted_account(client, customer, account_repo):
    headers = auth(customer)
    del account_repo.docs[customer.id]

    resp = client.get("/users/me", headers=headers)

    assert resp.status_code == 401
    assert resp.json()["error"] == "Unauthenticated"


def test_last_admin_delete(client, admin):
    resp = client.delete(f"/users/{admin.id}", headers=auth(admin))

    assert resp.status_code == 400
    assert resp.json()["error"] == "LastAdminProtected"


def test_delete_user_by_admin(client, admin, customer):
    assert client.delete(f"/users/{customer.id}", headers=auth(admin)).status_code == 200
    assert client.get(f"/users/{customer.id}", headers=auth(admin)).status_code == 404


def test_list_users(client, admin, customer):
    assert len(client.get("/users", headers=auth(admin)).json()["data"]) == 2
    assert client.get("/users", headers=auth(customer)).status_code == 403


# --- Auth ---

def test_github_login_creates_then_reuses_account(client, monkeypatch, account_repo):
    async def fake_identity(access_token, request_id=None):
        assert access_token == "gho_token"
        return ExternalIdentity(github_id="77", email="dana@petals.io", display_name="Dana")

    monkeypatch.setattr(main, "fetch_github_identity", fake_identity)

    first = client.post("/auth/github", json={"access_token": "gho_token"})
    second = client.post("/auth/github", json={"access_token": "gho_token"})

    assert first.status_code == 200
    assert first.json()["data"]["created"] is True
    assert second.json()["data"]["created"] is False
    assert second.json()["data"]["user"]["id"] == first.json()["data"]["user"]["id"]
    assert len(account_repo.docs) == 1

    token = second.json()["data"]["access_token"]
    me = client.get("/users/me", headers={"Authorization": f"Bearer {token}"})
    assert me.json()["data"]["email"] == "dana@petals.io"


# --- Ambient ---

def test_security_and_request_id_headers(client, customer):
    resp = client.get("/users/me", headers={**auth(customer), "X-Request-ID": "req-123"})

    assert resp.headers["X-Request-ID"] == "req-123"
    assert resp.headers["X-Frame-Options"] == "DENY"
    assert resp.headers["X-Content-Type-Options"] == "nosniff"


def test_health_without_database_is_unavailable(client):
    resp = client.get("/health")

    assert resp.status_code == 503


def test_unhandled_error_keeps_the_envelope(client, monkeypatch):
    async def broken_identity(access_token, request_id=None):
        raise RuntimeError("boom")

    monkeypatch.setattr(main, "fetch_github_identity", broken_identity)
    lenient = TestClient(app, raise_server_exceptions=False)

    resp = lenient.post("/auth/github", json={"access_token": "gho_token"})

    assert resp.status_code == 500
    assert resp.json()["success"] is False
    assert resp.json()["error"] == "Unexpected"
    assert "boom" not in resp.text


class IndexRecorder:
    def __init__(self):
        self.indexes = []

    async def create_index(self, keys, **kwargs):
        self.indexes.append((keys, kwargs))


class FakeDatabase:
    def __init__(self):
        self.collections = {}

    def __getattr__(self, name):
        return self.collections.setdefault(name, IndexRecorder())


class FakeMongoClient:
    def __init__(self):
        self.db = FakeDatabase()

    def __getitem__(self, name):
        return self.db


@pytest.mark.asyncio
async def test_startup_creates_indexes(monkeypatch):
    fake = FakeMongoClient()
    monkeypatch.setattr(main, "get_db_client", lambda: fake)
    monkeypatch.setattr(app, "mongodb_client", None, raising=False)
    monkeypatch.setattr(app, "mongodb", None, raising=False)

    await main.startup_db_client()

    collections = fake.db.collections
    assert collections["users"].indexes == [("email", {"unique": True})]
    assert collections["orders"].indexes == [("owner_id", {})]
    assert collections["wishlists"].indexes == [("owner_id", {"unique": True})]


# --- Wishlist ---

def test_wishlist_flow(client, customer):
    headers = auth(customer)

    first = client.get("/wishlist", headers=headers)
    assert first.status_code == 201
    assert first.json()["data"]["items"] == []
    assert client.get("/wishlist", headers=headers).status_code == 200

    added = client.post("/wishlist/p2", headers=headers)
    assert added.status_code == 200
    item = added.json()["data"]["items"][0]
    assert item["product_id"] == "p2"
    assert item["name"] == "Tulip"
    assert float(item["price"]) == 4.25
    assert added.json()["data"]["user_id"] == customer.id

    duplicate = client.post("/wishlist/p2", headers=headers)
    assert duplicate.status_code == 400
    assert duplicate.json()["error"] == "DuplicateItem"

    removed = client.delete("/wishlist/p2", headers=headers)
    assert removed.status_code == 200
    assert removed.json()["data"]["items"] == []
    assert client.delete("/wishlist/p2", headers=headers).status_code == 404


def test_wishlist_clear(client, customer):
    headers = auth(customer)
    assert client.delete("/wishlist/clear", headers=headers).status_code == 404

    client.post("/wishlist/p1", headers=headers)
    client.post("/wishlist/p3", headers=headers)
    resp = client.delete("/wishlist/clear", headers=headers)

    assert resp.status_code == 200
    assert resp.json()["data"]["items"] == []


def test_wishlist_unknown_product(client, customer):
    resp = client.post("/wishlist/ghost", headers=auth(customer))

    assert resp.status_code == 404
    assert resp.json()["error"] == "NotFound"


def test_wishlist_needs_a_session(client):
    assert client.get("/wishlist").status_code == 401
