"""API tests for the orders endpoints.

Requests carry the caller in ``X-User-ID`` (and ``X-User-Role: staff`` for
operator moves), the way the auth layer in front of the service sends them.
Payments go through ``PaymentsStub`` unless a test patches the provider.
"""

import uuid

import httpx
import pytest

from apps.orders import adapters, providers
from apps.orders.models import IdempotencyKey, OrderModel
from apps.store.models import Product

USER = "user-1"
ORDERS_URL = "/api/orders/"

pytestmark = pytest.mark.django_db


def _order_body(address_id, **extra):
    return {"shippingAddressId": address_id, "shippingMethod": "standard", "paymentMethod": "direct_bank", **extra}


@pytest.fixture()
def cart_with_item(client, make_product, make_address):
    p = make_product(price="10.00", stock=5)
    a = make_address()
    r = client.post(
        "/api/cart/items/", {"productId": p.pk, "quantity": 2},
        content_type="application/json", HTTP_X_USER_ID=USER,
    )
    assert r.status_code == 200
    return p, a


def _place(client, address, **headers):
    return client.post(
        ORDERS_URL, _order_body(address.pk), content_type="application/json", HTTP_X_USER_ID=USER, **headers
    )


def test_create_order(client, cart_with_item):
    p, a = cart_with_item
    r = _place(client, a)
    assert r.status_code == 201
    body = r.json()
    assert body["orderNumber"].startswith("ORD-")
    assert body["totalAmount"] == "25.00"
    assert body["status"] == "pending"
    assert Product.objects.get(pk=p.pk).stock_quantity == 3
    assert r.headers["X-Request-ID"]


def test_create_order_requires_user(client, cart_with_item):
    _, a = cart_with_item
    r = client.post(ORDERS_URL, _order_body(a.pk), content_type="application/json")
    assert r.status_code == 401
    assert r.json()["detail"] == "UNAUTHENTICATED"


def test_create_order_validation_error(client, cart_with_item):
    r = client.post(ORDERS_URL, {"shippingMethod": "standard"}, content_type="application/json", HTTP_X_USER_ID=USER)
    assert r.status_code == 400
    body = r.json()
    assert body["detail"] == "VALIDATION_ERROR"
    assert any(e["field"] == "shippingAddressId" for e in body["errors"])


def test_create_order_empty_cart(client, make_address):
    a = make_address()
    r = _place(client, a)
    assert r.status_code == 400
    assert r.json()["detail"] == "EMPTY_CART"


def test_create_order_insufficient_stock_lists_items(client, cart_with_item):
    p, a = cart_with_item
    Product.objects.filter(pk=p.pk).update(stock_quantity=1)
    r = _place(client, a)
    assert r.status_code == 400
    assert r.json()["detail"] == "INSUFFICIENT_STOCK"
    assert r.json()["items"] == [{"productId": p.pk, "requested": 2, "available": 1}]
    assert Product.objects.get(pk=p.pk).stock_quantity == 1


def test_create_order_with_foreign_address(client, cart_with_item, make_address):
    foreign = make_address(user_id="user-2")
    r = _place(client, foreign)
    assert r.status_code == 404
    assert r.json()["detail"] == "NOT_FOUND"


def test_idempotent_create_replays_response(client, cart_with_item):
    _, a = cart_with_item
    r1 = _place(client, a, HTTP_IDEMPOTENCY_KEY="k-1")
    r2 = _place(client, a, HTTP_IDEMPOTENCY_KEY="k-1")
    assert r1.status_code == r2.status_code == 201
    assert r2.json() == r1.json()
    assert r2.headers["Idempotent-Replay"] == "true"
    assert OrderModel.objects.count() == 1
    assert str(IdempotencyKey.objects.get(key="k-1").order_id) == r1.json()["orderId"]


def test_idempotency_key_with_other_payload_conflicts(client, cart_with_item):
    _, a = cart_with_item
    _place(client, a, HTTP_IDEMPOTENCY_KEY="k-2")
    r = client.post(
        ORDERS_URL, _order_body(a.pk, notes="leave at door"),
        content_type="application/json", HTTP_X_USER_ID=USER, HTTP_IDEMPOTENCY_KEY="k-2",
    )
    assert r.status_code == 409
    assert r.json()["detail"] == "IDEMPOTENCY_CONFLICT"


def test_crashed_request_frees_idempotency_key(client, cart_with_item, monkeypatch):
    _, a = cart_with_item
    real = providers.get_order_service
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("database went away")
        return real()

    monkeypatch.setattr(providers, "get_order_service", flaky)
    client.raise_request_exception = False

    r1 = _place(client, a, HTTP_IDEMPOTENCY_KEY="k-crash")
    assert r1.status_code == 500
    assert not IdempotencyKey.objects.filter(key="k-crash").exists()

    r2 = _place(client, a, HTTP_IDEMPOTENCY_KEY="k-crash")
    assert r2.status_code == 201
    assert OrderModel.objects.count() == 1
    assert IdempotencyKey.objects.get(key="k-crash").response_status == 201


def test_list_and_detail(client, cart_with_item):
    _, a = cart_with_item
    oid = _place(client, a).json()["orderId"]

    r = client.get(ORDERS_URL, HTTP_X_USER_ID=USER)
    assert r.status_code == 200
    assert r.json()["count"] == 1
    assert r.json()["results"][0]["id"] == oid

    d = client.get(f"{ORDERS_URL}{oid}/", HTTP_X_USER_ID=USER).json()
    assert d["items"][0]["quantity"] == 2
    assert d["items"][0]["lineTotal"] == "20.00"
    assert d["shippingAddress"]["id"] == a.pk

    assert client.get(ORDERS_URL, HTTP_X_USER_ID="user-2").json()["count"] == 0


def test_status_of_foreign_order_is_404(client, cart_with_item):
    _, a = cart_with_item
    oid = _place(client, a).json()["orderId"]
    r = client.get(f"{ORDERS_URL}{oid}/status/", HTTP_X_USER_ID="user-2")
    assert r.status_code == 404


def test_unknown_order_is_404(client):
    r = client.get(f"{ORDERS_URL}{uuid.uuid4()}/status/", HTTP_X_USER_ID=USER)
    assert r.status_code == 404


def test_cancel_twice(client, cart_with_item):
    p, a = cart_with_item
    oid = _place(client, a).json()["orderId"]
    url = f"{ORDERS_URL}{oid}/cancel/"

    r1 = client.post(url, {}, content_type="application/json", HTTP_X_USER_ID=USER)
    assert r1.status_code == 200
    assert r1.json() == {"status": "cancelled"}
    assert Product.objects.get(pk=p.pk).stock_quantity == 5

    r2 = client.post(url, {}, content_type="application/json", HTTP_X_USER_ID=USER)
    assert r2.status_code == 400
    assert r2.json()["detail"] == "INVALID_STATE"
    assert Product.objects.get(pk=p.pk).stock_quantity == 5


def test_confirm_payment_with_reference(client, cart_with_item):
    _, a = cart_with_item
    oid = _place(client, a).json()["orderId"]
    url = f"{ORDERS_URL}{oid}/confirm-payment/"

    r = client.post(url, {"transactionId": "tx-1"}, content_type="application/json", HTTP_X_USER_ID=USER)
    assert r.status_code == 200
    assert r.json() == {"status": "processing", "paymentStatus": "paid"}

    again = client.post(url, {"transactionId": "tx-2"}, content_type="application/json", HTTP_X_USER_ID=USER)
    assert again.status_code == 400
    assert again.json()["detail"] == "ALREADY_PAID"

    s = client.get(f"{ORDERS_URL}{oid}/status/", HTTP_X_USER_ID=USER).json()
    assert (s["orderStatus"], s["paymentStatus"]) == ("processing", "paid")
    assert OrderModel.objects.get(pk=oid).transaction_id == "tx-1"


def test_confirm_payment_charges_through_stub(client, cart_with_item):
    _, a = cart_with_item
    oid = _place(client, a).json()["orderId"]
    r = client.post(f"{ORDERS_URL}{oid}/confirm-payment/", {}, content_type="application/json", HTTP_X_USER_ID=USER)
    assert r.status_code == 200
    uuid.UUID(OrderModel.objects.get(pk=oid).transaction_id)


def test_confirm_payment_declined(client, cart_with_item, monkeypatch):
    _, a = cart_with_item
    oid = _place(client, a).json()["orderId"]
    monkeypatch.setattr(adapters.PaymentsStub, "charge", lambda self, a, c: (False, None))

    r = client.post(f"{ORDERS_URL}{oid}/confirm-payment/", {}, content_type="application/json", HTTP_X_USER_ID=USER)

    assert r.status_code == 402
    assert r.json()["detail"] == "PAYMENT_FAILED"
    assert OrderModel.objects.get(pk=oid).payment_status == "pending"


def test_confirm_payment_upstream_down(client, cart_with_item, monkeypatch):
    _, a = cart_with_item
    oid = _place(client, a).json()["orderId"]

    class Down:
        def charge(self, amount_cents, currency):
            raise httpx.ConnectError("connection refused")

    monkeypatch.setattr("apps.orders.providers.get_payments", lambda idempotency_key=None: Down())

    r = client.post(f"{ORDERS_URL}{oid}/confirm-payment/", {}, content_type="application/json", HTTP_X_USER_ID=USER)

    assert r.status_code == 503
    assert r.json()["detail"] == "UPSTREAM_UNAVAILABLE"


def test_operator_status_update_requires_staff(client, cart_with_item):
    _, a = cart_with_item
    oid = _place(client, a).json()["orderId"]
    url = f"{ORDERS_URL}{oid}/status/"
    client.post(f"{ORDERS_URL}{oid}/confirm-payment/", {"transactionId": "tx-1"},
                content_type="application/json", HTTP_X_USER_ID=USER)

    r = client.put(url, {"status": "shipped"}, content_type="application/json", HTTP_X_USER_ID=USER)
    assert r.status_code == 403

    r = client.put(
        url, {"status": "shipped"}, content_type="application/json",
        HTTP_X_USER_ID="ops-1", HTTP_X_USER_ROLE="staff",
    )
    assert r.status_code == 200
    assert r.json()["status"] == "shipped"


def test_operator_invalid_transition(client, cart_with_item):
    _, a = cart_with_item
    oid = _place(client, a).json()["orderId"]
    staff = {"HTTP_X_USER_ID": "ops-1", "HTTP_X_USER_ROLE": "staff"}

    r = client.put(f"{ORDERS_URL}{oid}/status/", {"status": "delivered"}, content_type="application/json", **staff)
    assert r.status_code == 400
    assert r.json()["detail"] == "INVALID_STATE"

    r = client.put(f"{ORDERS_URL}{oid}/status/", {"status": "cancelled"}, content_type="application/json", **staff)
    assert r.status_code == 400
    assert r.json()["detail"] == "VALIDATION_ERROR"


def test_health(client):
    r = client.get("/health/")
    assert r.status_code == 200
    assert r.json()["ok"] is True
