"""API tests for the cart endpoints."""

import pytest

from apps.store.models import Product

USER = "user-1"

pytestmark = pytest.mark.django_db


def _add(client, product_id, quantity=1, user=USER):
    return client.post(
        "/api/cart/items/", {"productId": product_id, "quantity": quantity},
        content_type="application/json", HTTP_X_USER_ID=user,
    )


def test_cart_requires_user(client):
    assert client.get("/api/cart/").status_code == 401


def test_add_and_read_cart(client, make_product):
    p = make_product(price="10.00", stock=5, name="Mug")
    r = _add(client, p.pk, 2)
    assert r.status_code == 200
    assert r.json() == {"cartCount": 2}

    body = client.get("/api/cart/", HTTP_X_USER_ID=USER).json()
    item = body["items"][0]
    assert (item["productId"], item["name"], item["quantity"]) == (p.pk, "Mug", 2)
    assert item["unitPrice"] == "10.00" and item["lineTotal"] == "20.00"
    assert item["availableStock"] == 5 and item["outOfStock"] is False
    assert body["summary"]["subtotal"] == "20.00"
    assert body["summary"]["itemCount"] == 2


def test_add_beyond_stock(client, make_product):
    p = make_product(stock=1)
    r = _add(client, p.pk, 2)
    assert r.status_code == 400
    assert r.json()["items"] == [{"productId": p.pk, "requested": 2, "available": 1}]


def test_add_unknown_product(client):
    r = _add(client, 424242)
    assert r.status_code == 404


def test_add_invalid_quantity(client, make_product):
    r = _add(client, make_product().pk, 0)
    assert r.status_code == 400
    assert r.json()["detail"] == "VALIDATION_ERROR"


def test_update_and_remove_line(client, make_product):
    p = make_product(stock=5)
    _add(client, p.pk, 1)
    line_id = client.get("/api/cart/", HTTP_X_USER_ID=USER).json()["items"][0]["id"]

    r = client.patch(f"/api/cart/items/{line_id}/", {"quantity": 4}, content_type="application/json", HTTP_X_USER_ID=USER)
    assert r.json() == {"cartCount": 4}

    assert client.delete(f"/api/cart/items/{line_id}/", HTTP_X_USER_ID="user-2").status_code == 404
    r = client.delete(f"/api/cart/items/{line_id}/", HTTP_X_USER_ID=USER)
    assert r.json() == {"cartCount": 0}


def test_clear_cart(client, make_product):
    _add(client, make_product().pk, 1)
    assert client.delete("/api/cart/", HTTP_X_USER_ID=USER).json() == {"cartCount": 0}
    assert client.delete("/api/cart/", HTTP_X_USER_ID=USER).status_code == 200


def test_checkout_summary(client, make_product, make_address, store_settings):
    store_settings(tax_rate="0.16", free_shipping_threshold="100")
    make_address(country="US")
    _add(client, make_product(price="75.00", stock=5).pk, 2)

    body = client.get("/api/cart/checkout-summary/", HTTP_X_USER_ID=USER).json()

    assert body["totals"] == {"subtotal": "150.00", "tax": "24.00", "shipping": "0.00", "total": "174.00"}
    assert body["currency"] == "USD"
    assert len(body["addresses"]) == 1
    assert "zelle_direct" in [m["id"] for m in body["paymentMethods"]]


def test_checkout_summary_empty_cart(client):
    r = client.get("/api/cart/checkout-summary/", HTTP_X_USER_ID=USER)
    assert r.status_code == 400
    assert r.json()["detail"] == "EMPTY_CART"


def test_checkout_summary_out_of_stock(client, make_product):
    p = make_product(stock=5)
    _add(client, p.pk, 3)
    Product.objects.filter(pk=p.pk).update(stock_quantity=2)

    r = client.get("/api/cart/checkout-summary/", HTTP_X_USER_ID=USER)

    assert r.status_code == 400
    assert r.json()["detail"] == "INSUFFICIENT_STOCK"
    cart = client.get("/api/cart/", HTTP_X_USER_ID=USER).json()
    assert cart["items"][0]["outOfStock"] is True
    assert cart["items"][0]["quantity"] == 3
