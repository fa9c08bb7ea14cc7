"""Shared fixtures for the web test suite.

Tests run against the in-process payments stub; fixtures create catalog
rows and addresses directly through the ORM, the way the surrounding
storefront would.
"""

from decimal import Decimal

import pytest
from django.core.cache import cache

USER = "user-1"
OTHER_USER = "user-2"


@pytest.fixture(autouse=True)
def use_stubs_for_tests(settings):
    settings.USE_HTTP_ADAPTERS = False


@pytest.fixture(autouse=True)
def reset_resilience_state():
    """Throttle counters and the payments circuit are process-wide."""
    from apps.orders.http_adapters import payments_breaker

    cache.clear()
    payments_breaker.reset()
    yield
    payments_breaker.reset()


@pytest.fixture()
def make_product(db):
    from apps.store.models import Product

    counter = {"n": 0}

    def _make(price="10.00", stock=5, **kwargs):
        counter["n"] += 1
        kwargs.setdefault("sku", f"SKU-{counter['n']}")
        kwargs.setdefault("name", f"Product {counter['n']}")
        return Product.objects.create(price=Decimal(price), stock_quantity=stock, **kwargs)

    return _make


@pytest.fixture()
def make_address(db):
    from apps.store.models import Address

    def _make(user_id=USER, country="US", is_default=True, **kwargs):
        kwargs.setdefault("first_name", "Ana")
        kwargs.setdefault("last_name", "Perez")
        kwargs.setdefault("address_line1", "1 Main St")
        kwargs.setdefault("city", "Springfield")
        kwargs.setdefault("postal_code", "12345")
        return Address.objects.create(user_id=user_id, country=country, is_default=is_default, **kwargs)

    return _make


@pytest.fixture()
def store_settings(db):
    """Write rows into the shop ``settings`` table."""
    from apps.store.models import StoreSetting

    def _set(**values):
        for key, value in values.items():
            StoreSetting.objects.update_or_create(
                key=key, defaults={"value": str(value), "type": "number"}
            )

    return _set


@pytest.fixture()
def ledger():
    from apps.orders import providers

    return providers.get_cart_ledger()


@pytest.fixture()
def order_service():
    from apps.orders import providers

    return providers.get_order_service()


@pytest.fixture()
def state_machine():
    from apps.orders import providers

    return providers.get_state_machine()


@pytest.fixture()
def placed_order(make_product, make_address, ledger, order_service):
    """A pending order for 3 units of a product that had 5 in stock."""
    product = make_product(price="10.00", stock=5)
    address = make_address()
    ledger.add_item(USER, product.pk, 3)
    order = order_service.place_order(USER, shipping_address_id=address.pk)
    return order, product
