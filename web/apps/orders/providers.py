"""Service provider helpers wiring the order services with their ports.

Views never build services themselves; they call these factories, which
tests can monkeypatch. Collaborators are the Django ORM adapters from
``apps.store.adapters``. Payments go through the HTTP client when
``settings.USE_HTTP_ADAPTERS`` is on, otherwise through the in-process stub.
"""

from django.conf import settings

from apps.cart.ledger import CartLedger
from apps.store.adapters import (
    AddressBookAdapter,
    CatalogAdapter,
    NotificationsAdapter,
    SettingsAdapter,
)
from .adapters import PaymentsStub
from .domain import PaymentsPort
from .http_adapters import HttpPaymentsClient
from .service import OrderService
from .state_machine import OrderStateMachine


def get_cart_ledger() -> CartLedger:
    return CartLedger(catalog=CatalogAdapter())


def get_settings_port() -> SettingsAdapter:
    return SettingsAdapter()


def get_order_service() -> OrderService:
    return OrderService(
        cart=get_cart_ledger(),
        catalog=CatalogAdapter(),
        addresses=AddressBookAdapter(),
        settings=get_settings_port(),
        notifications=NotificationsAdapter(),
    )


def get_state_machine() -> OrderStateMachine:
    return OrderStateMachine(catalog=CatalogAdapter(), notifications=NotificationsAdapter())


def get_payments(idempotency_key: str | None = None) -> PaymentsPort:
    """Return the payments port for the current runtime settings.

    Args:
        idempotency_key: Forwarded to the payments service by the HTTP client
            so a retried request is charged at most once.
    """
    if getattr(settings, "USE_HTTP_ADAPTERS", False):
        return HttpPaymentsClient(idempotency_key=idempotency_key)
    return PaymentsStub()
