"""Checkout quoting and order placement.

``OrderService`` turns a user's cart into an order. The whole placement
(re-reading the cart, the stock check, the address snapshots, the totals,
the order insert, the stock decrement and the cart clear) runs in a single
database transaction: it either commits as a whole or leaves nothing
behind. The ``order_created`` notification is sent only after the commit
and can never fail the placement.
"""

import logging
from dataclasses import dataclass, replace
from typing import List, Optional

from django.db import transaction

from apps.cart.ledger import CartLedger, line_items
from .checkout import CheckoutSettings, Totals, compute_totals, load_checkout_settings
from .domain import (
    AddressBookPort,
    CartEntry,
    CatalogPort,
    EmptyCart,
    InsufficientStock,
    NotFound,
    NotificationsPort,
    SettingsPort,
    find_shortfalls,
)
from .models import OrderModel
from .payment_methods import available_methods
from .repository import OrderRepository
from .stock import StockLedger

logger = logging.getLogger("orders")


@dataclass(frozen=True)
class CheckoutQuote:
    """Read-only preview of what placing the order would charge."""

    entries: List[CartEntry]
    totals: Totals
    currency: str
    addresses: List[dict]
    payment_methods: List[dict]


def notify(notifications: NotificationsPort, user_id: str, type: str, payload: dict) -> None:
    """Emit a notification, logging instead of raising on failure."""
    try:
        notifications.emit(user_id, type, payload)
    except Exception:
        logger.exception("notification failed", extra={"user_id": user_id, "type": type})


class OrderService:
    def __init__(
        self,
        cart: CartLedger,
        catalog: CatalogPort,
        addresses: AddressBookPort,
        settings: SettingsPort,
        notifications: NotificationsPort,
        repository: Optional[OrderRepository] = None,
    ):
        self.cart = cart
        self.catalog = catalog
        self.addresses = addresses
        self.settings = settings
        self.notifications = notifications
        self.repository = repository or OrderRepository()
        self.stock = StockLedger(catalog)

    def quote(self, user_id: str) -> CheckoutQuote:
        """Preview the totals the user would be charged right now.

        Raises:
            EmptyCart: If the cart has no lines.
            InsufficientStock: If any line exceeds the product's stock.
        """
        entries = self._checked(self.cart.entries(user_id))
        settings = load_checkout_settings(self.settings)
        addresses = self.addresses.list_addresses(user_id)
        default = next((a for a in addresses if a.get("is_default")), addresses[0] if addresses else None)
        return CheckoutQuote(
            entries=entries,
            totals=compute_totals(line_items(entries), settings),
            currency=settings.currency,
            addresses=addresses,
            payment_methods=available_methods(default["country"] if default else None),
        )

    def place_order(
        self,
        user_id: str,
        shipping_address_id: int,
        billing_address_id: Optional[int] = None,
        shipping_method: str = "standard",
        payment_method: str = "direct_bank",
        notes: Optional[str] = None,
    ) -> OrderModel:
        """Materialize the user's cart into an order.

        Steps, all inside one transaction:
            1. Lock and read the cart lines; ``EmptyCart`` if there are none.
            2. Lock the ordered products (id order) and check every line
               against the locked stock; ``InsufficientStock`` lists every
               short line.
            3. Snapshot the shipping and billing addresses (billing defaults
               to shipping); ``NotFound`` for an address not owned by the user.
            4. Compute the totals with the current settings.
            5. Insert the order and its lines, decrement stock, clear the cart.

        Returns:
            OrderModel: The committed order (status and payment pending).

        Raises:
            EmptyCart, InsufficientStock, NotFound: Nothing is written.
        """
        with transaction.atomic():
            entries = self.cart.entries(user_id, for_update=True)
            if not entries:
                raise EmptyCart()
            locked = self.catalog.lock_products([e.product.id for e in entries])
            entries = [replace(e, product=locked.get(e.product.id, e.product)) for e in entries]
            entries = self._checked(entries)

            shipping = self.addresses.get_address(shipping_address_id, user_id)
            if shipping is None:
                raise NotFound("Shipping address not found.", resource="address", addressId=shipping_address_id)
            if billing_address_id is None or billing_address_id == shipping_address_id:
                billing = shipping
            else:
                billing = self.addresses.get_address(billing_address_id, user_id)
                if billing is None:
                    raise NotFound("Billing address not found.", resource="address", addressId=billing_address_id)

            settings: CheckoutSettings = load_checkout_settings(self.settings)
            totals = compute_totals(line_items(entries), settings)

            order = self.repository.create(
                user_id=user_id,
                entries=entries,
                totals=totals,
                currency=settings.currency,
                shipping_address=shipping,
                billing_address=billing,
                shipping_method=shipping_method,
                payment_method=payment_method,
                notes=notes or "",
            )
            self.stock.decrement([(e.product.id, e.quantity) for e in entries], locked)
            self.cart.clear(user_id)

        logger.info(
            "order placed",
            extra={
                "order_id": str(order.pk),
                "order_number": order.order_number,
                "user_id": user_id,
                "total_amount": str(order.total_amount),
                "lines": len(entries),
            },
        )
        notify(
            self.notifications,
            user_id,
            "order_created",
            {
                "order_id": str(order.pk),
                "order_number": order.order_number,
                "total_amount": str(order.total_amount),
                "currency": order.currency,
            },
        )
        return order

    def _checked(self, entries: List[CartEntry]) -> List[CartEntry]:
        if not entries:
            raise EmptyCart()
        shortfalls = find_shortfalls(entries)
        if shortfalls:
            raise InsufficientStock(shortfalls)
        return entries
