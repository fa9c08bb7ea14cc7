"""Django ORM adapters implementing the order core's collaborator ports.

Each adapter satisfies one protocol from ``apps.orders.domain``:

- ``CatalogAdapter`` -> ``CatalogPort``: product reads, row locks and the
  conditional stock update that is the single write path to
  ``products.stock_quantity``.
- ``AddressBookAdapter`` -> ``AddressBookPort``: ownership-scoped address
  lookups returning plain snapshots.
- ``SettingsAdapter`` -> ``SettingsPort``: shop settings from the
  ``settings`` table with fallbacks from ``settings.STORE_DEFAULTS``.
- ``NotificationsAdapter`` -> ``NotificationsPort``: persists user
  notifications.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional

from django.conf import settings
from django.db import transaction
from django.db.models import F

from apps.orders.domain import (
    AddressBookPort,
    CatalogPort,
    NotificationsPort,
    ProductInfo,
    SettingsPort,
)
from .models import Address, Notification, Product, StoreSetting

logger = logging.getLogger("store")


def to_product_info(p: Product) -> ProductInfo:
    return ProductInfo(
        id=p.pk,
        sku=p.sku,
        name=p.name,
        price=p.price,
        stock_quantity=p.stock_quantity,
        is_active=p.is_active,
    )


class CatalogAdapter(CatalogPort):
    def get_product(self, product_id: int) -> Optional[ProductInfo]:
        p = Product.objects.filter(pk=product_id).first()
        return to_product_info(p) if p else None

    def lock_products(self, product_ids: List[int]) -> Dict[int, ProductInfo]:
        """Lock the given product rows (``SELECT ... FOR UPDATE``).

        Rows are locked in primary key order so concurrent checkouts over
        overlapping products cannot deadlock. Must run inside
        ``transaction.atomic()``.
        """
        rows = (
            Product.objects.select_for_update()
            .filter(pk__in=sorted(set(product_ids)))
            .order_by("pk")
        )
        return {p.pk: to_product_info(p) for p in rows}

    def adjust_stock(self, product_id: int, delta: int) -> bool:
        """Conditionally add ``delta`` to tracked stock.

        The guard lives in the UPDATE itself (``stock_quantity >= -delta``),
        so the check and the write are one statement and stock can never go
        negative, whatever the isolation level.
        """
        qs = Product.objects.filter(pk=product_id, stock_quantity__isnull=False)
        if delta < 0:
            qs = qs.filter(stock_quantity__gte=-delta)
        return qs.update(stock_quantity=F("stock_quantity") + delta) == 1

    def record_sale(self, product_id: int, quantity: int) -> None:
        Product.objects.filter(pk=product_id).update(sales_count=F("sales_count") + quantity)


class AddressBookAdapter(AddressBookPort):
    def get_address(self, address_id: int, user_id: str) -> Optional[dict]:
        a = Address.objects.filter(pk=address_id, user_id=user_id).first()
        return a.snapshot() if a else None

    def list_addresses(self, user_id: str) -> List[dict]:
        return [
            {**a.snapshot(), "is_default": a.is_default}
            for a in Address.objects.filter(user_id=user_id)
        ]


class SettingsAdapter(SettingsPort):
    """Shop settings lookups.

    A row in the ``settings`` table wins; otherwise the value comes from
    ``settings.STORE_DEFAULTS``. Unparseable numbers fall back to the default
    and are logged.
    """

    def _raw(self, key: str) -> str:
        row = StoreSetting.objects.filter(key=key).values_list("value", flat=True).first()
        if row is None or row == "":
            return settings.STORE_DEFAULTS[key]
        return row

    def _decimal(self, key: str) -> Decimal:
        raw = self._raw(key)
        try:
            value = Decimal(str(raw).strip())
        except InvalidOperation:
            logger.warning("invalid numeric setting", extra={"key": key, "value": raw})
            value = Decimal(str(settings.STORE_DEFAULTS[key]))
        if value < 0:
            logger.warning("negative numeric setting", extra={"key": key, "value": raw})
            value = Decimal(str(settings.STORE_DEFAULTS[key]))
        return value

    def get_tax_rate(self) -> Decimal:
        return self._decimal("tax_rate")

    def get_free_shipping_threshold(self) -> Decimal:
        return self._decimal("free_shipping_threshold")

    def get_flat_shipping_cost(self) -> Decimal:
        return self._decimal("flat_shipping_cost")

    def get_currency(self) -> str:
        return str(self._raw("currency")).strip().upper()


NOTIFICATION_TEMPLATES = {
    "order_created": ("Order received", "Your order {order_number} was placed."),
    "payment_confirmed": ("Payment confirmed", "Payment for order {order_number} was confirmed."),
    "order_cancelled": ("Order cancelled", "Your order {order_number} was cancelled."),
    "order_shipped": ("Order shipped", "Your order {order_number} is on its way."),
    "order_delivered": ("Order delivered", "Your order {order_number} was delivered."),
    "order_refunded": ("Order refunded", "Your order {order_number} was refunded."),
}


class NotificationsAdapter(NotificationsPort):
    def emit(self, user_id: str, type: str, payload: dict) -> None:
        title, template = NOTIFICATION_TEMPLATES.get(type, (type.replace("_", " ").capitalize(), "{type}"))
        message = template.format(type=type, **{k: v for k, v in payload.items() if k != "type"})
        # Savepoint: a failed insert must not poison an enclosing transaction.
        with transaction.atomic():
            Notification.objects.create(
                user_id=user_id, type=type, title=title, message=message, data=payload
            )
