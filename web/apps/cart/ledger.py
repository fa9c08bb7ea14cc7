"""Per-user cart bookkeeping.

``CartLedger`` owns every write to ``cart_lines``. Stock is validated on
each write against the catalog's tracked quantity, always using the
resulting line quantity (an add merges into an existing line and the merged
total is what gets checked). Reads never correct the cart: lines that no
longer fit the stock are only flagged.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from django.db import IntegrityError, transaction

from apps.orders.checkout import CheckoutSettings, LineItem, Totals, compute_totals
from apps.orders.domain import (
    CartEntry,
    CatalogPort,
    InsufficientStock,
    NotFound,
    Shortfall,
    ValidationError,
)
from apps.store.adapters import to_product_info
from .models import CartLine

logger = logging.getLogger("cart")


@dataclass(frozen=True)
class CartSummary:
    entries: List[CartEntry]
    totals: Totals

    @property
    def item_count(self) -> int:
        return sum(e.quantity for e in self.entries)


class CartLedger:
    def __init__(self, catalog: CatalogPort):
        self.catalog = catalog

    # ---- writes ----
    def add_item(self, user_id: str, product_id: int, quantity: int, options: Optional[dict] = None) -> CartLine:
        """Add ``quantity`` units of a product, merging into an existing line.

        Raises:
            ValidationError: If ``quantity`` is not a positive integer.
            NotFound: If the product does not exist or is inactive.
            InsufficientStock: If tracked stock is below the merged quantity.
        """
        _check_quantity(quantity)
        product = self.catalog.get_product(product_id)
        if product is None or not product.is_active:
            raise NotFound("Product not found.", resource="product", productId=product_id)

        with transaction.atomic():
            line = (
                CartLine.objects.select_for_update()
                .filter(user_id=user_id, product_id=product_id)
                .first()
            )
            merged = quantity + (line.quantity if line else 0)
            if not product.covers(merged):
                raise InsufficientStock([Shortfall(product.id, merged, product.available() or 0)])

            if line is None:
                try:
                    with transaction.atomic():
                        line = CartLine.objects.create(
                            user_id=user_id,
                            product_id=product_id,
                            quantity=quantity,
                            unit_price=product.price,
                            options=options or {},
                        )
                except IntegrityError:
                    # A concurrent add created the line first: merge into it.
                    line = CartLine.objects.select_for_update().get(user_id=user_id, product_id=product_id)
                    merged = line.quantity + quantity
                    if not product.covers(merged):
                        raise InsufficientStock([Shortfall(product.id, merged, product.available() or 0)])
                    line.quantity = merged
                    line.save(update_fields=["quantity", "updated_at"])
            else:
                line.quantity = merged
                if options:
                    line.options = options
                line.save(update_fields=["quantity", "options", "updated_at"])

        logger.info(
            "cart item added",
            extra={"user_id": user_id, "product_id": product_id, "quantity": line.quantity},
        )
        return line

    def update_item(self, user_id: str, line_id: int, quantity: int) -> CartLine:
        """Set the quantity of one of the user's lines.

        Raises:
            ValidationError: If ``quantity`` is not a positive integer.
            NotFound: If the line does not exist or is not the user's.
            InsufficientStock: If tracked stock is below ``quantity``.
        """
        _check_quantity(quantity)
        with transaction.atomic():
            line = (
                CartLine.objects.select_for_update()
                .select_related("product")
                .filter(pk=line_id, user_id=user_id)
                .first()
            )
            if line is None:
                raise NotFound("Cart item not found.", resource="cart_item", lineId=line_id)
            product = to_product_info(line.product)
            if not product.covers(quantity):
                raise InsufficientStock([Shortfall(product.id, quantity, product.available() or 0)])
            line.quantity = quantity
            line.save(update_fields=["quantity", "updated_at"])
        return line

    def remove_item(self, user_id: str, line_id: int) -> None:
        deleted, _ = CartLine.objects.filter(pk=line_id, user_id=user_id).delete()
        if not deleted:
            raise NotFound("Cart item not found.", resource="cart_item", lineId=line_id)

    def clear(self, user_id: str) -> int:
        deleted, _ = CartLine.objects.filter(user_id=user_id).delete()
        return deleted

    # ---- reads ----
    def entries(self, user_id: str, for_update: bool = False) -> List[CartEntry]:
        """The user's lines joined with the current catalog view of each product.

        With ``for_update`` the cart rows (not the products) are locked until
        the surrounding transaction ends.
        """
        lines = CartLine.objects.filter(user_id=user_id).select_related("product")
        if for_update:
            lines = lines.select_for_update(of=("self",))
        return [
            CartEntry(
                line_id=line.pk,
                product=to_product_info(line.product),
                quantity=line.quantity,
                unit_price=line.unit_price,
                options=line.options or {},
            )
            for line in lines
        ]

    def count(self, user_id: str) -> int:
        return sum(CartLine.objects.filter(user_id=user_id).values_list("quantity", flat=True))

    def get_summary(self, user_id: str, settings: CheckoutSettings) -> CartSummary:
        entries = self.entries(user_id)
        return CartSummary(entries=entries, totals=compute_totals(line_items(entries), settings))


def line_items(entries: List[CartEntry]) -> List[LineItem]:
    return [LineItem(unit_price=Decimal(e.unit_price), quantity=e.quantity) for e in entries]


def _check_quantity(quantity) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValidationError("Quantity must be a positive integer.", field="quantity")
