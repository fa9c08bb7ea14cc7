"""Checkout totals calculation.

``compute_totals`` is a pure function: it reads nothing but its arguments,
so the preview shown to the user and the amounts written on the order are
the same numbers whenever the inputs are the same.

Rounding policy:
    Line amounts are accumulated as exact ``Decimal`` values and the subtotal
    is rounded to cents once, at the end (ROUND_HALF_UP). Tax is computed from
    the rounded subtotal and rounded once. Nothing is rounded per line.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from .domain import SettingsPort

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")


def round_money(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class LineItem:
    unit_price: Decimal
    quantity: int


@dataclass(frozen=True)
class CheckoutSettings:
    """Settings snapshot the totals are computed with.

    Attributes:
        tax_rate: Fraction applied to the subtotal (``0.16`` for 16%).
        free_shipping_threshold: Subtotal from which shipping is free.
        flat_shipping_cost: Shipping charged below the threshold.
        currency: ISO currency code recorded on orders.
    """

    tax_rate: Decimal = ZERO
    free_shipping_threshold: Decimal = ZERO
    flat_shipping_cost: Decimal = ZERO
    currency: str = "USD"


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    total: Decimal

    def as_dict(self) -> dict:
        return {
            "subtotal": self.subtotal,
            "tax": self.tax,
            "shipping": self.shipping,
            "total": self.total,
        }


def load_checkout_settings(settings_port: SettingsPort) -> CheckoutSettings:
    """Read the current shop settings through the settings port."""
    return CheckoutSettings(
        tax_rate=Decimal(settings_port.get_tax_rate()),
        free_shipping_threshold=Decimal(settings_port.get_free_shipping_threshold()),
        flat_shipping_cost=Decimal(settings_port.get_flat_shipping_cost()),
        currency=settings_port.get_currency(),
    )


def compute_totals(lines: Iterable[LineItem], settings: CheckoutSettings) -> Totals:
    """Compute the subtotal, tax, shipping and grand total for ``lines``.

    Shipping is free once the subtotal reaches the threshold; an empty set
    of lines ships for nothing.

    Args:
        lines: Items with their unit price and quantity.
        settings: Tax and shipping policy to apply.

    Returns:
        Totals: All amounts rounded to cents.
    """
    lines = list(lines)
    raw = sum((Decimal(li.unit_price) * li.quantity for li in lines), Decimal(0))
    subtotal = round_money(raw)
    tax = round_money(subtotal * Decimal(settings.tax_rate))
    if not lines or subtotal >= settings.free_shipping_threshold:
        shipping = ZERO
    else:
        shipping = round_money(Decimal(settings.flat_shipping_cost))
    return Totals(subtotal=subtotal, tax=tax, shipping=shipping, total=subtotal + tax + shipping)
