"""Domain types, errors and ports for the order lifecycle.

This module holds what the cart, checkout and order code share without
touching the ORM: status enums and the transition table, small frozen
dataclasses used as DTOs between layers, the error taxonomy, and the
protocol definitions (ports) for the collaborators this core talks to
(catalog, address book, shop settings, notifications and payments).
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Tuple
import uuid


# ---- Enums ----
class OrderStatus(str, Enum):
    """Lifecycle status of an order."""

    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(str, Enum):
    """Payment sub-state, orthogonal to ``OrderStatus``. ``PAID`` is terminal."""

    PENDING = "pending"
    PAID = "paid"


TRANSITIONS: Dict[OrderStatus, frozenset] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset(
        {OrderStatus.SHIPPED, OrderStatus.CANCELLED, OrderStatus.REFUNDED}
    ),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}

CANCELLABLE = frozenset(
    src for src, targets in TRANSITIONS.items() if OrderStatus.CANCELLED in targets
)


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    """Return True when ``current -> target`` is a legal status change."""
    return OrderStatus(target) in TRANSITIONS[OrderStatus(current)]


# ---- Errors ----
class DomainError(ValueError):
    """Base class for business errors.

    ``str(error)`` is always the stable machine-readable code, so callers can
    compare against it the same way for every subclass. ``message`` is the
    human readable text and ``details`` any structured data the client needs
    to resolve the problem.
    """

    code = "DOMAIN_ERROR"
    default_message = "Request could not be processed."

    def __init__(self, message: Optional[str] = None, **details: Any):
        super().__init__(self.code)
        self.message = message or self.default_message
        self.details = details

    def to_dict(self) -> dict:
        return {"detail": self.code, "message": self.message, **self.details}


class NotFound(DomainError):
    """Missing resource, or one that belongs to somebody else."""

    code = "NOT_FOUND"
    default_message = "Resource not found."


class InsufficientStock(DomainError):
    code = "INSUFFICIENT_STOCK"
    default_message = "Not enough stock for one or more products."

    def __init__(self, shortfalls: List["Shortfall"], message: Optional[str] = None):
        self.shortfalls = list(shortfalls)
        super().__init__(message, items=[s.as_dict() for s in self.shortfalls])


class EmptyCart(DomainError):
    code = "EMPTY_CART"
    default_message = "The cart is empty."


class InvalidState(DomainError):
    """Illegal state machine transition."""

    code = "INVALID_STATE"
    default_message = "The order cannot change to the requested state."


class AlreadyPaid(DomainError):
    code = "ALREADY_PAID"
    default_message = "Payment for this order was already confirmed."


class ValidationError(DomainError):
    code = "VALIDATION_ERROR"
    default_message = "Invalid request."


class PaymentFailed(DomainError):
    code = "PAYMENT_FAILED"
    default_message = "The payment was declined."


# ---- Entities / DTOs ----
@dataclass(frozen=True)
class ProductInfo:
    """Catalog view of a product as seen by this core.

    Attributes:
        id: Catalog product id.
        sku: Stock keeping unit.
        name: Display name.
        price: Current catalog price.
        stock_quantity: Tracked stock, or None when stock is not tracked.
        is_active: Whether the product can currently be sold.
    """

    id: int
    sku: str
    name: str
    price: Decimal
    stock_quantity: Optional[int]
    is_active: bool = True

    @property
    def is_tracked(self) -> bool:
        return self.stock_quantity is not None

    def available(self) -> Optional[int]:
        """Units that can be sold now; None means unlimited."""
        if not self.is_active:
            return 0
        return self.stock_quantity

    def covers(self, quantity: int) -> bool:
        available = self.available()
        return available is None or available >= quantity


@dataclass(frozen=True)
class Shortfall:
    product_id: int
    requested: int
    available: int

    def as_dict(self) -> dict:
        return {
            "productId": self.product_id,
            "requested": self.requested,
            "available": self.available,
        }


@dataclass(frozen=True)
class CartEntry:
    """A cart line joined with the current catalog view of its product.

    The unit price is the snapshot captured when the line was created, not
    the live catalog price.
    """

    line_id: int
    product: ProductInfo
    quantity: int
    unit_price: Decimal
    options: Dict[str, Any] = field(default_factory=dict)

    @property
    def out_of_stock(self) -> bool:
        return not self.product.covers(self.quantity)

    def shortfall(self) -> Shortfall:
        return Shortfall(self.product.id, self.quantity, self.product.available() or 0)


def find_shortfalls(entries: List[CartEntry]) -> List[Shortfall]:
    return [e.shortfall() for e in entries if e.out_of_stock]


# ---- Ports (DIP) ----
class CatalogPort(Protocol):
    """Read and stock-adjust access to the product catalog."""

    def get_product(self, product_id: int) -> Optional[ProductInfo]:
        raise NotImplementedError()

    def lock_products(self, product_ids: List[int]) -> Dict[int, ProductInfo]:
        """Load products with a row lock held until the transaction ends."""
        raise NotImplementedError()

    def adjust_stock(self, product_id: int, delta: int) -> bool:
        """Apply ``delta`` to tracked stock without ever going below zero.

        Returns:
            True if the row was changed, False if the product is missing,
            untracked, or (for negative deltas) short of stock.
        """
        raise NotImplementedError()

    def record_sale(self, product_id: int, quantity: int) -> None:
        raise NotImplementedError()


class AddressBookPort(Protocol):
    def get_address(self, address_id: int, user_id: str) -> Optional[dict]:
        """Return an address snapshot, or None if not owned by ``user_id``."""
        raise NotImplementedError()

    def list_addresses(self, user_id: str) -> List[dict]:
        raise NotImplementedError()


class SettingsPort(Protocol):
    def get_tax_rate(self) -> Decimal:
        raise NotImplementedError()

    def get_free_shipping_threshold(self) -> Decimal:
        raise NotImplementedError()

    def get_flat_shipping_cost(self) -> Decimal:
        raise NotImplementedError()

    def get_currency(self) -> str:
        raise NotImplementedError()


class NotificationsPort(Protocol):
    def emit(self, user_id: str, type: str, payload: dict) -> None:
        """Best-effort delivery of a user notification."""
        raise NotImplementedError()


class PaymentsPort(Protocol):
    """Port describing payment operations used by the domain."""

    def charge(self, amount_cents: int, currency: str) -> Tuple[bool, Optional[uuid.UUID]]:
        """Charge the given amount in the specified currency.

        Args:
            amount_cents: Amount to charge, in integer cents.
            currency: Currency code (ISO), e.g. 'USD'.

        Returns:
            ``(paid, transaction_id)``; the id is None when declined.
        """
        raise NotImplementedError()

    def refund(self, transaction_id: uuid.UUID) -> bool:
        """Give back a captured charge.

        Returns:
            True if the provider reports the charge as refunded.
        """
        raise NotImplementedError()
