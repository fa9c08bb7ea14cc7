"""Order status and payment state machine.

Statuses::

    pending -> processing -> shipped -> delivered
    pending | processing -> cancelled
    processing | delivered -> refunded

``payment_status`` moves once, from pending to paid. Every transition is a
compare-and-set on the current status, so a retried or concurrent request
sees the change already made and is rejected instead of being applied twice.
Cancellation returns the order's stock in the same transaction as the
status change.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from django.db import transaction

from .domain import (
    CANCELLABLE,
    TRANSITIONS,
    AlreadyPaid,
    CatalogPort,
    InvalidState,
    NotificationsPort,
    OrderStatus,
    PaymentFailed,
    PaymentStatus,
    PaymentsPort,
)
from .models import OrderModel
from .repository import OrderRepository
from .service import notify
from .stock import StockLedger

logger = logging.getLogger("orders")

PAYABLE = frozenset({OrderStatus.PENDING, OrderStatus.PROCESSING})

# target status -> (timestamp field to stamp, notification type)
OPERATOR_TRANSITIONS = {
    OrderStatus.SHIPPED: (None, "order_shipped"),
    OrderStatus.DELIVERED: ("delivered_at", "order_delivered"),
    OrderStatus.REFUNDED: ("refunded_at", "order_refunded"),
}


class OrderStateMachine:
    def __init__(
        self,
        catalog: CatalogPort,
        notifications: NotificationsPort,
        repository: Optional[OrderRepository] = None,
    ):
        self.notifications = notifications
        self.repository = repository or OrderRepository()
        self.stock = StockLedger(catalog)

    def _load(self, order_id, user_id: Optional[str]) -> OrderModel:
        if user_id is None:
            return self.repository.get(order_id)
        return self.repository.get_for_user(order_id, user_id)

    # ---- payment ----
    def _ensure_payable(self, order: OrderModel) -> None:
        if order.payment_status == PaymentStatus.PAID.value:
            raise AlreadyPaid(orderStatus=order.status, paymentStatus=order.payment_status)
        if OrderStatus(order.status) not in PAYABLE:
            raise InvalidState(
                "Payment cannot be confirmed for this order.",
                orderStatus=order.status,
                paymentStatus=order.payment_status,
            )

    def confirm_payment(self, order_id, transaction_ref: str, user_id: Optional[str] = None) -> OrderModel:
        """Record a successful payment.

        Sets ``payment_status`` to paid, moves a pending order to processing
        and stores ``transaction_ref``.

        Raises:
            NotFound: Unknown order (or not the caller's).
            AlreadyPaid: Payment was already confirmed; nothing changes.
            InvalidState: The order is cancelled, refunded or past payment.
        """
        order = self._load(order_id, user_id)
        self._ensure_payable(order)
        with transaction.atomic():
            if not self.repository.mark_paid(order.pk, transaction_ref):
                # Lost a race with another confirmation or a cancellation.
                self._ensure_payable(self.repository.reload(order))
                raise InvalidState(orderStatus=order.status, paymentStatus=order.payment_status)
        order = self.repository.reload(order)

        logger.info(
            "payment confirmed",
            extra={"order_id": str(order.pk), "order_number": order.order_number, "transaction_id": transaction_ref},
        )
        notify(
            self.notifications,
            order.user_id,
            "payment_confirmed",
            {"order_id": str(order.pk), "order_number": order.order_number, "transaction_id": transaction_ref},
        )
        return order

    def charge_and_confirm(self, order_id, payments: PaymentsPort, user_id: Optional[str] = None) -> OrderModel:
        """Charge the order total through ``payments`` and confirm it.

        The order is checked before charging so a paid or dead order is never
        charged again. If the order stops being payable while the charge is
        in flight (cancelled or confirmed by another request), the captured
        charge is refunded and the orphan is logged at ERROR for
        reconciliation before the error is raised.

        Raises:
            PaymentFailed: The payment collaborator declined the charge.
            AlreadyPaid, InvalidState, NotFound: As for ``confirm_payment``.
        """
        order = self._load(order_id, user_id)
        self._ensure_payable(order)
        amount_cents = int((Decimal(order.total_amount) * 100).to_integral_value())
        paid, tx = payments.charge(amount_cents, order.currency)
        if not paid or tx is None:
            logger.warning(
                "payment declined",
                extra={"order_id": str(order.pk), "amount_cents": amount_cents},
            )
            raise PaymentFailed(orderId=str(order.pk))
        try:
            return self.confirm_payment(order.pk, str(tx), user_id=user_id)
        except (AlreadyPaid, InvalidState):
            logger.error(
                "charge captured for an order that is no longer payable",
                extra={"order_id": str(order.pk), "transaction_id": str(tx), "amount_cents": amount_cents},
            )
            self._refund_orphan(payments, order, tx, amount_cents)
            raise

    def _refund_orphan(self, payments: PaymentsPort, order: OrderModel, tx, amount_cents: int) -> None:
        extra = {"order_id": str(order.pk), "transaction_id": str(tx), "amount_cents": amount_cents}
        try:
            refunded = payments.refund(tx)
        except Exception:
            # The caller still gets the state error; the orphan stays logged above.
            logger.exception("refund of orphaned charge failed", extra=extra)
            return
        if refunded:
            logger.info("orphaned charge refunded", extra=extra)
        else:
            logger.error("orphaned charge not refunded", extra=extra)

    # ---- lifecycle ----
    def cancel(self, order_id, user_id: Optional[str] = None) -> OrderModel:
        """Cancel an order and give its stock back.

        Only pending or processing orders can be cancelled. The status flip
        and the stock restore commit together; a second cancellation finds
        the order already cancelled and fails with ``InvalidState``.
        """
        order = self._load(order_id, user_id)
        now = datetime.now(timezone.utc)
        with transaction.atomic():
            if not self.repository.compare_and_set(
                order.pk,
                [s.value for s in CANCELLABLE],
                status=OrderStatus.CANCELLED.value,
                cancelled_at=now,
            ):
                current = self.repository.reload(order)
                raise InvalidState(
                    "Order cannot be cancelled.", orderStatus=current.status
                )
            restored = self.stock.restore(order.pk, self.repository.line_snapshot(order.pk))
        order = self.repository.reload(order)

        logger.info(
            "order cancelled",
            extra={"order_id": str(order.pk), "order_number": order.order_number, "restored_products": restored},
        )
        notify(
            self.notifications,
            order.user_id,
            "order_cancelled",
            {"order_id": str(order.pk), "order_number": order.order_number},
        )
        return order

    def advance(self, order_id, target: OrderStatus) -> OrderModel:
        """Operator transitions: ship, deliver or refund.

        Raises:
            InvalidState: ``target`` is not reachable from the current status
                or is not an operator transition.
        """
        target = OrderStatus(target)
        if target not in OPERATOR_TRANSITIONS:
            raise InvalidState(f"Status '{target.value}' cannot be set directly.", targetStatus=target.value)
        order = self.repository.get(order_id)
        stamp, notification = OPERATOR_TRANSITIONS[target]
        sources = [src.value for src, targets in TRANSITIONS.items() if target in targets]
        changes = {"status": target.value}
        if stamp:
            changes[stamp] = datetime.now(timezone.utc)
        with transaction.atomic():
            if not self.repository.compare_and_set(order.pk, sources, **changes):
                current = self.repository.reload(order)
                raise InvalidState(orderStatus=current.status, targetStatus=target.value)
        order = self.repository.reload(order)

        logger.info("order status changed", extra={"order_id": str(order.pk), "status": order.status})
        notify(
            self.notifications,
            order.user_id,
            notification,
            {"order_id": str(order.pk), "order_number": order.order_number},
        )
        return order

    def ship(self, order_id) -> OrderModel:
        return self.advance(order_id, OrderStatus.SHIPPED)

    def deliver(self, order_id) -> OrderModel:
        return self.advance(order_id, OrderStatus.DELIVERED)

    def refund(self, order_id) -> OrderModel:
        return self.advance(order_id, OrderStatus.REFUNDED)
