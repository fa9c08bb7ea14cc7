"""Repository layer for persisting orders.

A thin wrapper around the Django ORM so the services never build queries
themselves. Every user-facing lookup is scoped by ``user_id``: an order that
belongs to somebody else is indistinguishable from a missing one.

Status changes are written as compare-and-set updates (``UPDATE ... WHERE
status IN (...)``), so two concurrent transitions of the same order cannot
both win.
"""

import secrets
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple

from django.db import IntegrityError, transaction
from django.db.models import QuerySet

from .checkout import Totals, round_money
from .domain import CartEntry, NotFound, OrderStatus, PaymentStatus
from .models import OrderLineModel, OrderModel

ORDER_NUMBER_ATTEMPTS = 5


def new_order_number(now: Optional[datetime] = None) -> str:
    """``ORD-<UTC timestamp>-<6 hex chars>``, e.g. ``ORD-20240501120000-9F2C1A``."""
    now = now or datetime.now(timezone.utc)
    return f"ORD-{now:%Y%m%d%H%M%S}-{secrets.token_hex(3).upper()}"


class OrderRepository:
    def create(
        self,
        user_id: str,
        entries: List[CartEntry],
        totals: Totals,
        currency: str,
        shipping_address: dict,
        billing_address: dict,
        shipping_method: str,
        payment_method: str,
        notes: str = "",
    ) -> OrderModel:
        """Insert the order row and one line per cart entry.

        The order number is retried on a unique-constraint collision inside
        a savepoint, so a collision never aborts the caller's transaction.
        """
        for attempt in range(ORDER_NUMBER_ATTEMPTS):
            try:
                with transaction.atomic():
                    order = OrderModel.objects.create(
                        order_number=new_order_number(),
                        user_id=user_id,
                        status=OrderStatus.PENDING.value,
                        payment_status=PaymentStatus.PENDING.value,
                        subtotal=totals.subtotal,
                        tax_amount=totals.tax,
                        shipping_amount=totals.shipping,
                        total_amount=totals.total,
                        currency=currency,
                        shipping_address=shipping_address,
                        billing_address=billing_address,
                        shipping_method=shipping_method,
                        payment_method=payment_method,
                        notes=notes or "",
                    )
                break
            except IntegrityError:
                if attempt == ORDER_NUMBER_ATTEMPTS - 1:
                    raise

        OrderLineModel.objects.bulk_create(
            [
                OrderLineModel(
                    order=order,
                    product_id=e.product.id,
                    product_name=e.product.name,
                    product_sku=e.product.sku,
                    quantity=e.quantity,
                    unit_price=e.unit_price,
                    line_total=round_money(e.unit_price * e.quantity),
                    options=e.options,
                )
                for e in entries
            ]
        )
        return order

    def get_for_user(self, order_id, user_id: str) -> OrderModel:
        o = OrderModel.objects.filter(pk=order_id, user_id=user_id).first()
        if o is None:
            raise NotFound("Order not found.", resource="order")
        return o

    def get(self, order_id) -> OrderModel:
        o = OrderModel.objects.filter(pk=order_id).first()
        if o is None:
            raise NotFound("Order not found.", resource="order")
        return o

    def list_for_user(self, user_id: str) -> QuerySet:
        return OrderModel.objects.filter(user_id=user_id).order_by("-created_at")

    def line_snapshot(self, order_id) -> List[Tuple[int, int]]:
        """``(product_id, quantity)`` pairs exactly as recorded at order time."""
        return list(
            OrderLineModel.objects.filter(order_id=order_id)
            .order_by("product_id")
            .values_list("product_id", "quantity")
        )

    def compare_and_set(self, order_id, expected: Iterable[str], **changes) -> bool:
        """Apply ``changes`` only if the order's status is still in ``expected``."""
        changes.setdefault("updated_at", datetime.now(timezone.utc))
        updated = OrderModel.objects.filter(pk=order_id, status__in=list(expected)).update(**changes)
        return updated == 1

    def mark_paid(self, order_id, transaction_ref: str) -> bool:
        """Flip ``payment_status`` to paid, advancing pending orders to processing.

        Only orders still awaiting payment and still live (pending or
        processing) are touched.
        """
        now = datetime.now(timezone.utc)
        base = OrderModel.objects.filter(pk=order_id, payment_status=PaymentStatus.PENDING.value)
        if base.filter(status=OrderStatus.PENDING.value).update(
            payment_status=PaymentStatus.PAID.value,
            status=OrderStatus.PROCESSING.value,
            transaction_id=transaction_ref,
            updated_at=now,
        ):
            return True
        return bool(
            base.filter(status=OrderStatus.PROCESSING.value).update(
                payment_status=PaymentStatus.PAID.value,
                transaction_id=transaction_ref,
                updated_at=now,
            )
        )

    def reload(self, order: OrderModel) -> OrderModel:
        order.refresh_from_db()
        return order
