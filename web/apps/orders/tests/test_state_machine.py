"""State machine tests: cancellation with stock restore, payment, operator moves."""

import uuid

import pytest

from apps.orders.domain import AlreadyPaid, InvalidState, NotFound, OrderStatus, PaymentFailed
from apps.orders.models import OrderModel
from apps.store.models import Notification, Product

USER = "user-1"

pytestmark = pytest.mark.django_db


def _stock(product):
    return Product.objects.values_list("stock_quantity", flat=True).get(pk=product.pk)


def test_cancel_restores_stock_once(placed_order, state_machine):
    order, product = placed_order
    assert _stock(product) == 2

    out = state_machine.cancel(order.pk, user_id=USER)

    assert out.status == "cancelled"
    assert out.cancelled_at is not None
    assert _stock(product) == 5
    with pytest.raises(InvalidState):
        state_machine.cancel(order.pk, user_id=USER)
    assert _stock(product) == 5


def test_cancel_from_stale_read_does_not_restore_twice(placed_order, state_machine, monkeypatch):
    order, product = placed_order
    stale = OrderModel.objects.get(pk=order.pk)
    state_machine.cancel(order.pk, user_id=USER)
    monkeypatch.setattr(state_machine.repository, "get_for_user", lambda oid, uid: stale)

    with pytest.raises(InvalidState):
        state_machine.cancel(order.pk, user_id=USER)
    assert _stock(product) == 5


def test_cancel_paid_processing_order(placed_order, state_machine):
    order, product = placed_order
    state_machine.confirm_payment(order.pk, "tx-1")

    out = state_machine.cancel(order.pk)

    assert out.status == "cancelled"
    assert _stock(product) == 5


def test_cannot_cancel_shipped_order(placed_order, state_machine):
    order, product = placed_order
    state_machine.confirm_payment(order.pk, "tx-1")
    state_machine.ship(order.pk)

    with pytest.raises(InvalidState):
        state_machine.cancel(order.pk, user_id=USER)
    assert _stock(product) == 2
    assert OrderModel.objects.get(pk=order.pk).status == "shipped"


def test_cancel_someone_elses_order_is_not_found(placed_order, state_machine):
    order, product = placed_order
    with pytest.raises(NotFound):
        state_machine.cancel(order.pk, user_id="intruder")
    assert _stock(product) == 2


def test_cancel_skips_untracked_products(make_product, make_address, ledger, order_service, state_machine):
    p = make_product(stock=None)
    a = make_address()
    ledger.add_item(USER, p.pk, 4)
    order = order_service.place_order(USER, shipping_address_id=a.pk)

    state_machine.cancel(order.pk, user_id=USER)

    assert _stock(p) is None


def test_confirm_payment_then_already_paid(placed_order, state_machine):
    order, _ = placed_order

    paid = state_machine.confirm_payment(order.pk, "tx-123", user_id=USER)
    assert (paid.status, paid.payment_status, paid.transaction_id) == ("processing", "paid", "tx-123")
    before = OrderModel.objects.get(pk=order.pk)

    with pytest.raises(AlreadyPaid):
        state_machine.confirm_payment(order.pk, "tx-456", user_id=USER)

    after = OrderModel.objects.get(pk=order.pk)
    assert after.transaction_id == "tx-123"
    assert after.status == "processing"
    assert after.updated_at == before.updated_at


def test_confirm_payment_on_cancelled_order(placed_order, state_machine):
    order, _ = placed_order
    state_machine.cancel(order.pk)

    with pytest.raises(InvalidState):
        state_machine.confirm_payment(order.pk, "tx-1")
    assert OrderModel.objects.get(pk=order.pk).payment_status == "pending"


def test_charge_and_confirm_uses_payments_port(placed_order, state_machine):
    order, _ = placed_order
    tx = uuid.uuid4()
    charged = {}

    class Approve:
        def charge(self, amount_cents, currency):
            charged.update(amount_cents=amount_cents, currency=currency)
            return True, tx

    out = state_machine.charge_and_confirm(order.pk, Approve(), user_id=USER)

    assert charged == {"amount_cents": 3500, "currency": "USD"}
    assert out.payment_status == "paid"
    assert out.transaction_id == str(tx)


def test_declined_charge_leaves_order_pending(placed_order, state_machine):
    order, _ = placed_order

    class Decline:
        def charge(self, amount_cents, currency):
            return False, None

    with pytest.raises(PaymentFailed):
        state_machine.charge_and_confirm(order.pk, Decline(), user_id=USER)
    o = OrderModel.objects.get(pk=order.pk)
    assert (o.status, o.payment_status) == ("pending", "pending")


def test_paid_order_is_never_charged_again(placed_order, state_machine):
    order, _ = placed_order
    state_machine.confirm_payment(order.pk, "tx-1")

    class MustNotCharge:
        def charge(self, amount_cents, currency):
            raise AssertionError("charged twice")

    with pytest.raises(AlreadyPaid):
        state_machine.charge_and_confirm(order.pk, MustNotCharge())


def test_charge_refunded_when_order_cancelled_meanwhile(placed_order, state_machine, caplog):
    order, product = placed_order
    tx = uuid.uuid4()
    refunds = []

    class CancelDuringCharge:
        def charge(self, amount_cents, currency):
            state_machine.cancel(order.pk)
            return True, tx

        def refund(self, transaction_id):
            refunds.append(transaction_id)
            return True

    with caplog.at_level("INFO", logger="orders"):
        with pytest.raises(InvalidState):
            state_machine.charge_and_confirm(order.pk, CancelDuringCharge(), user_id=USER)

    assert refunds == [tx]
    o = OrderModel.objects.get(pk=order.pk)
    assert (o.status, o.payment_status, o.transaction_id) == ("cancelled", "pending", None)
    assert _stock(product) == 5
    orphan = [r for r in caplog.records if r.levelname == "ERROR"]
    assert len(orphan) == 1
    assert orphan[0].transaction_id == str(tx)
    assert orphan[0].amount_cents == 3500
    assert any(r.getMessage() == "orphaned charge refunded" for r in caplog.records)


def test_failed_orphan_refund_still_raises_state_error(placed_order, state_machine, caplog):
    order, _ = placed_order
    tx = uuid.uuid4()

    class RefundDown:
        def charge(self, amount_cents, currency):
            state_machine.cancel(order.pk)
            return True, tx

        def refund(self, transaction_id):
            raise RuntimeError("payments unreachable")

    with caplog.at_level("ERROR", logger="orders"):
        with pytest.raises(InvalidState):
            state_machine.charge_and_confirm(order.pk, RefundDown())

    messages = [r.getMessage() for r in caplog.records]
    assert "charge captured for an order that is no longer payable" in messages
    assert "refund of orphaned charge failed" in messages


def test_operator_lifecycle(placed_order, state_machine):
    order, _ = placed_order
    state_machine.confirm_payment(order.pk, "tx-1")

    assert state_machine.ship(order.pk).status == "shipped"
    delivered = state_machine.deliver(order.pk)
    assert delivered.status == "delivered" and delivered.delivered_at is not None
    refunded = state_machine.refund(order.pk)
    assert refunded.status == "refunded" and refunded.refunded_at is not None

    types = set(Notification.objects.filter(user_id=USER).values_list("type", flat=True))
    assert {"order_shipped", "order_delivered", "order_refunded"} <= types


def test_cannot_ship_unpaid_pending_order(placed_order, state_machine):
    order, _ = placed_order
    with pytest.raises(InvalidState):
        state_machine.ship(order.pk)
    assert OrderModel.objects.get(pk=order.pk).status == "pending"


def test_refund_after_cancel_is_invalid(placed_order, state_machine):
    order, _ = placed_order
    state_machine.cancel(order.pk)
    with pytest.raises(InvalidState):
        state_machine.refund(order.pk)


def test_processing_is_not_an_operator_target(placed_order, state_machine):
    order, _ = placed_order
    with pytest.raises(InvalidState):
        state_machine.advance(order.pk, OrderStatus.PROCESSING)


def test_notification_failure_does_not_undo_cancel(placed_order, state_machine, monkeypatch):
    order, product = placed_order

    def boom(*args, **kwargs):
        raise RuntimeError("notifications down")

    monkeypatch.setattr(state_machine.notifications, "emit", boom)

    assert state_machine.cancel(order.pk).status == "cancelled"
    assert _stock(product) == 5
