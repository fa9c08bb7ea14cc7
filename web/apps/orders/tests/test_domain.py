"""Unit tests for the transition table, stock checks and error payloads."""

from decimal import Decimal

import pytest

from apps.orders.domain import (
    CANCELLABLE,
    AlreadyPaid,
    CartEntry,
    InsufficientStock,
    NotFound,
    OrderStatus,
    ProductInfo,
    Shortfall,
    can_transition,
    find_shortfalls,
)


def _product(stock, active=True, pid=1):
    return ProductInfo(id=pid, sku=f"S{pid}", name="P", price=Decimal("10.00"), stock_quantity=stock, is_active=active)


@pytest.mark.parametrize(
    "src,dst,ok",
    [
        (OrderStatus.PENDING, OrderStatus.PROCESSING, True),
        (OrderStatus.PENDING, OrderStatus.CANCELLED, True),
        (OrderStatus.PENDING, OrderStatus.SHIPPED, False),
        (OrderStatus.PROCESSING, OrderStatus.SHIPPED, True),
        (OrderStatus.SHIPPED, OrderStatus.CANCELLED, False),
        (OrderStatus.DELIVERED, OrderStatus.REFUNDED, True),
        (OrderStatus.CANCELLED, OrderStatus.PENDING, False),
        (OrderStatus.REFUNDED, OrderStatus.PROCESSING, False),
    ],
)
def test_can_transition(src, dst, ok):
    assert can_transition(src, dst) is ok


def test_only_pending_and_processing_are_cancellable():
    assert CANCELLABLE == {OrderStatus.PENDING, OrderStatus.PROCESSING}


def test_untracked_stock_covers_anything():
    assert _product(None).covers(10_000)
    assert _product(None).available() is None


def test_inactive_product_has_no_stock():
    p = _product(50, active=False)
    assert p.available() == 0
    assert not p.covers(1)


def test_find_shortfalls_lists_every_short_line():
    entries = [
        CartEntry(1, _product(1, pid=1), 2, Decimal("10.00")),
        CartEntry(2, _product(9, pid=2), 2, Decimal("10.00")),
        CartEntry(3, _product(0, pid=3), 1, Decimal("10.00")),
    ]
    assert find_shortfalls(entries) == [Shortfall(1, 2, 1), Shortfall(3, 1, 0)]


def test_error_str_is_code_and_dict_carries_details():
    e = InsufficientStock([Shortfall(7, 2, 1)])
    assert str(e) == "INSUFFICIENT_STOCK"
    assert e.to_dict()["items"] == [{"productId": 7, "requested": 2, "available": 1}]
    assert NotFound().to_dict()["detail"] == "NOT_FOUND"
    assert isinstance(AlreadyPaid(), ValueError)
