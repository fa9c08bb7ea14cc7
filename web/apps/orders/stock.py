"""Stock bookkeeping for order placement and cancellation.

``StockLedger`` is the only code that changes tracked stock:

- ``decrement`` runs inside the order placement transaction and takes the
  ordered units out of the catalog.
- ``restore`` (the reconciler) puts back exactly what an order's lines
  recorded when the order is cancelled.

Both go through ``CatalogPort.adjust_stock``, whose conditional update keeps
``stock_quantity`` from ever dropping below zero. Products with untracked
(NULL) stock are skipped in both directions.
"""

import logging
from collections import OrderedDict
from typing import Dict, Iterable, List, Tuple

from .domain import CatalogPort, InsufficientStock, ProductInfo, Shortfall

logger = logging.getLogger("orders")


class StockLedger:
    def __init__(self, catalog: CatalogPort):
        self.catalog = catalog

    def decrement(self, items: Iterable[Tuple[int, int]], locked: Dict[int, ProductInfo]) -> None:
        """Take ``(product_id, quantity)`` units out of tracked stock.

        Must run inside the caller's transaction, after the products have
        been locked (``locked`` is the result of ``lock_products``). Any
        product that cannot cover its quantity makes the whole call fail
        with ``InsufficientStock`` so the caller's transaction rolls back.
        """
        wanted = _merge(items)
        shortfalls: List[Shortfall] = []
        for pid, qty in wanted.items():
            product = locked.get(pid)
            if product is None or not product.covers(qty):
                available = product.available() if product else 0
                shortfalls.append(Shortfall(pid, qty, available or 0))
        if shortfalls:
            raise InsufficientStock(shortfalls)

        for pid, qty in wanted.items():
            if locked[pid].is_tracked and not self.catalog.adjust_stock(pid, -qty):
                # Stock moved under us despite the lock (or the backend has
                # no row locks): the guarded UPDATE refused the change.
                current = self.catalog.get_product(pid)
                raise InsufficientStock(
                    [Shortfall(pid, qty, (current.available() or 0) if current else 0)]
                )
            self.catalog.record_sale(pid, qty)

    def restore(self, order_id, lines: Iterable[Tuple[int, int]]) -> List[int]:
        """Give back the stock recorded on an order's lines.

        Args:
            order_id: Order being reconciled (for logging).
            lines: ``(product_id, quantity)`` from the order line snapshot.

        Returns:
            Ids of the products whose tracked stock was restored.
        """
        restored = []
        for pid, qty in _merge(lines).items():
            if self.catalog.adjust_stock(pid, qty):
                restored.append(pid)
            else:
                logger.info(
                    "stock not restored (untracked or missing product)",
                    extra={"order_id": str(order_id), "product_id": pid, "quantity": qty},
                )
        return restored


def _merge(items: Iterable[Tuple[int, int]]) -> "OrderedDict[int, int]":
    merged: "OrderedDict[int, int]" = OrderedDict()
    for pid, qty in sorted(items):
        merged[pid] = merged.get(pid, 0) + qty
    return merged
