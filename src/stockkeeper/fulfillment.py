"""
Fulfillment engine: turns unsold products into a sale, all or nothing.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

from .cache import AvailableCountCache
from .conf import EngineConfig
from .exceptions import EngineShuttingDown, InsufficientStock, OutOfStock
from .notifications import ActivityMonitor
from .store import BucketSelector, LedgerStore
from .validators import validate_order_id, validate_quantity

logger = logging.getLogger(__name__)


class FulfillmentEngine:
    """
    Allocates products to orders.

    ``allocate`` selects and marks products inside one exclusive ledger
    transaction, so concurrent allocations are linearizable: a product id is
    never sold twice and a request is either served in full or not at all.
    """

    def __init__(
        self,
        store: LedgerStore,
        config: EngineConfig,
        cache: AvailableCountCache | None = None,
        activity: ActivityMonitor | None = None,
    ) -> None:
        self.store = store
        self.config = config
        self.cache = cache
        self.activity = activity

        self._cond = threading.Condition()
        self._inflight = 0
        self._closed = False

    def allocate(
        self,
        quantity: int,
        order_id: str,
        bucket: BucketSelector = None,
    ) -> list[str]:
        """
        Sell ``quantity`` products to ``order_id``.

        Parameters
        ----------
        quantity : int
            Number of products, 1 to ``config.max_allocation``.
        order_id : str
            Caller's order reference, stored on every sold product.
        bucket : int | Inventory | None
            Inventory to sell from. ``None`` sells from every bucket.

        Returns
        -------
        list[str]
            Product contents in ascending id order, exactly ``quantity`` long.

        Raises
        ------
        InvalidInput
            Bad quantity, order id or bucket. Nothing was attempted.
        OutOfStock
            The bucket has no unsold products.
        InsufficientStock
            Fewer than ``quantity`` available; ``exc.available`` says how many.
            Nothing was sold.
        StorageError
            The transaction did not commit. Nothing was sold; safe to retry.

        Notes
        -----
        Not idempotent: calling twice with the same order id sells two
        different sets of products.
        """
        quantity = validate_quantity(quantity, self.config.max_allocation)
        order_id = validate_order_id(order_id)
        bucket_id = self.store.bucket_id(bucket)

        try:
            with self._tracked(), self.store.write() as tx:
                selected = tx.select_available(bucket_id, quantity)

                if not selected:
                    raise OutOfStock()
                if len(selected) < quantity:
                    raise InsufficientStock(available=len(selected), requested=quantity)

                tx.mark_sold([pk for pk, _, _ in selected], order_id)
        except (OutOfStock, InsufficientStock) as exc:
            logger.info(
                "Allocation of %d for order %s refused: %s", quantity, order_id, exc.code
            )
            raise

        logger.info("Allocated %d products to order %s", quantity, order_id)
        self._after_commit(quantity, order_id, {inv for _, _, inv in selected})
        return [content for _, content, _ in selected]

    def _after_commit(self, quantity: int, order_id: str, buckets: set[int]) -> None:
        if self.cache is not None:
            self.cache.invalidate(*buckets)
        if self.activity is not None:
            self.activity.notify_sold(quantity, order_id)

    @contextmanager
    def _tracked(self) -> Iterator[None]:
        with self._cond:
            if self._closed:
                raise EngineShuttingDown("Engine is shutting down")
            self._inflight += 1
        try:
            yield
        finally:
            with self._cond:
                self._inflight -= 1
                self._cond.notify_all()

    @property
    def inflight(self) -> int:
        with self._cond:
            return self._inflight

    def drain(self, timeout: float | None = None) -> bool:
        """
        Refuse new allocations and wait for in-flight ones to commit or roll
        back. Returns False if ``timeout`` expired first.
        """
        with self._cond:
            self._closed = True
            return self._cond.wait_for(lambda: self._inflight == 0, timeout)
