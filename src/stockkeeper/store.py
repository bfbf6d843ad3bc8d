"""
Ledger store: the only code that reads or writes ``Product`` rows for the
engines.

Writes go through ``LedgerStore.write()``, which takes the single-writer
lock and then opens one ``transaction.atomic()`` block. The handle it yields
(``LedgerTransaction``) is only valid inside that block, so a
select-then-update sequence run on it cannot interleave with any other
ledger write.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from functools import wraps
from typing import Callable, Iterable, Iterator, Sequence

from django.db import DatabaseError, connection, transaction
from django.db.models import Count, Q
from django.utils import timezone

from .conf import EngineConfig
from .exceptions import InvalidInput, StorageError
from .locks import WRITE_LOCK_KEY, LockBackend, backend_for, lock
from .models import Inventory, Product

logger = logging.getLogger(__name__)

BucketSelector = int | Inventory | None


def translate_db_errors(fn):
    """Report database failures of a ledger read as ``StorageError``."""

    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except DatabaseError as exc:
            logger.error("Ledger read failed: %s", exc)
            raise StorageError(f"Ledger read failed: {exc}") from exc

    return wrapper


class LedgerTransaction:
    """Write primitives bound to one open exclusive transaction."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    @staticmethod
    def _locked(qs):
        if connection.features.has_select_for_update:
            return qs.select_for_update()
        return qs

    def select_available(self, bucket_id: int | None, limit: int) -> list[tuple[int, str, int]]:
        """Lowest-id unsold products, as ``(id, content, inventory_id)`` rows."""
        qs = Product.objects.available().in_bucket(bucket_id).order_by("id")
        return list(self._locked(qs).values_list("id", "content", "inventory_id")[:limit])

    def mark_sold(self, ids: Sequence[int], order_id: str) -> int:
        updated = Product.objects.filter(id__in=ids, sold=False).update(
            sold=True, order_id=order_id, sold_at=self.now
        )
        if updated != len(ids):
            # Rolls back the whole transaction; nothing is half-sold.
            raise StorageError(
                f"Expected to mark {len(ids)} products sold, updated {updated}"
            )
        return updated

    def migrate(
        self,
        source_id: int,
        destination_id: int,
        older_than: datetime,
        limit: int,
    ) -> int:
        """Move up to ``limit`` aged unsold products and restart their clock."""
        aged = Q(moved_at__isnull=True, uploaded_at__lte=older_than) | Q(
            moved_at__lte=older_than
        )
        qs = Product.objects.available().filter(aged, inventory_id=source_id).order_by("id")
        ids = list(self._locked(qs).values_list("id", flat=True)[:limit])
        if not ids:
            return 0
        return Product.objects.filter(id__in=ids).update(
            inventory_id=destination_id, moved_at=self.now
        )

    def expire(self, bucket_id: int, older_than: datetime, limit: int) -> int:
        """Hard-delete up to ``limit`` unsold products moved before ``older_than``."""
        qs = Product.objects.available().filter(
            inventory_id=bucket_id,
            moved_at__isnull=False,
            moved_at__lte=older_than,
        ).order_by("id")
        ids = list(self._locked(qs).values_list("id", flat=True)[:limit])
        if not ids:
            return 0
        deleted, _ = Product.objects.filter(id__in=ids).delete()
        return deleted

    def insert(self, contents: Iterable[str], bucket_id: int) -> int:
        rows = [
            Product(content=c, inventory_id=bucket_id, uploaded_at=self.now)
            for c in contents
        ]
        Product.objects.bulk_create(rows)
        return len(rows)

    def delete(self, ids: Sequence[int]) -> int:
        deleted, _ = Product.objects.filter(id__in=ids).delete()
        return deleted


class LedgerStore:
    def __init__(
        self,
        config: EngineConfig,
        lock_backend: LockBackend | None = None,
        clock: Callable[[], datetime] = timezone.now,
    ) -> None:
        self.config = config
        self.clock = clock
        self._lock_backend = lock_backend

    @property
    def lock_backend(self) -> LockBackend:
        return self._lock_backend or backend_for(self.config.lock_backend)

    @contextmanager
    def write(self) -> Iterator[LedgerTransaction]:
        """
        Open the exclusive write transaction.

        Any exception raised in the block rolls everything back. Database
        failures, including a failure to take the lock, come out as
        ``StorageError``; everything else propagates unchanged.
        """
        try:
            with lock(WRITE_LOCK_KEY, timeout=self.config.lock_timeout, backend=self.lock_backend):
                with transaction.atomic():
                    yield LedgerTransaction(self.clock())
        except DatabaseError as exc:
            logger.error("Ledger transaction rolled back: %s", exc)
            raise StorageError(f"Ledger transaction failed: {exc}") from exc

    # Buckets

    @translate_db_errors
    def bucket_id(self, selector: BucketSelector) -> int | None:
        """Normalize a bucket selector to an id, checking it exists."""
        if selector is None:
            return None
        if isinstance(selector, Inventory):
            return selector.pk
        if isinstance(selector, bool) or not isinstance(selector, int):
            raise InvalidInput(f"Invalid inventory selector: {selector!r}")
        if not Inventory.objects.filter(pk=selector).exists():
            raise InvalidInput(f"Inventory {selector} does not exist")
        return selector

    @translate_db_errors
    def get_bucket(self, pk: int) -> Inventory | None:
        return Inventory.objects.filter(pk=pk).first()

    @translate_db_errors
    def find_bucket(self, name: str) -> Inventory | None:
        return Inventory.objects.filter(name=name).first()

    # Reads

    @translate_db_errors
    def count_available(self, bucket: BucketSelector = None) -> int:
        return Product.objects.available().in_bucket(self.bucket_id(bucket)).count()

    @translate_db_errors
    def stats(self, bucket: BucketSelector = None) -> dict[str, int]:
        agg = Product.objects.in_bucket(self.bucket_id(bucket)).aggregate(
            total=Count("id"),
            available=Count("id", filter=Q(sold=False)),
            sold=Count("id", filter=Q(sold=True)),
        )
        return {k: v or 0 for k, v in agg.items()}

    @translate_db_errors
    def product_count(self, bucket_id: int) -> int:
        return Product.objects.filter(inventory_id=bucket_id).count()

    # Writes, each in its own transaction

    def select_available(self, bucket: BucketSelector, limit: int) -> list[tuple[int, str, int]]:
        bucket_id = self.bucket_id(bucket)
        with self.write() as tx:
            return tx.select_available(bucket_id, limit)

    def mark_sold(self, ids: Sequence[int], order_id: str) -> int:
        with self.write() as tx:
            return tx.mark_sold(ids, order_id)

    def migrate(self, source_id: int, destination_id: int, older_than: datetime) -> int:
        """Run ``LedgerTransaction.migrate`` in batches until a batch comes back short."""
        batch = self.config.batch_size
        total = 0
        while True:
            with self.write() as tx:
                moved = tx.migrate(source_id, destination_id, older_than, batch)
            total += moved
            if moved < batch:
                return total

    def expire(self, bucket_id: int, older_than: datetime) -> int:
        batch = self.config.batch_size
        total = 0
        while True:
            with self.write() as tx:
                deleted = tx.expire(bucket_id, older_than, batch)
            total += deleted
            if deleted < batch:
                return total
