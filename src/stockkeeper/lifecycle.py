"""
Aging lifecycle for unsold stock.

Every tick runs two stages, in order:

1. migrate: unsold products in the source bucket older than
   ``migration_age`` move to the destination bucket, and their ``moved_at``
   is set. Age counts from ``moved_at`` when set, else ``uploaded_at``.
2. expire: unsold products in the destination bucket whose ``moved_at`` is
   older than ``expiry_age`` are deleted.

A product moved in stage 1 gets ``moved_at = now`` and so can only expire on
a later tick. Each stage that touched rows sends one informational
notification; these are events and skip alert deduplication. The tick ends
with an alert evaluation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from .alerts import StockAlertMachine, StockCheckResult
from .cache import AvailableCountCache
from .conf import DEFAULT_BUCKET_ID, EngineConfig
from .exceptions import StorageError
from .models import Inventory
from .notifications import PRODUCTS_DELETED, PRODUCTS_MOVED, Notifier, safe_send
from .scheduling import IntervalSource, PeriodicTask
from .store import LedgerStore

logger = logging.getLogger(__name__)


def describe_age(age: timedelta) -> str:
    seconds = int(age.total_seconds())
    if seconds % 86400 == 0:
        days = seconds // 86400
        return f"{days} day" + ("s" if days != 1 else "")
    if seconds % 3600 == 0:
        hours = seconds // 3600
        return f"{hours} hour" + ("s" if hours != 1 else "")
    return f"{seconds} seconds"


@dataclass(frozen=True)
class LifecycleReport:
    moved: int = 0
    deleted: int = 0
    skipped: bool = False
    stock: StockCheckResult | None = None


class LifecycleScheduler(PeriodicTask):
    name = "lifecycle"

    def __init__(
        self,
        store: LedgerStore,
        notifier: Notifier,
        config: EngineConfig,
        alerts: StockAlertMachine | None = None,
        cache: AvailableCountCache | None = None,
        interval: IntervalSource | None = None,
    ) -> None:
        super().__init__(config.lifecycle_interval if interval is None else interval)
        self.store = store
        self.notifier = notifier
        self.config = config
        self.alerts = alerts
        self.cache = cache
        self.last_report: LifecycleReport | None = None

    def resolve_buckets(self) -> tuple[Inventory, Inventory] | None:
        if self.config.source_bucket:
            source = self.store.find_bucket(self.config.source_bucket)
        else:
            source = self.store.get_bucket(DEFAULT_BUCKET_ID)
        destination = self.store.find_bucket(self.config.destination_bucket)

        if source is None or destination is None:
            logger.warning(
                "Lifecycle buckets not found (source=%r, destination=%r); skipping",
                self.config.source_bucket or DEFAULT_BUCKET_ID,
                self.config.destination_bucket,
            )
            return None
        if source.pk == destination.pk:
            logger.warning("Lifecycle source and destination are both %s; skipping", source)
            return None
        return source, destination

    def migrate(self, source: Inventory, destination: Inventory, now: datetime) -> int:
        moved = self.store.migrate(source.pk, destination.pk, now - self.config.migration_age)
        if moved:
            logger.info("Moved %d products from %s to %s", moved, source.name, destination.name)
            self._invalidate(source.pk, destination.pk)
            self._announce(
                PRODUCTS_MOVED,
                {"quantity": moved, "source": source.name, "destination": destination.name},
            )
        return moved

    def expire(self, destination: Inventory, now: datetime) -> int:
        deleted = self.store.expire(destination.pk, now - self.config.expiry_age)
        if deleted:
            logger.info("Deleted %d expired products from %s", deleted, destination.name)
            self._invalidate(destination.pk)
            self._announce(
                PRODUCTS_DELETED,
                {
                    "quantity": deleted,
                    "source": destination.name,
                    "reason": f"unsold {describe_age(self.config.expiry_age)} after moving",
                },
            )
        return deleted

    def run_once(self) -> LifecycleReport:
        now = self.store.clock()
        moved = deleted = 0
        buckets = self.resolve_buckets()

        if buckets is not None:
            source, destination = buckets
            try:
                moved = self.migrate(source, destination, now)
            except StorageError as exc:
                logger.error("Migration stage failed: %s", exc)
            try:
                deleted = self.expire(destination, now)
            except StorageError as exc:
                logger.error("Expiry stage failed: %s", exc)

        stock = None
        if self.alerts is not None:
            try:
                stock = self.alerts.evaluate()
            except StorageError as exc:
                logger.error("Stock check after lifecycle tick failed: %s", exc)

        self.last_report = LifecycleReport(moved, deleted, buckets is None, stock)
        return self.last_report

    def _invalidate(self, *bucket_ids: int) -> None:
        if self.cache is not None:
            self.cache.invalidate(*bucket_ids)

    def _announce(self, kind: str, payload: dict) -> None:
        result = safe_send(self.notifier, kind, payload)
        if not result.success:
            logger.info("%s notification not delivered: %s", kind, result.error)


class StockCheckTask(PeriodicTask):
    """Runs the alert evaluation on its own cadence."""

    name = "stock-check"

    def __init__(
        self,
        alerts: StockAlertMachine,
        config: EngineConfig,
        interval: IntervalSource | None = None,
    ) -> None:
        super().__init__(config.stock_check_interval if interval is None else interval)
        self.alerts = alerts

    def run_once(self) -> StockCheckResult:
        return self.alerts.evaluate()
