"""
Wiring for the whole engine.

``Engine`` builds every component from one ``EngineConfig`` and owns their
lifetimes: start/stop of the background jobs, and an orderly shutdown that
waits for in-flight allocations.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable

from django.apps import apps
from django.utils import timezone

from .alerts import StockAlertMachine
from .cache import AvailableCountCache
from .conf import EngineConfig
from .fulfillment import FulfillmentEngine
from .inventories import InventoryService
from .lifecycle import LifecycleScheduler, StockCheckTask
from .locks import LockBackend
from .notifications import ActivityMonitor, Notifier, build_notifier
from .store import BucketSelector, LedgerStore

logger = logging.getLogger(__name__)


class Engine:
    def __init__(
        self,
        config: EngineConfig | None = None,
        notifier: Notifier | None = None,
        *,
        config_loader: Callable[[], EngineConfig] | None = None,
        lock_backend: LockBackend | None = None,
        cache=None,
        clock: Callable[[], datetime] = timezone.now,
    ) -> None:
        if config_loader is None:
            config_loader = (lambda: config) if config is not None else EngineConfig.from_settings
        self._config_loader = config_loader
        self.config = config or config_loader()

        self.store = LedgerStore(self.config, lock_backend=lock_backend, clock=clock)
        self.notifier = notifier if notifier is not None else build_notifier(self.config)
        self.cache = AvailableCountCache(self.config, cache)
        self.activity = ActivityMonitor(self.config, self.notifier)
        self.alerts = StockAlertMachine(self.store, self.notifier, self.config, clock=clock)
        self.fulfillment = FulfillmentEngine(self.store, self.config, self.cache, self.activity)
        self.inventories = InventoryService(self.store, self.config, self.cache, self.activity)
        self.lifecycle = LifecycleScheduler(
            self.store,
            self.notifier,
            self.config,
            alerts=self.alerts,
            cache=self.cache,
            interval=lambda: self._config_loader().lifecycle_interval,
        )
        self.stock_checker = StockCheckTask(
            self.alerts,
            self.config,
            interval=lambda: self._config_loader().stock_check_interval,
        )

    def allocate(self, quantity: int, order_id: str, bucket: BucketSelector = None) -> list[str]:
        return self.fulfillment.allocate(quantity, order_id, bucket)

    def available_count(self, bucket: BucketSelector = None) -> int:
        bucket_id = self.store.bucket_id(bucket)
        cached = self.cache.get(bucket_id)
        if cached is not None:
            return cached
        generation = self.cache.generation(bucket_id)
        count = self.store.count_available(bucket_id)
        self.cache.set(bucket_id, count, generation)
        return count

    def check_stock(self) -> dict[str, Any]:
        """Manual stock check: ``{available, threshold, alert_fired, kind}``."""
        return self.alerts.evaluate().to_dict()

    def start(self) -> None:
        """Start the lifecycle scheduler and the periodic stock check."""
        self.lifecycle.start()
        self.stock_checker.start()

    def stop(self, timeout: float | None = None) -> None:
        self.lifecycle.stop(timeout)
        self.stock_checker.stop(timeout)

    def restart(self) -> None:
        """Restart the background jobs with freshly configured intervals."""
        self.lifecycle.restart()
        self.stock_checker.restart()

    def shutdown(self, timeout: float | None = None) -> bool:
        """
        Stop the jobs, let in-flight ticks and allocations finish, then stop
        notification delivery. Returns False if allocations were still in
        flight when ``timeout`` expired.
        """
        logger.info("Shutting down stock engine")
        self.stop(timeout)
        drained = self.fulfillment.drain(timeout)
        if not drained:
            logger.warning("%d allocations still in flight at shutdown", self.fulfillment.inflight)
        self.activity.shutdown(wait=True)
        return drained

    def status(self) -> dict[str, Any]:
        return {
            "lifecycle": {
                "running": self.lifecycle.is_running,
                "state": self.lifecycle.state.value,
                "interval": self.lifecycle.interval,
            },
            "stock_check": {
                "running": self.stock_checker.is_running,
                "state": self.stock_checker.state.value,
                "interval": self.stock_checker.interval,
                **self.alerts.status(),
            },
        }


def get_engine() -> Engine:
    """The engine owned by the installed ``stockkeeper`` app."""
    return apps.get_app_config("stockkeeper").engine


def set_engine(engine: Engine | None) -> None:
    apps.get_app_config("stockkeeper").engine = engine
