"""
Low-stock alert state machine.

Each evaluation classifies the available count as ``normal``,
``low_stock`` or ``out_of_stock`` and decides whether the operator needs to
hear about it. The last kind and count are kept in memory only, so a
restart announces the current state once.
"""

from __future__ import annotations

import enum
import logging
import threading
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Callable

from django.utils import timezone

from .conf import EngineConfig
from .notifications import STOCK_ALERT, Notifier, safe_send
from .store import LedgerStore

logger = logging.getLogger(__name__)


class AlertKind(str, enum.Enum):
    NORMAL = "normal"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"


def classify(available: int, threshold: int) -> AlertKind:
    if available == 0:
        return AlertKind.OUT_OF_STOCK
    if available <= threshold:
        return AlertKind.LOW_STOCK
    return AlertKind.NORMAL


def should_alert(
    last_kind: AlertKind | None,
    last_count: int | None,
    kind: AlertKind,
    available: int,
) -> bool:
    """
    Decide whether an evaluation announces itself.

    ``normal`` is never announced. Otherwise alert on the first evaluation,
    on a change of kind, or on any count change while still alerting.
    """
    if kind is AlertKind.NORMAL:
        return False
    return last_kind is None or last_kind is not kind or last_count != available


@dataclass(frozen=True)
class StockCheckResult:
    available: int
    threshold: int
    alert_fired: bool
    kind: AlertKind

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        return data


class StockAlertMachine:
    def __init__(
        self,
        store: LedgerStore,
        notifier: Notifier,
        config: EngineConfig,
        clock: Callable[[], datetime] = timezone.now,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.config = config
        self.clock = clock

        # Guards the state below; evaluations can come from two scheduler
        # threads and from a manual trigger.
        self._lock = threading.Lock()
        self.last_alert_kind: AlertKind | None = None
        self.last_alert_count: int | None = None
        self.last_check: datetime | None = None

    def evaluate(self) -> StockCheckResult:
        with self._lock:
            self.last_check = self.clock()
            available = self.store.count_available(self.config.alert_bucket)
            threshold = self.config.stock_threshold
            kind = classify(available, threshold)

            fired = should_alert(self.last_alert_kind, self.last_alert_count, kind, available)
            if fired:
                result = safe_send(
                    self.notifier,
                    STOCK_ALERT,
                    {"available": available, "threshold": threshold, "kind": kind.value},
                )
                if result.success:
                    logger.info("Sent %s alert for %d products", kind.value, available)
                else:
                    logger.warning("%s alert not delivered: %s", kind.value, result.error)
            elif kind is not AlertKind.NORMAL:
                logger.debug("Skipped duplicate %s alert at %d", kind.value, available)

            self.last_alert_kind = kind
            self.last_alert_count = available

        return StockCheckResult(available, threshold, fired, kind)

    def status(self) -> dict[str, Any]:
        with self._lock:
            return {
                "last_check": self.last_check,
                "last_alert_kind": self.last_alert_kind.value if self.last_alert_kind else None,
                "last_alert_count": self.last_alert_count,
            }
