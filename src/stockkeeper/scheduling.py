"""
Fixed-rate background jobs.

Each ``PeriodicTask`` owns an APScheduler ``BackgroundScheduler`` with one
interval job. The first tick runs as soon as the task starts. Ticks never
overlap: a tick that comes due while the previous one is still running is
dropped, not queued.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from datetime import datetime, timezone as dt_timezone
from typing import Callable

from apscheduler.events import EVENT_JOB_MAX_INSTANCES, EVENT_JOB_MISSED
from apscheduler.schedulers.background import BackgroundScheduler
from django.db import connections

from .decorators import exclusive

logger = logging.getLogger(__name__)

IntervalSource = float | Callable[[], float]


class TaskState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"


class PeriodicTask:
    """
    Base class for scheduled jobs. Subclasses implement ``run_once``.

    ``interval`` is either seconds or a callable returning seconds; a
    callable is read again on every ``start()``, which is what lets
    ``restart()`` pick up a new configured interval.
    """

    name = "task"

    def __init__(self, interval: IntervalSource) -> None:
        self._interval_source = interval
        self._control = threading.Lock()
        self._scheduler: BackgroundScheduler | None = None
        self._idle = threading.Event()
        self._idle.set()
        self.interval: float | None = None
        self.state = TaskState.IDLE
        self.last_run: float | None = None
        self.skipped = 0

    def run_once(self) -> None:
        raise NotImplementedError

    @exclusive(key="stockkeeper:tick:{self.name}")
    def tick(self) -> bool:
        """
        Run one tick now, unless one is already running.

        Errors are logged and swallowed. Returns True when the tick ran, with
        or without error, and None when another tick held the key.
        """
        self.state = TaskState.RUNNING
        try:
            self.run_once()
        except Exception:
            logger.exception("%s tick failed", self.name)
        finally:
            self.state = TaskState.IDLE
            self.last_run = time.time()
        return True

    def _scheduled_tick(self) -> None:
        self._idle.clear()
        try:
            if self.tick() is None:
                self.skipped += 1
                logger.info("%s tick skipped, previous run still in progress", self.name)
        finally:
            # Worker threads outlive the tick; never leave a connection behind.
            connections.close_all()
            self._idle.set()

    def _on_skipped(self, event) -> None:
        self.skipped += 1
        logger.warning("%s tick overran its interval; skipping a due run", self.name)

    def _read_interval(self) -> float:
        source = self._interval_source
        value = float(source() if callable(source) else source)
        if value <= 0:
            raise ValueError(f"{self.name} interval must be positive, got {value}")
        return value

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> bool:
        """Start the scheduler. Returns False if already running."""
        with self._control:
            if self.is_running:
                logger.info("%s already running", self.name)
                return False

            self.interval = self._read_interval()
            scheduler = BackgroundScheduler(
                timezone=dt_timezone.utc,
                job_defaults={"max_instances": 1, "coalesce": True},
            )
            scheduler.add_listener(self._on_skipped, EVENT_JOB_MAX_INSTANCES | EVENT_JOB_MISSED)
            scheduler.add_job(
                self._scheduled_tick,
                "interval",
                seconds=self.interval,
                id=f"stockkeeper-{self.name}",
                next_run_time=datetime.now(dt_timezone.utc),
                misfire_grace_time=None,
            )
            scheduler.start()
            self._scheduler = scheduler
            logger.info("%s started (every %ss)", self.name, self.interval)
            return True

    def stop(self, timeout: float | None = None) -> bool:
        """
        Prevent further ticks and wait for an in-flight tick to finish.

        Returns False if the tick was still running when ``timeout`` ran out.
        The task counts as stopped either way, so ``start()`` may follow.
        """
        with self._control:
            scheduler, self._scheduler = self._scheduler, None
            if scheduler is None:
                return True
            if timeout is None:
                scheduler.shutdown(wait=True)
            else:
                scheduler.shutdown(wait=False)
                if not self._idle.wait(timeout):
                    logger.warning("%s still finishing its tick after %ss", self.name, timeout)
                    return False
            logger.info("%s stopped", self.name)
            return True

    def restart(self) -> bool:
        self.stop()
        return self.start()
