"""
Test setup: a minimal Django project around the ``stockkeeper`` app.

SQLite in a temporary file by default. Set ``DATABASE_URL`` to a PostgreSQL
database to run the same suite against advisory locks.
"""

from __future__ import annotations

import os
import tempfile
import threading
from datetime import datetime, timedelta, timezone as dt_timezone
from urllib.parse import urlparse

import pytest


def _database() -> dict:
    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        return {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": os.path.join(tempfile.mkdtemp(), "stockkeeper.sqlite3"),
        }

    u = urlparse(database_url)
    if u.scheme not in {"postgres", "postgresql"}:
        raise pytest.UsageError(f"Unsupported DATABASE_URL scheme: {u.scheme!r}")
    return {
        "ENGINE": "django.db.backends.postgresql",
        "NAME": (u.path or "").lstrip("/"),
        "USER": u.username or "",
        "PASSWORD": u.password or "",
        "HOST": u.hostname or "localhost",
        "PORT": str(u.port or 5432),
        "CONN_MAX_AGE": 0,
    }


def pytest_configure(config) -> None:
    from django.conf import settings

    if settings.configured:
        return

    settings.configure(
        SECRET_KEY="test",
        INSTALLED_APPS=["stockkeeper"],
        DATABASES={"default": _database()},
        CACHES={"default": {"BACKEND": "django.core.cache.backends.locmem.LocMemCache"}},
        ROOT_URLCONF="stockkeeper.urls",
        ALLOWED_HOSTS=["testserver"],
        MIDDLEWARE=[],
        TIME_ZONE="UTC",
        USE_TZ=True,
        STOCKKEEPER={},
    )

    import django
    from django.core.management import call_command

    django.setup()
    call_command("migrate", verbosity=0)


class FrozenClock:
    """A clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingNotifier:
    def __init__(self, success: bool = True) -> None:
        self.success = success
        self.sent: list[tuple[str, dict]] = []
        self._lock = threading.Lock()

    def send(self, kind, payload):
        from stockkeeper.notifications import NotifyResult

        with self._lock:
            self.sent.append((kind, dict(payload)))
        return NotifyResult(self.success, None if self.success else "failed")

    def kinds(self) -> list[str]:
        return [kind for kind, _ in self.sent]


@pytest.fixture(autouse=True)
def ledger():
    """Reset to the freshly migrated state: empty buckets Main (#1) and Expired."""
    from django.core.cache import caches

    from stockkeeper.engine import set_engine
    from stockkeeper.models import Inventory, Product

    Product.objects.all().delete()
    Inventory.objects.exclude(pk=1).exclude(name="Expired").delete()
    Inventory.objects.update_or_create(
        pk=1, defaults={"name": "Main", "description": "", "is_active": True}
    )
    Inventory.objects.get_or_create(name="Expired")
    caches["default"].clear()
    set_engine(None)
    yield
    set_engine(None)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2024, 1, 1, 12, 0, tzinfo=dt_timezone.utc))


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def config():
    from stockkeeper.conf import EngineConfig

    return EngineConfig(lock_timeout=10.0)


@pytest.fixture
def engine(config, notifier, clock):
    from stockkeeper.engine import Engine

    eng = Engine(config, notifier, clock=clock)
    yield eng
    eng.shutdown(timeout=5.0)


@pytest.fixture
def database_down():
    """Context manager under which every query on this thread fails."""
    from django.db import OperationalError, connection

    def refuse(execute, sql, params, many, context):
        raise OperationalError("server closed the connection unexpectedly")

    return lambda: connection.execute_wrapper(refuse)


@pytest.fixture
def main():
    from stockkeeper.models import Inventory

    return Inventory.objects.get(pk=1)


@pytest.fixture
def expired():
    from stockkeeper.models import Inventory

    return Inventory.objects.get(name="Expired")
