"""
Engine configuration.

All tunables live in one frozen ``EngineConfig`` built from the Django
setting ``STOCKKEEPER``::

    STOCKKEEPER = {
        "stock_threshold": 25,
        "migration_age": timedelta(days=2),
        "telegram_enabled": True,
        "telegram_bot_token": env("TELEGRAM_TOKEN"),
        "telegram_chat_id": env("TELEGRAM_CHAT"),
    }

Components receive the config object at construction and never read
Django settings themselves.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from datetime import timedelta
from typing import Any, Literal, Mapping

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

LockBackendName = Literal["auto", "postgres", "thread"]

DEFAULT_BUCKET_ID = 1


@dataclass(frozen=True)
class EngineConfig:
    max_allocation: int = 100
    max_upload: int = 200
    stock_threshold: int = 10
    alert_bucket: int | None = None

    lifecycle_interval: float = 3600.0
    stock_check_interval: float = 1800.0
    migration_age: timedelta = timedelta(days=3)
    expiry_age: timedelta = timedelta(days=10)
    source_bucket: str | None = None
    destination_bucket: str = "Expired"
    batch_size: int = 500

    lock_backend: LockBackendName = "auto"
    lock_timeout: float | None = 5.0

    count_cache_timeout: int = 60
    cache_alias: str = "default"

    telegram_enabled: bool = False
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    telegram_header: str = ""
    telegram_footer: str = ""
    notify_on_sold: bool = True
    notify_on_add: bool = True
    display_timezone: str = "Asia/Bangkok"
    request_timeout: float = 10.0

    def __post_init__(self) -> None:
        # Ages may be given as seconds in settings files.
        for name in ("migration_age", "expiry_age"):
            value = getattr(self, name)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                object.__setattr__(self, name, timedelta(seconds=value))
        self._validate()

    def _validate(self) -> None:
        positive = (
            "max_allocation",
            "max_upload",
            "batch_size",
            "lifecycle_interval",
            "stock_check_interval",
        )
        for name in positive:
            if getattr(self, name) <= 0:
                raise ImproperlyConfigured(f"STOCKKEEPER[{name!r}] must be positive")

        if self.stock_threshold < 0:
            raise ImproperlyConfigured("STOCKKEEPER['stock_threshold'] must be >= 0")

        for name in ("migration_age", "expiry_age"):
            value = getattr(self, name)
            if not isinstance(value, timedelta) or value <= timedelta(0):
                raise ImproperlyConfigured(
                    f"STOCKKEEPER[{name!r}] must be a positive timedelta or seconds"
                )

        if self.lock_backend not in ("auto", "postgres", "thread"):
            raise ImproperlyConfigured(
                f"Unknown lock backend {self.lock_backend!r}; "
                "expected 'auto', 'postgres' or 'thread'"
            )

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "EngineConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ImproperlyConfigured(
                f"Unknown STOCKKEEPER settings: {', '.join(unknown)}"
            )
        return cls(**values)

    @classmethod
    def from_settings(cls) -> "EngineConfig":
        """Build a config from ``settings.STOCKKEEPER`` (missing is fine)."""
        return cls.from_mapping(getattr(settings, "STOCKKEEPER", {}) or {})

    def with_overrides(self, **changes: Any) -> "EngineConfig":
        return replace(self, **changes)

    @property
    def telegram_configured(self) -> bool:
        return bool(
            self.telegram_enabled and self.telegram_bot_token and self.telegram_chat_id
        )
