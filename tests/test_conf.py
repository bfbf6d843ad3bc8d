from datetime import timedelta

import pytest
from django.core.exceptions import ImproperlyConfigured
from django.test import override_settings

from stockkeeper.conf import EngineConfig
from stockkeeper.engine import Engine


def test_defaults():
    config = EngineConfig()

    assert config.max_allocation == 100
    assert config.stock_threshold == 10
    assert config.lifecycle_interval == 3600.0
    assert config.migration_age == timedelta(days=3)
    assert config.expiry_age == timedelta(days=10)
    assert config.destination_bucket == "Expired"
    assert config.telegram_configured is False


def test_ages_in_seconds_are_converted():
    config = EngineConfig(migration_age=60, expiry_age=7200.0)

    assert config.migration_age == timedelta(minutes=1)
    assert config.expiry_age == timedelta(hours=2)


@pytest.mark.parametrize(
    "overrides",
    [
        {"max_allocation": 0},
        {"batch_size": -1},
        {"lifecycle_interval": 0},
        {"stock_threshold": -1},
        {"migration_age": timedelta(0)},
        {"expiry_age": "ten days"},
        {"lock_backend": "redis"},
    ],
)
def test_invalid_values(overrides):
    with pytest.raises(ImproperlyConfigured):
        EngineConfig(**overrides)


def test_unknown_setting_is_rejected():
    with pytest.raises(ImproperlyConfigured, match="stock_treshold"):
        EngineConfig.from_mapping({"stock_treshold": 5})


def test_from_settings():
    with override_settings(STOCKKEEPER={"stock_threshold": 25, "telegram_enabled": True}):
        config = EngineConfig.from_settings()

    assert config.stock_threshold == 25
    assert config.telegram_enabled is True


def test_telegram_configured_needs_token_and_chat():
    base = EngineConfig(telegram_enabled=True, telegram_bot_token="t")

    assert base.telegram_configured is False
    assert base.with_overrides(telegram_chat_id="c").telegram_configured is True


def test_restart_picks_up_new_interval_from_settings(notifier):
    with override_settings(STOCKKEEPER={"lifecycle_interval": 100}):
        engine = Engine(notifier=notifier, config_loader=EngineConfig.from_settings)
        engine.lifecycle.start()
        assert engine.lifecycle.interval == 100.0

    try:
        with override_settings(STOCKKEEPER={"lifecycle_interval": 250}):
            engine.restart()
        assert engine.lifecycle.interval == 250.0
    finally:
        engine.shutdown(timeout=5.0)
