import pytest

from stockkeeper.alerts import AlertKind, StockAlertMachine, classify, should_alert
from stockkeeper.conf import EngineConfig
from stockkeeper.notifications import STOCK_ALERT


class ScriptedStore:
    """Returns the scripted available counts, one per evaluation."""

    def __init__(self, counts):
        self.counts = list(counts)
        self.buckets = []

    def count_available(self, bucket=None):
        self.buckets.append(bucket)
        return self.counts.pop(0)


class ExplodingNotifier:
    def send(self, kind, payload):
        raise RuntimeError("network down")


def _machine(counts, notifier, **overrides):
    config = EngineConfig(**{"stock_threshold": 10, **overrides})
    return StockAlertMachine(ScriptedStore(counts), notifier, config)


def test_trajectory_fires_exactly_two_alerts(notifier):
    machine = _machine([50, 8, 8, 0, 0, 12], notifier)

    fired = [machine.evaluate().alert_fired for _ in range(6)]

    assert fired == [False, True, False, True, False, False]
    assert [p["available"] for _, p in notifier.sent] == [8, 0]
    assert [p["kind"] for _, p in notifier.sent] == ["low_stock", "out_of_stock"]
    assert notifier.kinds() == [STOCK_ALERT, STOCK_ALERT]


def test_count_change_while_low_alerts_again(notifier):
    machine = _machine([8, 5, 5], notifier)

    assert [machine.evaluate().alert_fired for _ in range(3)] == [True, True, False]


def test_low_again_after_recovery_alerts(notifier):
    machine = _machine([8, 50, 8], notifier)

    assert [machine.evaluate().alert_fired for _ in range(3)] == [True, False, True]


def test_restart_announces_current_state_once(notifier):
    assert _machine([8], notifier).evaluate().alert_fired is True
    # A fresh machine has no memory of the previous alert.
    assert _machine([8], notifier).evaluate().alert_fired is True


def test_state_updated_even_when_delivery_fails():
    machine = _machine([0, 0], ExplodingNotifier())

    first = machine.evaluate()
    second = machine.evaluate()

    assert first.alert_fired is True
    assert second.alert_fired is False
    assert machine.last_alert_kind is AlertKind.OUT_OF_STOCK
    assert machine.last_alert_count == 0


def test_evaluates_configured_bucket(notifier):
    machine = _machine([20], notifier, alert_bucket=1)
    machine.evaluate()

    assert machine.store.buckets == [1]


def test_result_and_status(notifier, clock):
    config = EngineConfig(stock_threshold=10)
    machine = StockAlertMachine(ScriptedStore([3]), notifier, config, clock=clock)

    result = machine.evaluate()

    assert result.to_dict() == {
        "available": 3,
        "threshold": 10,
        "alert_fired": True,
        "kind": "low_stock",
    }
    assert machine.status() == {
        "last_check": clock(),
        "last_alert_kind": "low_stock",
        "last_alert_count": 3,
    }


def test_evaluates_against_the_ledger(engine, main, notifier):
    engine.inventories.add_products([f"p{i}" for i in range(4)], main)

    result = engine.check_stock()

    assert result == {"available": 4, "threshold": 10, "alert_fired": True, "kind": "low_stock"}


@pytest.mark.parametrize(
    "available, threshold, kind",
    [
        (0, 10, AlertKind.OUT_OF_STOCK),
        (1, 10, AlertKind.LOW_STOCK),
        (10, 10, AlertKind.LOW_STOCK),
        (11, 10, AlertKind.NORMAL),
        (0, 0, AlertKind.OUT_OF_STOCK),
        (1, 0, AlertKind.NORMAL),
    ],
)
def test_classify(available, threshold, kind):
    assert classify(available, threshold) is kind


@pytest.mark.parametrize(
    "last_kind, last_count, kind, available, expected",
    [
        (None, None, AlertKind.NORMAL, 50, False),
        (None, None, AlertKind.LOW_STOCK, 8, True),
        (None, None, AlertKind.OUT_OF_STOCK, 0, True),
        (AlertKind.NORMAL, 50, AlertKind.LOW_STOCK, 8, True),
        (AlertKind.LOW_STOCK, 8, AlertKind.LOW_STOCK, 8, False),
        (AlertKind.LOW_STOCK, 8, AlertKind.LOW_STOCK, 7, True),
        (AlertKind.LOW_STOCK, 8, AlertKind.OUT_OF_STOCK, 0, True),
        (AlertKind.OUT_OF_STOCK, 0, AlertKind.OUT_OF_STOCK, 0, False),
        (AlertKind.OUT_OF_STOCK, 0, AlertKind.NORMAL, 12, False),
    ],
)
def test_should_alert(last_kind, last_count, kind, available, expected):
    assert should_alert(last_kind, last_count, kind, available) is expected
