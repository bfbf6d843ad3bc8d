import threading

import pytest

import stockkeeper.decorators as dec
from stockkeeper.exceptions import LockAcquireTimeout
from stockkeeper.locks import ThreadLockBackend, advisory_lock_id, backend_for, lock

# Context manager tests

class DummyBackend:
    def __init__(self):
        self.acquired = []
        self.released = []

    def acquire(self, key: str, timeout: float | None) -> bool:
        self.acquired.append((key, timeout))
        return True

    def release(self, key: str) -> None:
        self.released.append(key)


def test_lock_context_manager_acquires_and_releases():
    be = DummyBackend()

    with lock("test-key", timeout=1.0, backend=be):
        pass

    assert be.acquired == [("test-key", 1.0)]
    assert be.released == ["test-key"]


def test_lock_releases_when_block_raises():
    be = DummyBackend()

    with pytest.raises(RuntimeError):
        with lock("test-key", backend=be):
            raise RuntimeError("boom")

    assert be.released == ["test-key"]


class NeverBackend:
    def acquire(self, key: str, timeout: float | None) -> bool:
        return False

    def release(self, key: str) -> None:
        raise AssertionError("release should not be called")


def test_lock_raises_timeout_when_not_acquired():
    with pytest.raises(LockAcquireTimeout):
        with lock("test-key", timeout=0.1, backend=NeverBackend()):
            pass


def test_auto_backend_follows_database_vendor():
    from django.db import connection

    be = backend_for("auto")
    expected = "PostgresAdvisoryLockBackend" if connection.vendor == "postgresql" else "ThreadLockBackend"
    assert type(be).__name__ == expected
    assert isinstance(backend_for("thread"), ThreadLockBackend)


# Advisory lock ids

def test_advisory_lock_id_is_deterministic_signed_bigint():
    a = advisory_lock_id("stockkeeper:ledger-write")

    assert a == advisory_lock_id("stockkeeper:ledger-write")
    assert -(2**63) <= a < 2**63
    assert a != advisory_lock_id("stockkeeper:ledger-read")


# Thread backend

def test_thread_backend_zero_timeout_tries_once():
    be = ThreadLockBackend()
    assert be.acquire("k", 0) is True
    assert be.acquire("k", 0) is False
    be.release("k")
    assert be.acquire("k", 0) is True


def test_thread_backend_keys_are_independent():
    be = ThreadLockBackend()
    assert be.acquire("a", 0)
    assert be.acquire("b", 0)


def test_thread_backend_blocks_other_threads_until_timeout():
    be = ThreadLockBackend()
    be.acquire("k", None)
    results = []

    t = threading.Thread(target=lambda: results.append(be.acquire("k", 0.1)))
    t.start()
    t.join(timeout=2.0)

    assert results == [False]


# Decorator tests

def test_exclusive_returns_function_result():
    @dec.exclusive(key="test:{x}", backend=ThreadLockBackend())
    def f(x):
        return x + 1

    assert f(41) == 42


def test_exclusive_skips_when_key_held():
    be = ThreadLockBackend()

    @dec.exclusive(key="job:{name}", backend=be)
    def job(name):
        return "ran"

    be.acquire("job:a", None)
    assert job("a") is None
    assert job("b") == "ran"


def test_exclusive_raise_mode():
    be = ThreadLockBackend()

    @dec.exclusive(key="job", on_conflict="raise", backend=be)
    def job():
        return "ran"

    be.acquire("job", None)
    with pytest.raises(LockAcquireTimeout):
        job()


def test_exclusive_calls_conflict_handler():
    be = ThreadLockBackend()

    @dec.exclusive(key="job:{n}", on_conflict=lambda n: f"busy {n}", backend=be)
    def job(n):
        return "ran"

    be.acquire("job:1", None)
    assert job(1) == "busy 1"


def test_exclusive_releases_after_call():
    be = ThreadLockBackend()

    @dec.exclusive(key="job", backend=be)
    def job():
        return "ran"

    assert job() == "ran"
    assert be.acquire("job", 0) is True


def test_exclusive_does_not_swallow_inner_lock_timeout():
    be = ThreadLockBackend()

    @dec.exclusive(key="outer", backend=be)
    def job():
        raise LockAcquireTimeout("inner lock")

    with pytest.raises(LockAcquireTimeout, match="inner lock"):
        job()


def test_exclusive_unresolvable_key_template():
    @dec.exclusive(key="job:{missing}", backend=ThreadLockBackend())
    def job(x):
        return x

    with pytest.raises(KeyError):
        job(1)
