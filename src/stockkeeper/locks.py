"""
Single-writer locks for the ledger.

Every ledger write runs inside ``lock(WRITE_LOCK_KEY)``. Two backends are
provided:

- ``PostgresAdvisoryLockBackend``: mutual exclusion across every process
  connected to the same PostgreSQL database.
- ``ThreadLockBackend``: mutual exclusion across threads of one process.
  Used with SQLite, where there is a single process by construction.
"""

from __future__ import annotations

import hashlib
import struct
import threading
import time
from contextlib import contextmanager
from typing import Iterator, Protocol

from django.db import connection

from .exceptions import LockAcquireTimeout

WRITE_LOCK_KEY = "stockkeeper:ledger-write"

# Poll interval for pg_try_advisory_lock.
_POLL_INTERVAL = 0.05


class LockBackend(Protocol):
    """
    Minimal interface a lock backend implements.

    ``acquire`` returns False when the timeout expires. A timeout of 0 means
    "try exactly once", ``None`` means "wait forever".
    """
    def acquire(self, key: str, timeout: float | None) -> bool: ...
    def release(self, key: str) -> None: ...


def advisory_lock_id(key: str) -> int:
    """
    Map a lock key to the signed BIGINT PostgreSQL advisory locks expect.

    The key is namespaced before hashing so stockkeeper locks never collide
    with advisory locks taken by the host application for the same string.
    """
    digest = hashlib.blake2b(
        key.encode("utf-8"), digest_size=8, person=b"stockkeep"
    ).digest()
    return struct.unpack(">q", digest)[0]


class PostgresAdvisoryLockBackend:
    """
    PostgreSQL advisory lock backend.

    The lock is bound to the current thread's database connection, so the
    write transaction that follows runs on the connection that holds it. If
    the connection dies PostgreSQL releases the lock on its own.
    """

    def acquire(self, key: str, timeout: float | None) -> bool:
        lock_id = advisory_lock_id(key)

        if timeout is None:
            with connection.cursor() as cursor:
                cursor.execute("SELECT pg_advisory_lock(%s)", [lock_id])
            return True

        deadline = time.monotonic() + timeout
        while True:
            with connection.cursor() as cursor:
                cursor.execute("SELECT pg_try_advisory_lock(%s)", [lock_id])
                if cursor.fetchone()[0]:
                    return True

            if time.monotonic() >= deadline:
                return False
            time.sleep(_POLL_INTERVAL)

    def release(self, key: str) -> None:
        with connection.cursor() as cursor:
            cursor.execute("SELECT pg_advisory_unlock(%s)", [advisory_lock_id(key)])


class ThreadLockBackend:
    """In-process backend keeping one ``threading.Lock`` per key."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(key, threading.Lock())

    def acquire(self, key: str, timeout: float | None) -> bool:
        lk = self._lock_for(key)
        if timeout is None:
            return lk.acquire()
        if timeout <= 0:
            return lk.acquire(blocking=False)
        return lk.acquire(timeout=timeout)

    def release(self, key: str) -> None:
        self._lock_for(key).release()


# Shared so that every store in the process contends on the same locks.
thread_backend = ThreadLockBackend()
postgres_backend = PostgresAdvisoryLockBackend()


def backend_for(name: str) -> LockBackend:
    """Resolve a configured backend name; "auto" picks by database vendor."""
    if name == "postgres":
        return postgres_backend
    if name == "thread":
        return thread_backend
    if connection.vendor == "postgresql":
        return postgres_backend
    return thread_backend


@contextmanager
def lock(
    key: str,
    timeout: float | None = 5.0,
    backend: LockBackend | None = None,
) -> Iterator[None]:
    """
    Hold the lock for ``key`` for the duration of the block.

    Raises
    ------
    LockAcquireTimeout
        If the lock cannot be acquired within ``timeout`` seconds.

    Example
    -------
    >>> with lock(WRITE_LOCK_KEY, timeout=2):
    ...     with transaction.atomic():
    ...         sell()
    """
    be = backend or backend_for("auto")

    if not be.acquire(key, timeout):
        raise LockAcquireTimeout(
            f"Failed to acquire lock for key='{key}' within timeout={timeout}s"
        )

    try:
        yield
    finally:
        be.release(key)
