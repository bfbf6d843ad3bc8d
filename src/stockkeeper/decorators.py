from __future__ import annotations

from dataclasses import dataclass
from functools import wraps
from inspect import signature
from typing import Any, Callable, Literal, Mapping, Protocol

from .exceptions import LockAcquireTimeout
from .locks import LockBackend, thread_backend

Mode = Literal["raise", "skip", "callable"]


class ConflictHandler(Protocol):
    """
    Called when the lock is already held.
    """
    def __call__(self, *args: Any, **kwargs: Any) -> Any: ...


@dataclass(frozen=True)
class ConflictPolicy:
    """
    What to do when the lock is already held.

    - "raise": raise LockAcquireTimeout
    - "skip": do not run, return None
    - "callable": call the handler and return its result
    """
    mode: Mode = "skip"
    handler: ConflictHandler | None = None


def _resolve_key(
    key: str | Callable[..., str],
    fn: Callable[..., Any],
    args: tuple[Any, ...],
    kwargs: dict[str, Any],
) -> str:
    """
    Resolve a lock key from a format string ("tick:{self.name}") or a
    callable receiving the same arguments as the wrapped function.
    """
    if callable(key):
        return key(*args, **kwargs)

    bound = signature(fn).bind_partial(*args, **kwargs)
    bound.apply_defaults()
    values: Mapping[str, Any] = bound.arguments

    try:
        return key.format(**values)
    except (KeyError, AttributeError) as e:
        raise KeyError(
            f"exclusive: key template {key!r} cannot be resolved from the "
            f"function arguments. Available: {sorted(values.keys())}"
        ) from e


def exclusive(
    *,
    key: str | Callable[..., str],
    timeout: float | None = 0,
    on_conflict: Mode | ConflictHandler = "skip",
    backend: LockBackend | None = None,
):
    """
    Run the decorated function only if nobody else is running it for the
    same key.

    With the defaults (timeout 0, skip) a call that arrives while another is
    in progress returns None immediately instead of queueing. This is how
    scheduler ticks avoid overlapping.

    Example
    -------
    @exclusive(key="tick:{self.name}")
    def run_once(self):
        ...
    """
    policy = (
        ConflictPolicy(mode=on_conflict) if isinstance(on_conflict, str)
        else ConflictPolicy(mode="callable", handler=on_conflict)
    )
    be = backend or thread_backend

    def decorator(fn: Callable[..., Any]):
        @wraps(fn)
        def wrapper(*args: Any, **kwargs: Any):
            resolved_key = _resolve_key(key, fn, args, kwargs)

            # Only failing to take this key is a conflict; a
            # LockAcquireTimeout raised inside fn propagates as is.
            if not be.acquire(resolved_key, timeout):
                if policy.mode == "skip":
                    return None
                if policy.mode == "callable" and policy.handler is not None:
                    return policy.handler(*args, **kwargs)
                raise LockAcquireTimeout(
                    f"'{resolved_key}' is already running"
                )

            try:
                return fn(*args, **kwargs)
            finally:
                be.release(resolved_key)

        return wrapper

    return decorator
