"""
Exception hierarchy for stockkeeper.

Errors fall into four families that callers handle differently:

- ``InvalidInput``: malformed request, rejected before any transaction.
  Never retried automatically.
- ``StockError`` (``OutOfStock``, ``InsufficientStock``): expected business
  outcomes. Surface them to the caller verbatim.
- ``StorageError``: the write transaction did not commit. Nothing was
  changed, so the operation is safe to retry.
- ``InventoryError``: an administrative operation on a bucket was refused.

Catch ``StockkeeperError`` to handle everything raised by the package.
"""

from __future__ import annotations

from typing import Any


class StockkeeperError(Exception):
    """
    Base exception for all stockkeeper errors.

    Example
    -------
    >>> try:
    ...     engine.allocate(3, "ORD-1")
    ... except StockkeeperError as exc:
    ...     respond(exc.to_dict())
    """

    #: Machine-readable error code, stable across versions.
    code: str = "stockkeeper_error"

    def __init__(self, message: str | None = None) -> None:
        if message is None:
            message = "An unspecified stockkeeper error occurred."
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message}


class InvalidInput(StockkeeperError):
    """
    Raised for a bad quantity, order id or bucket selector.

    The request never reached the ledger.
    """

    code: str = "invalid_input"


class StockError(StockkeeperError):
    """Base class for expected stock shortfalls."""

    code: str = "stock_error"


class OutOfStock(StockError):
    """
    Raised when the selected bucket has no unsold products at all.

    The caller may retry later, once stock has been uploaded.
    """

    code: str = "out_of_stock"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or "No products available")


class InsufficientStock(StockError):
    """
    Raised when fewer products are available than were requested.

    ``available`` holds the count seen inside the allocation transaction,
    so the caller can retry with a smaller quantity. Nothing was sold.
    """

    code: str = "insufficient_stock"

    def __init__(self, available: int, requested: int | None = None) -> None:
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock. Only {available} products available"
        )

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["available"] = self.available
        return data


class StorageError(StockkeeperError):
    """
    Raised when a ledger transaction fails to commit.

    Every storage failure rolls back fully before this is raised.

    Common causes
    -------------
    - The write lock could not be acquired in time
    - Database connectivity loss
    - A constraint violation detected at commit
    """

    code: str = "storage_error"


class LockAcquireTimeout(StorageError):
    """
    Raised when the single-writer lock cannot be acquired within the timeout.

    This typically indicates that another write transaction (an allocation
    or a lifecycle batch) is still holding the lock.
    """

    code: str = "lock_acquire_timeout"


class EngineShuttingDown(StorageError):
    """Raised for allocations attempted after shutdown has begun."""

    code: str = "engine_shutting_down"


class InventoryError(StockkeeperError):
    """Base class for refused bucket administration."""

    code: str = "inventory_error"


class InventoryNotFound(InventoryError):
    code: str = "inventory_not_found"


class InventoryProtected(InventoryError):
    """Raised when trying to delete the distinguished bucket ``id = 1``."""

    code: str = "inventory_protected"


class InventoryNotEmpty(InventoryError):
    """Raised when deleting a bucket that still owns products."""

    code: str = "inventory_not_empty"

    def __init__(self, product_count: int) -> None:
        self.product_count = product_count
        super().__init__(
            f"Cannot delete inventory with {product_count} products"
        )
