from .decorators import exclusive
from .exceptions import (
    EngineShuttingDown,
    InsufficientStock,
    InvalidInput,
    InventoryError,
    InventoryNotEmpty,
    InventoryNotFound,
    InventoryProtected,
    LockAcquireTimeout,
    OutOfStock,
    StockError,
    StockkeeperError,
    StorageError,
)
from .locks import lock

__all__ = [
    "lock",
    "exclusive",
    "StockkeeperError",
    "InvalidInput",
    "StockError",
    "OutOfStock",
    "InsufficientStock",
    "StorageError",
    "LockAcquireTimeout",
    "EngineShuttingDown",
    "InventoryError",
    "InventoryNotFound",
    "InventoryProtected",
    "InventoryNotEmpty",
]
