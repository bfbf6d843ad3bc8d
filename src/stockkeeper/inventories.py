"""
Operator-side administration of buckets and products.

Everything here that writes products goes through the same single-writer
ledger transaction as allocations.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

from django.db import IntegrityError

from .cache import AvailableCountCache
from .conf import DEFAULT_BUCKET_ID, EngineConfig
from .exceptions import (
    InvalidInput,
    InventoryNotEmpty,
    InventoryNotFound,
    InventoryProtected,
)
from .models import Inventory
from .notifications import ActivityMonitor
from .store import BucketSelector, LedgerStore
from .validators import validate_contents

logger = logging.getLogger(__name__)


class InventoryService:
    def __init__(
        self,
        store: LedgerStore,
        config: EngineConfig,
        cache: AvailableCountCache | None = None,
        activity: ActivityMonitor | None = None,
    ) -> None:
        self.store = store
        self.config = config
        self.cache = cache
        self.activity = activity

    def list_inventories(self) -> list[Inventory]:
        return list(Inventory.objects.all())

    def get(self, bucket: BucketSelector) -> Inventory:
        if isinstance(bucket, Inventory):
            return bucket
        inventory = Inventory.objects.filter(pk=bucket).first()
        if inventory is None:
            raise InventoryNotFound(f"Inventory {bucket} does not exist")
        return inventory

    def create_inventory(self, name: str, description: str = "") -> Inventory:
        name = (name or "").strip()
        if not name:
            raise InvalidInput("Inventory name is required")
        if Inventory.objects.filter(name=name).exists():
            raise InvalidInput(f"Inventory {name!r} already exists")
        try:
            inventory = Inventory.objects.create(name=name, description=description or "")
        except IntegrityError as exc:
            raise InvalidInput(f"Inventory {name!r} already exists") from exc
        logger.info("Created inventory %s", inventory)
        return inventory

    def update_inventory(
        self,
        bucket: BucketSelector,
        name: str | None = None,
        description: str | None = None,
        is_active: bool | None = None,
    ) -> Inventory:
        inventory = self.get(bucket)
        if name is not None:
            name = name.strip()
            if not name:
                raise InvalidInput("Inventory name cannot be empty")
            if Inventory.objects.filter(name=name).exclude(pk=inventory.pk).exists():
                raise InvalidInput(f"Inventory {name!r} already exists")
            inventory.name = name
        if description is not None:
            inventory.description = description
        if is_active is not None:
            inventory.is_active = is_active
        inventory.save()
        return inventory

    def delete_inventory(self, bucket: BucketSelector) -> None:
        inventory = self.get(bucket)
        if inventory.pk == DEFAULT_BUCKET_ID:
            raise InventoryProtected("Cannot delete the default inventory")

        # Under the write lock, so no upload or migration can land in the
        # bucket between the count and the delete.
        with self.store.write():
            count = self.store.product_count(inventory.pk)
            if count:
                raise InventoryNotEmpty(count)
            inventory.delete()
        logger.info("Deleted inventory %s", inventory.name)

    def add_products(self, contents: Sequence[str], bucket: BucketSelector = DEFAULT_BUCKET_ID) -> int:
        """Insert pre-validated product contents; returns how many were added."""
        cleaned = validate_contents(contents, self.config.max_upload)
        bucket_id = self.store.bucket_id(bucket)
        if bucket_id is None:
            raise InvalidInput("An inventory is required to add products")

        with self.store.write() as tx:
            inserted = tx.insert(cleaned, bucket_id)

        logger.info("Added %d products to inventory %s", inserted, bucket_id)
        if self.cache is not None:
            self.cache.invalidate(bucket_id)
        if self.activity is not None:
            self.activity.notify_added(inserted)
        return inserted

    def delete_products(self, ids: Sequence[int]) -> int:
        """Manual hard delete, sold or not."""
        if isinstance(ids, (str, bytes)) or not ids:
            raise InvalidInput("Product IDs are required")
        if len(ids) > self.config.max_upload:
            raise InvalidInput(f"Too many IDs. Maximum {self.config.max_upload} allowed")
        try:
            product_ids = [int(i) for i in ids]
        except (TypeError, ValueError) as exc:
            raise InvalidInput("Product IDs must be integers") from exc

        with self.store.write() as tx:
            deleted = tx.delete(product_ids)

        if deleted and self.cache is not None:
            # Deleted rows may have come from any bucket.
            self.cache.invalidate(*(inv.pk for inv in Inventory.objects.all()))
        return deleted

    def stats(self, bucket: BucketSelector = None) -> dict[str, Any]:
        return self.store.stats(bucket)
