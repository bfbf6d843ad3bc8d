from __future__ import annotations

from uuid import uuid4

from django.core.cache import caches

from .conf import EngineConfig

_KEY_PREFIX = "stockkeeper:available"


class AvailableCountCache:
    """
    Cached available-product counts, one entry per bucket plus a global one.

    Every entry is stamped with its key's generation. Writers call
    ``invalidate()`` after commit with every bucket they touched, which
    starts a new generation for those keys and the global one. Readers take
    the generation before counting and store the count under it, so a count
    read before a concurrent write is never served after that write.
    """

    def __init__(self, config: EngineConfig, cache=None) -> None:
        self._cache = cache if cache is not None else caches[config.cache_alias]
        self._timeout = config.count_cache_timeout

    @staticmethod
    def _key(bucket_id: int | None) -> str:
        return f"{_KEY_PREFIX}:{'all' if bucket_id is None else bucket_id}"

    @classmethod
    def _generation_key(cls, bucket_id: int | None) -> str:
        return f"{cls._key(bucket_id)}:generation"

    def generation(self, bucket_id: int | None = None) -> str:
        key = self._generation_key(bucket_id)
        # Generations never expire; a lost one just invalidates its entry.
        self._cache.add(key, uuid4().hex, None)
        return self._cache.get(key)

    def get(self, bucket_id: int | None = None) -> int | None:
        entry = self._cache.get(self._key(bucket_id))
        if entry is None:
            return None
        stamp, count = entry
        if stamp != self._cache.get(self._generation_key(bucket_id)):
            return None
        return count

    def set(self, bucket_id: int | None, count: int, generation: str) -> None:
        """Store ``count`` as read under ``generation``."""
        self._cache.set(self._key(bucket_id), (generation, count), self._timeout)

    def invalidate(self, *bucket_ids: int | None) -> None:
        buckets = {None, *bucket_ids}
        self._cache.set_many({self._generation_key(b): uuid4().hex for b in buckets}, None)
        self._cache.delete_many([self._key(b) for b in buckets])
