import logging

from ..core.config import Settings
from .key_builders import CacheKeyBuilder
from .policy import TtlPolicy
from .service import CacheService

logger = logging.getLogger(__name__)

STALE_WINDOW_WARNING = (
    "Collection cache invalidation failed; list/count reads may be stale "
    "until their TTL expires"
)


# ------------------------------
# PRODUCT INVALIDATION
# ------------------------------

class PatternInvalidator:
    """
    Purges every cached list and count with a wildcard sweep (KEYS + DEL).
    Simple and complete, but scans the whole keyspace.
    """

    def __init__(self, cache: CacheService, keys: CacheKeyBuilder):
        self.cache = cache
        self.keys = keys

    async def track(self, key: str) -> None:
        return None

    async def invalidate_product(self, product_id: str) -> None:
        if not await self.cache.delete(self.keys.product_key(product_id)):
            self.cache.metrics.invalidation_failures += 1
            logger.warning(f"Could not remove cached product {product_id}; stale until TTL expires")

    async def invalidate_collections(self) -> int:
        removed = 0
        failed = False
        for pattern in (self.keys.list_pattern(), self.keys.count_pattern()):
            deleted = await self.cache.delete_pattern(pattern)
            if deleted is None:
                failed = True
            else:
                removed += deleted
        if failed:
            self.cache.metrics.invalidation_failures += 1
            logger.warning(STALE_WINDOW_WARNING)
        logger.debug(f"Invalidated {removed} collection cache entries")
        return removed


class KeyIndexInvalidator(PatternInvalidator):
    """
    Keeps a secondary index (a set) of every populated list/count key and
    clears exactly those keys on invalidation, avoiding a keyspace scan.
    Falls back to the pattern sweep when the index cannot be read.
    """

    def __init__(self, cache: CacheService, keys: CacheKeyBuilder, index_ttl: int):
        super().__init__(cache, keys)
        self.index_ttl = index_ttl
        self._sweep_pending = False

    async def track(self, key: str) -> None:
        if not await self.cache.track(self.keys.index_key(), key, self.index_ttl):
            self._sweep_pending = True
            logger.warning(f"Could not index cache key {key}; next invalidation falls back to a sweep")

    async def invalidate_collections(self) -> int:
        failures_before = self.cache.metrics.invalidation_failures
        members = await self.cache.pop_index(self.keys.index_key())
        if members is None or self._sweep_pending:
            logger.warning("Key index incomplete, falling back to pattern invalidation")
            removed = await super().invalidate_collections()
            if self.cache.metrics.invalidation_failures == failures_before:
                self._sweep_pending = False
            return removed

        removed = 0
        failed = False
        for key in members:
            if await self.cache.delete(key):
                removed += 1
            else:
                failed = True
        if failed:
            self.cache.metrics.invalidation_failures += 1
            logger.warning(STALE_WINDOW_WARNING)
        logger.debug(f"Invalidated {removed} indexed collection cache entries")
        return removed


def build_invalidator(settings: Settings, cache: CacheService, keys: CacheKeyBuilder, ttl: TtlPolicy):
    if settings.cache_invalidation == "index":
        return KeyIndexInvalidator(cache, keys, index_ttl=ttl.index)
    return PatternInvalidator(cache, keys)
