"""
Fault-tolerant JSON cache layer.

Wraps a CacheStore so that a degraded cache can only make a request slower,
never wrong: every call is bounded by a short timeout, and a failure, timeout
or undecodable value is logged and reported as a miss (reads) or a no-op
(writes).
"""
import asyncio
import json
import logging
from dataclasses import asdict, dataclass
from typing import Any, Optional

from ..core.exceptions import CacheError
from .backend import TTL_EXPIRED, CacheStore

logger = logging.getLogger(__name__)

_MISS = object()


@dataclass
class CacheMetrics:
    hits: int = 0
    misses: int = 0
    errors: int = 0
    invalidation_failures: int = 0

    @property
    def total_reads(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        if self.total_reads == 0:
            return 0.0
        return round(self.hits / self.total_reads * 100, 2)

    def snapshot(self) -> dict:
        data = asdict(self)
        data["hit_rate"] = self.hit_rate
        return data


class CacheService:
    def __init__(self, store: CacheStore, timeout: float = 0.05):
        self.store = store
        self.timeout = timeout
        self.metrics = CacheMetrics()

    async def _call(self, operation: str, key: str, awaitable, default: Any) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError:
            self.metrics.errors += 1
            logger.warning(f"[CACHE] {operation} timed out after {self.timeout}s for key {key}")
        except CacheError as e:
            self.metrics.errors += 1
            logger.warning(f"[CACHE] {operation} failed for key {key}: {e}")
        return default

    async def get_json(self, key: str) -> Optional[Any]:
        """Decoded value, or None on miss, failure or corrupt entry"""
        raw = await self._call("GET", key, self.store.get(key), _MISS)
        if raw is _MISS or raw is None:
            self.metrics.misses += 1
            if raw is None:
                logger.debug(f"[CACHE] MISS {key}")
            return None
        try:
            value = json.loads(raw)
        except (TypeError, ValueError) as e:
            self.metrics.errors += 1
            self.metrics.misses += 1
            logger.warning(f"[CACHE] Could not decode value for key {key}: {e}")
            return None
        self.metrics.hits += 1
        logger.debug(f"[CACHE] HIT {key}")
        return value

    async def set_json(self, key: str, value: Any, ttl: int) -> bool:
        try:
            encoded = json.dumps(value, separators=(",", ":"))
        except (TypeError, ValueError) as e:
            self.metrics.errors += 1
            logger.warning(f"[CACHE] Could not encode value for key {key}: {e}")
            return False
        done = await self._call("SET", key, self.store.set(key, encoded, ttl), False)
        if done is False:
            return False
        logger.debug(f"[CACHE] SET {key} ttl={ttl}")
        return True

    async def delete(self, key: str) -> bool:
        deleted = await self._call("DEL", key, self.store.delete(key), None)
        if deleted is None:
            return False
        logger.debug(f"[CACHE] DEL {key}")
        return True

    async def delete_pattern(self, pattern: str) -> Optional[int]:
        """Number of keys removed, or None when the sweep failed"""
        deleted = await self._call("DELETE PATTERN", pattern, self.store.delete_by_pattern(pattern), None)
        if deleted is not None:
            logger.debug(f"[CACHE] Purged {deleted} keys matching {pattern}")
        return deleted

    async def track(self, index_key: str, member: str, ttl: int) -> bool:
        done = await self._call("SADD", index_key, self.store.add_to_index(index_key, member, ttl), False)
        return done is not False

    async def pop_index(self, index_key: str) -> Optional[list]:
        return await self._call("POP INDEX", index_key, self.store.pop_index(index_key), None)

    async def ttl(self, key: str) -> int:
        return await self._call("TTL", key, self.store.ttl(key), TTL_EXPIRED)

    async def ping(self) -> bool:
        return bool(await self._call("PING", "-", self.store.ping(), False))
