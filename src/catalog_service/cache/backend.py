"""
Cache store backends.

A cache store is a plain key-value client with no product knowledge. Every
operation may fail; backends raise CacheError and leave the decision of what
a failure means to the caller (see cache.service).
"""
import fnmatch
import logging
import math
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError

from ..core.config import Settings
from ..core.exceptions import CacheError

logger = logging.getLogger(__name__)

# Values returned by ttl(), matching the Redis TTL command
TTL_NO_EXPIRY = -1
TTL_EXPIRED = -2

DELETE_CHUNK_SIZE = 500


class CacheStore(ABC):
    """Key-value contract consumed by the cache-aside layer."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl: int) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> int:
        ...

    @abstractmethod
    async def delete_by_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern. Not atomic across keys."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        ...

    @abstractmethod
    async def increment(self, key: str, by: int = 1) -> int:
        ...

    @abstractmethod
    async def ttl(self, key: str) -> int:
        """Seconds left, TTL_NO_EXPIRY, or TTL_EXPIRED for an absent key."""

    @abstractmethod
    async def keys(self, pattern: str) -> List[str]:
        ...

    @abstractmethod
    async def add_to_index(self, index_key: str, member: str, ttl: int) -> None:
        """Add a member to a set-valued index key and refresh its expiry."""

    @abstractmethod
    async def pop_index(self, index_key: str) -> List[str]:
        """Atomically read and remove every member of an index key."""

    @abstractmethod
    async def ping(self) -> bool:
        ...

    async def close(self) -> None:
        return None


class RedisCacheStore(CacheStore):
    """Cache store over a pooled redis.asyncio client."""

    def __init__(self, client: redis.Redis):
        self._redis = client

    @classmethod
    def from_url(cls, url: str, timeout: float) -> "RedisCacheStore":
        client = redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
        return cls(client)

    async def _run(self, operation: str, key: str, awaitable):
        try:
            return await awaitable
        except (RedisError, OSError) as e:
            raise CacheError(f"{operation} {key} failed: {e}") from e

    async def get(self, key: str) -> Optional[str]:
        return await self._run("GET", key, self._redis.get(key))

    async def set(self, key: str, value: str, ttl: int) -> None:
        await self._run("SETEX", key, self._redis.setex(key, ttl, value))

    async def delete(self, key: str) -> int:
        return await self._run("DEL", key, self._redis.delete(key))

    async def delete_by_pattern(self, pattern: str) -> int:
        matched = await self.keys(pattern)
        deleted = 0
        for start in range(0, len(matched), DELETE_CHUNK_SIZE):
            chunk = matched[start:start + DELETE_CHUNK_SIZE]
            deleted += await self._run("DEL", pattern, self._redis.delete(*chunk))
        return deleted

    async def exists(self, key: str) -> bool:
        return await self._run("EXISTS", key, self._redis.exists(key)) > 0

    async def increment(self, key: str, by: int = 1) -> int:
        return await self._run("INCRBY", key, self._redis.incrby(key, by))

    async def ttl(self, key: str) -> int:
        return await self._run("TTL", key, self._redis.ttl(key))

    async def keys(self, pattern: str) -> List[str]:
        return await self._run("KEYS", pattern, self._redis.keys(pattern))

    async def add_to_index(self, index_key: str, member: str, ttl: int) -> None:
        pipe = self._redis.pipeline(transaction=True)
        pipe.sadd(index_key, member)
        pipe.expire(index_key, ttl)
        await self._run("SADD", index_key, pipe.execute())

    async def pop_index(self, index_key: str) -> List[str]:
        pipe = self._redis.pipeline(transaction=True)
        pipe.smembers(index_key)
        pipe.delete(index_key)
        members, _ = await self._run("SMEMBERS", index_key, pipe.execute())
        return sorted(members)

    async def ping(self) -> bool:
        return bool(await self._run("PING", "-", self._redis.ping()))

    async def close(self) -> None:
        await self._redis.aclose()
        logger.info("Redis cache connection closed")


class InMemoryCacheStore(CacheStore):
    """
    Process-local cache store with absolute expiry and lazy eviction.

    Used for development and tests; the clock is injectable so expiry can be
    driven without sleeping.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: Dict[str, Tuple[object, Optional[float]]] = {}

    def _live(self, key: str) -> Optional[Tuple[object, Optional[float]]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return entry

    def _expiry(self, ttl: int) -> float:
        return self._clock() + ttl

    async def get(self, key: str) -> Optional[str]:
        entry = self._live(key)
        if entry is None:
            return None
        value, _ = entry
        if not isinstance(value, str):
            raise CacheError(f"GET {key} failed: WRONGTYPE")
        return value

    async def set(self, key: str, value: str, ttl: int) -> None:
        self._data[key] = (value, self._expiry(ttl))

    async def delete(self, key: str) -> int:
        if self._live(key) is None:
            return 0
        del self._data[key]
        return 1

    async def delete_by_pattern(self, pattern: str) -> int:
        matched = await self.keys(pattern)
        for key in matched:
            del self._data[key]
        return len(matched)

    async def exists(self, key: str) -> bool:
        return self._live(key) is not None

    async def increment(self, key: str, by: int = 1) -> int:
        entry = self._live(key)
        if entry is None:
            current, expires_at = 0, None
        else:
            value, expires_at = entry
            try:
                current = int(value)
            except (TypeError, ValueError):
                raise CacheError(f"INCRBY {key} failed: value is not an integer")
        current += by
        self._data[key] = (str(current), expires_at)
        return current

    async def ttl(self, key: str) -> int:
        entry = self._live(key)
        if entry is None:
            return TTL_EXPIRED
        _, expires_at = entry
        if expires_at is None:
            return TTL_NO_EXPIRY
        return max(0, math.ceil(expires_at - self._clock()))

    async def keys(self, pattern: str) -> List[str]:
        return [key for key in list(self._data) if fnmatch.fnmatchcase(key, pattern) and self._live(key)]

    async def add_to_index(self, index_key: str, member: str, ttl: int) -> None:
        entry = self._live(index_key)
        members = set(entry[0]) if entry is not None else set()
        members.add(member)
        self._data[index_key] = (members, self._expiry(ttl))

    async def pop_index(self, index_key: str) -> List[str]:
        entry = self._live(index_key)
        if entry is None:
            return []
        del self._data[index_key]
        return sorted(entry[0])

    async def ping(self) -> bool:
        return True


def build_cache_store(settings: Settings) -> CacheStore:
    """
    Build the cache store selected by CACHE_BACKEND.
    """
    if settings.cache_backend == "memory":
        logger.info("Using in-memory cache backend")
        return InMemoryCacheStore()

    logger.info(f"Using Redis cache backend at {settings.redis_url}")
    return RedisCacheStore.from_url(settings.redis_url, timeout=settings.cache_timeout)
