from collections import Counter
from typing import List, Optional

import pytest

from catalog_service import models  # noqa: F401
from catalog_service.cache.backend import CacheStore, InMemoryCacheStore
from catalog_service.cache.coalescing import RequestCoalescer
from catalog_service.cache.invalidation import KeyIndexInvalidator, PatternInvalidator
from catalog_service.cache.key_builders import CacheKeyBuilder
from catalog_service.cache.policy import TtlPolicy
from catalog_service.cache.service import CacheService
from catalog_service.core.db import create_engine_for, create_schema, create_session_factory
from catalog_service.core.exceptions import CacheError
from catalog_service.repositories.product import CachedProductRepository
from catalog_service.repositories.store import ProductStore
from catalog_service.schemas import ProductCreate

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class FakeClock:
    """Manually advanced clock for driving cache expiry"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FailingCacheStore(CacheStore):
    """Cache store whose every operation fails, like an unreachable Redis"""

    def __init__(self):
        self.calls = 0

    def _fail(self, operation: str):
        self.calls += 1
        raise CacheError(f"{operation} failed: connection refused")

    async def get(self, key: str) -> Optional[str]:
        self._fail("GET")

    async def set(self, key: str, value: str, ttl: int) -> None:
        self._fail("SETEX")

    async def delete(self, key: str) -> int:
        self._fail("DEL")

    async def delete_by_pattern(self, pattern: str) -> int:
        self._fail("DEL")

    async def exists(self, key: str) -> bool:
        self._fail("EXISTS")

    async def increment(self, key: str, by: int = 1) -> int:
        self._fail("INCRBY")

    async def ttl(self, key: str) -> int:
        self._fail("TTL")

    async def keys(self, pattern: str) -> List[str]:
        self._fail("KEYS")

    async def add_to_index(self, index_key: str, member: str, ttl: int) -> None:
        self._fail("SADD")

    async def pop_index(self, index_key: str) -> List[str]:
        self._fail("SMEMBERS")

    async def ping(self) -> bool:
        self._fail("PING")


class CountingProductStore(ProductStore):
    """Product store that records how many read queries reach the database"""

    def __init__(self, session_factory):
        super().__init__(session_factory)
        self.calls = Counter()

    async def find_by_id(self, product_id):
        self.calls["find_by_id"] += 1
        return await super().find_by_id(product_id)

    async def find_many(self, product_filter, skip, limit):
        self.calls["find_many"] += 1
        return await super().find_many(product_filter, skip, limit)

    async def count(self, product_filter):
        self.calls["count"] += 1
        return await super().count(product_filter)

    @property
    def reads(self) -> int:
        return sum(self.calls.values())


def product_data(**overrides) -> ProductCreate:
    data = {
        "name": "Laptop",
        "description": "Thin and light",
        "price": 999.0,
        "stock": 5,
        "category": "Electronics",
    }
    data.update(overrides)
    return ProductCreate(**data)


@pytest.fixture
async def engine():
    """Fresh in-memory database per test"""
    engine = create_engine_for(TEST_DATABASE_URL)
    await create_schema(engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def store(engine):
    return CountingProductStore(create_session_factory(engine))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache_store(clock):
    return InMemoryCacheStore(clock=clock)


@pytest.fixture
def cache(cache_store):
    return CacheService(cache_store, timeout=1.0)


@pytest.fixture
def keys():
    return CacheKeyBuilder("catalog", "v1")


@pytest.fixture
def ttl():
    return TtlPolicy()


@pytest.fixture
def make_repository(store, keys, ttl):
    """Build a repository over the shared store with a chosen cache setup"""

    def _make(cache_store: CacheStore, invalidation: str = "pattern", single_flight: bool = False):
        cache = CacheService(cache_store, timeout=1.0)
        if invalidation == "index":
            invalidator = KeyIndexInvalidator(cache, keys, index_ttl=ttl.index)
        else:
            invalidator = PatternInvalidator(cache, keys)
        coalescer = RequestCoalescer() if single_flight else None
        return CachedProductRepository(store, cache, keys, ttl, invalidator, coalescer)

    return _make


@pytest.fixture
def repository(make_repository, cache_store):
    return make_repository(cache_store)
