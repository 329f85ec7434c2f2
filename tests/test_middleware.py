import pytest
from starlette.requests import Request

from catalog_service.cache.invalidation import KeyIndexInvalidator, PatternInvalidator
from catalog_service.cache.middleware import ResponseCache


def make_request(method="GET", path="/api/v1/products", query=b""):
    return Request({
        "type": "http",
        "method": method,
        "path": path,
        "query_string": query,
        "headers": [],
    })


@pytest.fixture
def response_cache(cache, keys, ttl):
    return ResponseCache(cache, keys, ttl, PatternInvalidator(cache, keys))


class TestResponseCache:
    """Tests for the list endpoint response interceptor"""

    @pytest.mark.asyncio
    async def test_miss_then_hit(self, response_cache):
        request = make_request(query=b"page=1&limit=10")
        body = {"items": [], "total": 0, "page": 1, "limit": 10, "total_pages": 0}

        assert await response_cache.before(request) is None
        await response_cache.after(request, body)

        assert await response_cache.before(request) == body

    @pytest.mark.asyncio
    async def test_query_order_does_not_matter(self, response_cache):
        first = make_request(query=b"page=1&category=Kitchen")
        second = make_request(query=b"category=Kitchen&page=1")

        assert response_cache.key_for(first) == response_cache.key_for(second)

    @pytest.mark.asyncio
    async def test_distinct_queries_distinct_keys(self, response_cache):
        assert response_cache.key_for(make_request(query=b"page=1")) != response_cache.key_for(
            make_request(query=b"page=2")
        )

    @pytest.mark.asyncio
    async def test_only_get_is_cached(self, response_cache, cache_store):
        request = make_request(method="POST")

        await response_cache.after(request, {"x": 1})

        assert await response_cache.before(request) is None
        assert await cache_store.keys("*") == []

    @pytest.mark.asyncio
    async def test_response_ttl(self, response_cache, cache_store, ttl):
        request = make_request()

        await response_cache.after(request, {"x": 1})

        assert await cache_store.ttl(response_cache.key_for(request)) == ttl.response

    @pytest.mark.asyncio
    async def test_collection_purge_clears_responses(self, response_cache, cache, keys):
        """Test a product write drops cached responses"""
        request = make_request()
        await response_cache.after(request, {"x": 1})

        await PatternInvalidator(cache, keys).invalidate_collections()

        assert await response_cache.before(request) is None

    @pytest.mark.asyncio
    async def test_index_mode_tracks_responses(self, cache, keys, ttl):
        invalidator = KeyIndexInvalidator(cache, keys, index_ttl=ttl.index)
        response_cache = ResponseCache(cache, keys, ttl, invalidator)
        request = make_request()
        await response_cache.after(request, {"x": 1})

        assert await invalidator.invalidate_collections() == 1
        assert await response_cache.before(request) is None
