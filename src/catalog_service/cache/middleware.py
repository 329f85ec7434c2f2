import logging
from typing import Any, Optional
from urllib.parse import urlencode

from fastapi import Request

from .invalidation import PatternInvalidator
from .key_builders import CacheKeyBuilder
from .policy import TtlPolicy
from .service import CacheService

logger = logging.getLogger(__name__)


class ResponseCache:
    """
    Whole-response cache for the product list endpoint.

    Entries live under the list namespace, so every product write purges
    them along with the repository's list entries. Only GET is cached.
    """

    def __init__(
        self,
        cache: CacheService,
        keys: CacheKeyBuilder,
        ttl: TtlPolicy,
        invalidator: Optional[PatternInvalidator] = None,
    ):
        self.cache = cache
        self.keys = keys
        self.ttl = ttl
        self.invalidator = invalidator

    def key_for(self, request: Request) -> str:
        query = urlencode(sorted(request.query_params.multi_items()))
        return self.keys.response_key(request.method, request.url.path, query)

    async def before(self, request: Request) -> Optional[Any]:
        if request.method != "GET":
            return None
        key = self.key_for(request)
        body = await self.cache.get_json(key)
        if body is not None:
            logger.debug(f"[CACHE] Serving cached response for {request.url.path}")
        return body

    async def after(self, request: Request, body: Any) -> None:
        if request.method != "GET":
            return
        key = self.key_for(request)
        if await self.cache.set_json(key, body, self.ttl.response) and self.invalidator is not None:
            await self.invalidator.track(key)
