"""
Cache-aside product repository.

Reads check the cache first and fall back to the persistent store on a miss,
populating the cache with the TTL of the data class. Writes mutate the store
first; only after the store write succeeds is the single-record entry
overwritten (or removed) and every list/count entry purged.
"""
import logging
import re
from typing import Any, Awaitable, Callable, List, Optional, Union

from pydantic import ValidationError

from ..cache.coalescing import RequestCoalescer
from ..cache.invalidation import PatternInvalidator
from ..cache.key_builders import CacheKeyBuilder
from ..cache.policy import TtlPolicy
from ..cache.service import CacheService
from ..core.exceptions import InvalidInputError, ProductNotFoundError
from ..schemas import Pagination, Product, ProductCreate, ProductFilter, ProductUpdate
from .store import ProductStore

logger = logging.getLogger(__name__)

PRODUCT_ID_PATTERN = re.compile(r"[0-9a-f]{32}")


def is_valid_product_id(product_id: Any) -> bool:
    return isinstance(product_id, str) and PRODUCT_ID_PATTERN.fullmatch(product_id) is not None


class CachedProductRepository:
    def __init__(
        self,
        store: ProductStore,
        cache: CacheService,
        keys: CacheKeyBuilder,
        ttl: TtlPolicy,
        invalidator: PatternInvalidator,
        coalescer: Optional[RequestCoalescer] = None,
    ):
        self.store = store
        self.cache = cache
        self.keys = keys
        self.ttl = ttl
        self.invalidator = invalidator
        self.coalescer = coalescer

    # ------------------------------
    # DECODING CACHED VALUES
    # ------------------------------

    def _decode_product(self, key: str, raw: Any) -> Optional[Product]:
        try:
            return Product.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"[CACHE] Discarding malformed product entry {key}: {e.error_count()} errors")
            return None

    def _decode_products(self, key: str, raw: Any) -> Optional[List[Product]]:
        if not isinstance(raw, list):
            logger.warning(f"[CACHE] Discarding malformed list entry {key}")
            return None
        try:
            return [Product.model_validate(item) for item in raw]
        except ValidationError as e:
            logger.warning(f"[CACHE] Discarding malformed list entry {key}: {e.error_count()} errors")
            return None

    def _decode_count(self, key: str, raw: Any) -> Optional[int]:
        if isinstance(raw, bool) or not isinstance(raw, int) or raw < 0:
            logger.warning(f"[CACHE] Discarding malformed count entry {key}")
            return None
        return raw

    async def _load(self, key: str, loader: Callable[[], Awaitable[Any]]) -> Any:
        if self.coalescer is not None:
            return await self.coalescer.run(key, loader)
        return await loader()

    # ------------------------------
    # READS
    # ------------------------------

    async def find_by_id(self, product_id: str) -> Optional[Product]:
        if not is_valid_product_id(product_id):
            return None

        key = self.keys.product_key(product_id)
        cached = await self.cache.get_json(key)
        if cached is not None:
            product = self._decode_product(key, cached)
            if product is not None:
                return product

        async def load() -> Optional[Product]:
            product = await self.store.find_by_id(product_id)
            # Absence is not cached
            if product is not None:
                await self.cache.set_json(key, product.model_dump(mode="json"), self.ttl.product)
            return product

        return await self._load(key, load)

    async def find_all(
        self,
        product_filter: Optional[ProductFilter] = None,
        pagination: Optional[Pagination] = None,
    ) -> List[Product]:
        pagination = pagination or Pagination()
        key = self.keys.list_key(product_filter, pagination)
        cached = await self.cache.get_json(key)
        if cached is not None:
            products = self._decode_products(key, cached)
            if products is not None:
                return products

        async def load() -> List[Product]:
            products = await self.store.find_many(product_filter, pagination.skip, pagination.limit)
            payload = [product.model_dump(mode="json") for product in products]
            if await self.cache.set_json(key, payload, self.ttl.list):
                await self.invalidator.track(key)
            return products

        return await self._load(key, load)

    async def count(self, product_filter: Optional[ProductFilter] = None) -> int:
        key = self.keys.count_key(product_filter)
        cached = await self.cache.get_json(key)
        if cached is not None:
            total = self._decode_count(key, cached)
            if total is not None:
                return total

        async def load() -> int:
            total = await self.store.count(product_filter)
            if await self.cache.set_json(key, total, self.ttl.count):
                await self.invalidator.track(key)
            return total

        return await self._load(key, load)

    # ------------------------------
    # WRITES
    # ------------------------------

    async def _write_through(self, product: Product) -> None:
        await self.cache.set_json(
            self.keys.product_key(product.id), product.model_dump(mode="json"), self.ttl.product
        )
        await self.invalidator.invalidate_collections()

    async def create(self, data: ProductCreate) -> Product:
        product = await self.store.insert_one(data)
        await self._write_through(product)
        logger.info(f"Created product {product.id}")
        return product

    async def update(self, product_id: str, changes: Union[ProductUpdate, dict]) -> Product:
        if not is_valid_product_id(product_id):
            raise InvalidInputError(f"Invalid product id: {product_id!r}")
        try:
            if not isinstance(changes, ProductUpdate):
                changes = ProductUpdate.model_validate(changes)
        except ValidationError as e:
            raise InvalidInputError(f"Invalid product update: {e}") from e

        existing = await self.store.find_by_id(product_id)
        if existing is None:
            raise ProductNotFoundError(product_id)

        fields = changes.changes()
        return await self._apply(existing, fields)

    async def toggle_wishlist(self, product_id: str, is_wishlist_status: bool) -> Product:
        if not is_valid_product_id(product_id):
            raise InvalidInputError(f"Invalid product id: {product_id!r}")

        existing = await self.store.find_by_id(product_id)
        if existing is None:
            raise ProductNotFoundError(product_id)

        if existing.is_wishlist_status == is_wishlist_status:
            return existing

        if is_wishlist_status:
            wishlist_count = existing.wishlist_count + 1
        else:
            wishlist_count = max(0, existing.wishlist_count - 1)
        fields = {"is_wishlist_status": is_wishlist_status, "wishlist_count": wishlist_count}
        return await self._apply(existing, fields)

    async def _apply(self, existing: Product, fields: dict) -> Product:
        try:
            Product.model_validate({**existing.model_dump(), **fields})
        except ValidationError as e:
            raise InvalidInputError(f"Invalid product update: {e}") from e

        updated = await self.store.update_by_id(existing.id, fields)
        if updated is None:
            # Deleted between the load and the write
            raise ProductNotFoundError(existing.id)

        await self._write_through(updated)
        logger.info(f"Updated product {updated.id} fields={sorted(fields)}")
        return updated

    async def delete(self, product_id: str) -> bool:
        if not is_valid_product_id(product_id):
            return False

        if not await self.store.delete_by_id(product_id):
            return False

        await self.invalidator.invalidate_product(product_id)
        await self.invalidator.invalidate_collections()
        logger.info(f"Deleted product {product_id}")
        return True
