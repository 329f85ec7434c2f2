import hashlib
import json
import logging
from typing import Optional

from ..schemas import Pagination, ProductFilter

logger = logging.getLogger(__name__)


# ---------------------------------------------------
# CANONICAL SERIALIZATION
# ---------------------------------------------------

def canonical_filter(product_filter: Optional[ProductFilter]) -> dict:
    """
    Every filter field is present in the result; an unset field is None.
    An omitted field and an explicit None therefore serialize identically.
    """
    product_filter = product_filter or ProductFilter()
    return product_filter.model_dump(mode="json")


def canonical_pagination(pagination: Optional[Pagination]) -> dict:
    pagination = pagination or Pagination()
    return {"page": pagination.page, "limit": pagination.limit}


def digest(payload: dict) -> str:
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


# ---------------------------------------------------
# PRODUCT KEY BUILDERS
# ---------------------------------------------------

class CacheKeyBuilder:
    """
    Namespaced, versioned key scheme:

        <prefix>:<version>:product:<id>
        <prefix>:<version>:products:list:<digest of filter + pagination>
        <prefix>:<version>:products:count:<digest of filter>

    Bumping the version orphans every existing key at once.
    """

    def __init__(self, prefix: str = "catalog", version: str = "v1"):
        self.namespace = f"{prefix}:{version}"

    def product_key(self, product_id: str) -> str:
        key = f"{self.namespace}:product:{product_id}"
        logger.debug(f"[CACHE] PRODUCT DETAIL key built: {key}")
        return key

    def list_key(self, product_filter: Optional[ProductFilter], pagination: Optional[Pagination]) -> str:
        payload = {
            "filter": canonical_filter(product_filter),
            "pagination": canonical_pagination(pagination),
        }
        key = f"{self.namespace}:products:list:{digest(payload)}"
        logger.debug(f"[CACHE] PRODUCT LIST key built: {key} (payload={payload})")
        return key

    def count_key(self, product_filter: Optional[ProductFilter]) -> str:
        payload = {"filter": canonical_filter(product_filter)}
        key = f"{self.namespace}:products:count:{digest(payload)}"
        logger.debug(f"[CACHE] PRODUCT COUNT key built: {key} (payload={payload})")
        return key

    def response_key(self, method: str, path: str, query: str) -> str:
        # Lives under the list namespace so collection purges cover it
        payload = {"method": method.upper(), "path": path, "query": query}
        return f"{self.namespace}:products:list:http:{digest(payload)}"

    def product_pattern(self) -> str:
        return f"{self.namespace}:product:*"

    def list_pattern(self) -> str:
        return f"{self.namespace}:products:list:*"

    def count_pattern(self) -> str:
        return f"{self.namespace}:products:count:*"

    def index_key(self) -> str:
        return f"{self.namespace}:products:index"
