class CatalogError(Exception):
    """Base class for all catalog service errors"""


class ConfigurationError(CatalogError):
    """Raised when the service settings are invalid"""


class InvalidInputError(CatalogError):
    """Malformed id, filter or pagination; rejected before any store or cache access"""


class ProductNotFoundError(CatalogError):
    """The product expected to exist is not in the persistent store"""

    def __init__(self, product_id: str):
        super().__init__(f"Product {product_id} not found")
        self.product_id = product_id


class StoreError(CatalogError):
    """The persistent store failed; fatal to the current operation"""


class CacheError(CatalogError):
    """A cache backend operation failed.

    Only raised by cache backends. The cache service turns it into a miss or a
    no-op, so it never crosses the repository boundary.
    """
