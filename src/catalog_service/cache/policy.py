from dataclasses import dataclass
from enum import Enum

from ..core.config import Settings
from ..core.exceptions import ConfigurationError


class CacheKind(str, Enum):
    PRODUCT = "product"
    LIST = "list"
    COUNT = "count"
    RESPONSE = "response"


@dataclass(frozen=True)
class TtlPolicy:
    """
    Time-to-live per data class, in seconds.

    Single records change rarely relative to reads and live for hours. Lists
    and counts change on any write to the collection and live for minutes,
    always shorter than single records, so expiry is staggered by class.
    """
    product: int = 86400
    list: int = 1200
    count: int = 300
    response: int = 60

    def __post_init__(self):
        for kind in CacheKind:
            if self.for_kind(kind) <= 0:
                raise ConfigurationError(f"{kind.value} TTL must be positive")
        if self.list >= self.product or self.count >= self.product:
            raise ConfigurationError("list and count TTLs must be shorter than the product TTL")

    @classmethod
    def from_settings(cls, settings: Settings) -> "TtlPolicy":
        return cls(
            product=settings.cache_ttl_product,
            list=settings.cache_ttl_list,
            count=settings.cache_ttl_count,
            response=settings.cache_ttl_response,
        )

    def for_kind(self, kind: CacheKind) -> int:
        return getattr(self, kind.value)

    @property
    def index(self) -> int:
        """The key index must outlive every collection key it tracks"""
        return max(self.list, self.count, self.response)
