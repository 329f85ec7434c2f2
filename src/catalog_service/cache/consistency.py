"""
Background consistency sampling.

Periodically picks a random sample of cached single-record entries and
compares each one with the persistent store. A cached record that no longer
exists in the store, or that differs from it, counts as drift and is evicted
when repair is enabled. Not needed for correctness; it measures how often the
documented staleness windows actually occur.
"""
import json
import logging
import random
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import ValidationError

from ..core.exceptions import CacheError
from ..repositories.store import ProductStore
from ..schemas import Product
from .backend import CacheStore
from .key_builders import CacheKeyBuilder

logger = logging.getLogger(__name__)


@dataclass
class ConsistencyReport:
    total_keys: int = 0
    checked: int = 0
    drifted: int = 0
    evicted: int = 0
    errors: int = 0
    drifted_keys: List[str] = field(default_factory=list)
    checked_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def drift_ratio(self) -> float:
        if self.checked == 0:
            return 0.0
        return round(self.drifted / self.checked, 4)

    def as_dict(self) -> dict:
        data = asdict(self)
        data["drift_ratio"] = self.drift_ratio
        return data


class CacheConsistencyMonitor:
    def __init__(
        self,
        store: ProductStore,
        cache_store: CacheStore,
        keys: CacheKeyBuilder,
        sample_size: int = 10,
        repair: bool = True,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.cache_store = cache_store
        self.keys = keys
        self.sample_size = sample_size
        self.repair = repair
        self._rng = rng or random.Random()
        self.total_checked = 0
        self.total_drifted = 0
        self.last_report: Optional[ConsistencyReport] = None

    @property
    def consistency_score(self) -> float:
        """Percentage of sampled entries that matched the store, across all runs"""
        if self.total_checked == 0:
            return 100.0
        return round(100.0 * (1 - self.total_drifted / self.total_checked), 2)

    def _product_id(self, key: str) -> str:
        return key.rsplit(":", 1)[-1]

    async def _is_drifted(self, key: str) -> bool:
        raw = await self.cache_store.get(key)
        if raw is None:
            # Expired or evicted since listing; nothing to compare
            return False
        product = await self.store.find_by_id(self._product_id(key))
        if product is None:
            return True
        try:
            cached = Product.model_validate(json.loads(raw))
        except (ValueError, ValidationError):
            return True
        return cached.model_dump(mode="json") != product.model_dump(mode="json")

    async def check_sample(self) -> ConsistencyReport:
        report = ConsistencyReport()
        logger.info("Cache consistency check started")

        try:
            cached_keys = await self.cache_store.keys(self.keys.product_pattern())
        except CacheError as e:
            report.errors += 1
            logger.warning(f"Consistency check could not list cache keys: {e}")
            self.last_report = report
            return report

        report.total_keys = len(cached_keys)
        if not cached_keys:
            logger.info("No cached products to check")
            self.last_report = report
            return report

        sample = self._rng.sample(cached_keys, min(self.sample_size, len(cached_keys)))
        for key in sample:
            try:
                drifted = await self._is_drifted(key)
            except CacheError as e:
                report.errors += 1
                logger.warning(f"Error checking key {key} during consistency check: {e}")
                continue

            report.checked += 1
            if not drifted:
                continue

            report.drifted += 1
            report.drifted_keys.append(key)
            logger.warning(f"Stale cache entry detected: {key}")
            if self.repair:
                try:
                    report.evicted += await self.cache_store.delete(key)
                except CacheError as e:
                    report.errors += 1
                    logger.warning(f"Could not evict stale entry {key}: {e}")

        self.total_checked += report.checked
        self.total_drifted += report.drifted
        self.last_report = report

        logger.info(
            f"Cache consistency check completed - "
            f"Total keys: {report.total_keys}, "
            f"Checked: {report.checked}, "
            f"Drifted: {report.drifted}, "
            f"Evicted: {report.evicted}, "
            f"Errors: {report.errors}, "
            f"Score: {self.consistency_score}"
        )
        return report
