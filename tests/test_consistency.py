import random

import pytest

from catalog_service.cache.consistency import CacheConsistencyMonitor
from catalog_service.core.exceptions import StoreError

from conftest import FailingCacheStore, product_data


@pytest.fixture
def monitor(store, cache_store, keys):
    return CacheConsistencyMonitor(store, cache_store, keys, sample_size=10, repair=True, rng=random.Random(7))


class TestCacheConsistencyMonitor:
    """Tests for background drift sampling"""

    @pytest.mark.asyncio
    async def test_empty_cache(self, monitor):
        report = await monitor.check_sample()

        assert report.total_keys == 0
        assert report.checked == 0
        assert report.drift_ratio == 0.0
        assert monitor.consistency_score == 100.0

    @pytest.mark.asyncio
    async def test_consistent_entries(self, monitor, repository):
        """Test entries written through the repository match the store"""
        for i in range(3):
            await repository.create(product_data(name=f"Item {i}"))

        report = await monitor.check_sample()

        assert report.total_keys == 3
        assert report.checked == 3
        assert report.drifted == 0
        assert monitor.consistency_score == 100.0

    @pytest.mark.asyncio
    async def test_detects_and_evicts_drift(self, monitor, repository, store, cache_store, keys):
        """Test out-of-band store changes are detected and repaired"""
        changed = await repository.create(product_data(name="Changed"))
        removed = await repository.create(product_data(name="Removed"))
        await repository.create(product_data(name="Untouched"))

        # Bypass the repository so the cache is not told
        await store.update_by_id(changed.id, {"price": 1.0})
        await store.delete_by_id(removed.id)

        report = await monitor.check_sample()

        assert report.checked == 3
        assert report.drifted == 2
        assert report.evicted == 2
        assert report.drift_ratio == pytest.approx(0.6667)
        assert sorted(report.drifted_keys) == sorted([keys.product_key(changed.id), keys.product_key(removed.id)])
        assert await cache_store.exists(keys.product_key(changed.id)) is False
        assert await cache_store.exists(keys.product_key(removed.id)) is False
        assert monitor.consistency_score == pytest.approx(33.33)

        # Next read repopulates from the store
        assert (await repository.find_by_id(changed.id)).price == 1.0

    @pytest.mark.asyncio
    async def test_report_only_mode(self, store, cache_store, keys, repository):
        """Test drift is reported but kept when repair is off"""
        monitor = CacheConsistencyMonitor(store, cache_store, keys, repair=False)
        product = await repository.create(product_data())
        await store.update_by_id(product.id, {"stock": 99})

        report = await monitor.check_sample()

        assert report.drifted == 1
        assert report.evicted == 0
        assert await cache_store.exists(keys.product_key(product.id)) is True

    @pytest.mark.asyncio
    async def test_corrupt_entry_is_drift(self, monitor, repository, cache_store, keys):
        product = await repository.create(product_data())
        await cache_store.set(keys.product_key(product.id), "{broken", 60)

        report = await monitor.check_sample()

        assert report.drifted == 1
        assert report.evicted == 1

    @pytest.mark.asyncio
    async def test_sample_size_bounds_work(self, store, cache_store, keys, repository):
        for i in range(5):
            await repository.create(product_data(name=f"Item {i}"))
        monitor = CacheConsistencyMonitor(store, cache_store, keys, sample_size=2, rng=random.Random(1))

        report = await monitor.check_sample()

        assert report.total_keys == 5
        assert report.checked == 2

    @pytest.mark.asyncio
    async def test_ignores_collection_keys(self, monitor, repository):
        """Test list and count entries are not sampled as records"""
        await repository.create(product_data())
        await repository.find_all()
        await repository.count()

        report = await monitor.check_sample()

        assert report.total_keys == 1

    @pytest.mark.asyncio
    async def test_cache_outage_counts_error(self, store, keys):
        monitor = CacheConsistencyMonitor(store, FailingCacheStore(), keys)

        report = await monitor.check_sample()

        assert report.errors == 1
        assert report.checked == 0

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self, monitor, repository, store):
        """Test store errors are not mistaken for drift"""
        await repository.create(product_data())

        async def broken(product_id):
            raise StoreError("down")

        store.find_by_id = broken

        with pytest.raises(StoreError):
            await monitor.check_sample()

    @pytest.mark.asyncio
    async def test_as_dict(self, monitor, repository):
        await repository.create(product_data())

        data = (await monitor.check_sample()).as_dict()

        assert data["checked"] == 1
        assert data["drift_ratio"] == 0.0
        assert "checked_at" in data
