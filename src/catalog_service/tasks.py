import asyncio
import logging

from . import models  # noqa: F401
from .cache.backend import build_cache_store
from .cache.consistency import CacheConsistencyMonitor
from .cache.key_builders import CacheKeyBuilder
from .celery_app import celery
from .core.config import Settings
from .core.db import create_engine_for, create_session_factory
from .core.exceptions import CatalogError
from .repositories.store import ProductStore

logger = logging.getLogger(__name__)


async def run_consistency_check(settings: Settings) -> dict:
    engine = create_engine_for(settings.database_url, echo=settings.db_echo)
    cache_store = build_cache_store(settings)
    try:
        monitor = CacheConsistencyMonitor(
            ProductStore(create_session_factory(engine)),
            cache_store,
            CacheKeyBuilder(settings.cache_prefix, settings.cache_version),
            sample_size=settings.consistency_sample_size,
            repair=settings.consistency_repair,
        )
        report = await monitor.check_sample()
        return report.as_dict()
    finally:
        await cache_store.close()
        await engine.dispose()


@celery.task(name='catalog_service.tasks.check_cache_consistency')
def check_cache_consistency():
    logger.info("Starting cache consistency check task...")
    try:
        result = asyncio.run(run_consistency_check(Settings()))
    except CatalogError as e:
        logger.error(f"Cache consistency check failed: {e}")
        return {
            "status": "error",
            "message": str(e),
        }
    return {"status": "success", **result}
