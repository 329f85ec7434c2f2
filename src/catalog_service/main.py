import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from . import models  # noqa: F401  registers the product table
from .api.v1.routes import router
from .cache.backend import build_cache_store
from .cache.coalescing import RequestCoalescer
from .cache.invalidation import build_invalidator
from .cache.key_builders import CacheKeyBuilder
from .cache.middleware import ResponseCache
from .cache.policy import TtlPolicy
from .cache.service import CacheService
from .core.config import Settings
from .core.db import create_engine_for, create_schema, create_session_factory
from .core.exceptions import InvalidInputError, ProductNotFoundError, StoreError
from .core.logging import setup_logging
from .repositories.product import CachedProductRepository
from .repositories.store import ProductStore

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings)

        engine = create_engine_for(settings.database_url, echo=settings.db_echo)
        if settings.db_create_schema:
            await create_schema(engine)
        store = ProductStore(create_session_factory(engine))

        cache_store = build_cache_store(settings)
        cache = CacheService(cache_store, timeout=settings.cache_timeout)
        keys = CacheKeyBuilder(settings.cache_prefix, settings.cache_version)
        ttl = TtlPolicy.from_settings(settings)
        invalidator = build_invalidator(settings, cache, keys, ttl)
        coalescer = RequestCoalescer() if settings.cache_single_flight else None

        app.state.settings = settings
        app.state.cache_store = cache_store
        app.state.repository = CachedProductRepository(store, cache, keys, ttl, invalidator, coalescer)
        app.state.response_cache = ResponseCache(cache, keys, ttl, invalidator)

        logger.info(
            f"{settings.service_name} started "
            f"(cache={settings.cache_backend}, invalidation={settings.cache_invalidation}, "
            f"single_flight={settings.cache_single_flight})"
        )
        try:
            yield
        finally:
            await cache_store.close()
            await engine.dispose()
            logger.info(f"{settings.service_name} stopped")

    app = FastAPI(
        title="Catalog Service",
        version="1.0.0",
        description="Product catalog with a Redis cache-aside layer.",
        lifespan=lifespan,
    )

    app.include_router(router, prefix="/api/v1")

    @app.exception_handler(InvalidInputError)
    async def invalid_input_handler(request: Request, exc: InvalidInputError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(ProductNotFoundError)
    async def not_found_handler(request: Request, exc: ProductNotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError):
        return JSONResponse(status_code=503, content={"detail": "Product store unavailable"})

    @app.get("/")
    def read_root():
        return {"message": f"{settings.service_name} is running"}

    return app
