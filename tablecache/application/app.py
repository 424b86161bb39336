"""
FastAPI Application Entry Point

Hosts the cache admin router. The table-store admin application mounts this
app (or includes its router) and provides the table-store client as the
EntityFetcher used by warmup.

Usage:
    from tablecache.application.app import create_app

    app = create_app(entity_fetcher=TableStoreClient())
"""

import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from tablecache.application.api.middleware.error_handler import add_error_handling_middleware, internal_error_content
from tablecache.application.api.routes.admin import router as admin_router
from tablecache.core.config.constants import HEADER_REQUEST_ID
from tablecache.core.config.settings import get_settings
from tablecache.core.exceptions import TableCacheError
from tablecache.core.interfaces import EntityFetcher
from tablecache.core.logging import clear_request_id, get_logger, get_request_id, set_request_id, setup_logging
from tablecache.infrastructure.cache.cache_manager import CacheManager, close_cache, init_cache

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: configure logging, connect the cache.
    Shutdown: cancel background refreshes, disconnect Redis.
    """
    settings = get_settings()
    setup_logging(log_level=settings.logging.LOG_LEVEL, log_format=settings.logging.LOG_FORMAT)

    logger.info(
        "Starting table cache admin",
        environment=settings.app.ENVIRONMENT,
        version=settings.app.APP_VERSION,
    )

    injected: CacheManager | None = getattr(app.state, "cache_manager", None)
    try:
        if injected is not None:
            await injected.initialize()
        else:
            app.state.cache_manager = await init_cache()
        logger.info("Cache initialized")

        yield

    finally:
        logger.info("Shutting down table cache admin")
        if injected is not None:
            await injected.close()
        else:
            await close_cache()
        logger.info("Shutdown complete")


def create_app(
    cache_manager: CacheManager | None = None,
    entity_fetcher: EntityFetcher | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        cache_manager: Cache manager to serve (global singleton when omitted)
        entity_fetcher: Table-store client for warmup (warmup answers 503
            without one)

    Returns:
        FastAPI: Configured application instance
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.app.APP_NAME,
        version=settings.app.APP_VERSION,
        description="Two-tier cache administration for the table-store admin app",
        lifespan=lifespan,
    )
    if cache_manager is not None:
        app.state.cache_manager = cache_manager
    if entity_fetcher is not None:
        app.state.entity_fetcher = entity_fetcher

    add_error_handling_middleware(app, include_traceback=settings.app.ENVIRONMENT == "development")

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        """Propagate or mint a request ID for log correlation."""
        request_id = request.headers.get(HEADER_REQUEST_ID) or str(uuid.uuid4())
        set_request_id(request_id)
        try:
            response = await call_next(request)
            response.headers[HEADER_REQUEST_ID] = request_id
            return response
        finally:
            clear_request_id()

    @app.exception_handler(TableCacheError)
    async def table_cache_exception_handler(request: Request, exc: TableCacheError):
        logger.error(
            f"Cache exception: {exc.message}",
            error_type=type(exc).__name__,
            details=exc.details,
            path=request.url.path,
        )
        request_id = exc.request_id or get_request_id()
        headers = {HEADER_REQUEST_ID: request_id} if request_id else None
        return JSONResponse(
            status_code=500, content=internal_error_content(type(exc).__name__), headers=headers
        )

    app.include_router(admin_router)

    @app.get("/", tags=["Root"])
    async def root():
        return {
            "name": settings.app.APP_NAME,
            "version": settings.app.APP_VERSION,
            "environment": settings.app.ENVIRONMENT,
            "cache_health": "/admin/cache/health",
        }

    return app
