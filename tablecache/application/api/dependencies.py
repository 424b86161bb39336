"""
FastAPI Dependencies

Typed accessors for the application singletons stored on ``app.state``
during startup (see tablecache.application.app.lifespan).

Usage:
    @router.get("/stats")
    async def stats(cache: CacheManagerDep):
        return await cache.get_stats()
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from tablecache.core.config.settings import Settings, get_settings
from tablecache.core.interfaces import EntityFetcher
from tablecache.infrastructure.cache.cache_manager import CacheManager, get_cache_manager


def get_cache(request: Request) -> CacheManager:
    """
    Cache manager from application state.

    Falls back to the module singleton when the lifespan did not run
    (e.g. a bare TestClient without a context manager).
    """
    manager = getattr(request.app.state, "cache_manager", None)
    if manager is None:
        manager = get_cache_manager()
        request.app.state.cache_manager = manager
    return manager


def get_entity_fetcher(request: Request) -> EntityFetcher:
    """
    Table-store client used for warmup.

    Raises:
        HTTPException: 503 when no client is configured
    """
    fetcher = getattr(request.app.state, "entity_fetcher", None)
    if fetcher is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Table store client is not configured",
        )
    return fetcher


# ============================================================================
# TYPE ALIASES
# ============================================================================

CacheManagerDep = Annotated[CacheManager, Depends(get_cache)]

EntityFetcherDep = Annotated[EntityFetcher, Depends(get_entity_fetcher)]

SettingsDep = Annotated[Settings, Depends(get_settings)]
