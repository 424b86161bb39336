"""
Cache Admin Routes

Operational endpoints for the table-store cache, used by the admin UI and
by operators:

    GET  /admin/cache/stats          hit/miss statistics and storage state
    POST /admin/cache/clear          remove every entry, reset statistics
    POST /admin/cache/clear-pattern  remove keys matching a pattern
    POST /admin/cache/invalidate     remove everything cached for one entity
    POST /admin/cache/warmup         repopulate from the table store
    GET  /admin/cache/health         backend availability

Handlers delegate to CacheManager and translate unexpected failures into a
500 with a generic message; details go to the log only.
"""

from fastapi import APIRouter, HTTPException, Response, status

from tablecache.application.api.dependencies import CacheManagerDep, EntityFetcherDep
from tablecache.application.api.models.admin import (
    CacheHealthResponse,
    CacheOperationResponse,
    CacheStatsResponse,
    ClearPatternRequest,
    HealthStatus,
    InvalidateRequest,
    WarmupMode,
    WarmupRequest,
    WarmupResponse,
)
from tablecache.core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/admin/cache", tags=["Cache Admin"])


# ============================================================================
# STATISTICS
# ============================================================================


@router.get("/stats", response_model=CacheStatsResponse, status_code=status.HTTP_200_OK)
async def get_cache_stats(cache: CacheManagerDep):
    """
    Hit/miss statistics, most popular entities and storage usage.

    Raises:
        HTTPException: 500 if statistics cannot be assembled
    """
    try:
        stats = await cache.get_stats()
        logger.debug("cache_stats_served", hits=stats.get("hits"), misses=stats.get("misses"))
        return CacheStatsResponse(**stats)
    except Exception as e:
        logger.error("cache_stats_failed", error=str(e), error_type=type(e).__name__)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve cache statistics",
        )


# ============================================================================
# INVALIDATION
# ============================================================================


@router.post("/clear", response_model=CacheOperationResponse, status_code=status.HTTP_200_OK)
async def clear_cache(cache: CacheManagerDep):
    """
    Remove every cache entry and reset the statistics.

    Only cache-owned keys are removed; other data in the Redis database is kept.
    """
    try:
        removed = await cache.clear_all()
        logger.info("cache_cleared", removed=removed)
        return CacheOperationResponse(message="Cache cleared", removed=removed)
    except Exception as e:
        logger.error("cache_clear_failed", error=str(e), error_type=type(e).__name__)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to clear cache",
        )


@router.post("/clear-pattern", response_model=CacheOperationResponse, status_code=status.HTTP_200_OK)
async def clear_cache_pattern(request: ClearPatternRequest, cache: CacheManagerDep):
    """Remove keys matching a glob or substring pattern."""
    try:
        removed = await cache.invalidate_by_pattern(request.pattern)
        logger.info("cache_pattern_cleared", pattern=request.pattern, removed=removed)
        return CacheOperationResponse(
            message=f"Removed {removed} keys matching '{request.pattern}'", removed=removed
        )
    except Exception as e:
        logger.error("cache_pattern_clear_failed", pattern=request.pattern, error=str(e), error_type=type(e).__name__)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to clear cache pattern",
        )


@router.post("/invalidate", response_model=CacheOperationResponse, status_code=status.HTTP_200_OK)
async def invalidate_entity(request: InvalidateRequest, cache: CacheManagerDep):
    """Remove list, detail, page and query entries of one entity."""
    try:
        removed = await cache.invalidate_entity(request.entity)
        logger.info("cache_entity_invalidated", entity=request.entity, removed=removed)
        return CacheOperationResponse(message=f"Invalidated cache for '{request.entity}'", removed=removed)
    except Exception as e:
        logger.error("cache_invalidate_failed", entity=request.entity, error=str(e), error_type=type(e).__name__)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to invalidate cache",
        )


# ============================================================================
# WARMUP
# ============================================================================


@router.post("/warmup", response_model=WarmupResponse, status_code=status.HTTP_200_OK)
async def warmup_cache(request: WarmupRequest, cache: CacheManagerDep, fetcher: EntityFetcherDep):
    """
    Repopulate entity details from the table store.

    Modes:
        popular: most-accessed entities (falls back to the first listed
            entities when no statistics exist yet)
        specified: the entities in the request body
        all: every entity the table store lists

    Entities that are cached and fresh are skipped.

    Raises:
        HTTPException: 400 for mode=specified without entities,
            503 without a table store client, 500 for other errors
    """
    if request.mode is WarmupMode.SPECIFIED and not request.entities:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Entities are required for mode 'specified'",
        )

    try:
        logger.info("cache_warmup_requested", mode=request.mode.value, entities=len(request.entities))

        if request.mode is WarmupMode.POPULAR:
            report = await cache.warm_popular(
                fetcher.fetch_entity, limit=request.limit, list_fn=fetcher.list_entities
            )
        elif request.mode is WarmupMode.SPECIFIED:
            report = await cache.warm(request.entities, fetcher.fetch_entity)
        else:
            entities = list(await fetcher.list_entities())
            await cache.put_entity_list(entities)
            if request.limit:
                entities = entities[: request.limit]
            report = await cache.warm(entities, fetcher.fetch_entity)

        logger.info(
            "cache_warmup_completed",
            mode=request.mode.value,
            warmed=len(report.warmed),
            skipped=len(report.skipped),
            failed=len(report.failed),
        )
        return WarmupResponse(
            success=not report.failed,
            message=f"Warmed {len(report.warmed)} of {len(report.requested)} entities",
            mode=request.mode,
            **report.to_dict(),
        )
    except Exception as e:
        logger.error("cache_warmup_failed", mode=request.mode.value, error=str(e), error_type=type(e).__name__)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to warm cache",
        )


# ============================================================================
# HEALTH
# ============================================================================


@router.get("/health", response_model=CacheHealthResponse)
async def cache_health(cache: CacheManagerDep, response: Response):
    """
    Backend availability.

    Answers 503 only when no backend can serve; a degraded cache (local
    store only) still answers 200.
    """
    try:
        health = await cache.health_check()
    except Exception as e:
        logger.error("cache_health_failed", error=str(e), error_type=type(e).__name__)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to check cache health",
        )

    if health["status"] == HealthStatus.UNHEALTHY.value and health["caching_enabled"]:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return CacheHealthResponse(**health)
