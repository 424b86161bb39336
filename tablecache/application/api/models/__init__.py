"""
API Models

Pydantic request/response models for the admin endpoints.
"""

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

__all__ = [
    "CacheHealthResponse",
    "CacheOperationResponse",
    "CacheStatsResponse",
    "ClearPatternRequest",
    "HealthStatus",
    "InvalidateRequest",
    "WarmupMode",
    "WarmupRequest",
    "WarmupResponse",
]
