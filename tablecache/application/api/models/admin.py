"""
Admin API Models

Request and response bodies for the cache administration endpoints.

Every response carries ``success`` and a human-readable ``message`` so the
admin UI can show the outcome without inspecting the payload.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

# ============================================================================
# ENUMS
# ============================================================================


class WarmupMode(str, Enum):
    """
    Which entities a warmup run targets.

    - POPULAR: most-accessed entities according to the statistics
    - SPECIFIED: the entities listed in the request
    - ALL: every entity the table store reports
    """

    POPULAR = "popular"
    SPECIFIED = "specified"
    ALL = "all"


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


# ============================================================================
# REQUESTS
# ============================================================================


class ClearPatternRequest(BaseModel):
    """Delete every key matching a glob (``* ? [``) or substring pattern."""

    pattern: str = Field(..., min_length=1, description="Glob or substring, e.g. 'entity-page:orders:*'")

    @field_validator("pattern")
    @classmethod
    def validate_pattern(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Pattern must not be blank")
        return v


class InvalidateRequest(BaseModel):
    """Remove everything cached for one entity (all namespaces)."""

    entity: str = Field(..., min_length=1, description="Entity (table) name")


class WarmupRequest(BaseModel):
    """
    Repopulate the cache from the table store.

    ``entities`` is required when mode is "specified" and ignored otherwise.
    """

    mode: WarmupMode = Field(default=WarmupMode.POPULAR, description="Warmup target selection")
    entities: list[str] = Field(default_factory=list, description="Entities for mode=specified")
    limit: int | None = Field(default=None, ge=1, le=1000, description="Cap for popular/all modes")

    @field_validator("entities")
    @classmethod
    def strip_entities(cls, v: list[str]) -> list[str]:
        return [name.strip() for name in v if name and name.strip()]


# ============================================================================
# RESPONSES
# ============================================================================


class CacheStatsResponse(BaseModel):
    """Hit/miss counters plus storage state."""

    success: bool = True
    hits: int = Field(default=0, ge=0)
    misses: int = Field(default=0, ge=0)
    stale_hits: int = Field(default=0, ge=0)
    hit_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    per_entity: dict[str, dict[str, int]] = Field(default_factory=dict)
    popular_entities: list[str] = Field(default_factory=list)
    storage: dict[str, dict[str, Any]] = Field(default_factory=dict)
    caching_enabled: bool = True
    updated_at: str | None = Field(default=None, description="ISO 8601 time of the last update")


class CacheOperationResponse(BaseModel):
    """Outcome of a clear / clear-pattern / invalidate call."""

    success: bool = True
    message: str
    removed: int = Field(default=0, ge=0, description="Number of keys removed")


class WarmupResponse(BaseModel):
    success: bool = True
    message: str
    mode: WarmupMode
    requested: list[str] = Field(default_factory=list)
    warmed: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    failed: dict[str, str] = Field(default_factory=dict)


class CacheHealthResponse(BaseModel):
    status: HealthStatus
    caching_enabled: bool
    backends: dict[str, dict[str, Any]] = Field(default_factory=dict)
    pending_refreshes: int = Field(default=0, ge=0)
