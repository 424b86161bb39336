#!/usr/bin/env python3
"""
Centralized Configuration Module using Pydantic Settings

This module provides type-safe, environment-based configuration for the cache
layer and the admin application around it.

Architectural Decision: Pydantic Settings for type safety and validation
- Environment variable loading with .env support
- Type validation at startup (fail fast on misconfiguration)
- Easy testing with reload_settings()
"""

from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tablecache.core.config.constants import (
    DEFAULT_LOCAL_CHUNK_SIZE,
    DEFAULT_REMOTE_CHUNK_SIZE,
    DEFAULT_REMOTE_CHUNK_THRESHOLD,
    Namespace,
)

_ENV_CONFIG = SettingsConfigDict(
    env_file=".env",
    env_file_encoding="utf-8",
    case_sensitive=True,
    extra="ignore",
)


class RedisSettings(BaseSettings):
    """
    Redis configuration for the remote store.

    REDIS_URL wins over host/port when set (rediss:// enables TLS).
    Reconnection uses capped exponential backoff with a bounded retry count;
    once exhausted the remote store stays unavailable until restart.
    """

    REMOTE_CACHE_ENABLED: bool = Field(default=True, description="Use Redis as the preferred tier")
    REDIS_URL: str | None = Field(default=None, description="Redis connection string")
    REDIS_HOST: str = Field(default="localhost", description="Redis server host")
    REDIS_PORT: int = Field(default=6379, description="Redis server port")
    REDIS_DB: int = Field(default=0, description="Redis database number")
    REDIS_PASSWORD: str | None = Field(default=None, description="Redis password (if required)")

    REDIS_MAX_CONNECTIONS: int = Field(default=50, description="Maximum pooled connections")
    REDIS_SOCKET_TIMEOUT: float = Field(default=5, description="Socket timeout in seconds")
    REDIS_SOCKET_CONNECT_TIMEOUT: float = Field(default=15, description="Connection timeout in seconds")
    REDIS_HEALTH_CHECK_INTERVAL: int = Field(default=30, description="Health check interval in seconds")

    REDIS_RECONNECT_MAX_RETRIES: int = Field(default=10, ge=1, description="Reconnect attempts before giving up")
    REDIS_RECONNECT_BASE_DELAY: float = Field(default=0.2, gt=0, description="First backoff delay in seconds")
    REDIS_RECONNECT_MAX_DELAY: float = Field(default=5.0, gt=0, description="Backoff delay cap in seconds")

    model_config = _ENV_CONFIG


class CacheSettings(BaseSettings):
    """
    Cache TTLs, staleness and chunking configuration.

    Optimization: Different TTLs for different entity namespaces
    - Table list changes rarely but is cheap to refetch (30 min)
    - Table details (1 hour)
    - Item pages (30 min), query results (15 min)
    """

    ENABLE_CACHING: bool = Field(default=True, description="Master switch for the cache")

    CACHE_DEFAULT_TTL: int = Field(default=3600, gt=0, description="Fallback TTL in seconds")
    CACHE_ENTITY_LIST_TTL: int = Field(default=1800, gt=0, description="Entity list TTL")
    CACHE_ENTITY_DETAIL_TTL: int = Field(default=3600, gt=0, description="Entity detail TTL")
    CACHE_ENTITY_PAGE_TTL: int = Field(default=1800, gt=0, description="Entity item page TTL")
    CACHE_QUERY_RESULT_TTL: int = Field(default=900, gt=0, description="Query result TTL")
    CACHE_STATS_TTL: int = Field(default=86400, gt=0, description="Statistics entry TTL")
    CACHE_STALE_MARKER_TTL: int = Field(default=43200, gt=0, description="Stale marker TTL")
    CACHE_STALE_RATIO: float = Field(default=0.75, description="Fraction of TTL after which data is stale")

    CACHE_DIR: str = Field(default=".cache", description="Local store directory")
    CACHE_FALLBACK_DIR: str = Field(default="tmp-cache", description="Local store fallback directory")
    LOCAL_CHUNK_SIZE: int = Field(default=DEFAULT_LOCAL_CHUNK_SIZE, gt=0, description="Local chunk size")
    REMOTE_CHUNK_THRESHOLD: int = Field(
        default=DEFAULT_REMOTE_CHUNK_THRESHOLD, gt=0, description="Remote payload size that triggers chunking"
    )
    REMOTE_CHUNK_SIZE: int = Field(default=DEFAULT_REMOTE_CHUNK_SIZE, gt=0, description="Remote chunk size")
    CACHE_PREFER_REMOTE: bool = Field(default=True, description="Try Redis before local disk")

    COLLECTION_BLOB_MAX_RECORDS: int = Field(
        default=100, ge=0, description="Collections up to this size are stored as one entry"
    )
    COLLECTION_COMPLETENESS_THRESHOLD: float = Field(
        default=0.9, gt=0, le=1, description="Minimum fraction of per-item entries for a usable read"
    )

    CACHE_WARM_CONCURRENCY: int = Field(default=5, ge=1, description="Parallel fetches during warmup")
    CACHE_POPULAR_LIMIT: int = Field(default=5, ge=1, description="Entities warmed by popular warmup")

    model_config = _ENV_CONFIG

    @field_validator("CACHE_STALE_RATIO")
    @classmethod
    def validate_stale_ratio(cls, v):
        """Stale ratio must be a fraction strictly between 0 and 1."""
        if not 0 < v < 1:
            raise ValueError("CACHE_STALE_RATIO must be strictly between 0 and 1")
        return v

    @model_validator(mode="after")
    def validate_chunking(self):
        """Remote chunks must fit under the threshold that triggers chunking."""
        if self.REMOTE_CHUNK_SIZE > self.REMOTE_CHUNK_THRESHOLD:
            raise ValueError("REMOTE_CHUNK_SIZE must not exceed REMOTE_CHUNK_THRESHOLD")
        return self

    def ttl_for(self, namespace: "Namespace | str") -> int:
        """
        TTL for a namespace, falling back to CACHE_DEFAULT_TTL.

        Args:
            namespace: Namespace enum member or free-form namespace string
        """
        overrides = {
            Namespace.ENTITY_LIST.value: self.CACHE_ENTITY_LIST_TTL,
            Namespace.ENTITY_DETAIL.value: self.CACHE_ENTITY_DETAIL_TTL,
            Namespace.ENTITY_PAGE.value: self.CACHE_ENTITY_PAGE_TTL,
            Namespace.QUERY_RESULT.value: self.CACHE_QUERY_RESULT_TTL,
        }
        key = namespace.value if isinstance(namespace, Namespace) else str(namespace)
        return overrides.get(key, self.CACHE_DEFAULT_TTL)


class LoggingSettings(BaseSettings):
    """
    Logging configuration for structured logging.

    Architectural Decision: structlog for production-grade logging
    """

    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json", description="Log output format")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    model_config = _ENV_CONFIG


class ApplicationSettings(BaseSettings):
    """General application settings."""

    ENVIRONMENT: Literal["development", "staging", "production", "test"] = Field(
        default="development",
        description="Application environment"
    )
    DEBUG: bool = Field(default=False, description="Debug mode")
    APP_NAME: str = Field(default="Table Admin Cache", description="Application name")
    APP_VERSION: str = Field(default="1.0.0", description="Application version")

    model_config = _ENV_CONFIG


class Settings(BaseSettings):
    """
    Main settings class that aggregates all configuration sections.

    Usage:
        from tablecache.core.config.settings import get_settings

        settings = get_settings()
        ttl = settings.cache.ttl_for(Namespace.ENTITY_DETAIL)
        redis_url = settings.redis.REDIS_URL

    Each section reads its own environment variables, so a flat .env file
    configures everything.
    """

    redis: RedisSettings = Field(default_factory=RedisSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    app: ApplicationSettings = Field(default_factory=ApplicationSettings)

    model_config = _ENV_CONFIG


# Global settings instance (singleton pattern)
_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Get the global settings instance (singleton).

    Returns:
        Settings: Global settings instance
    """
    global _settings

    if _settings is None:
        _settings = Settings()

    return _settings


def reload_settings() -> Settings:
    """
    Reload settings (useful for testing).

    Returns:
        Settings: New settings instance
    """
    global _settings
    _settings = Settings()
    return _settings
