"""
Redis Client with Connection State and Background Reconnect

Architecture:
    RedisClient (Public API)
        ├── ConnectionState (availability owned by this instance)
        ├── ConnectionManager (connection lifecycle)
        ├── OperationExecutor (command execution with error handling)
        └── HealthMonitor (health checks and pool metrics)

Availability model:
    - Available after a successful connect/ping
    - Any command failure marks the client unavailable and starts ONE
      background reconnect task (tenacity: capped exponential backoff,
      bounded attempts)
    - While unavailable, callers are expected to skip Redis entirely; nothing
      retries on the caller's critical path
    - When the attempts run out, the client stays unavailable until restart

Each RedisClient owns its own ConnectionState, so several clients (or tests)
never share availability.
"""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import RedisError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from tablecache.core.config.settings import RedisSettings
from tablecache.core.exceptions import CacheConnectionError, CacheKeyError
from tablecache.core.logging import get_logger, log_stage
from tablecache.core.logging.logger import redact_secrets

logger = get_logger(__name__)


# =============================================================================
# LAYER 1: CONNECTION STATE
# Explicit, per-instance availability
# =============================================================================


@dataclass
class ConnectionState:
    """
    Availability of one Redis client.

    Attributes:
        available: True while commands may be sent
        reconnect_exhausted: True once background reconnect gave up
        last_error: Last failure seen (redacted)
        failures: Number of times the client went down
    """

    available: bool = False
    reconnect_exhausted: bool = False
    last_error: str | None = None
    failures: int = 0
    changed_at: float = field(default_factory=time.time)

    def mark_up(self) -> None:
        self.available = True
        self.reconnect_exhausted = False
        self.changed_at = time.time()

    def mark_down(self, error: str | None = None) -> None:
        if self.available:
            self.failures += 1
        self.available = False
        if error is not None:
            self.last_error = redact_secrets(error)
        self.changed_at = time.time()

    def to_dict(self) -> dict[str, Any]:
        return {
            "available": self.available,
            "reconnect_exhausted": self.reconnect_exhausted,
            "last_error": self.last_error,
            "failures": self.failures,
        }


# =============================================================================
# LAYER 2: CONNECTION MANAGEMENT
# Handles connection lifecycle and pooling
# =============================================================================


class ConnectionManager:
    """
    Manages Redis connection lifecycle and pooling.

    Pool Configuration:
    - REDIS_URL wins over host/port (rediss:// enables TLS)
    - Connect timeout 15s by default, socket timeout 5s
    - Bytes in, bytes out (decode_responses=False); values are gzip payloads

    Args:
        settings: Redis settings
        client: Pre-built client (tests inject an in-memory double here)
    """

    def __init__(self, settings: RedisSettings, client: Any | None = None):
        self._settings = settings
        self._pool: ConnectionPool | None = None
        self._client = client
        self._injected = client is not None

    def _build_client(self) -> redis.Redis:
        s = self._settings
        common = dict(
            max_connections=s.REDIS_MAX_CONNECTIONS,
            socket_connect_timeout=s.REDIS_SOCKET_CONNECT_TIMEOUT,
            socket_timeout=s.REDIS_SOCKET_TIMEOUT,
            health_check_interval=s.REDIS_HEALTH_CHECK_INTERVAL,
            decode_responses=False,
        )
        if s.REDIS_URL:
            self._pool = ConnectionPool.from_url(s.REDIS_URL, **common)
        else:
            self._pool = ConnectionPool(
                host=s.REDIS_HOST,
                port=s.REDIS_PORT,
                db=s.REDIS_DB,
                password=s.REDIS_PASSWORD,
                **common,
            )
        return redis.Redis(connection_pool=self._pool)

    @property
    def target(self) -> str:
        """Connection target for logs (credentials redacted)."""
        if self._settings.REDIS_URL:
            return redact_secrets(self._settings.REDIS_URL)
        return f"{self._settings.REDIS_HOST}:{self._settings.REDIS_PORT}"

    async def connect(self) -> Any:
        """
        Create the client if needed and verify it with PING.

        Returns:
            Connected Redis client

        Raises:
            CacheConnectionError: If the server cannot be reached
        """
        if self._client is None:
            self._client = self._build_client()

        try:
            await self._client.ping()
        except (RedisError, OSError) as e:
            raise CacheConnectionError(
                message=f"Failed to connect to Redis: {redact_secrets(str(e))}",
                details={"target": self.target},
            )
        return self._client

    async def disconnect(self) -> None:
        if self._client is not None and not self._injected:
            await self._client.aclose()
            if self._pool is not None:
                await self._pool.disconnect()
            self._client = None
            self._pool = None

    def get_client(self) -> Any | None:
        return self._client

    def get_pool(self) -> ConnectionPool | None:
        return self._pool


# =============================================================================
# LAYER 3: OPERATION EXECUTOR
# Executes Redis commands with error handling and logging
# =============================================================================


class OperationExecutor:
    """
    Executes Redis operations with consistent error handling.

    Error Handling Strategy:
    - Catch RedisError (and socket-level OSError)
    - Log error with context (stage, key)
    - Raise CacheKeyError with details
    """

    def __init__(self, redis_client: Any):
        self._redis = redis_client

    async def get(self, key: str) -> bytes | None:
        try:
            return await self._redis.get(key)
        except (RedisError, OSError) as e:
            logger.error("Redis GET failed", stage="REDIS.GET", key=key, error=str(e))
            raise CacheKeyError(message=f"Redis GET failed: {e}", details={"key": key})

    async def mget(self, keys: list[str]) -> list[bytes | None]:
        """Get many keys in one round trip."""
        if not keys:
            return []
        try:
            return list(await self._redis.mget(keys))
        except (RedisError, OSError) as e:
            logger.error("Redis MGET failed", stage="REDIS.MGET", key_count=len(keys), error=str(e))
            raise CacheKeyError(message=f"Redis MGET failed: {e}", details={"key_count": len(keys)})

    async def set(self, key: str, value: bytes, ttl: int | None = None) -> bool:
        try:
            result = await self._redis.set(key, value, ex=ttl)
            return bool(result)
        except (RedisError, OSError) as e:
            logger.error("Redis SET failed", stage="REDIS.SET", key=key, error=str(e))
            raise CacheKeyError(message=f"Redis SET failed: {e}", details={"key": key})

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            return await self._redis.delete(*keys)
        except (RedisError, OSError) as e:
            logger.error("Redis DELETE failed", stage="REDIS.DEL", key_count=len(keys), error=str(e))
            raise CacheKeyError(message=f"Redis DELETE failed: {e}", details={"key_count": len(keys)})

    async def scan(self, match: str, count: int = 500) -> list[str]:
        """
        Collect keys matching a glob with SCAN (never KEYS).

        Returns:
            Matching keys as str
        """
        found: list[str] = []
        try:
            async for key in self._redis.scan_iter(match=match, count=count):
                found.append(key.decode("utf-8") if isinstance(key, bytes) else key)
        except (RedisError, OSError) as e:
            logger.error("Redis SCAN failed", stage="REDIS.SCAN", match=match, error=str(e))
            raise CacheKeyError(message=f"Redis SCAN failed: {e}", details={"match": match})
        return found

    async def execute_pipeline(self, build: Callable[[Any], None]) -> list[Any]:
        """
        Run a batch of commands in one non-transactional pipeline.

        Args:
            build: Callback that queues commands on the pipeline

        Usage:
            await executor.execute_pipeline(lambda pipe: pipe.set("k", b"v", ex=60))
        """
        try:
            pipe = self._redis.pipeline(transaction=False)
            build(pipe)
            return await pipe.execute()
        except (RedisError, OSError) as e:
            logger.error("Redis pipeline failed", stage="REDIS.PIPE", error=str(e))
            raise CacheKeyError(message=f"Redis pipeline failed: {e}")


# =============================================================================
# LAYER 4: HEALTH MONITORING
# =============================================================================


class HealthMonitor:
    """Ping latency and connection pool metrics."""

    def __init__(self, connection_manager: ConnectionManager, state: ConnectionState):
        self._conn_mgr = connection_manager
        self._state = state

    async def health_check(self) -> dict[str, Any]:
        health: dict[str, Any] = {
            "status": "healthy" if self._state.available else "unhealthy",
            "target": self._conn_mgr.target,
            "ping_latency_ms": None,
            **self._state.to_dict(),
        }

        client = self._conn_mgr.get_client()
        if client is None or not self._state.available:
            return health

        try:
            start = time.perf_counter()
            await client.ping()
            health["ping_latency_ms"] = round((time.perf_counter() - start) * 1000, 2)
        except (RedisError, OSError) as e:
            health["status"] = "unhealthy"
            health["error"] = redact_secrets(str(e))

        pool = self._conn_mgr.get_pool()
        if pool is not None:
            health["pool_size"] = pool.max_connections
            in_use = getattr(pool, "_in_use_connections", None)
            if in_use is not None:
                health["pool_in_use"] = len(in_use)

        return health


# =============================================================================
# LAYER 5: PUBLIC API
# =============================================================================


class RedisClient:
    """
    Async Redis client used by the remote cache store.

    Usage:
        client = RedisClient(settings.redis)
        await client.connect()

        if client.is_available:
            try:
                data = await client.get("entity-detail:orders")
            except CacheKeyError as e:
                client.mark_unavailable(e)

        await client.disconnect()

    Args:
        settings: Redis settings (defaults to the global settings)
        client: Pre-built redis client or test double
    """

    def __init__(self, settings: RedisSettings | None = None, client: Any | None = None):
        if settings is None:
            from tablecache.core.config.settings import get_settings
            settings = get_settings().redis
        self._settings = settings
        self.state = ConnectionState()

        self._conn_mgr = ConnectionManager(settings, client=client)
        self._executor: OperationExecutor | None = None
        self._health_monitor = HealthMonitor(self._conn_mgr, self.state)
        self._reconnect_task: asyncio.Task | None = None

    @property
    def is_available(self) -> bool:
        return self.state.available and self._executor is not None

    async def connect(self) -> None:
        """
        Connect and verify with PING.

        Raises:
            CacheConnectionError: If connection fails (state stays unavailable)
        """
        try:
            client = await self._conn_mgr.connect()
        except CacheConnectionError as e:
            self.state.mark_down(e.message)
            log_stage(logger, "REDIS.CONNECT", "Redis connection failed", level="error", error=e.message)
            raise

        self._executor = OperationExecutor(client)
        self.state.mark_up()
        log_stage(logger, "REDIS.CONNECT", "Redis connected", target=self._conn_mgr.target)

    async def disconnect(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
            try:
                await self._reconnect_task
            except asyncio.CancelledError:
                pass
        self._reconnect_task = None
        await self._conn_mgr.disconnect()
        self._executor = None
        self.state.mark_down()
        log_stage(logger, "REDIS.DISCONNECT", "Redis disconnected")

    async def ping(self) -> bool:
        client = self._conn_mgr.get_client()
        if client is None:
            return False
        try:
            await client.ping()
            return True
        except (RedisError, OSError):
            return False

    # -------------------------------------------------------------------------
    # Failure handling and reconnect
    # -------------------------------------------------------------------------

    def mark_unavailable(self, error: Exception | str) -> None:
        """
        Flip the client to unavailable and start the background reconnect.

        Safe to call repeatedly; only one reconnect task runs at a time.
        """
        was_available = self.state.available
        self.state.mark_down(str(error))
        if was_available:
            log_stage(
                logger, "REDIS.STATE", "Redis marked unavailable",
                level="warning", error=self.state.last_error
            )
        self.schedule_reconnect()

    def schedule_reconnect(self) -> asyncio.Task | None:
        """Start the reconnect loop unless one is running or attempts ran out."""
        if self.state.reconnect_exhausted:
            return None
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return self._reconnect_task
        self._reconnect_task = asyncio.create_task(self._reconnect_loop())
        return self._reconnect_task

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        log_stage(
            logger, "REDIS.RECONNECT", "Redis reconnect attempt failed",
            level="warning",
            attempt=retry_state.attempt_number,
            max_attempts=self._settings.REDIS_RECONNECT_MAX_RETRIES,
            next_delay_s=round(retry_state.next_action.sleep, 3) if retry_state.next_action else None,
            error=getattr(error, "message", str(error)),
        )

    async def _reconnect_loop(self) -> None:
        s = self._settings
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(s.REDIS_RECONNECT_MAX_RETRIES),
                wait=wait_exponential(multiplier=s.REDIS_RECONNECT_BASE_DELAY, max=s.REDIS_RECONNECT_MAX_DELAY),
                retry=retry_if_exception_type(CacheConnectionError),
                before_sleep=self._log_retry,
                reraise=True,
            ):
                with attempt:
                    await self.connect()
        except CacheConnectionError as e:
            self.state.reconnect_exhausted = True
            log_stage(
                logger, "REDIS.RECONNECT", "Redis reconnect attempts exhausted, remote cache disabled",
                level="error", attempts=s.REDIS_RECONNECT_MAX_RETRIES, error=e.message
            )
        else:
            log_stage(logger, "REDIS.RECONNECT", "Redis reconnected", failures=self.state.failures)

    # -------------------------------------------------------------------------
    # Delegate to OperationExecutor
    # -------------------------------------------------------------------------

    def _require_executor(self) -> OperationExecutor:
        if self._executor is None:
            raise CacheConnectionError("Redis client is not connected")
        return self._executor

    async def get(self, key: str) -> bytes | None:
        return await self._require_executor().get(key)

    async def mget(self, keys: list[str]) -> list[bytes | None]:
        return await self._require_executor().mget(keys)

    async def set(self, key: str, value: bytes, ttl: int | None = None) -> bool:
        return await self._require_executor().set(key, value, ttl)

    async def delete(self, *keys: str) -> int:
        return await self._require_executor().delete(*keys)

    async def scan(self, match: str, count: int = 500) -> list[str]:
        return await self._require_executor().scan(match, count)

    async def execute_pipeline(self, build: Callable[[Any], None]) -> list[Any]:
        return await self._require_executor().execute_pipeline(build)

    async def health_check(self) -> dict[str, Any]:
        return await self._health_monitor.health_check()
