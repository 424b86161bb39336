"""
Remote Store (Redis)

Shared cache tier. Keys are used unsanitized; Redis expires every entry
itself through EX, so reads never check age here.

Layout:
    <key>              plain payload
    <key>:meta         manifest of a chunked payload (JSON)
    <key>:chunk:<i>    chunk i of a chunked payload

Payloads above the chunking threshold (10 MiB) are split into fixed-size
chunks. Chunks and manifest go out in one non-transactional pipeline with the
same EX, and the plain key is removed in that pipeline (a plain write removes
the manifest the same way).

Reads are strict: a manifest whose chunks are not all present, or whose
chunks do not add up to total_length, is a miss.

While the Redis client is unavailable every operation returns immediately
(None / False / 0). Any Redis failure flips the client to unavailable and
hands recovery to its background reconnect.
"""

import time
from collections.abc import Callable
from typing import Any

import orjson

from tablecache.core.config.constants import (
    BackendKind,
    CHUNK_INFIX,
    DEFAULT_REMOTE_CHUNK_SIZE,
    DEFAULT_REMOTE_CHUNK_THRESHOLD,
    META_SUFFIX,
    REMOTE_DELETE_BATCH,
)
from tablecache.core.exceptions import CacheError
from tablecache.core.logging import get_logger, log_stage
from tablecache.infrastructure.cache.keys import to_glob
from tablecache.infrastructure.cache.redis_client import RedisClient

logger = get_logger(__name__)


def meta_key(key: str) -> str:
    return f"{key}{META_SUFFIX}"


def chunk_key(key: str, index: int) -> str:
    return f"{key}{CHUNK_INFIX}{index}"


class RemoteStore:
    """
    Redis cache backend with chunking and batch reads.

    Args:
        client: RedisClient owning connection state and reconnect
        chunk_threshold: Payloads larger than this are chunked
        chunk_size: Size of each chunk
        clock: Epoch-seconds clock used for manifest timestamps
    """

    name = BackendKind.REMOTE.value

    def __init__(
        self,
        client: RedisClient,
        chunk_threshold: int = DEFAULT_REMOTE_CHUNK_THRESHOLD,
        chunk_size: int = DEFAULT_REMOTE_CHUNK_SIZE,
        clock: Callable[[], float] = time.time,
    ):
        if chunk_size <= 0 or chunk_threshold <= 0:
            raise ValueError("chunk sizes must be positive")
        self._client = client
        self._chunk_threshold = chunk_threshold
        self._chunk_size = chunk_size
        self._clock = clock

    @property
    def client(self) -> RedisClient:
        return self._client

    @property
    def is_available(self) -> bool:
        return self._client.is_available

    def _on_failure(self, stage: str, error: CacheError, **context) -> None:
        log_stage(logger, stage, "Remote cache operation failed", level="error", error=error.message, **context)
        self._client.mark_unavailable(error)

    @staticmethod
    def _parse_manifest(raw: bytes) -> tuple[int, int] | None:
        try:
            manifest = orjson.loads(raw)
            return int(manifest["chunk_count"]), int(manifest["total_length"])
        except (KeyError, TypeError, ValueError):
            return None

    def _assemble(self, key: str, chunks: list[bytes | None], total_length: int) -> bytes | None:
        missing = [i for i, chunk in enumerate(chunks) if chunk is None]
        if missing:
            log_stage(
                logger, "REMOTE.CHUNK", "Missing chunks, treating as miss",
                level="warning", cache_key=key, missing=missing[:10], chunk_count=len(chunks)
            )
            return None
        data = b"".join(chunks)
        if len(data) != total_length:
            log_stage(
                logger, "REMOTE.CHUNK", "Chunk length mismatch, treating as miss",
                level="warning", cache_key=key, expected=total_length, actual=len(data)
            )
            return None
        return data

    # ========================================================================
    # Public API
    # ========================================================================

    async def get(self, key: str) -> bytes | None:
        """
        Get a payload (plain or chunked).

        One MGET fetches the plain key and the manifest together; chunked
        payloads need one more MGET for the chunks.
        """
        if not self.is_available:
            return None
        try:
            value, manifest_raw = await self._client.mget([key, meta_key(key)])
            if manifest_raw is None:
                return value

            manifest = self._parse_manifest(manifest_raw)
            if manifest is None:
                log_stage(logger, "REMOTE.CHUNK", "Unreadable manifest, treating as miss", level="warning", cache_key=key)
                return None
            chunk_count, total_length = manifest
            chunks = await self._client.mget([chunk_key(key, i) for i in range(chunk_count)])
            return self._assemble(key, chunks, total_length)
        except CacheError as e:
            self._on_failure("REMOTE.GET", e, cache_key=key)
            return None

    async def set(self, key: str, data: bytes, ttl: int) -> bool:
        """
        Store a payload with EX ttl, chunking above the threshold.

        Returns:
            bool: True if written
        """
        if not self.is_available:
            return False

        if len(data) <= self._chunk_threshold:
            def build(pipe):
                pipe.set(key, data, ex=ttl)
                pipe.delete(meta_key(key))
            chunk_count = 0
        else:
            pieces = [data[i:i + self._chunk_size] for i in range(0, len(data), self._chunk_size)]
            chunk_count = len(pieces)
            manifest = orjson.dumps({
                "chunk_count": chunk_count,
                "total_length": len(data),
                "stored_at": self._clock(),
                "ttl_seconds": ttl,
            })

            def build(pipe):
                for i, piece in enumerate(pieces):
                    pipe.set(chunk_key(key, i), piece, ex=ttl)
                pipe.set(meta_key(key), manifest, ex=ttl)
                pipe.delete(key)

        try:
            await self._client.execute_pipeline(build)
        except CacheError as e:
            self._on_failure("REMOTE.SET", e, cache_key=key)
            return False

        if chunk_count:
            log_stage(
                logger, "REMOTE.CHUNK", "Cached chunked entry",
                level="debug", cache_key=key, size=len(data), chunk_count=chunk_count
            )
        else:
            log_stage(logger, "REMOTE.SET", "Cached entry", level="debug", cache_key=key, size=len(data))
        return True

    async def delete(self, key: str) -> bool:
        """Delete a key together with its manifest and chunks."""
        if not self.is_available:
            return False
        try:
            doomed = [key, meta_key(key)]
            manifest_raw = await self._client.get(meta_key(key))
            if manifest_raw is not None:
                manifest = self._parse_manifest(manifest_raw)
                if manifest is not None:
                    doomed.extend(chunk_key(key, i) for i in range(manifest[0]))
            return await self._client.delete(*doomed) > 0
        except CacheError as e:
            self._on_failure("REMOTE.DELETE", e, cache_key=key)
            return False

    async def delete_by_pattern(self, pattern: str) -> int:
        """
        Delete every key matching a glob or substring pattern (SCAN MATCH).

        Manifests of matched keys are removed with them; their chunks are
        unreachable afterwards and expire on their own.

        Returns:
            int: Number of Redis keys removed
        """
        if not self.is_available:
            return 0
        try:
            matched = await self._client.scan(to_glob(pattern), count=REMOTE_DELETE_BATCH)
            doomed = list(dict.fromkeys(
                k for key in matched
                for k in ((key,) if key.endswith(META_SUFFIX) or CHUNK_INFIX in key else (key, meta_key(key)))
            ))
            removed = 0
            for start in range(0, len(doomed), REMOTE_DELETE_BATCH):
                removed += await self._client.delete(*doomed[start:start + REMOTE_DELETE_BATCH])
        except CacheError as e:
            self._on_failure("REMOTE.DELETE", e, pattern=pattern)
            return 0

        log_stage(logger, "REMOTE.DELETE", "Pattern delete completed", pattern=pattern, removed=removed)
        return removed

    async def batch_get(self, keys: list[str]) -> list[bytes | None]:
        """
        Get many payloads, positionally aligned with ``keys``.

        Plain values and manifests come back in one MGET; chunks of every
        chunked hit are fetched together in one more MGET.
        """
        if not keys or not self.is_available:
            return [None] * len(keys)
        try:
            raw = await self._client.mget([*keys, *(meta_key(k) for k in keys)])
            values: list[bytes | None] = list(raw[: len(keys)])
            manifests = raw[len(keys):]

            pending: list[tuple[int, int, int]] = []
            chunk_keys: list[str] = []
            for index, manifest_raw in enumerate(manifests):
                if manifest_raw is None:
                    continue
                values[index] = None
                manifest = self._parse_manifest(manifest_raw)
                if manifest is None:
                    continue
                chunk_count, total_length = manifest
                pending.append((index, len(chunk_keys), total_length))
                chunk_keys.extend(chunk_key(keys[index], i) for i in range(chunk_count))

            if pending:
                chunks = await self._client.mget(chunk_keys)
                bounds = [start for _, start, _ in pending[1:]] + [len(chunk_keys)]
                for (index, start, total_length), end in zip(pending, bounds):
                    values[index] = self._assemble(keys[index], chunks[start:end], total_length)
            return values
        except CacheError as e:
            self._on_failure("REMOTE.MGET", e, key_count=len(keys))
            return [None] * len(keys)

    async def health_check(self) -> dict[str, Any]:
        health = await self._client.health_check()
        return {"backend": self.name, **health}
