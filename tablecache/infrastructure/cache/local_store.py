"""
Local Disk Store

Filesystem-backed cache tier, used when Redis is unavailable (or first, when
configured so). Keys map to file names through keys.sanitize().

Layout under the cache directory:
    <name>.cache            single-file entry: one JSON header line + payload
    <name>.meta             manifest of a chunked entry
    <name>-chunks/chunk-<i> chunk files of a chunked entry

Write protocol:
- Single files are written to a temp file and atomically renamed
- Chunked entries write every chunk first and the manifest last

Read protocol (strict):
- Manifest present: all chunks must exist and add up to total_length,
  otherwise the read is a miss (never partial bytes)
- Expiry is checked at read time; expired entries are deleted best-effort

All blocking file I/O runs in worker threads via asyncio.to_thread, so the
event loop never waits on the disk.
"""

import asyncio
import os
import shutil
import tempfile
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

import orjson

from tablecache.core.config.constants import (
    BackendKind,
    LOCAL_CHUNK_DIR_SUFFIX,
    LOCAL_CHUNK_PREFIX,
    LOCAL_ENTRY_SUFFIX,
    LOCAL_META_SUFFIX,
    LOCAL_TMP_SUFFIX,
)
from tablecache.core.exceptions import CorruptEntryError, InvalidKeyError
from tablecache.core.logging import get_logger, log_stage
from tablecache.infrastructure.cache.keys import matches_pattern, sanitize, unsanitize

logger = get_logger(__name__)


class LocalStore:
    """
    Filesystem cache backend.

    The cache directory is created lazily on first use. If that fails the
    store falls back once to a secondary directory; if that fails too the
    store reports itself unavailable and every operation becomes a no-op.

    Args:
        cache_dir: Primary cache directory
        fallback_dir: Directory tried when the primary cannot be created
        chunk_size: Payloads larger than this are chunked
        clock: Returns the current time in epoch seconds (injectable for tests)
    """

    name = BackendKind.LOCAL.value

    def __init__(
        self,
        cache_dir: str | Path,
        fallback_dir: str | Path | None = None,
        chunk_size: int = 512 * 1024,
        clock: Callable[[], float] = time.time,
    ):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self._primary_dir = Path(cache_dir)
        self._fallback_dir = Path(fallback_dir) if fallback_dir else None
        self._chunk_size = chunk_size
        self._clock = clock

        self._dir: Path | None = None
        self._gave_up = False

    # ========================================================================
    # Directory Management
    # ========================================================================

    @property
    def is_available(self) -> bool:
        return not self._gave_up

    @property
    def directory(self) -> Path | None:
        """Directory in use, or None before first use / after giving up."""
        return self._dir

    def _ensure_dir(self) -> Path | None:
        if self._dir is not None:
            return self._dir
        if self._gave_up:
            return None

        candidates = [self._primary_dir]
        if self._fallback_dir is not None:
            candidates.append(self._fallback_dir)

        for candidate in candidates:
            try:
                candidate.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                log_stage(
                    logger, "LOCAL.INIT", "Cache directory unusable",
                    level="warning", directory=str(candidate), error=str(e)
                )
                continue
            if candidate != self._primary_dir:
                log_stage(logger, "LOCAL.INIT", "Using fallback cache directory", directory=str(candidate))
            self._dir = candidate
            return candidate

        self._gave_up = True
        log_stage(logger, "LOCAL.INIT", "Local cache disabled, no usable directory", level="error")
        return None

    def _paths(self, directory: Path, key: str) -> tuple[Path, Path, Path]:
        name = sanitize(key)
        return (
            directory / f"{name}{LOCAL_ENTRY_SUFFIX}",
            directory / f"{name}{LOCAL_META_SUFFIX}",
            directory / f"{name}{LOCAL_CHUNK_DIR_SUFFIX}",
        )

    def _expired(self, stored_at: float, ttl: float) -> bool:
        return self._clock() - stored_at > ttl

    # ========================================================================
    # Sync Helpers (run in worker threads)
    # ========================================================================

    def _atomic_write(self, target: Path, data: bytes) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".", suffix=LOCAL_TMP_SUFFIX)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _remove_entry(self, directory: Path, key: str) -> bool:
        entry, meta, chunks = self._paths(directory, key)
        removed = False
        for path in (meta, entry):
            try:
                path.unlink()
                removed = True
            except FileNotFoundError:
                pass
        if chunks.exists():
            shutil.rmtree(chunks)
            removed = True
        return removed

    def _discard(self, directory: Path, key: str) -> None:
        """Best-effort removal on the read path."""
        try:
            self._remove_entry(directory, key)
        except OSError as e:
            log_stage(logger, "LOCAL.DELETE", "Failed to remove entry", level="warning", cache_key=key, error=str(e))

    def _read_chunked(self, directory: Path, key: str, meta: Path, chunks_dir: Path) -> bytes | None:
        try:
            manifest = orjson.loads(meta.read_bytes())
            chunk_count = int(manifest["chunk_count"])
            total_length = int(manifest["total_length"])
            stored_at = float(manifest["stored_at"])
            ttl = float(manifest["ttl_seconds"])
        except FileNotFoundError:
            return None
        except (KeyError, TypeError, ValueError) as e:
            raise CorruptEntryError.from_exception(e, message="Unreadable chunk manifest", cache_key=key)

        if self._expired(stored_at, ttl):
            log_stage(logger, "LOCAL.GET", "Entry expired", level="debug", cache_key=key)
            self._discard(directory, key)
            return None

        parts = []
        for i in range(chunk_count):
            chunk_path = chunks_dir / f"{LOCAL_CHUNK_PREFIX}{i}"
            try:
                parts.append(chunk_path.read_bytes())
            except FileNotFoundError:
                log_stage(
                    logger, "LOCAL.CHUNK", "Missing chunk, treating as miss",
                    level="warning", cache_key=key, chunk=i, chunk_count=chunk_count
                )
                return None

        data = b"".join(parts)
        if len(data) != total_length:
            log_stage(
                logger, "LOCAL.CHUNK", "Chunk length mismatch, treating as miss",
                level="warning", cache_key=key, expected=total_length, actual=len(data)
            )
            return None
        return data

    def _read_single(self, directory: Path, key: str, entry: Path) -> bytes | None:
        try:
            raw = entry.read_bytes()
        except FileNotFoundError:
            return None

        header_line, sep, payload = raw.partition(b"\n")
        try:
            if not sep:
                raise ValueError("missing header terminator")
            header = orjson.loads(header_line)
            stored_at = float(header["stored_at"])
            ttl = float(header["ttl_seconds"])
            length = int(header["length"])
        except (KeyError, TypeError, ValueError) as e:
            raise CorruptEntryError.from_exception(e, message="Unreadable cache file header", cache_key=key)

        if self._expired(stored_at, ttl):
            log_stage(logger, "LOCAL.GET", "Entry expired", level="debug", cache_key=key)
            self._discard(directory, key)
            return None

        if len(payload) != length:
            raise CorruptEntryError(
                "Truncated cache file", details={"cache_key": key, "expected": length, "actual": len(payload)}
            )
        return payload

    def _get_sync(self, key: str) -> bytes | None:
        directory = self._ensure_dir()
        if directory is None:
            return None
        entry, meta, chunks = self._paths(directory, key)
        try:
            if meta.exists():
                return self._read_chunked(directory, key, meta, chunks)
            return self._read_single(directory, key, entry)
        except CorruptEntryError as e:
            log_stage(
                logger, "LOCAL.GET", "Corrupt entry discarded",
                level="warning", cache_key=key, error=e.message, details=e.details
            )
            self._discard(directory, key)
            return None

    def _set_sync(self, key: str, data: bytes, ttl: int) -> bool:
        directory = self._ensure_dir()
        if directory is None:
            return False
        entry, meta, chunks = self._paths(directory, key)
        stored_at = self._clock()

        if len(data) <= self._chunk_size:
            meta.unlink(missing_ok=True)
            if chunks.exists():
                shutil.rmtree(chunks)
            header = orjson.dumps({"stored_at": stored_at, "ttl_seconds": ttl, "length": len(data)})
            self._atomic_write(entry, header + b"\n" + data)
            log_stage(logger, "LOCAL.SET", "Cached entry", level="debug", cache_key=key, size=len(data))
            return True

        # Drop the manifest first so readers never pair it with new chunks
        meta.unlink(missing_ok=True)
        if chunks.exists():
            shutil.rmtree(chunks)
        chunks.mkdir(parents=True, exist_ok=True)

        chunk_count = 0
        for offset in range(0, len(data), self._chunk_size):
            (chunks / f"{LOCAL_CHUNK_PREFIX}{chunk_count}").write_bytes(data[offset:offset + self._chunk_size])
            chunk_count += 1

        manifest = {
            "chunk_count": chunk_count,
            "total_length": len(data),
            "stored_at": stored_at,
            "ttl_seconds": ttl,
        }
        self._atomic_write(meta, orjson.dumps(manifest))
        entry.unlink(missing_ok=True)
        log_stage(
            logger, "LOCAL.CHUNK", "Cached chunked entry",
            level="debug", cache_key=key, size=len(data), chunk_count=chunk_count
        )
        return True

    def _delete_sync(self, key: str) -> bool:
        directory = self._ensure_dir()
        if directory is None:
            return False
        return self._remove_entry(directory, key)

    def _delete_by_pattern_sync(self, pattern: str) -> int:
        directory = self._ensure_dir()
        if directory is None:
            return 0

        names: set[str] = set()
        for path in directory.iterdir():
            name = path.name
            for suffix in (LOCAL_ENTRY_SUFFIX, LOCAL_META_SUFFIX, LOCAL_CHUNK_DIR_SUFFIX):
                if name.endswith(suffix):
                    names.add(name[: -len(suffix)])
                    break

        removed = 0
        for name in sorted(names):
            if not matches_pattern(unsanitize(name), pattern):
                continue
            deleted = False
            for suffix in (LOCAL_META_SUFFIX, LOCAL_ENTRY_SUFFIX, LOCAL_CHUNK_DIR_SUFFIX):
                path = directory / f"{name}{suffix}"
                try:
                    if path.is_dir():
                        shutil.rmtree(path)
                        deleted = True
                    elif path.exists():
                        path.unlink()
                        deleted = True
                except OSError as e:
                    log_stage(
                        logger, "LOCAL.DELETE", "Failed to delete cache file",
                        level="warning", file=path.name, error=str(e)
                    )
            if deleted:
                removed += 1
        return removed

    def _disk_usage_sync(self) -> dict[str, int]:
        directory = self._ensure_dir()
        size = 0
        items = 0
        if directory is None:
            return {"size_bytes": 0, "item_count": 0}
        for path in directory.rglob("*"):
            try:
                if path.is_file():
                    size += path.stat().st_size
                    if path.parent == directory and path.suffix in (LOCAL_ENTRY_SUFFIX, LOCAL_META_SUFFIX):
                        items += 1
            except OSError:
                continue
        return {"size_bytes": size, "item_count": items}

    # ========================================================================
    # Public API
    # ========================================================================

    async def get(self, key: str) -> bytes | None:
        """
        Get stored bytes for a key.

        Returns:
            bytes or None (miss, expired, incomplete chunks, disk error)
        """
        try:
            return await asyncio.to_thread(self._get_sync, key)
        except InvalidKeyError:
            raise
        except OSError as e:
            log_stage(logger, "LOCAL.GET", "Local read failed", level="error", cache_key=key, error=str(e))
            return None

    async def set(self, key: str, data: bytes, ttl: int) -> bool:
        """
        Store bytes for a key, chunking payloads above the chunk size.

        Returns:
            bool: True if written
        """
        try:
            return await asyncio.to_thread(self._set_sync, key, data, ttl)
        except InvalidKeyError:
            raise
        except OSError as e:
            log_stage(logger, "LOCAL.SET", "Local write failed", level="error", cache_key=key, error=str(e))
            return False

    async def delete(self, key: str) -> bool:
        try:
            return await asyncio.to_thread(self._delete_sync, key)
        except InvalidKeyError:
            raise
        except OSError as e:
            log_stage(logger, "LOCAL.DELETE", "Local delete failed", level="error", cache_key=key, error=str(e))
            return False

    async def delete_by_pattern(self, pattern: str) -> int:
        """
        Delete every entry whose decoded key matches a glob or substring pattern.

        Failures on individual files are logged and do not stop the batch.

        Returns:
            int: Number of keys removed
        """
        try:
            removed = await asyncio.to_thread(self._delete_by_pattern_sync, pattern)
        except OSError as e:
            log_stage(logger, "LOCAL.DELETE", "Pattern delete failed", level="error", pattern=pattern, error=str(e))
            return 0
        log_stage(logger, "LOCAL.DELETE", "Pattern delete completed", pattern=pattern, removed=removed)
        return removed

    async def batch_get(self, keys: list[str]) -> list[bytes | None]:
        return list(await asyncio.gather(*(self.get(key) for key in keys)))

    async def disk_usage(self) -> dict[str, int]:
        """Total bytes on disk and number of stored entries."""
        try:
            return await asyncio.to_thread(self._disk_usage_sync)
        except OSError as e:
            log_stage(logger, "LOCAL.STATS", "Disk usage scan failed", level="warning", error=str(e))
            return {"size_bytes": 0, "item_count": 0}

    async def health_check(self) -> dict[str, Any]:
        usage = await self.disk_usage()
        return {
            "backend": self.name,
            "available": self.is_available,
            "directory": str(self._dir) if self._dir else None,
            **usage,
        }
