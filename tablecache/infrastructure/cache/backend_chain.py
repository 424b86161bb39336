"""
Backend Chain

Ordered fallback across storage tiers (remote first by default, local when
the remote is unavailable). Each attempt is uniform: skip unavailable
backends, try the next one until one succeeds or all are exhausted.

Reads and writes stop at the first success; deletes go to every backend so
an entry written to disk during a Redis outage is removed too.
"""

import asyncio
from dataclasses import dataclass
from typing import Any

from tablecache.core.interfaces import CacheBackend
from tablecache.core.logging import get_logger, log_stage

logger = get_logger(__name__)


@dataclass(frozen=True)
class ChainHit:
    """Bytes found by the chain and the backend that served them."""

    data: bytes
    backend: str


class BackendChain:
    """
    Ordered list of backends with try_get / try_set.

    Args:
        backends: Backends in preference order
    """

    def __init__(self, backends: list[CacheBackend]):
        if not backends:
            raise ValueError("BackendChain needs at least one backend")
        self._backends = list(backends)

    @property
    def backends(self) -> list[CacheBackend]:
        return list(self._backends)

    def available(self) -> list[CacheBackend]:
        return [b for b in self._backends if b.is_available]

    @property
    def any_available(self) -> bool:
        return any(b.is_available for b in self._backends)

    async def try_get(self, key: str) -> ChainHit | None:
        """First hit across available backends, or None."""
        for backend in self.available():
            data = await backend.get(key)
            if data is not None:
                log_stage(logger, "CHAIN.GET", "Backend hit", level="debug", cache_key=key, backend=backend.name)
                return ChainHit(data, backend.name)
        return None

    async def try_set(self, key: str, data: bytes, ttl: int) -> str | None:
        """
        Write to the first backend that accepts the value.

        Returns:
            Name of the backend written to, or None if every backend failed
        """
        for backend in self.available():
            if await backend.set(key, data, ttl):
                return backend.name
        log_stage(logger, "CHAIN.SET", "No backend accepted the write", level="warning", cache_key=key)
        return None

    async def delete(self, key: str) -> bool:
        results = await asyncio.gather(*(b.delete(key) for b in self.available()))
        return any(results)

    async def delete_by_pattern(self, pattern: str) -> dict[str, int]:
        """
        Pattern delete on every available backend.

        Returns:
            Removed count per backend name
        """
        backends = self.available()
        counts = await asyncio.gather(*(b.delete_by_pattern(pattern) for b in backends))
        return {b.name: count for b, count in zip(backends, counts)}

    async def batch_get(self, keys: list[str]) -> list[bytes | None]:
        """
        Batch read; each backend only sees the keys still missing.
        """
        results: list[bytes | None] = [None] * len(keys)
        for backend in self.available():
            missing = [i for i, value in enumerate(results) if value is None]
            if not missing:
                break
            found = await backend.batch_get([keys[i] for i in missing])
            for i, value in zip(missing, found):
                if value is not None:
                    results[i] = value
        return results

    async def health_check(self) -> dict[str, Any]:
        checks = await asyncio.gather(*(b.health_check() for b in self._backends))
        return {b.name: check for b, check in zip(self._backends, checks)}
