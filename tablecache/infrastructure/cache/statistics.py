"""
Cache Statistics

Hit / miss / stale-hit counters, global and per entity, persisted as one
cache entry under "cache:stats".

Every update is a read-modify-write of that entry. Inside one process the
updates are serialized by an asyncio.Lock, so counts are exact for a single
process. Several processes sharing Redis can still lose increments: the data
is advisory and never drives correctness.

Failures are logged and never surface to the caller.
"""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from tablecache.core.config.constants import STATS_KEY
from tablecache.core.exceptions import CacheError
from tablecache.core.logging import get_logger, log_stage
from tablecache.infrastructure.cache import codec
from tablecache.infrastructure.cache.backend_chain import BackendChain

logger = get_logger(__name__)


@dataclass
class EntityStats:
    hits: int = 0
    misses: int = 0
    stale_hits: int = 0

    @property
    def accesses(self) -> int:
        return self.hits + self.misses + self.stale_hits

    def to_dict(self) -> dict[str, int]:
        return {"hits": self.hits, "misses": self.misses, "stale_hits": self.stale_hits}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EntityStats":
        return cls(
            hits=int(data.get("hits", 0)),
            misses=int(data.get("misses", 0)),
            stale_hits=int(data.get("stale_hits", 0)),
        )


@dataclass
class CacheStatistics:
    """Aggregate counters plus one bucket per entity."""

    hits: int = 0
    misses: int = 0
    stale_hits: int = 0
    per_entity: dict[str, EntityStats] = field(default_factory=dict)
    updated_at: float | None = None

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses + self.stale_hits
        return round((self.hits + self.stale_hits) / total, 4) if total else 0.0

    def bump(self, entity: str, kind: str) -> None:
        bucket = self.per_entity.setdefault(entity, EntityStats())
        setattr(self, kind, getattr(self, kind) + 1)
        setattr(bucket, kind, getattr(bucket, kind) + 1)

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "stale_hits": self.stale_hits,
            "hit_rate": self.hit_rate,
            "per_entity": {name: s.to_dict() for name, s in self.per_entity.items()},
            "updated_at": (
                datetime.fromtimestamp(self.updated_at, tz=timezone.utc).isoformat()
                if self.updated_at is not None else None
            ),
            "updated_at_epoch": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CacheStatistics":
        return cls(
            hits=int(data.get("hits", 0)),
            misses=int(data.get("misses", 0)),
            stale_hits=int(data.get("stale_hits", 0)),
            per_entity={
                name: EntityStats.from_dict(bucket)
                for name, bucket in (data.get("per_entity") or {}).items()
            },
            updated_at=data.get("updated_at_epoch"),
        )


class StatisticsAggregator:
    """
    Persisted hit/miss counters.

    Args:
        chain: Backend chain holding the statistics entry
        ttl: Lifetime of the statistics entry in seconds
        clock: Epoch-seconds clock
    """

    HIT = "hits"
    MISS = "misses"
    STALE_HIT = "stale_hits"

    def __init__(self, chain: BackendChain, ttl: int = 86400, clock: Callable[[], float] = time.time):
        self._chain = chain
        self._ttl = ttl
        self._clock = clock
        self._lock = asyncio.Lock()

    async def _load(self) -> CacheStatistics | None:
        hit = await self._chain.try_get(STATS_KEY)
        if hit is None:
            return None
        return CacheStatistics.from_dict(codec.decode(hit.data))

    async def _record(self, entity: str, kind: str) -> None:
        try:
            async with self._lock:
                stats = await self._load() or CacheStatistics()
                stats.bump(entity, kind)
                stats.updated_at = self._clock()
                await self._chain.try_set(STATS_KEY, codec.encode(stats.to_dict()), self._ttl)
        except (CacheError, ValueError, TypeError) as e:
            log_stage(
                logger, "STATS.UPDATE", "Failed to update cache statistics",
                level="warning", entity=entity, kind=kind, error=str(e)
            )

    async def record_hit(self, entity: str, stale: bool = False) -> None:
        await self._record(entity, self.STALE_HIT if stale else self.HIT)

    async def record_miss(self, entity: str) -> None:
        await self._record(entity, self.MISS)

    async def get_stats(self) -> CacheStatistics | None:
        """Current statistics, or None when nothing was recorded (or on failure)."""
        try:
            return await self._load()
        except (CacheError, ValueError, TypeError) as e:
            log_stage(logger, "STATS.GET", "Failed to read cache statistics", level="warning", error=str(e))
            return None

    async def reset(self) -> None:
        async with self._lock:
            await self._chain.delete(STATS_KEY)
        log_stage(logger, "STATS.RESET", "Cache statistics reset")

    async def popular_entities(self, limit: int = 5) -> list[str]:
        """
        Most-accessed entities (hits + misses + stale hits), most popular first.
        """
        stats = await self.get_stats()
        if stats is None:
            return []
        ranked = sorted(stats.per_entity.items(), key=lambda item: (-item[1].accesses, item[0]))
        return [name for name, _ in ranked[:limit]]
