"""
Staleness Policy

Freshness is derived from the entry's stored_at and TTL plus an optional
side-channel marker:

    age > ttl                       → EXPIRED (miss, purge)
    age > ttl * ratio  or  marked   → STALE   (serve, refresh in background)
    otherwise                       → FRESH

The marker lives at "<key>:stale". Its presence alone marks the entry stale;
it has its own (longer) TTL and is removed whenever the parent is written or
invalidated.
"""

import time
from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING

from tablecache.core.config.constants import STALE_SUFFIX
from tablecache.core.exceptions import ConfigurationError
from tablecache.core.logging import get_logger, log_stage
from tablecache.infrastructure.cache import codec

if TYPE_CHECKING:
    from tablecache.infrastructure.cache.backend_chain import BackendChain

logger = get_logger(__name__)


class Freshness(str, Enum):
    FRESH = "fresh"
    STALE = "stale"
    EXPIRED = "expired"


class StalenessPolicy:
    """
    Age-based freshness with a configurable stale ratio.

    Args:
        stale_ratio: Fraction of the TTL after which data is stale (0 < ratio < 1)
        clock: Epoch-seconds clock (tests inject a fake one)

    Raises:
        ConfigurationError: If the ratio is outside (0, 1)
    """

    def __init__(self, stale_ratio: float = 0.75, clock: Callable[[], float] = time.time):
        if not 0 < stale_ratio < 1:
            raise ConfigurationError(
                "Stale ratio must be strictly between 0 and 1", details={"stale_ratio": stale_ratio}
            )
        self.stale_ratio = stale_ratio
        self._clock = clock

    def now(self) -> float:
        return self._clock()

    def age(self, stored_at: float) -> float:
        return self._clock() - stored_at

    def is_expired(self, stored_at: float, ttl: float) -> bool:
        return self.age(stored_at) > ttl

    def is_stale(self, stored_at: float, ttl: float) -> bool:
        return self.age(stored_at) > ttl * self.stale_ratio

    def evaluate(self, stored_at: float, ttl: float, marked: bool = False) -> Freshness:
        """
        Classify an entry.

        Args:
            stored_at: Write time in epoch seconds
            ttl: Entry TTL in seconds
            marked: Whether a stale marker exists for the key
        """
        if self.is_expired(stored_at, ttl):
            return Freshness.EXPIRED
        if marked or self.is_stale(stored_at, ttl):
            return Freshness.STALE
        return Freshness.FRESH


def marker_key(key: str) -> str:
    return f"{key}{STALE_SUFFIX}"


class StaleMarkers:
    """
    Side-channel stale markers stored through the backend chain.

    A marker lets a caller force-invalidate freshness (e.g. after an
    out-of-band write to the table) without rewriting the payload.

    Args:
        chain: Backend chain markers are written to
        policy: Policy providing the clock for the marker timestamp
        marker_ttl: Lifetime of a marker in seconds
    """

    def __init__(self, chain: "BackendChain", policy: StalenessPolicy, marker_ttl: int = 43200):
        self._chain = chain
        self._policy = policy
        self._marker_ttl = marker_ttl

    async def mark(self, key: str) -> bool:
        payload = codec.encode({"marked_stale_at": self._policy.now()})
        written = await self._chain.try_set(marker_key(key), payload, self._marker_ttl)
        if written:
            log_stage(logger, "STALE.MARK", "Marked entry stale", cache_key=key)
        return written is not None

    async def is_marked(self, key: str) -> bool:
        hit = await self._chain.try_get(marker_key(key))
        return hit is not None

    async def clear(self, key: str) -> None:
        await self._chain.delete(marker_key(key))
