"""
Cache Module

Two-tier cache: Redis (remote, preferred) backed by a local disk store.

Module Structure:
-----------------
- **codec.py**: Canonical JSON + gzip payload encoding
- **keys.py**: Key construction, file-name sanitizing, pattern matching
- **local_store.py**: Disk backend with chunked large entries
- **redis_client.py**: Redis connection, operations and background reconnect
- **remote_store.py**: Redis backend with chunked large entries
- **backend_chain.py**: Ordered fallback across backends
- **staleness.py**: Freshness policy and stale markers
- **statistics.py**: Persisted hit/miss counters
- **cache_manager.py**: Public facade (get_or_miss / put / invalidate / warm)
"""

from tablecache.infrastructure.cache.backend_chain import BackendChain, ChainHit
from tablecache.infrastructure.cache.cache_manager import (
    CacheLookup,
    CacheManager,
    CollectionLookup,
    LookupStatus,
    WarmupReport,
    close_cache,
    get_cache_manager,
    init_cache,
)
from tablecache.infrastructure.cache.local_store import LocalStore
from tablecache.infrastructure.cache.redis_client import RedisClient
from tablecache.infrastructure.cache.remote_store import RemoteStore
from tablecache.infrastructure.cache.staleness import Freshness, StaleMarkers, StalenessPolicy
from tablecache.infrastructure.cache.statistics import CacheStatistics, StatisticsAggregator

__all__ = [
    "BackendChain",
    "ChainHit",
    "CacheLookup",
    "CacheManager",
    "CollectionLookup",
    "LookupStatus",
    "WarmupReport",
    "close_cache",
    "get_cache_manager",
    "init_cache",
    "LocalStore",
    "RedisClient",
    "RemoteStore",
    "Freshness",
    "StaleMarkers",
    "StalenessPolicy",
    "CacheStatistics",
    "StatisticsAggregator",
]
