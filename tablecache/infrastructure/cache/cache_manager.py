"""
Two-Tier Cache Manager (Redis + Local Disk)

Architecture:
    CacheManager (Public API)
        ├── BackendChain (ordered fallback)
        │   ├── RemoteStore (Redis, preferred)
        │   └── LocalStore (disk, used when Redis is unavailable)
        ├── StalenessPolicy + StaleMarkers (stale-while-revalidate)
        └── StatisticsAggregator (hits / misses / stale hits)

Read path (get_or_miss):
    1. Build the key; read the envelope {value, stored_at, ttl} from the chain
    2. Expired → purge and report a miss
    3. Past ttl * stale_ratio, or marked stale → serve the value flagged stale
       and start one background refresh if the caller gave a refresh callable
    4. Otherwise → fresh hit
    The manager never fetches from the table store itself; on a miss the
    caller fetches and calls put().

Error policy:
    The cache never fails the caller. Backend and codec failures are logged
    and degrade to a miss or a no-op. Only InvalidKeyError (empty namespace or
    entity id) propagates, since it is a programmer error at the call site.
"""

import asyncio
import inspect
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from tablecache.core.config.constants import (
    COLLECTION_BLOB_SUFFIX,
    COLLECTION_IDS_SUFFIX,
    COLLECTION_ITEM_INFIX,
    COLLECTION_METADATA_SUFFIX,
    ENTITY_LIST_ID,
    Namespace,
)
from tablecache.core.config.settings import Settings, get_settings
from tablecache.core.exceptions import CacheConnectionError, CacheError, CorruptEntryError, SerializationError
from tablecache.core.interfaces import CacheBackend
from tablecache.core.logging import get_logger, log_stage
from tablecache.infrastructure.cache import codec
from tablecache.infrastructure.cache.backend_chain import BackendChain
from tablecache.infrastructure.cache.keys import build_key, escape_glob, item_identifier
from tablecache.infrastructure.cache.local_store import LocalStore
from tablecache.infrastructure.cache.redis_client import RedisClient
from tablecache.infrastructure.cache.remote_store import RemoteStore
from tablecache.infrastructure.cache.staleness import Freshness, StaleMarkers, StalenessPolicy
from tablecache.infrastructure.cache.statistics import CacheStatistics, StatisticsAggregator

logger = get_logger(__name__)

RefreshFn = Callable[[], Any | Awaitable[Any]]
FetchFn = Callable[[str], Any | Awaitable[Any]]


async def _maybe_await(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    return result


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


# =============================================================================
# LAYER 1: RESULT TYPES
# =============================================================================


class LookupStatus(str, Enum):
    HIT = "hit"
    STALE = "stale"
    MISS = "miss"


@dataclass(frozen=True)
class CacheLookup:
    """
    Outcome of a cache read.

    Attributes:
        status: HIT, STALE or MISS
        value: Cached value (None on a miss)
        stored_at: Write time in epoch seconds
        key: Cache key that was read
    """

    status: LookupStatus
    value: Any = None
    stored_at: float | None = None
    key: str | None = None

    @property
    def hit(self) -> bool:
        return self.status is not LookupStatus.MISS

    @property
    def is_stale(self) -> bool:
        return self.status is LookupStatus.STALE

    @classmethod
    def miss(cls, key: str | None = None) -> "CacheLookup":
        return cls(LookupStatus.MISS, key=key)


@dataclass(frozen=True)
class CollectionLookup(CacheLookup):
    """
    Outcome of a large-collection read.

    ``value`` is the list of records. ``is_partial`` is set when some
    per-record entries were missing but the completeness threshold was met;
    ``missing`` counts them. ``extra`` carries what the writer stored next to
    the records (e.g. the pagination cursor).
    """

    is_partial: bool = False
    missing: int = 0
    extra: dict[str, Any] = field(default_factory=dict)
    key_fields: tuple[str, ...] = ()

    @property
    def records(self) -> list[Any]:
        return self.value or []

    @classmethod
    def miss(cls, key: str | None = None) -> "CollectionLookup":
        return cls(LookupStatus.MISS, key=key)


@dataclass
class WarmupReport:
    """Per-entity outcome of a warmup run."""

    requested: list[str] = field(default_factory=list)
    warmed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "requested": self.requested,
            "warmed": self.warmed,
            "skipped": self.skipped,
            "failed": self.failed,
        }


def normalize_entity_detail(details: Mapping[str, Any] | None) -> dict[str, Any] | None:
    """Fill the table-description fields the admin UI relies on."""
    if not details:
        return None
    normalized = dict(details)
    normalized["TableName"] = details.get("TableName") or "Unknown"
    normalized["TableStatus"] = details.get("TableStatus") or "ACTIVE"
    normalized["CreationDateTime"] = (
        details.get("CreationDateTime") or datetime.now(timezone.utc).isoformat()
    )
    for numeric in ("ItemCount", "TableSizeBytes"):
        value = details.get(numeric)
        normalized[numeric] = value if isinstance(value, (int, float)) and not isinstance(value, bool) else 0
    return normalized


# =============================================================================
# LAYER 2: PUBLIC API
# =============================================================================


class CacheManager:
    """
    Stale-while-revalidate cache over an ordered chain of backends.

    Usage:
        cache = CacheManager()
        await cache.initialize()

        lookup = await cache.get_entity_detail("orders", refresh=lambda: client.describe("orders"))
        if not lookup.hit:
            details = await client.describe("orders")
            await cache.put_entity_detail("orders", details)

        await cache.invalidate_entity("orders")
        await cache.close()

    Args:
        backends: Backends in preference order (built from settings when omitted)
        settings: Settings instance (global settings when omitted)
        clock: Epoch-seconds clock shared by policy, statistics and stores
    """

    def __init__(
        self,
        backends: list[CacheBackend] | None = None,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._settings = settings or get_settings()
        cache_cfg = self._settings.cache
        self._clock = clock

        if backends is None:
            backends = self._build_backends()
        self._chain = BackendChain(backends)

        self._policy = StalenessPolicy(cache_cfg.CACHE_STALE_RATIO, clock=clock)
        self._markers = StaleMarkers(self._chain, self._policy, marker_ttl=cache_cfg.CACHE_STALE_MARKER_TTL)
        self._stats = StatisticsAggregator(self._chain, ttl=cache_cfg.CACHE_STATS_TTL, clock=clock)

        self._enabled = cache_cfg.ENABLE_CACHING
        self._refreshes: dict[str, asyncio.Task] = {}
        self._initialized = False

        log_stage(
            logger, "CACHE.INIT", "Cache manager initialized",
            backends=[b.name for b in backends],
            caching_enabled=self._enabled,
            stale_ratio=cache_cfg.CACHE_STALE_RATIO,
        )

    def _build_backends(self) -> list[CacheBackend]:
        cache_cfg = self._settings.cache
        local = LocalStore(
            cache_cfg.CACHE_DIR,
            fallback_dir=cache_cfg.CACHE_FALLBACK_DIR,
            chunk_size=cache_cfg.LOCAL_CHUNK_SIZE,
            clock=self._clock,
        )
        if not self._settings.redis.REMOTE_CACHE_ENABLED:
            return [local]

        remote = RemoteStore(
            RedisClient(self._settings.redis),
            chunk_threshold=cache_cfg.REMOTE_CHUNK_THRESHOLD,
            chunk_size=cache_cfg.REMOTE_CHUNK_SIZE,
            clock=self._clock,
        )
        return [remote, local] if cache_cfg.CACHE_PREFER_REMOTE else [local, remote]

    def _remote_stores(self) -> list[RemoteStore]:
        return [b for b in self._chain.backends if isinstance(b, RemoteStore)]

    @property
    def chain(self) -> BackendChain:
        return self._chain

    @property
    def statistics(self) -> StatisticsAggregator:
        return self._stats

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def initialize(self) -> None:
        """
        Connect remote backends.

        A failed connect is logged and handed to the client's background
        reconnect; the manager keeps serving from the local store meanwhile.
        """
        if self._initialized:
            return
        for store in self._remote_stores():
            try:
                await store.client.connect()
            except CacheConnectionError as e:
                log_stage(
                    logger, "CACHE.INIT", "Remote cache unavailable at startup, using local store",
                    level="warning", error=e.message
                )
                store.client.schedule_reconnect()
        self._initialized = True

    async def close(self) -> None:
        """Cancel pending refreshes and disconnect remote backends."""
        tasks = list(self._refreshes.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._refreshes.clear()

        for store in self._remote_stores():
            await store.client.disconnect()
        self._initialized = False
        log_stage(logger, "CACHE.CLOSE", "Cache manager closed", cancelled_refreshes=len(tasks))

    # -------------------------------------------------------------------------
    # Envelope helpers
    # -------------------------------------------------------------------------

    def _ttl(self, namespace: Namespace | str, ttl: int | None) -> int:
        return ttl if ttl else self._settings.cache.ttl_for(namespace)

    def _envelope(self, value: Any, ttl: int) -> bytes:
        return codec.encode({"value": value, "stored_at": self._clock(), "ttl": ttl})

    async def _write(self, key: str, value: Any, ttl: int) -> bool:
        try:
            data = self._envelope(value, ttl)
        except SerializationError as e:
            log_stage(logger, "CACHE.SET", "Value not cacheable", level="error", cache_key=key, error=e.message)
            return False
        return await self._chain.try_set(key, data, ttl) is not None

    async def _read(self, key: str) -> dict[str, Any] | None:
        hit = await self._chain.try_get(key)
        if hit is None:
            return None
        try:
            envelope = codec.decode(hit.data)
            if not isinstance(envelope, dict) or not all(_is_number(envelope.get(f)) for f in ("stored_at", "ttl")):
                raise CorruptEntryError("Cache entry has no envelope", details={"cache_key": key})
        except CorruptEntryError as e:
            log_stage(
                logger, "CACHE.GET", "Corrupt entry discarded",
                level="warning", cache_key=key, backend=hit.backend, error=e.message
            )
            await self._chain.delete(key)
            return None
        return envelope

    async def _purge(self, key: str) -> None:
        await self._chain.delete(key)
        await self._markers.clear(key)

    async def _classify(self, key: str, envelope: dict[str, Any], marked: bool | None = None) -> Freshness:
        """Freshness of an envelope, purging expired entries and marking stale ones."""
        stored_at, ttl = float(envelope["stored_at"]), float(envelope["ttl"])
        freshness = self._policy.evaluate(stored_at, ttl)
        if freshness is Freshness.EXPIRED:
            log_stage(logger, "CACHE.GET", "Entry expired, purging", level="debug", cache_key=key)
            await self._purge(key)
            return freshness

        if freshness is Freshness.FRESH:
            if marked is None:
                marked = await self._markers.is_marked(key)
            return Freshness.STALE if marked else Freshness.FRESH

        if not marked:
            await self._markers.mark(key)
        return freshness

    async def _lookup(self, key: str) -> CacheLookup:
        envelope = await self._read(key)
        if envelope is None:
            return CacheLookup.miss(key)
        freshness = await self._classify(key, envelope)
        if freshness is Freshness.EXPIRED:
            return CacheLookup.miss(key)
        status = LookupStatus.STALE if freshness is Freshness.STALE else LookupStatus.HIT
        return CacheLookup(status, envelope.get("value"), float(envelope["stored_at"]), key)

    async def _record(self, entity: str, lookup: CacheLookup) -> None:
        if lookup.hit:
            await self._stats.record_hit(entity, stale=lookup.is_stale)
        else:
            await self._stats.record_miss(entity)

    # -------------------------------------------------------------------------
    # Core Cache Operations
    # -------------------------------------------------------------------------

    async def get_or_miss(
        self,
        namespace: Namespace | str,
        entity_id: str,
        params: Mapping[str, Any] | None = None,
        *,
        refresh: RefreshFn | None = None,
        ttl: int | None = None,
        record_stats: bool = True,
    ) -> CacheLookup:
        """
        Read one entry with stale-while-revalidate.

        Args:
            namespace: Entity kind
            entity_id: Entity identifier (statistics are kept per entity id)
            params: Optional parameter bag hashed into the key
            refresh: Called in the background when the entry is stale; its
                result is written back with put()
            ttl: TTL used by the background refresh write
            record_stats: Count the access in the statistics

        Returns:
            CacheLookup: HIT, STALE or MISS

        Raises:
            InvalidKeyError: If namespace or entity_id is empty
        """
        key = build_key(namespace, entity_id, params)
        if not self._enabled:
            return CacheLookup.miss(key)

        try:
            lookup = await self._lookup(key)
        except CacheError as e:
            log_stage(logger, "CACHE.GET", "Cache read failed, treating as miss", level="error", cache_key=key, error=e.message)
            lookup = CacheLookup.miss(key)

        if record_stats:
            await self._record(str(entity_id), lookup)

        log_stage(logger, "CACHE.GET", "Cache lookup", level="debug", cache_key=key, status=lookup.status.value)

        if lookup.is_stale and refresh is not None:
            self.trigger_refresh(namespace, entity_id, refresh, params=params, ttl=ttl)
        return lookup

    async def put(
        self,
        namespace: Namespace | str,
        entity_id: str,
        value: Any,
        ttl: int | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> bool:
        """
        Write one entry (full overwrite) and clear its stale marker.

        Args:
            ttl: TTL in seconds (namespace default when omitted)

        Returns:
            bool: True if some backend stored the value
        """
        key = build_key(namespace, entity_id, params)
        if not self._enabled:
            return False

        written = await self._write(key, value, self._ttl(namespace, ttl))
        await self._markers.clear(key)
        log_stage(logger, "CACHE.SET", "Cache write", level="debug", cache_key=key, written=written)
        return written

    async def batch_get(self, keys: list[str]) -> list[Any]:
        """
        Read many prebuilt keys at once, positionally aligned.

        Missing, expired or corrupt entries come back as None. Nothing is
        recorded in the statistics.
        """
        if not keys or not self._enabled:
            return [None] * len(keys)

        raw = await self._chain.batch_get(keys)
        values: list[Any] = []
        for key, data in zip(keys, raw):
            if data is None:
                values.append(None)
                continue
            try:
                envelope = codec.decode(data)
                if self._policy.is_expired(float(envelope["stored_at"]), float(envelope["ttl"])):
                    values.append(None)
                    continue
                values.append(envelope.get("value"))
            except (CorruptEntryError, KeyError, TypeError, ValueError) as e:
                log_stage(logger, "CACHE.MGET", "Skipping unreadable entry", level="warning", cache_key=key, error=str(e))
                values.append(None)
        return values

    async def mark_stale(
        self, namespace: Namespace | str, entity_id: str, params: Mapping[str, Any] | None = None
    ) -> bool:
        """Force the entry stale without rewriting it (e.g. after an out-of-band write)."""
        key = build_key(namespace, entity_id, params)
        return await self._markers.mark(key)

    # -------------------------------------------------------------------------
    # Invalidation
    # -------------------------------------------------------------------------

    async def invalidate(
        self, namespace: Namespace | str, entity_id: str, params: Mapping[str, Any] | None = None
    ) -> bool:
        """
        Delete one entry, its stale marker and, for collections, every part.

        Returns:
            bool: True if anything was removed
        """
        key = build_key(namespace, entity_id, params)
        removed = await self._chain.delete(key)
        removed = await self._delete_collection(key) or removed
        await self._markers.clear(key)
        log_stage(logger, "CACHE.INVALIDATE", "Entry invalidated", cache_key=key, removed=removed)
        return removed

    async def invalidate_by_pattern(self, pattern: str) -> int:
        """
        Delete every key matching a glob (``* ? [``) or substring pattern.

        Returns:
            int: Keys removed across all backends
        """
        counts = await self._chain.delete_by_pattern(pattern)
        total = sum(counts.values())
        log_stage(logger, "CACHE.INVALIDATE", "Pattern invalidated", pattern=pattern, removed=counts)
        return total

    async def invalidate_entity(self, entity_id: str) -> int:
        """Remove everything cached for one entity, in every namespace."""
        removed = 0
        for namespace in Namespace:
            if await self.invalidate(namespace, entity_id):
                removed += 1
            removed += await self.invalidate_by_pattern(f"{namespace.value}:{escape_glob(str(entity_id))}:*")
        return removed

    async def clear_all(self) -> int:
        """
        Remove every entry in the built-in namespaces and reset the statistics.

        Only keys under a Namespace prefix (and the statistics entry) are
        touched; other data in the same Redis database survives. Entries under
        free-form namespaces are removed with invalidate_by_pattern.
        """
        removed = 0
        for namespace in Namespace:
            removed += await self.invalidate_by_pattern(f"{namespace.value}:*")
        await self._stats.reset()
        log_stage(logger, "CACHE.CLEAR", "Cache cleared", removed=removed)
        return removed

    # -------------------------------------------------------------------------
    # Large Collections
    # -------------------------------------------------------------------------

    async def _delete_collection(self, base: str) -> bool:
        ids_envelope = await self._read(base + COLLECTION_IDS_SUFFIX)
        doomed = [base + COLLECTION_BLOB_SUFFIX, base + COLLECTION_IDS_SUFFIX, base + COLLECTION_METADATA_SUFFIX]
        if ids_envelope and isinstance(ids_envelope.get("value"), list):
            doomed.extend(f"{base}{COLLECTION_ITEM_INFIX}{item_id}" for item_id in ids_envelope["value"])
        results = await asyncio.gather(*(self._chain.delete(k) for k in doomed))
        return any(results)

    async def put_large_collection(
        self,
        namespace: Namespace | str,
        entity_id: str,
        records: list[Any],
        ttl: int | None = None,
        key_fields: Iterable[str] = (),
        params: Mapping[str, Any] | None = None,
        extra: Mapping[str, Any] | None = None,
    ) -> bool:
        """
        Write a collection of records.

        Up to COLLECTION_BLOB_MAX_RECORDS records are stored as one entry.
        Larger collections store an index of item identifiers plus one entry
        per record, so one record can be invalidated without rewriting the
        rest. The metadata entry (count, key fields, extra) is written last.

        Returns:
            bool: True if every part was stored
        """
        base = build_key(namespace, entity_id, params)
        if not self._enabled:
            return False
        ttl = self._ttl(namespace, ttl)
        key_fields = list(key_fields)
        records = list(records)

        if len(records) <= self._settings.cache.COLLECTION_BLOB_MAX_RECORDS:
            await self._delete_collection(base)
            ok = await self._write(base + COLLECTION_BLOB_SUFFIX, records, ttl)
            layout = "blob"
        else:
            by_id: dict[str, Any] = {}
            for record in records:
                by_id[item_identifier(record, key_fields)] = record
            await self._chain.delete(base + COLLECTION_BLOB_SUFFIX)
            results = await asyncio.gather(*(
                self._write(f"{base}{COLLECTION_ITEM_INFIX}{item_id}", record, ttl)
                for item_id, record in by_id.items()
            ))
            ok = all(results) and await self._write(base + COLLECTION_IDS_SUFFIX, list(by_id), ttl)
            layout = "items"

        metadata = {
            "count": len(records),
            "key_fields": key_fields,
            "layout": layout,
            "extra": dict(extra or {}),
        }
        ok = await self._write(base + COLLECTION_METADATA_SUFFIX, metadata, ttl) and ok
        await self._markers.clear(base)
        log_stage(logger, "CACHE.SET", "Collection cached", cache_key=base, count=len(records), layout=layout, written=ok)
        return ok

    async def get_large_collection(
        self,
        namespace: Namespace | str,
        entity_id: str,
        params: Mapping[str, Any] | None = None,
        *,
        refresh: RefreshFn | None = None,
        ttl: int | None = None,
        record_stats: bool = True,
    ) -> CollectionLookup:
        """
        Read a collection written by put_large_collection.

        Reads where fewer than COLLECTION_COMPLETENESS_THRESHOLD of the
        per-record entries survive are misses; reads above the threshold but
        incomplete come back with is_partial=True.

        A refresh callable may return a list of records or a mapping with
        "items" plus extra fields (stored as ``extra``).
        """
        base = build_key(namespace, entity_id, params)
        if not self._enabled:
            return CollectionLookup.miss(base)

        try:
            lookup = await self._lookup_collection(base)
        except CacheError as e:
            log_stage(logger, "CACHE.GET", "Collection read failed, treating as miss", level="error", cache_key=base, error=e.message)
            lookup = CollectionLookup.miss(base)

        if record_stats:
            await self._record(str(entity_id), lookup)

        if lookup.is_stale and refresh is not None:
            async def write_back(value: Any) -> bool:
                items, extra = self._unpack_collection(value)
                return await self.put_large_collection(
                    namespace, entity_id, items, ttl=ttl, params=params,
                    key_fields=lookup.key_fields, extra=extra,
                )
            self._spawn_refresh(base, refresh, write_back)
        return lookup

    @staticmethod
    def _unpack_collection(value: Any) -> tuple[list[Any], dict[str, Any] | None]:
        if isinstance(value, Mapping):
            extra = {k: v for k, v in value.items() if k != "items"}
            return list(value.get("items") or []), extra
        return list(value or []), None

    async def _lookup_collection(self, base: str) -> CollectionLookup:
        marked = await self._markers.is_marked(base)
        metadata_env = await self._read(base + COLLECTION_METADATA_SUFFIX)
        metadata = metadata_env.get("value") if metadata_env else None
        metadata = metadata if isinstance(metadata, dict) else {}
        extra = dict(metadata.get("extra") or {})
        key_fields = tuple(metadata.get("key_fields") or ())

        blob_env = await self._read(base + COLLECTION_BLOB_SUFFIX)
        envelope = blob_env if blob_env is not None else metadata_env
        if envelope is None:
            return CollectionLookup.miss(base)

        stored_at = float(envelope["stored_at"])
        freshness = self._policy.evaluate(stored_at, float(envelope["ttl"]), marked)
        if freshness is Freshness.EXPIRED:
            log_stage(logger, "CACHE.GET", "Collection expired, purging", level="debug", cache_key=base)
            await self._delete_collection(base)
            await self._markers.clear(base)
            return CollectionLookup.miss(base)

        if blob_env is not None:
            records = list(blob_env.get("value") or [])
            missing = 0
        else:
            ids_env = await self._read(base + COLLECTION_IDS_SUFFIX)
            item_ids = ids_env.get("value") if ids_env else None
            if not isinstance(item_ids, list):
                return CollectionLookup.miss(base)

            values = await self.batch_get([f"{base}{COLLECTION_ITEM_INFIX}{item_id}" for item_id in item_ids])
            records = [v for v in values if v is not None]
            missing = len(item_ids) - len(records)
            if missing:
                log_stage(
                    logger, "CACHE.GET", "Collection entries missing",
                    level="warning", cache_key=base, available=len(records), expected=len(item_ids)
                )
                if len(records) < len(item_ids) * self._settings.cache.COLLECTION_COMPLETENESS_THRESHOLD:
                    return CollectionLookup.miss(base)

        if freshness is Freshness.STALE and not marked:
            await self._markers.mark(base)
        status = LookupStatus.STALE if freshness is Freshness.STALE else LookupStatus.HIT
        return CollectionLookup(
            status, records, stored_at, base,
            is_partial=missing > 0, missing=missing, extra=extra, key_fields=key_fields,
        )

    async def invalidate_one(
        self,
        namespace: Namespace | str,
        entity_id: str,
        record: Mapping[str, Any],
        key_fields: Iterable[str] = (),
        params: Mapping[str, Any] | None = None,
    ) -> bool:
        """
        Drop one record's entry from a large collection and mark the
        collection stale so the next read refreshes it.
        """
        base = build_key(namespace, entity_id, params)
        item_key = f"{base}{COLLECTION_ITEM_INFIX}{item_identifier(record, key_fields)}"
        removed = await self._chain.delete(item_key)
        await self._markers.mark(base)
        log_stage(logger, "CACHE.INVALIDATE", "Collection record invalidated", cache_key=item_key, removed=removed)
        return removed

    # -------------------------------------------------------------------------
    # Background Refresh
    # -------------------------------------------------------------------------

    def _spawn_refresh(
        self, key: str, refresh: RefreshFn, write: Callable[[Any], Awaitable[bool]]
    ) -> asyncio.Task:
        existing = self._refreshes.get(key)
        if existing is not None and not existing.done():
            return existing

        async def run() -> None:
            try:
                value = await _maybe_await(refresh())
                if value is None:
                    log_stage(logger, "CACHE.REFRESH", "Refresh returned nothing", level="warning", cache_key=key)
                    return
                await write(value)
                log_stage(logger, "CACHE.REFRESH", "Background refresh completed", cache_key=key)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log_stage(
                    logger, "CACHE.REFRESH", "Background refresh failed",
                    level="error", cache_key=key, error=str(e), error_type=type(e).__name__
                )
            finally:
                if self._refreshes.get(key) is task:
                    del self._refreshes[key]

        task = asyncio.create_task(run())
        self._refreshes[key] = task
        return task

    def trigger_refresh(
        self,
        namespace: Namespace | str,
        entity_id: str,
        refresh: RefreshFn,
        params: Mapping[str, Any] | None = None,
        ttl: int | None = None,
    ) -> asyncio.Task:
        """
        Fire-and-forget repopulation of one entry.

        At most one refresh runs per key; a second trigger returns the task
        already in flight. Failures are logged and not retried.
        """
        key = build_key(namespace, entity_id, params)
        return self._spawn_refresh(key, refresh, lambda value: self.put(namespace, entity_id, value, ttl, params))

    @property
    def pending_refreshes(self) -> int:
        return sum(1 for t in self._refreshes.values() if not t.done())

    # -------------------------------------------------------------------------
    # Warmup
    # -------------------------------------------------------------------------

    async def warm(
        self,
        entity_ids: Iterable[str],
        fetch_fn: FetchFn,
        namespace: Namespace | str = Namespace.ENTITY_DETAIL,
        only_stale: bool = True,
        ttl: int | None = None,
    ) -> WarmupReport:
        """
        Re-fetch entities and repopulate the cache.

        Args:
            entity_ids: Entities to warm
            fetch_fn: Sync or async callable returning the value for an id
            namespace: Namespace the values are stored under
            only_stale: Skip entities that are cached and fresh
        """
        report = WarmupReport(requested=list(dict.fromkeys(entity_ids)))
        semaphore = asyncio.Semaphore(self._settings.cache.CACHE_WARM_CONCURRENCY)
        detail = namespace == Namespace.ENTITY_DETAIL

        async def warm_one(entity_id: str) -> None:
            async with semaphore:
                if only_stale:
                    current = await self._lookup(build_key(namespace, entity_id))
                    if current.status is LookupStatus.HIT:
                        report.skipped.append(entity_id)
                        return
                try:
                    value = await _maybe_await(fetch_fn(entity_id))
                except Exception as e:
                    log_stage(logger, "CACHE.WARM", "Warmup fetch failed", level="warning", entity=entity_id, error=str(e))
                    report.failed[entity_id] = str(e)
                    return
                if detail:
                    value = normalize_entity_detail(value)
                if value is None:
                    log_stage(logger, "CACHE.WARM", "Warmup fetch returned nothing", level="warning", entity=entity_id)
                    report.failed[entity_id] = "no data"
                    return
                if await self.put(namespace, entity_id, value, ttl):
                    report.warmed.append(entity_id)
                else:
                    report.failed[entity_id] = "not stored"

        await asyncio.gather(*(warm_one(entity_id) for entity_id in report.requested))
        log_stage(
            logger, "CACHE.WARM", "Cache warmup completed",
            requested=len(report.requested), warmed=len(report.warmed),
            skipped=len(report.skipped), failed=len(report.failed),
        )
        return report

    async def warm_popular(
        self,
        fetch_fn: FetchFn,
        limit: int | None = None,
        list_fn: Callable[[], Any] | None = None,
    ) -> WarmupReport:
        """
        Warm the most-accessed entities according to the statistics.

        Without statistics, and when ``list_fn`` is given, the entity list is
        fetched and cached and its first entities are warmed instead.
        """
        limit = limit or self._settings.cache.CACHE_POPULAR_LIMIT
        names = await self._stats.popular_entities(limit)
        if not names and list_fn is not None:
            try:
                entities = list(await _maybe_await(list_fn()))
            except Exception as e:
                log_stage(logger, "CACHE.WARM", "Entity listing failed", level="warning", error=str(e))
                return WarmupReport()
            await self.put_entity_list(entities)
            names = entities[:limit]
        return await self.warm(names, fetch_fn, Namespace.ENTITY_DETAIL, only_stale=True)

    # -------------------------------------------------------------------------
    # Entity Helpers
    # -------------------------------------------------------------------------

    async def get_entity_list(self, refresh: RefreshFn | None = None) -> CacheLookup:
        """Cached table list (not counted in the per-entity statistics)."""
        return await self.get_or_miss(Namespace.ENTITY_LIST, ENTITY_LIST_ID, refresh=refresh, record_stats=False)

    async def put_entity_list(self, entities: list[Any]) -> bool:
        return await self.put(Namespace.ENTITY_LIST, ENTITY_LIST_ID, list(entities))

    async def get_entity_detail(self, entity_id: str, refresh: RefreshFn | None = None) -> CacheLookup:
        lookup = await self.get_or_miss(
            Namespace.ENTITY_DETAIL, entity_id,
            refresh=(lambda: self._normalized(refresh)) if refresh else None,
        )
        if lookup.hit and isinstance(lookup.value, Mapping):
            return CacheLookup(lookup.status, normalize_entity_detail(lookup.value), lookup.stored_at, lookup.key)
        return lookup

    @staticmethod
    async def _normalized(refresh: RefreshFn) -> dict[str, Any] | None:
        return normalize_entity_detail(await _maybe_await(refresh()))

    async def put_entity_detail(self, entity_id: str, details: Mapping[str, Any]) -> bool:
        return await self.put(Namespace.ENTITY_DETAIL, entity_id, normalize_entity_detail(details))

    async def get_entity_page(
        self, entity_id: str, params: Mapping[str, Any] | None = None, refresh: RefreshFn | None = None
    ) -> CollectionLookup:
        """One page of items; ``extra["last_evaluated_key"]`` is the cursor."""
        return await self.get_large_collection(Namespace.ENTITY_PAGE, entity_id, params, refresh=refresh)

    async def put_entity_page(
        self,
        entity_id: str,
        params: Mapping[str, Any] | None,
        items: list[Any],
        last_evaluated_key: Any = None,
        key_fields: Iterable[str] = (),
    ) -> bool:
        if not items:
            return False
        return await self.put_large_collection(
            Namespace.ENTITY_PAGE, entity_id, items,
            key_fields=key_fields, params=params,
            extra={"last_evaluated_key": last_evaluated_key},
        )

    async def get_query_result(
        self, entity_id: str, query_params: Mapping[str, Any], refresh: RefreshFn | None = None
    ) -> CacheLookup:
        return await self.get_or_miss(Namespace.QUERY_RESULT, entity_id, query_params, refresh=refresh)

    async def put_query_result(self, entity_id: str, query_params: Mapping[str, Any], result: Any) -> bool:
        return await self.put(Namespace.QUERY_RESULT, entity_id, result, params=query_params)

    # -------------------------------------------------------------------------
    # Monitoring
    # -------------------------------------------------------------------------

    async def get_stats(self) -> dict[str, Any]:
        """Hit/miss statistics plus backend availability and local disk usage."""
        stats = await self._stats.get_stats() or CacheStatistics()
        storage: dict[str, Any] = {}
        for backend in self._chain.backends:
            entry: dict[str, Any] = {"available": backend.is_available}
            if isinstance(backend, LocalStore):
                entry.update(await backend.disk_usage())
            storage[backend.name] = entry
        return {
            **stats.to_dict(),
            "popular_entities": await self._stats.popular_entities(self._settings.cache.CACHE_POPULAR_LIMIT),
            "storage": storage,
            "caching_enabled": self._enabled,
        }

    async def health_check(self) -> dict[str, Any]:
        """
        Health of every backend.

        Status is "healthy" when every backend is available, "degraded" when
        some are, "unhealthy" when none is.
        """
        backends = await self._chain.health_check()
        available = [b.is_available for b in self._chain.backends]
        if all(available):
            status = "healthy"
        elif any(available):
            status = "degraded"
        else:
            status = "unhealthy"
        return {
            "status": status,
            "caching_enabled": self._enabled,
            "backends": backends,
            "pending_refreshes": self.pending_refreshes,
        }


# =============================================================================
# GLOBAL INSTANCE (SINGLETON PATTERN)
# =============================================================================

_cache_manager: CacheManager | None = None


def get_cache_manager() -> CacheManager:
    """
    Get the global cache manager instance (singleton).

    Returns:
        CacheManager: Global cache manager instance
    """
    global _cache_manager

    if _cache_manager is None:
        _cache_manager = CacheManager()

    return _cache_manager


async def init_cache() -> CacheManager:
    """
    Initialize and connect the global cache manager.

    Returns:
        CacheManager: Initialized cache manager
    """
    manager = get_cache_manager()
    await manager.initialize()
    return manager


async def close_cache() -> None:
    """Shutdown the global cache manager."""
    global _cache_manager

    if _cache_manager:
        await _cache_manager.close()
        _cache_manager = None
