"""
Cache Test Factory

In-memory Redis doubles, a controllable clock and helpers that assemble
cache managers over them.
"""

import fnmatch
from typing import Any

from redis.exceptions import ConnectionError as RedisConnectionError

from tablecache.core.config.settings import CacheSettings, RedisSettings, Settings


class FakeClock:
    """Epoch-seconds clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class InMemoryPipeline:
    """Buffers SET/DELETE and applies them on execute()."""

    def __init__(self, redis: "InMemoryRedis"):
        self._redis = redis
        self._ops: list[tuple[str, tuple, dict]] = []

    def set(self, key, value, ex=None):
        self._ops.append(("set", (key, value), {"ex": ex}))
        return self

    def delete(self, *keys):
        self._ops.append(("delete", keys, {}))
        return self

    async def execute(self):
        results = []
        for name, args, kwargs in self._ops:
            results.append(await getattr(self._redis, name)(*args, **kwargs))
        self._ops.clear()
        return results


class InMemoryRedis:
    """
    Subset of redis.asyncio.Redis used by the remote store.

    Values are bytes; EX expiry follows the injected clock. ``calls`` counts
    commands so tests can assert round trips.
    """

    def __init__(self, clock: FakeClock | None = None):
        self.clock = clock or FakeClock()
        self.data: dict[str, bytes] = {}
        self.expires: dict[str, float] = {}
        self.calls: dict[str, int] = {}
        self.closed = False

    def _count(self, name: str) -> None:
        self.calls[name] = self.calls.get(name, 0) + 1

    def _alive(self, key: str) -> bool:
        expiry = self.expires.get(key)
        if expiry is not None and self.clock() >= expiry:
            self.data.pop(key, None)
            self.expires.pop(key, None)
        return key in self.data

    async def ping(self):
        self._count("ping")
        return True

    async def get(self, key):
        self._count("get")
        return self.data.get(key) if self._alive(key) else None

    async def mget(self, keys):
        self._count("mget")
        return [self.data.get(k) if self._alive(k) else None for k in keys]

    async def set(self, key, value, ex=None):
        self._count("set")
        self.data[key] = value if isinstance(value, bytes) else str(value).encode()
        if ex:
            self.expires[key] = self.clock() + ex
        else:
            self.expires.pop(key, None)
        return True

    async def delete(self, *keys):
        self._count("delete")
        removed = 0
        for key in keys:
            if self._alive(key):
                removed += 1
            self.data.pop(key, None)
            self.expires.pop(key, None)
        return removed

    async def scan_iter(self, match=None, count=None):
        self._count("scan")
        for key in list(self.data):
            if self._alive(key) and (match is None or fnmatch.fnmatchcase(key, match)):
                yield key.encode()

    def pipeline(self, transaction=True):
        return InMemoryPipeline(self)

    async def aclose(self):
        self.closed = True


class FailingRedis(InMemoryRedis):
    """
    Redis double whose commands raise ConnectionError.

    ``fail_pings`` limits how many PINGs fail before the server "comes back"
    (None means never).
    """

    def __init__(self, clock: FakeClock | None = None, fail_pings: int | None = None):
        super().__init__(clock)
        self.fail_pings = fail_pings
        self.failing = True

    def _fail(self):
        raise RedisConnectionError("Connection refused")

    async def ping(self):
        self._count("ping")
        if self.fail_pings is None or self.calls["ping"] <= self.fail_pings:
            self._fail()
        self.failing = False
        return True

    async def get(self, key):
        if self.failing:
            self._fail()
        return await super().get(key)

    async def mget(self, keys):
        if self.failing:
            self._fail()
        return await super().mget(keys)

    async def set(self, key, value, ex=None):
        if self.failing:
            self._fail()
        return await super().set(key, value, ex=ex)

    async def delete(self, *keys):
        if self.failing:
            self._fail()
        return await super().delete(*keys)


def make_settings(tmp_path, **overrides: Any) -> Settings:
    """
    Settings pointing the local store at ``tmp_path``.

    Keyword overrides go to CacheSettings or RedisSettings by field name.
    """
    cache_fields = set(CacheSettings.model_fields)
    redis_fields = set(RedisSettings.model_fields)
    cache_kw = {k: v for k, v in overrides.items() if k in cache_fields}
    redis_kw = {k: v for k, v in overrides.items() if k in redis_fields}

    cache_kw.setdefault("CACHE_DIR", str(tmp_path / "cache"))
    cache_kw.setdefault("CACHE_FALLBACK_DIR", str(tmp_path / "fallback"))
    redis_kw.setdefault("REDIS_RECONNECT_BASE_DELAY", 0.001)
    redis_kw.setdefault("REDIS_RECONNECT_MAX_DELAY", 0.001)
    redis_kw.setdefault("REDIS_RECONNECT_MAX_RETRIES", 3)

    return Settings(cache=CacheSettings(**cache_kw), redis=RedisSettings(**redis_kw))
