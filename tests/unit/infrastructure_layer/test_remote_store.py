"""
Unit Tests for the Redis Remote Store

Tests plain and chunked entries, batch reads, pattern deletes and the
switch to unavailable on Redis failures.
"""

import os

import pytest

from tablecache.infrastructure.cache.redis_client import RedisClient
from tablecache.infrastructure.cache.remote_store import RemoteStore, chunk_key, meta_key
from tests.test_fixtures.cache_factory import FailingRedis


@pytest.mark.unit
class TestRemoteStoreReadWrite:
    @pytest.mark.asyncio
    async def test_plain_round_trip(self, remote_store, in_memory_redis):
        assert await remote_store.set("entity-detail:orders", b"value", ttl=60)

        assert await remote_store.get("entity-detail:orders") == b"value"
        assert in_memory_redis.expires["entity-detail:orders"] == in_memory_redis.clock() + 60

    @pytest.mark.asyncio
    async def test_chunked_round_trip(self, remote_store, in_memory_redis):
        payload = os.urandom(1000)

        assert await remote_store.set("entity-page:orders", payload, ttl=60)

        assert "entity-page:orders" not in in_memory_redis.data
        assert meta_key("entity-page:orders") in in_memory_redis.data
        assert chunk_key("entity-page:orders", 15) in in_memory_redis.data
        assert await remote_store.get("entity-page:orders") == payload

    @pytest.mark.asyncio
    async def test_every_part_has_expiry(self, remote_store, in_memory_redis):
        await remote_store.set("entity-page:orders", os.urandom(1000), ttl=60)

        assert set(in_memory_redis.expires) == set(in_memory_redis.data)

    @pytest.mark.asyncio
    async def test_missing_chunk_is_miss(self, remote_store, in_memory_redis):
        await remote_store.set("entity-page:orders", os.urandom(1000), ttl=60)
        del in_memory_redis.data[chunk_key("entity-page:orders", 3)]

        assert await remote_store.get("entity-page:orders") is None

    @pytest.mark.asyncio
    async def test_plain_overwrite_drops_manifest(self, remote_store, in_memory_redis):
        await remote_store.set("k", os.urandom(1000), ttl=60)
        await remote_store.set("k", b"small", ttl=60)

        assert meta_key("k") not in in_memory_redis.data
        assert await remote_store.get("k") == b"small"

    @pytest.mark.asyncio
    async def test_delete_removes_chunks(self, remote_store, in_memory_redis):
        await remote_store.set("k", os.urandom(1000), ttl=60)

        assert await remote_store.delete("k")
        assert in_memory_redis.data == {}


@pytest.mark.unit
class TestRemoteStoreBatch:
    @pytest.mark.asyncio
    async def test_batch_get_aligned(self, remote_store, in_memory_redis):
        big = os.urandom(1000)
        await remote_store.set("k1", b"v1", ttl=60)
        await remote_store.set("k3", big, ttl=60)
        in_memory_redis.calls.clear()

        values = await remote_store.batch_get(["k1", "k2", "k3"])

        assert values == [b"v1", None, big]
        assert in_memory_redis.calls == {"mget": 2}

    @pytest.mark.asyncio
    async def test_batch_get_plain_only_single_round_trip(self, remote_store, in_memory_redis):
        await remote_store.set("a", b"1", ttl=60)
        in_memory_redis.calls.clear()

        assert await remote_store.batch_get(["a", "b"]) == [b"1", None]
        assert in_memory_redis.calls == {"mget": 1}


@pytest.mark.unit
class TestRemoteStorePatterns:
    @pytest.mark.asyncio
    async def test_delete_by_glob(self, remote_store, in_memory_redis):
        await remote_store.set("entity-page:orders:a", b"1", ttl=60)
        await remote_store.set("entity-page:orders:b", b"2", ttl=60)
        await remote_store.set("entity-detail:orders", b"3", ttl=60)

        removed = await remote_store.delete_by_pattern("entity-page:*")

        assert removed == 2
        assert list(in_memory_redis.data) == ["entity-detail:orders"]

    @pytest.mark.asyncio
    async def test_delete_by_substring(self, remote_store, in_memory_redis):
        await remote_store.set("entity-detail:orders", b"1", ttl=60)
        await remote_store.set("entity-detail:users", b"2", ttl=60)

        assert await remote_store.delete_by_pattern("orders") == 1
        assert "entity-detail:users" in in_memory_redis.data


@pytest.mark.unit
class TestRemoteStoreFailures:
    @pytest.fixture
    async def flaky_store(self, test_settings, fake_clock):
        double = FailingRedis(clock=fake_clock, fail_pings=0)
        client = RedisClient(test_settings.redis, client=double)
        await client.connect()
        double.failing = True
        double.fail_pings = None
        store = RemoteStore(client, chunk_threshold=256, chunk_size=64, clock=fake_clock)
        yield store
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_failure_marks_unavailable_and_returns_none(self, flaky_store):
        assert flaky_store.is_available

        assert await flaky_store.get("k") is None

        assert not flaky_store.is_available
        assert not await flaky_store.set("k", b"v", ttl=60)
        assert await flaky_store.batch_get(["a", "b"]) == [None, None]
        assert await flaky_store.delete_by_pattern("*") == 0

    @pytest.mark.asyncio
    async def test_unavailable_store_does_not_call_redis(self, flaky_store):
        await flaky_store.get("k")
        double = flaky_store.client._conn_mgr.get_client()
        calls_before = dict(double.calls)

        await flaky_store.get("k")

        assert double.calls.get("mget") == calls_before.get("mget")

    @pytest.mark.asyncio
    async def test_health_check_reports_backend(self, remote_store):
        health = await remote_store.health_check()

        assert health["backend"] == "remote"
        assert health["status"] == "healthy"
