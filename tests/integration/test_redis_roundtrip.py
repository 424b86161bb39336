"""
Integration Tests against a real Redis

Skipped unless TABLECACHE_TEST_REDIS_URL points at a disposable database,
e.g. redis://localhost:6379/15. The tests flush that database.
"""

import os

import pytest

from tablecache.core.config.settings import RedisSettings
from tablecache.infrastructure.cache.redis_client import RedisClient
from tablecache.infrastructure.cache.remote_store import RemoteStore

REDIS_URL = os.getenv("TABLECACHE_TEST_REDIS_URL")

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(not REDIS_URL, reason="TABLECACHE_TEST_REDIS_URL not set"),
]


@pytest.fixture
async def live_store():
    client = RedisClient(RedisSettings(REDIS_URL=REDIS_URL))
    await client.connect()
    store = RemoteStore(client, chunk_threshold=1024, chunk_size=256)
    await store.delete_by_pattern("*")
    yield store
    await store.delete_by_pattern("*")
    await client.disconnect()


@pytest.mark.asyncio
async def test_chunked_round_trip(live_store):
    payload = os.urandom(5000)

    assert await live_store.set("entity-page:orders", payload, ttl=60)

    assert await live_store.get("entity-page:orders") == payload


@pytest.mark.asyncio
async def test_pattern_delete_uses_scan(live_store):
    await live_store.set("query-result:orders:a", b"1", ttl=60)
    await live_store.set("query-result:orders:b", os.urandom(3000), ttl=60)
    await live_store.set("entity-detail:orders", b"2", ttl=60)

    assert await live_store.delete_by_pattern("query-result:*") >= 2
    assert await live_store.get("query-result:orders:b") is None
    assert await live_store.get("entity-detail:orders") == b"2"
