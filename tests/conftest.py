"""
Pytest Configuration and Shared Test Fixtures

This module provides reusable fixtures for all tests. All fixtures defined
here are automatically available to all test files.

No fixture touches a real Redis server: the remote store runs against the
in-memory double from tests/test_fixtures/cache_factory.py.
"""

import pytest

from tablecache.infrastructure.cache.cache_manager import CacheManager
from tablecache.infrastructure.cache.local_store import LocalStore
from tablecache.infrastructure.cache.redis_client import RedisClient
from tablecache.infrastructure.cache.remote_store import RemoteStore
from tests.test_fixtures.cache_factory import FakeClock, InMemoryRedis, make_settings

# ============================================================================
# Clock and Configuration Fixtures
# ============================================================================


@pytest.fixture
def fake_clock():
    """Controllable epoch clock shared by stores, policy and statistics."""
    return FakeClock()


@pytest.fixture
def test_settings(tmp_path):
    """Settings with the local store under a temporary directory."""
    return make_settings(tmp_path)


# ============================================================================
# Backend Fixtures
# ============================================================================


@pytest.fixture
def local_store(tmp_path, fake_clock):
    return LocalStore(
        str(tmp_path / "cache"),
        fallback_dir=str(tmp_path / "fallback"),
        chunk_size=64,
        clock=fake_clock,
    )


@pytest.fixture
def in_memory_redis(fake_clock):
    return InMemoryRedis(clock=fake_clock)


@pytest.fixture
async def redis_client(test_settings, in_memory_redis):
    """Connected RedisClient over the in-memory double."""
    client = RedisClient(test_settings.redis, client=in_memory_redis)
    await client.connect()
    yield client
    await client.disconnect()


@pytest.fixture
def remote_store(redis_client, fake_clock):
    return RemoteStore(redis_client, chunk_threshold=256, chunk_size=64, clock=fake_clock)


# ============================================================================
# Cache Manager Fixtures
# ============================================================================


@pytest.fixture
async def cache_manager(test_settings, local_store, fake_clock):
    """Cache manager over the local store only."""
    manager = CacheManager(backends=[local_store], settings=test_settings, clock=fake_clock)
    yield manager
    await manager.close()


@pytest.fixture
async def two_tier_cache_manager(test_settings, remote_store, local_store, fake_clock):
    """Cache manager with Redis preferred and the local store as fallback."""
    manager = CacheManager(backends=[remote_store, local_store], settings=test_settings, clock=fake_clock)
    await manager.initialize()
    yield manager
    await manager.close()


# ============================================================================
# Sample Data Fixtures
# ============================================================================


@pytest.fixture
def sample_table_description():
    """Table description as returned by the table store."""
    return {
        "TableName": "orders",
        "TableStatus": "ACTIVE",
        "ItemCount": 1250,
        "TableSizeBytes": 524288,
        "CreationDateTime": "2024-01-15T10:30:00+00:00",
        "KeySchema": [{"AttributeName": "order_id", "KeyType": "HASH"}],
    }


@pytest.fixture
def sample_records():
    """Factory for item pages keyed by ``order_id``."""

    def _make(count: int, prefix: str = "o") -> list[dict]:
        return [{"order_id": f"{prefix}{i}", "amount": i * 10, "status": "open"} for i in range(count)]

    return _make
