"""
Unit Tests for the Local Disk Store

Tests single-file and chunked entries, strict chunk reads, expiry, pattern
deletes and the fallback directory.
"""

import os

import pytest

from tablecache.core.config.constants import LOCAL_CHUNK_PREFIX
from tablecache.infrastructure.cache.keys import sanitize
from tablecache.infrastructure.cache.local_store import LocalStore


@pytest.mark.unit
class TestLocalStoreReadWrite:
    @pytest.mark.asyncio
    async def test_small_entry_round_trip(self, local_store):
        assert await local_store.set("entity-detail:orders", b"small", ttl=60)

        assert await local_store.get("entity-detail:orders") == b"small"

    @pytest.mark.asyncio
    async def test_missing_key_is_none(self, local_store):
        assert await local_store.get("entity-detail:nope") is None

    @pytest.mark.asyncio
    async def test_chunked_round_trip(self, local_store):
        payload = os.urandom(64 * 5 + 17)

        assert await local_store.set("entity-page:orders", payload, ttl=60)

        name = sanitize("entity-page:orders")
        chunks = local_store.directory / f"{name}-chunks"
        assert len(list(chunks.iterdir())) == 6
        assert (local_store.directory / f"{name}.meta").exists()
        assert not (local_store.directory / f"{name}.cache").exists()
        assert await local_store.get("entity-page:orders") == payload

    @pytest.mark.asyncio
    async def test_missing_chunk_is_miss(self, local_store):
        payload = os.urandom(64 * 3)
        await local_store.set("entity-page:orders", payload, ttl=60)

        name = sanitize("entity-page:orders")
        (local_store.directory / f"{name}-chunks" / f"{LOCAL_CHUNK_PREFIX}1").unlink()

        assert await local_store.get("entity-page:orders") is None

    @pytest.mark.asyncio
    async def test_truncated_chunk_is_miss(self, local_store):
        payload = os.urandom(64 * 3)
        await local_store.set("entity-page:orders", payload, ttl=60)

        name = sanitize("entity-page:orders")
        (local_store.directory / f"{name}-chunks" / f"{LOCAL_CHUNK_PREFIX}2").write_bytes(b"x")

        assert await local_store.get("entity-page:orders") is None

    @pytest.mark.asyncio
    async def test_overwrite_chunked_with_small(self, local_store):
        await local_store.set("k", os.urandom(300), ttl=60)
        await local_store.set("k", b"tiny", ttl=60)

        name = sanitize("k")
        assert not (local_store.directory / f"{name}.meta").exists()
        assert not (local_store.directory / f"{name}-chunks").exists()
        assert await local_store.get("k") == b"tiny"

    @pytest.mark.asyncio
    async def test_corrupt_header_discarded(self, local_store):
        await local_store.set("k", b"value", ttl=60)
        path = local_store.directory / f"{sanitize('k')}.cache"
        path.write_bytes(b"garbage without header")

        assert await local_store.get("k") is None
        assert not path.exists()


@pytest.mark.unit
class TestLocalStoreExpiry:
    @pytest.mark.asyncio
    async def test_expired_entry_removed(self, local_store, fake_clock):
        await local_store.set("k", b"value", ttl=10)
        fake_clock.advance(11)

        assert await local_store.get("k") is None
        assert not (local_store.directory / f"{sanitize('k')}.cache").exists()

    @pytest.mark.asyncio
    async def test_expired_chunked_entry_removed(self, local_store, fake_clock):
        await local_store.set("k", os.urandom(200), ttl=10)
        fake_clock.advance(11)

        assert await local_store.get("k") is None
        assert not (local_store.directory / f"{sanitize('k')}-chunks").exists()

    @pytest.mark.asyncio
    async def test_entry_valid_until_ttl(self, local_store, fake_clock):
        await local_store.set("k", b"value", ttl=10)
        fake_clock.advance(10)

        assert await local_store.get("k") == b"value"


@pytest.mark.unit
class TestLocalStoreDelete:
    @pytest.mark.asyncio
    async def test_delete_removes_all_artifacts(self, local_store):
        await local_store.set("k", os.urandom(200), ttl=60)

        assert await local_store.delete("k")
        assert list(local_store.directory.iterdir()) == []
        assert not await local_store.delete("k")

    @pytest.mark.asyncio
    async def test_delete_by_glob(self, local_store):
        await local_store.set("entity-page:orders:a", b"1", ttl=60)
        await local_store.set("entity-page:orders:b", os.urandom(200), ttl=60)
        await local_store.set("entity-detail:orders", b"3", ttl=60)

        removed = await local_store.delete_by_pattern("entity-page:*")

        assert removed == 2
        assert await local_store.get("entity-page:orders:a") is None
        assert await local_store.get("entity-detail:orders") == b"3"

    @pytest.mark.asyncio
    async def test_delete_by_substring(self, local_store):
        await local_store.set("entity-detail:orders", b"1", ttl=60)
        await local_store.set("entity-detail:users", b"2", ttl=60)

        assert await local_store.delete_by_pattern("orders") == 1
        assert await local_store.get("entity-detail:users") == b"2"


@pytest.mark.unit
class TestLocalStoreDirectories:
    @pytest.mark.asyncio
    async def test_fallback_directory_used(self, tmp_path, fake_clock):
        blocker = tmp_path / "blocked"
        blocker.write_text("not a directory")
        store = LocalStore(blocker / "cache", fallback_dir=tmp_path / "fallback", clock=fake_clock)

        assert await store.set("k", b"v", ttl=60)
        assert store.directory == tmp_path / "fallback"
        assert store.is_available

    @pytest.mark.asyncio
    async def test_unavailable_when_no_directory_usable(self, tmp_path, fake_clock):
        blocker = tmp_path / "blocked"
        blocker.write_text("not a directory")
        store = LocalStore(blocker / "a", fallback_dir=blocker / "b", clock=fake_clock)

        assert not await store.set("k", b"v", ttl=60)
        assert await store.get("k") is None
        assert not store.is_available

    @pytest.mark.asyncio
    async def test_disk_usage_and_batch_get(self, local_store):
        await local_store.set("a", b"1", ttl=60)
        await local_store.set("b", os.urandom(200), ttl=60)

        usage = await local_store.disk_usage()
        values = await local_store.batch_get(["a", "missing", "b"])

        assert usage["item_count"] == 2
        assert usage["size_bytes"] > 200
        assert values[0] == b"1" and values[1] is None and len(values[2]) == 200

    @pytest.mark.asyncio
    async def test_health_check(self, local_store):
        await local_store.set("a", b"1", ttl=60)

        health = await local_store.health_check()

        assert health["backend"] == "local"
        assert health["available"] is True
        assert health["item_count"] == 1
