"""
Unit Tests for Configuration Constants

Tests the key layout constants the backends and the facade share.
"""

import pytest

from tablecache.core.config.constants import (
    CHUNK_INFIX,
    COLLECTION_BLOB_SUFFIX,
    COLLECTION_IDS_SUFFIX,
    COLLECTION_ITEM_INFIX,
    COLLECTION_METADATA_SUFFIX,
    DEFAULT_REMOTE_CHUNK_SIZE,
    DEFAULT_REMOTE_CHUNK_THRESHOLD,
    KEY_SEPARATOR,
    META_SUFFIX,
    STALE_SUFFIX,
    STATS_KEY,
    BackendKind,
    Namespace,
)


@pytest.mark.unit
class TestNamespaces:
    def test_values_are_key_prefixes(self):
        for namespace in Namespace:
            assert namespace.value
            assert KEY_SEPARATOR not in namespace.value

    def test_stats_key_outside_namespaces(self):
        assert not any(STATS_KEY.startswith(ns.value) for ns in Namespace)

    def test_namespace_compares_as_string(self):
        assert Namespace.ENTITY_DETAIL == "entity-detail"


@pytest.mark.unit
class TestKeyLayout:
    def test_suffixes_are_distinct(self):
        parts = [
            META_SUFFIX,
            CHUNK_INFIX,
            STALE_SUFFIX,
            COLLECTION_METADATA_SUFFIX,
            COLLECTION_BLOB_SUFFIX,
            COLLECTION_IDS_SUFFIX,
            COLLECTION_ITEM_INFIX,
        ]

        assert len(set(parts)) == len(parts)
        assert all(part.startswith(KEY_SEPARATOR) for part in parts)

    def test_remote_chunk_fits_threshold(self):
        assert 0 < DEFAULT_REMOTE_CHUNK_SIZE <= DEFAULT_REMOTE_CHUNK_THRESHOLD

    def test_backend_kinds(self):
        assert {kind.value for kind in BackendKind} == {"remote", "local"}
