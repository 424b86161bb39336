"""
Unit Tests for Cache Key Construction

Tests key building, file-name sanitizing, pattern matching and record
identifiers.
"""

import hashlib

import pytest

from tablecache.core.config.constants import LOCAL_MAX_NAME_LENGTH, Namespace
from tablecache.core.exceptions import InvalidKeyError
from tablecache.infrastructure.cache.keys import (
    build_key,
    escape_glob,
    hash_params,
    item_identifier,
    matches_pattern,
    sanitize,
    to_glob,
    unsanitize,
)


def md5(text: str) -> str:
    return hashlib.md5(text.encode()).hexdigest()


@pytest.mark.unit
class TestBuildKey:
    def test_without_params(self):
        assert build_key(Namespace.ENTITY_DETAIL, "orders") == "entity-detail:orders"

    def test_free_form_namespace(self):
        assert build_key("table", "orders:items:abc123") == "table:orders:items:abc123"

    def test_params_are_hashed(self):
        key = build_key(Namespace.ENTITY_PAGE, "orders", {"limit": 50})

        assert key == f"entity-page:orders:{hash_params({'limit': 50})}"

    def test_params_order_independent(self):
        a = build_key(Namespace.QUERY_RESULT, "orders", {"limit": 50, "filter": "status = :s"})
        b = build_key(Namespace.QUERY_RESULT, "orders", {"filter": "status = :s", "limit": 50})

        assert a == b

    def test_different_cursor_different_key(self):
        a = build_key(Namespace.ENTITY_PAGE, "orders", {"cursor": {"order_id": "o1"}})
        b = build_key(Namespace.ENTITY_PAGE, "orders", {"cursor": {"order_id": "o2"}})

        assert a != b

    @pytest.mark.parametrize("namespace,entity_id", [("", "orders"), ("table", ""), ("table", None)])
    def test_empty_parts_rejected(self, namespace, entity_id):
        with pytest.raises(InvalidKeyError):
            build_key(namespace, entity_id)


@pytest.mark.unit
class TestSanitize:
    def test_reversible(self):
        key = "entity-page:orders/2024:ab12 ?*"

        name = sanitize(key)

        assert "/" not in name and ":" not in name
        assert unsanitize(name) == key

    def test_long_keys_truncated_with_hash(self):
        key = "entity-page:" + "x" * 400

        name = sanitize(key)

        assert len(name) <= LOCAL_MAX_NAME_LENGTH
        assert name.endswith("~" + md5(key))

    def test_truncation_does_not_split_escape(self):
        key = ":" * 300

        name = sanitize(key)
        prefix = name.rsplit("~", 1)[0]

        assert len(prefix) % 3 == 0

    def test_empty_key_rejected(self):
        with pytest.raises(InvalidKeyError):
            sanitize("")


@pytest.mark.unit
class TestPatterns:
    def test_glob_passthrough(self):
        assert to_glob("entity-page:*") == "entity-page:*"

    def test_substring_wrapped(self):
        assert to_glob("orders") == "*orders*"

    def test_matches_glob(self):
        assert matches_pattern("entity-page:orders:ab12", "entity-page:*")
        assert not matches_pattern("entity-detail:orders", "entity-page:*")

    def test_matches_substring(self):
        assert matches_pattern("entity-page:orders:ab12", "orders")

    def test_escape_glob_literal(self):
        pattern = escape_glob("weird*name") + ":*"

        assert matches_pattern("weird*name:x", pattern)
        assert not matches_pattern("weirdXname:x", pattern)


@pytest.mark.unit
class TestItemIdentifier:
    def test_key_fields_joined(self):
        record = {"pk": "user#1", "sk": "order#9", "total": 3}

        assert item_identifier(record, ["pk", "sk"]) == md5("user#1:order#9")

    def test_missing_key_field_falls_back_to_common_id(self):
        record = {"pk": "user#1", "id": "abc"}

        assert item_identifier(record, ["pk", "sk"]) == md5("abc")

    def test_numeric_id_not_used(self):
        record = {"id": 7, "name": "x"}

        assert item_identifier(record) != md5("7")

    def test_falls_back_to_content_hash(self):
        a = item_identifier({"name": "x", "n": 1})
        b = item_identifier({"n": 1, "name": "x"})

        assert a == b
        assert a != item_identifier({"name": "y", "n": 1})
