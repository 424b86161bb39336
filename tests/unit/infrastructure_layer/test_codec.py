"""
Unit Tests for the Cache Codec

Tests canonical encoding, table-store type normalization and corrupt input.
"""

import gzip
from decimal import Decimal

import pytest

from tablecache.core.exceptions import CorruptEntryError, SerializationError
from tablecache.infrastructure.cache import codec


@pytest.mark.unit
class TestEncode:
    def test_round_trip(self):
        value = {"TableName": "orders", "ItemCount": 3, "Tags": ["a", "b"], "Nested": {"x": None}}

        assert codec.decode(codec.encode(value)) == value

    def test_key_order_does_not_change_bytes(self):
        assert codec.encode({"a": 1, "b": 2}) == codec.encode({"b": 2, "a": 1})

    def test_output_is_gzip(self):
        assert gzip.decompress(codec.encode([1, 2, 3])) == b"[1,2,3]"

    def test_decimal_normalized(self):
        decoded = codec.decode(codec.encode({"count": Decimal("5"), "price": Decimal("9.5")}))

        assert decoded == {"count": 5, "price": 9.5}
        assert isinstance(decoded["count"], int)

    def test_set_becomes_sorted_list(self):
        assert codec.decode(codec.encode({"tags": {"b", "c", "a"}})) == {"tags": ["a", "b", "c"]}

    def test_unserializable_value_raises(self):
        with pytest.raises(SerializationError) as exc_info:
            codec.encode({"handle": object()})

        assert exc_info.value.details["value_type"] == "dict"

    def test_canonical_json_sorted(self):
        assert codec.canonical_json({"b": 1, "a": 2}) == b'{"a":2,"b":1}'


@pytest.mark.unit
class TestDecode:
    def test_not_gzip_raises_corrupt(self):
        with pytest.raises(CorruptEntryError):
            codec.decode(b"plain text")

    def test_truncated_raises_corrupt(self):
        data = codec.encode({"k": "v" * 100})

        with pytest.raises(CorruptEntryError):
            codec.decode(data[:-6])

    def test_gzip_of_non_json_raises_corrupt(self):
        with pytest.raises(CorruptEntryError):
            codec.decode(gzip.compress(b"{not json"))
