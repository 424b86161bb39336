"""
Cache Codec

Turns arbitrary JSON-shaped values into compact, deterministic bytes and back.

Format: gzip(canonical JSON)
- Canonical JSON: orjson with sorted keys, so equal values give equal bytes
- gzip with a fixed mtime, so compressed output is also byte-stable

Table-store SDKs hand back Decimal numbers and sets (number/string set
attributes); both are normalized by the default hook. Anything else that
orjson cannot serialize is a SerializationError.
"""

import gzip
import zlib
from decimal import Decimal
from typing import Any

import orjson

from tablecache.core.exceptions import CorruptEntryError, SerializationError


def _default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return int(obj) if obj == obj.to_integral_value() else float(obj)
    if isinstance(obj, (set, frozenset)):
        try:
            return sorted(obj)
        except TypeError:
            return list(obj)
    if isinstance(obj, bytes):
        return obj.decode("utf-8", errors="replace")
    raise TypeError(f"Type is not JSON serializable: {type(obj).__name__}")


def canonical_json(value: Any) -> bytes:
    """
    Serialize a value to canonical JSON bytes.

    Used for payloads, parameter hashing and item identifiers.

    Raises:
        SerializationError: If the value cannot be represented as JSON
    """
    try:
        return orjson.dumps(value, default=_default, option=orjson.OPT_SORT_KEYS | orjson.OPT_NON_STR_KEYS)
    except (orjson.JSONEncodeError, TypeError) as e:
        raise SerializationError.from_exception(
            e, message="Value cannot be encoded for caching", value_type=type(value).__name__
        )


def encode(value: Any) -> bytes:
    """
    Encode a value for storage.

    Args:
        value: Any JSON-shaped value

    Returns:
        bytes: gzip-compressed canonical JSON

    Raises:
        SerializationError: If the value cannot be encoded
    """
    return gzip.compress(canonical_json(value), mtime=0)


def decode(data: bytes) -> Any:
    """
    Decode stored bytes back to a value.

    Raises:
        CorruptEntryError: On truncated, bit-flipped or non-JSON input
    """
    try:
        return orjson.loads(gzip.decompress(data))
    except (OSError, EOFError, zlib.error, orjson.JSONDecodeError) as e:
        raise CorruptEntryError.from_exception(
            e, message="Stored entry cannot be decoded", size=len(data)
        )
