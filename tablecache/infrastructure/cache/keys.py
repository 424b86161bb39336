"""
Cache Key Namespace

Deterministic key construction:

    <namespace>:<entity_id>[:<md5(canonical params)>]

Two requests that differ only in pagination cursor or filter expression land
in different entries; the same parameter bag in any key order lands in the
same one.

Remote keys are used as-is. Local file names are a reversible
percent-escape of the key (sanitize/unsanitize).
"""

import fnmatch
import hashlib
from collections.abc import Iterable, Mapping
from typing import Any
from urllib.parse import quote, unquote

from tablecache.core.config.constants import (
    COMMON_ID_FIELDS,
    KEY_SEPARATOR,
    LOCAL_MAX_NAME_LENGTH,
    Namespace,
)
from tablecache.core.exceptions import InvalidKeyError
from tablecache.infrastructure.cache.codec import canonical_json

GLOB_CHARS = frozenset("*?[")


def _md5(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


def hash_params(params: Mapping[str, Any]) -> str:
    """Stable hash of a parameter bag (independent of key order)."""
    return _md5(canonical_json(params))


def build_key(namespace: Namespace | str, entity_id: str, params: Mapping[str, Any] | None = None) -> str:
    """
    Build a cache key.

    Args:
        namespace: Entity kind (Namespace member or free-form string)
        entity_id: Entity identifier, usually the table name
        params: Optional parameter bag (cursor, limit, filter...)

    Returns:
        str: Cache key

    Raises:
        InvalidKeyError: If namespace or entity_id is empty
    """
    ns = namespace.value if isinstance(namespace, Namespace) else namespace
    if not ns or not isinstance(ns, str):
        raise InvalidKeyError("Cache namespace is required", details={"entity_id": entity_id})
    if entity_id is None or str(entity_id) == "":
        raise InvalidKeyError("Cache entity id is required", details={"namespace": ns})

    key = f"{ns}{KEY_SEPARATOR}{entity_id}"
    if params:
        key = f"{key}{KEY_SEPARATOR}{hash_params(params)}"
    return key


def sanitize(key: str) -> str:
    """
    Escape a key into a file-name-safe string.

    Every character outside [A-Za-z0-9_.~-] is percent-encoded, so the
    mapping is reversible. Names longer than the file-name limit keep a
    readable prefix and end with the md5 of the full key.

    Raises:
        InvalidKeyError: If the key is empty
    """
    if not key:
        raise InvalidKeyError("Cache key is empty")

    name = quote(key, safe="")
    if len(name) <= LOCAL_MAX_NAME_LENGTH:
        return name

    digest = _md5(key.encode("utf-8"))
    prefix = name[: LOCAL_MAX_NAME_LENGTH - len(digest) - 1]
    # Do not cut an escape sequence in half
    cut = prefix.rfind("%", len(prefix) - 2)
    if cut != -1:
        prefix = prefix[:cut]
    return f"{prefix}~{digest}"


def unsanitize(name: str) -> str:
    """Reverse sanitize(). Truncated names decode to their readable prefix."""
    return unquote(name)


def is_glob(pattern: str) -> bool:
    return any(ch in GLOB_CHARS for ch in pattern)


def escape_glob(text: str) -> str:
    """Escape glob metacharacters so text matches literally (fnmatch and Redis)."""
    return "".join(f"[{ch}]" if ch in GLOB_CHARS else ch for ch in text)


def to_glob(pattern: str) -> str:
    """Glob patterns pass through; anything else becomes a substring match."""
    return pattern if is_glob(pattern) else f"*{pattern}*"


def matches_pattern(key: str, pattern: str) -> bool:
    """
    Match a key against a glob (``* ? [``) or substring pattern.

    Usage:
        matches_pattern("entity-page:orders:ab12", "entity-page:*")  # True
        matches_pattern("entity-page:orders:ab12", "orders")         # True
    """
    return fnmatch.fnmatchcase(key, to_glob(pattern))


def item_identifier(record: Mapping[str, Any], key_fields: Iterable[str] = ()) -> str:
    """
    Stable identifier for one record of a large collection.

    Priority (each hashed with md5):
    1. the declared key-field values joined by ":", when all are non-empty
    2. the first non-empty string among id, ID, Id, itemId, uuid, key
    3. the whole record's canonical JSON

    The same logical record always maps to the same identifier, which enables
    per-record invalidation.
    """
    fields = list(key_fields)
    if fields:
        values = [record.get(f) for f in fields]
        if all(v is not None and v != "" for v in values):
            return _md5(KEY_SEPARATOR.join(str(v) for v in values).encode("utf-8"))

    for field in COMMON_ID_FIELDS:
        value = record.get(field)
        if isinstance(value, str) and value:
            return _md5(value.encode("utf-8"))

    return _md5(canonical_json(record))
