"""
System Constants and Enumerations

This module defines the key layout, namespaces and size limits shared by the
cache backends and the facade.

Architectural Decision: Centralized constants for maintainability
- Single source of truth for key suffixes and file names
- Type-safe enums for namespaces and backend kinds
"""

from enum import Enum

# ============================================================================
# Namespaces
# ============================================================================


class Namespace(str, Enum):
    """
    Logical categories of cached entities, used as the key prefix.

    ENTITY_LIST: the list of tables
    ENTITY_DETAIL: one table's description
    ENTITY_PAGE: one page of items from a table scan
    QUERY_RESULT: the result of one query expression
    """

    ENTITY_LIST = "entity-list"
    ENTITY_DETAIL = "entity-detail"
    ENTITY_PAGE = "entity-page"
    QUERY_RESULT = "query-result"


# Entity id used for namespaces that hold a single, unparameterized value
ENTITY_LIST_ID = "all"


# ============================================================================
# Backends
# ============================================================================


class BackendKind(str, Enum):
    """
    Storage tiers.

    REMOTE: Redis (shared by every process, preferred)
    LOCAL: local disk (per host, used when remote is unavailable)
    """

    REMOTE = "remote"
    LOCAL = "local"


# ============================================================================
# Key Layout
# ============================================================================

KEY_SEPARATOR = ":"

# Remote chunked entries: "<key>:meta" + "<key>:chunk:<i>"
META_SUFFIX = ":meta"
CHUNK_INFIX = ":chunk:"

# Side-channel freshness marker: "<key>:stale"
STALE_SUFFIX = ":stale"

# Large collection layout under "<base>"
COLLECTION_METADATA_SUFFIX = ":metadata"
COLLECTION_BLOB_SUFFIX = ":all"
COLLECTION_IDS_SUFFIX = ":ids"
COLLECTION_ITEM_INFIX = ":item:"

# Reserved entry for the statistics aggregate
STATS_KEY = "cache:stats"

# Fields tried, in order, when a record has no declared key fields
COMMON_ID_FIELDS = ("id", "ID", "Id", "itemId", "uuid", "key")

# ============================================================================
# Local Store Layout
# ============================================================================

LOCAL_ENTRY_SUFFIX = ".cache"
LOCAL_META_SUFFIX = ".meta"
LOCAL_CHUNK_DIR_SUFFIX = "-chunks"
LOCAL_CHUNK_PREFIX = "chunk-"
LOCAL_TMP_SUFFIX = ".tmp"

# Longest escaped key kept verbatim as a file name (leaves room for suffixes)
LOCAL_MAX_NAME_LENGTH = 200

# ============================================================================
# Size Limits (bytes)
# ============================================================================

KIB = 1024
MIB = 1024 * KIB

DEFAULT_LOCAL_CHUNK_SIZE = 512 * KIB
DEFAULT_REMOTE_CHUNK_THRESHOLD = 10 * MIB
DEFAULT_REMOTE_CHUNK_SIZE = 512 * KIB

# Keys deleted per DEL command during pattern invalidation
REMOTE_DELETE_BATCH = 500

# ============================================================================
# HTTP Headers
# ============================================================================

HEADER_REQUEST_ID = "X-Request-ID"
