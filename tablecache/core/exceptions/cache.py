"""
Cache-Related Exceptions

All exceptions raised by the codec, the key namespace and the storage backends.

Propagation policy:
    Only InvalidKeyError is allowed to escape the cache facade. It signals a
    programmer error at the call site (empty namespace, missing entity id).
    Everything else is logged by the facade and degraded to a miss or no-op.
"""

from tablecache.core.exceptions.base import TableCacheError


class CacheError(TableCacheError):
    """Base exception for cache-related errors."""
    pass


class BackendUnavailableError(CacheError):
    """
    Raised when a storage backend cannot serve requests.

    Common causes:
    - Redis server unreachable or reconnect attempts exhausted
    - Local cache directory (and its fallback) cannot be created
    """
    pass


class CacheConnectionError(BackendUnavailableError):
    """
    Raised when unable to connect to the remote store (Redis).

    Common causes:
    - Redis server is down
    - Network connectivity issues
    - Incorrect URL / host / port configuration
    - Authentication failure
    """
    pass


class CacheKeyError(CacheError):
    """Raised when a single remote key operation fails."""
    pass


class CorruptEntryError(CacheError):
    """
    Raised when stored bytes cannot be turned back into a value.

    Common causes:
    - Truncated or bit-flipped gzip payload
    - Missing chunk or manifest/chunk length mismatch
    - Unreadable local file header
    """
    pass


class InvalidKeyError(CacheError, ValueError):
    """Raised for empty or unusable cache keys and key components."""
    pass


class SerializationError(CacheError):
    """Raised when a value cannot be encoded for storage."""
    pass
