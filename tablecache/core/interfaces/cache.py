"""
Cache Backend Protocol

This module defines the abstract protocols the cache facade depends on:
byte storage backends and the external table-store client used for warmup.

Architectural Decision: Protocol-based abstraction
- The facade composes any ordered list of backends (Redis, local disk)
- Facilitates testing with in-memory implementations
- Type-safe interface with runtime checking
"""

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class CacheBackend(Protocol):
    """
    Protocol for key → bytes storage tiers.

    Backends own expiry and chunking of their own entries; values are opaque
    bytes produced by the codec. Implementations never raise for backend
    failures: they log, report unavailability and return None/False/0.

    Implementations:
    - RemoteStore: Redis-backed tier (shared)
    - LocalStore: filesystem-backed tier (per host)
    """

    name: str

    @property
    def is_available(self) -> bool:
        """True while the backend can serve requests."""
        ...

    async def get(self, key: str) -> bytes | None:
        """
        Get stored bytes.

        Returns:
            bytes or None on miss, expiry, incomplete chunks or unavailability
        """
        ...

    async def set(self, key: str, data: bytes, ttl: int) -> bool:
        """
        Store bytes with a TTL in seconds (full overwrite).

        Returns:
            bool: True if written
        """
        ...

    async def delete(self, key: str) -> bool:
        """Delete an entry including its manifest and chunks."""
        ...

    async def delete_by_pattern(self, pattern: str) -> int:
        """
        Delete every key matching a glob (``* ? [``) or substring pattern.

        Returns:
            int: Number of keys removed
        """
        ...

    async def batch_get(self, keys: list[str]) -> list[bytes | None]:
        """Get many entries, positionally aligned with ``keys``."""
        ...

    async def health_check(self) -> dict[str, Any]:
        """Backend status for the admin health endpoint."""
        ...


@runtime_checkable
class EntityFetcher(Protocol):
    """
    The external table-store client, as seen by cache warmup.

    Only the two reads warmup needs are part of the contract.
    """

    async def list_entities(self) -> list[str]:
        """Names of all tables."""
        ...

    async def fetch_entity(self, entity_id: str) -> Any:
        """Description of one table."""
        ...
