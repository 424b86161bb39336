"""
Interfaces Module

Protocols for storage backends and the external table-store client.
"""

from tablecache.core.interfaces.cache import CacheBackend, EntityFetcher

__all__ = ["CacheBackend", "EntityFetcher"]
