"""
Exception Module

Structured exception hierarchy for the table cache.

Module Structure:
-----------------
- **base.py**: TableCacheError base class + ConfigurationError
- **cache.py**: Codec, key and backend exceptions

Usage:
------
```python
from tablecache.core.exceptions import CorruptEntryError, InvalidKeyError
```
"""

from tablecache.core.exceptions.base import ConfigurationError, TableCacheError
from tablecache.core.exceptions.cache import (
    BackendUnavailableError,
    CacheConnectionError,
    CacheError,
    CacheKeyError,
    CorruptEntryError,
    InvalidKeyError,
    SerializationError,
)

__all__ = [
    # Base
    "TableCacheError",
    "ConfigurationError",
    # Cache
    "CacheError",
    "BackendUnavailableError",
    "CacheConnectionError",
    "CacheKeyError",
    "CorruptEntryError",
    "InvalidKeyError",
    "SerializationError",
]
