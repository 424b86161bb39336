"""
Core Module

Foundational components: configuration, logging, exceptions and protocols.
"""

from .exceptions import (
    BackendUnavailableError,
    CacheConnectionError,
    CacheError,
    CacheKeyError,
    ConfigurationError,
    CorruptEntryError,
    InvalidKeyError,
    SerializationError,
    TableCacheError,
)
from .logging import (
    clear_request_id,
    get_logger,
    get_request_id,
    log_stage,
    set_request_id,
    setup_logging,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "set_request_id",
    "get_request_id",
    "clear_request_id",
    "log_stage",
    "TableCacheError",
    "ConfigurationError",
    "CacheError",
    "BackendUnavailableError",
    "CacheConnectionError",
    "CacheKeyError",
    "CorruptEntryError",
    "InvalidKeyError",
    "SerializationError",
]
