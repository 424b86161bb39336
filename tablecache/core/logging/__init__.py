"""
Logging Module

Structured logging with structlog, request ID correlation and secret redaction.
"""

from tablecache.core.logging.logger import (
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
    "log_stage",
    "set_request_id",
    "get_request_id",
    "clear_request_id",
]
