"""
API Middleware
"""

from tablecache.application.api.middleware.error_handler import (
    ErrorHandlingMiddleware,
    add_error_handling_middleware,
    internal_error_content,
)

__all__ = ["ErrorHandlingMiddleware", "add_error_handling_middleware", "internal_error_content"]
