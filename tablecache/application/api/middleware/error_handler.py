"""
Error Handling Middleware

Last line of defense for the admin API: any exception not handled by a
route or a FastAPI exception handler is logged with its stack trace and
answered with a generic JSON 500.

Clients never see cache internals (keys, Redis targets, file paths). The
request ID header lets operators find the full error in the logs.
"""

import traceback
from collections.abc import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from tablecache.core.config.constants import HEADER_REQUEST_ID
from tablecache.core.logging import get_logger, get_request_id

logger = get_logger(__name__)


def internal_error_content(error_type: str) -> dict[str, str]:
    """Generic 500 body; details stay in the log."""
    return {
        "error": "internal_server_error",
        "message": "An unexpected error occurred while processing your request",
        "error_type": error_type,
    }


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """
    Catch-all exception formatting.

    Args:
        app: The ASGI application
        include_traceback: Add the stack trace to the response body
            (development only)
    """

    def __init__(self, app, include_traceback: bool = False):
        super().__init__(app)
        self.include_traceback = include_traceback

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as e:
            method = request.method
            path = request.url.path
            error_type = type(e).__name__

            logger.error(
                f"Unhandled exception in request: {method} {path}",
                method=method,
                path=path,
                error_type=error_type,
                error_message=str(e),
                exc_info=True,
            )

            error_response = internal_error_content(error_type)
            if self.include_traceback:
                error_response["traceback"] = traceback.format_exc()
                error_response["detail"] = str(e)

            request_id = get_request_id()
            headers = {HEADER_REQUEST_ID: request_id} if request_id else None
            return JSONResponse(status_code=500, content=error_response, headers=headers)


def add_error_handling_middleware(app, include_traceback: bool = False) -> None:
    """
    Register ErrorHandlingMiddleware on a FastAPI application.

    Register it before other middleware so it wraps them.
    """
    app.add_middleware(ErrorHandlingMiddleware, include_traceback=include_traceback)
    logger.info("Error handling middleware registered", include_traceback=include_traceback)
