"""
Base Exception Class

Root of the tablecache exception tree. Themed subclasses (cache, codec,
keys) live in sibling modules and add no state of their own; everything a
handler needs to log or return is carried here.
"""

from typing import Any


class TableCacheError(Exception):
    """
    Base exception for the table cache.

    Carries a human-readable message, the request ID active when it was
    raised (for log correlation) and a free-form details mapping that is
    merged into structured log events.

    Attributes:
        message: Error message
        request_id: Request ID for correlation (if available)
        details: Extra context such as the cache key or backend name

    Example:
        raise CorruptEntryError(
            "Chunk 3 missing",
            details={"cache_key": "entity-page:orders:ab12", "chunk_count": 8}
        )
    """

    def __init__(self, message: str, request_id: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.request_id = request_id
        self.details: dict[str, Any] = dict(details or {})

    def to_dict(self) -> dict[str, Any]:
        """Serializable view used by the HTTP error handlers."""
        return {
            "error_type": type(self).__name__,
            "message": self.message,
            "request_id": self.request_id,
            "details": self.details,
        }

    def with_context(self, **context: Any) -> "TableCacheError":
        """Merge extra context into ``details`` and return the same error."""
        self.details.update(context)
        return self

    def __repr__(self) -> str:
        parts = [repr(self.message)]
        if self.request_id:
            parts.append(f"request_id={self.request_id!r}")
        if self.details:
            parts.append(f"details={self.details!r}")
        return f"{type(self).__name__}({', '.join(parts)})"

    @classmethod
    def from_exception(
        cls,
        exc: BaseException,
        message: str | None = None,
        request_id: str | None = None,
        **details: Any,
    ) -> "TableCacheError":
        """
        Wrap a third-party exception (redis, OSError, zlib, orjson).

        The wrapped exception's type and text are kept in ``details`` under
        ``original_error`` / ``original_message``.

        Example:
            >>> try:
            ...     gzip.decompress(data)
            ... except OSError as e:
            ...     raise CorruptEntryError.from_exception(e, cache_key="entity-detail:orders")
        """
        context = {"original_error": type(exc).__name__, "original_message": str(exc)}
        context.update(details)
        return cls(message or str(exc), request_id=request_id, details=context)


class ConfigurationError(TableCacheError):
    """Invalid or inconsistent configuration (e.g. a stale ratio outside (0, 1))."""
