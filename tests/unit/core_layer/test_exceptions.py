"""
Unit Tests for Core Exceptions

Tests the exception hierarchy and the structured error helpers.
"""

import pytest

from tablecache.core.exceptions import (
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


@pytest.mark.unit
class TestTableCacheError:
    """Test the base exception class."""

    def test_base_error_creation(self):
        error = TableCacheError("Test message")
        assert str(error) == "Test message"
        assert error.details == {}
        assert error.request_id is None

    def test_details_are_copied(self):
        details = {"key": "value"}
        error = TableCacheError("Test", details=details)
        details["key"] = "changed"

        assert error.details == {"key": "value"}

    def test_to_dict(self):
        error = CorruptEntryError("Chunk 3 missing", request_id="req-1", details={"chunk": 3})

        assert error.to_dict() == {
            "error_type": "CorruptEntryError",
            "message": "Chunk 3 missing",
            "request_id": "req-1",
            "details": {"chunk": 3},
        }

    def test_with_context_chains(self):
        error = CacheKeyError("GET failed").with_context(key="entity-detail:orders")

        assert isinstance(error, CacheKeyError)
        assert error.details["key"] == "entity-detail:orders"

    def test_from_exception_keeps_original(self):
        original = OSError("disk full")

        error = CacheError.from_exception(original, message="Write failed", key="k")

        assert error.message == "Write failed"
        assert error.details["original_error"] == "OSError"
        assert error.details["original_message"] == "disk full"
        assert error.details["key"] == "k"

    def test_repr_includes_details(self):
        error = TableCacheError("Oops", request_id="r1", details={"a": 1})
        text = repr(error)

        assert "Oops" in text
        assert "r1" in text
        assert "'a': 1" in text


@pytest.mark.unit
class TestCacheHierarchy:
    """Test that the cache taxonomy can be caught at every level."""

    @pytest.mark.parametrize(
        "exc_class",
        [BackendUnavailableError, CacheConnectionError, CacheKeyError, CorruptEntryError, SerializationError],
    )
    def test_cache_errors_are_cache_errors(self, exc_class):
        assert issubclass(exc_class, CacheError)
        assert issubclass(exc_class, TableCacheError)

    def test_connection_error_is_backend_unavailable(self):
        with pytest.raises(BackendUnavailableError):
            raise CacheConnectionError("refused")

    def test_invalid_key_is_value_error(self):
        with pytest.raises(ValueError):
            raise InvalidKeyError("empty namespace")

    def test_configuration_error_is_not_cache_error(self):
        assert not issubclass(ConfigurationError, CacheError)
