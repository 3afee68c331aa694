"""
Unit tests for custom exceptions.

Tests exception hierarchy, default codes and error messages.
"""

from cb_persistence.driver import (
    CasMismatchError,
    DocumentExistsError,
    DocumentNotFoundError,
    DriverError,
    is_key_not_found,
)
from cb_persistence.exceptions import (
    ConfigurationError,
    CouchbasePersistenceError,
    InvalidStateError,
    StoreConnectionError,
)


class TestExceptionHierarchy:
    """Test exception inheritance hierarchy."""

    def test_base_error_is_runtime_error(self):
        """Test that CouchbasePersistenceError is a RuntimeError."""
        error = CouchbasePersistenceError("test error")
        assert isinstance(error, RuntimeError)

    def test_subclasses(self):
        for error_type in (ConfigurationError, StoreConnectionError, InvalidStateError):
            error = error_type("failed")
            assert isinstance(error, CouchbasePersistenceError)
            assert isinstance(error, RuntimeError)


class TestExceptionCodes:
    """Test default and explicit error codes."""

    def test_default_codes(self):
        assert ConfigurationError("x").code == "INVALID_CONFIG"
        assert StoreConnectionError("x").code == "CONNECT_FAILED"
        assert InvalidStateError("x").code == "INVALID_STATE"

    def test_explicit_code_and_correlation_id(self):
        error = ConfigurationError("Connection host is not set", code="NO_HOST", correlation_id="123")

        assert error.code == "NO_HOST"
        assert error.correlation_id == "123"


class TestExceptionMessages:
    """Test exception message formatting."""

    def test_message(self):
        error = StoreConnectionError("Connection to couchbase failed")

        assert str(error) == "CONNECT_FAILED: Connection to couchbase failed"
        assert error.message == "Connection to couchbase failed"
        assert error.context == {}

    def test_message_with_context(self):
        context = {"bucket": "test", "collection": "dummies"}
        error = StoreConnectionError("Flush failed", code="FLUSH_FAILED", context=context)

        assert "context:" in str(error)
        assert "bucket=test" in str(error)
        assert error.context == context


class TestDriverErrors:
    """Test the driver error taxonomy."""

    def test_codes(self):
        assert DocumentNotFoundError("missing").code == 13
        assert DocumentExistsError("exists").code == 12
        assert CasMismatchError("cas").code == 12
        assert DriverError("other").code is None

    def test_is_key_not_found(self):
        assert is_key_not_found(DocumentNotFoundError("missing"))
        assert is_key_not_found(DriverError("Key does not exist", code=13))
        assert not is_key_not_found(DocumentExistsError("exists"))
        assert not is_key_not_found(ValueError("other"))
        assert not is_key_not_found(None)
