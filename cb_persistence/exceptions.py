"""
Custom exceptions for CB_PERSISTENCE.

These exceptions provide specific error types while maintaining
compatibility with RuntimeError. Every error carries a stable
machine-readable code and the correlation id of the failed call.
"""

from typing import Any


class CouchbasePersistenceError(RuntimeError):
    """
    Base exception for persistence errors.

    Attributes:
        message: Error message
        code: Stable machine-readable error code (e.g. "CONNECT_FAILED")
        correlation_id: Correlation id of the call that failed (if available)
        context: Optional dictionary with additional context (bucket, collection, etc.)
    """

    default_code = "UNKNOWN"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        correlation_id: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize the exception.

        Args:
            message: Error message
            code: Error code (defaults to the class default code)
            correlation_id: Correlation id of the failed call
            context: Optional dictionary with additional context information
        """
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.correlation_id = correlation_id
        self.context = context or {}

    def __str__(self) -> str:
        """Return formatted error message with code and context if available."""
        text = f"{self.code}: {self.message}"
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{text} (context: {context_str})"
        return text


class ConfigurationError(CouchbasePersistenceError):
    """
    Raised when connection or persistence configuration is invalid or missing.

    Codes: NO_CONNECTION, NO_HOST, NO_PORT, NO_BUCKET, CANNOT_RESOLVE,
    INVALID_OPTIONS, CANNOT_CREATE.
    Configuration errors are never retried.
    """

    default_code = "INVALID_CONFIG"


class StoreConnectionError(CouchbasePersistenceError):
    """
    Raised when the physical connection, bucket open or bucket flush fails.

    Codes: CONNECT_FAILED, FLUSH_FAILED. The driver error is attached
    as ``__cause__``.
    """

    default_code = "CONNECT_FAILED"


class InvalidStateError(CouchbasePersistenceError):
    """
    Raised when an operation is attempted in an inconsistent lifecycle state,
    for example closing a persistence whose connection reference was dropped.
    """

    default_code = "INVALID_STATE"
