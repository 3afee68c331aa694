"""
Enhanced logging utilities for CB_PERSISTENCE.

Provides structured logging with correlation IDs and component context.
Every persistence operation takes a caller-supplied correlation id; it is
threaded into log records either explicitly (``extra``) or through the
context variable managed here.
"""

import contextvars
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any

# Context variable for correlation ID
_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "correlation_id", default=None
)

# Context variable for component context
_component_context: contextvars.ContextVar[dict[str, Any] | None] = contextvars.ContextVar(
    "component_context", default=None
)


def get_correlation_id() -> str | None:
    """Get the current correlation ID from context."""
    return _correlation_id.get()


def set_correlation_id(correlation_id: str | None) -> None:
    """
    Set a correlation ID in the current context.

    Args:
        correlation_id: Correlation ID (None clears it)
    """
    _correlation_id.set(correlation_id)


def clear_correlation_id() -> None:
    """Clear the correlation ID from context."""
    _correlation_id.set(None)


@contextmanager
def correlation_scope(correlation_id: str | None) -> Iterator[None]:
    """
    Bind a correlation ID for the duration of a block.

    Example:
        with correlation_scope("123"):
            await persistence.open(None)
    """
    token = _correlation_id.set(correlation_id)
    try:
        yield
    finally:
        _correlation_id.reset(token)


def set_component_context(bucket: str | None = None, **kwargs: Any) -> None:
    """
    Set component context for logging.

    Args:
        bucket: Bucket name
        **kwargs: Additional context (collection, component, etc.)
    """
    context = {"bucket": bucket, **kwargs}
    _component_context.set(context)


def clear_component_context() -> None:
    """Clear component context."""
    _component_context.set(None)


def get_logging_context() -> dict[str, Any]:
    """
    Get current logging context (correlation ID and component context).

    Returns:
        Dictionary with context information
    """
    context: dict[str, Any] = {
        "timestamp": datetime.now().isoformat(),
    }

    correlation_id = get_correlation_id()
    if correlation_id:
        context["correlation_id"] = correlation_id

    component_context = _component_context.get()
    if component_context:
        context.update(component_context)

    return context


class ContextualLoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that automatically adds context to log records.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        """Add context to log records."""
        context = get_logging_context()

        # Explicit extra wins over context (e.g. a per-call correlation id)
        extra = kwargs.get("extra", {})
        if extra:
            context.update({k: v for k, v in extra.items() if v is not None})

        kwargs["extra"] = context
        return msg, kwargs


def get_logger(name: str) -> ContextualLoggerAdapter:
    """
    Get a contextual logger that automatically adds correlation ID and context.

    Args:
        name: Logger name (typically __name__)

    Returns:
        ContextualLoggerAdapter instance
    """
    base_logger = logging.getLogger(name)
    return ContextualLoggerAdapter(base_logger, {})


def log_operation(
    logger: logging.Logger | logging.LoggerAdapter,
    operation: str,
    level: int = logging.INFO,
    success: bool = True,
    duration_ms: float | None = None,
    **context: Any,
) -> None:
    """
    Log an operation with structured context.

    Args:
        logger: Logger instance
        operation: Operation name
        level: Log level
        success: Whether operation succeeded
        duration_ms: Operation duration in milliseconds
        **context: Additional context
    """
    log_context = get_logging_context()
    log_context.update(
        {
            "operation": operation,
            "success": success,
        }
    )

    if duration_ms is not None:
        log_context["duration_ms"] = round(duration_ms, 2)

    if context:
        log_context.update({k: v for k, v in context.items() if v is not None})

    message = f"Operation: {operation}"
    if not success:
        message = f"Operation failed: {operation}"
    if duration_ms is not None:
        message += f" (duration: {duration_ms:.2f}ms)"

    logger.log(level, message, extra=log_context)
