"""
Observability components.

Provides structured logging with correlation IDs and in-process
metrics collection.
"""

from .logging import (
    ContextualLoggerAdapter,
    clear_component_context,
    clear_correlation_id,
    correlation_scope,
    get_correlation_id,
    get_logger,
    get_logging_context,
    log_operation,
    set_component_context,
    set_correlation_id,
)
from .metrics import (
    MetricsCollector,
    OperationStats,
    get_metrics_collector,
    record_operation,
    series_key,
    timed_operation,
)

__all__ = [
    # Metrics
    "MetricsCollector",
    "OperationStats",
    "get_metrics_collector",
    "series_key",
    "record_operation",
    "timed_operation",
    # Logging
    "get_correlation_id",
    "set_correlation_id",
    "clear_correlation_id",
    "correlation_scope",
    "set_component_context",
    "clear_component_context",
    "get_logging_context",
    "ContextualLoggerAdapter",
    "get_logger",
    "log_operation",
]
