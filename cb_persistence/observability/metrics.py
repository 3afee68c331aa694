"""
Metrics collection for CB_PERSISTENCE.

Latency and error counts of connection lifecycle and query operations,
kept in process. Each series is identified by the operation name and the
bucket/collection it ran against, so persistences sharing one process
(or one bucket) report separately:

    persistence.create[bucket=test,collection=dummies]
"""

import functools
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any


def series_key(operation_name: str, tags: Mapping[str, Any] | None = None) -> str:
    """
    Build the key of a metric series.

    Tags with a None value are left out; the rest are sorted by name.
    """
    parts = [f"{name}={value}" for name, value in sorted((tags or {}).items()) if value is not None]
    if not parts:
        return operation_name
    return f"{operation_name}[{','.join(parts)}]"


@dataclass
class OperationStats:
    """Running totals of one metric series."""

    operation_name: str
    tags: dict[str, Any]
    count: int = 0
    error_count: int = 0
    total_ms: float = 0.0
    min_ms: float | None = None
    max_ms: float = 0.0
    last_error: str | None = None
    last_execution: datetime | None = None

    def add(self, duration_ms: float, error: str | None = None) -> None:
        self.count += 1
        self.total_ms += duration_ms
        self.min_ms = duration_ms if self.min_ms is None else min(self.min_ms, duration_ms)
        self.max_ms = max(self.max_ms, duration_ms)
        if error is not None:
            self.error_count += 1
            self.last_error = error
        self.last_execution = datetime.now()

    def to_dict(self) -> dict[str, Any]:
        avg_ms = self.total_ms / self.count if self.count else 0.0
        return {
            "operation": self.operation_name,
            **self.tags,
            "count": self.count,
            "error_count": self.error_count,
            "error_rate_percent": round(self.error_count * 100 / self.count, 2) if self.count else 0.0,
            "avg_duration_ms": round(avg_ms, 2),
            "min_duration_ms": round(self.min_ms or 0.0, 2),
            "max_duration_ms": round(self.max_ms, 2),
            "last_error": self.last_error,
            "last_execution": self.last_execution.isoformat() if self.last_execution else None,
        }


class MetricsCollector:
    """
    Thread-safe store of metric series.

    At most ``max_series`` series are kept; the least recently updated one
    is dropped to make room for a new one.
    """

    def __init__(self, max_series: int = 10000):
        self._series: OrderedDict[str, OperationStats] = OrderedDict()
        self._lock = threading.Lock()
        self._max_series = max_series

    def record_operation(
        self,
        operation_name: str,
        duration_ms: float,
        success: bool = True,
        error: str | None = None,
        **tags: Any,
    ) -> None:
        """
        Add one execution to the series of ``operation_name`` and ``tags``.

        Args:
            operation_name: Name of the operation (e.g. "connection.open")
            duration_ms: Duration in milliseconds
            success: Whether the operation succeeded
            error: (optional) error type name of a failed execution
            **tags: Series tags, usually bucket and collection
        """
        key = series_key(operation_name, tags)
        if not success and error is None:
            error = "error"
        with self._lock:
            stats = self._series.get(key)
            if stats is None:
                if len(self._series) >= self._max_series:
                    self._series.popitem(last=False)
                stats = OperationStats(
                    operation_name, {k: v for k, v in tags.items() if v is not None}
                )
                self._series[key] = stats
            else:
                self._series.move_to_end(key)
            stats.add(duration_ms, None if success else error)

    def get_metrics(self, prefix: str | None = None) -> dict[str, Any]:
        """
        Snapshot of every series whose key starts with ``prefix``.

        Returns:
            ``{"timestamp": ..., "metrics": {key: stats}, "total_operations": n}``
        """
        with self._lock:
            metrics = {
                key: stats.to_dict()
                for key, stats in self._series.items()
                if prefix is None or key.startswith(prefix)
            }
            total = len(self._series)
        return {
            "timestamp": datetime.now().isoformat(),
            "metrics": metrics,
            "total_operations": total,
        }

    def get_series(self, operation_name: str, **tags: Any) -> dict[str, Any] | None:
        """Get one series by operation name and tags, or None if nothing was recorded."""
        with self._lock:
            stats = self._series.get(series_key(operation_name, tags))
            return stats.to_dict() if stats else None

    def get_operation_count(self, operation_name: str) -> int:
        """Count executions of an operation across all of its series."""
        with self._lock:
            return sum(
                stats.count
                for stats in self._series.values()
                if stats.operation_name == operation_name
            )

    def reset(self) -> None:
        with self._lock:
            self._series.clear()


_metrics_collector: MetricsCollector | None = None


def get_metrics_collector() -> MetricsCollector:
    """Get or create the process-wide metrics collector."""
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()
    return _metrics_collector


def record_operation(
    operation_name: str,
    duration_ms: float,
    success: bool = True,
    error: str | None = None,
    **tags: Any,
) -> None:
    """Record an execution in the process-wide collector."""
    get_metrics_collector().record_operation(operation_name, duration_ms, success, error, **tags)


def timed_operation(operation_name: str):
    """
    Decorator timing an async method into the process-wide collector.

    Series tags come from the instance's ``metric_tags()`` when it defines
    one, so every bucket/collection gets its own series.

    Usage:
        @timed_operation("persistence.get_page_by_filter")
        async def get_page_by_filter(self, ...):
            ...
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            metric_tags = getattr(args[0], "metric_tags", None) if args else None
            tags = metric_tags() if callable(metric_tags) else {}
            start_time = time.time()
            error = None
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                error = type(e).__name__
                raise
            finally:
                duration_ms = (time.time() - start_time) * 1000
                record_operation(operation_name, duration_ms, error is None, error, **tags)

        return wrapper

    return decorator
