"""
SQL timing and performance statistics.

Provides:
- ``log_sql(operation, sql)``: context manager that times one statement and
  logs ``sql.<operation>`` with ``duration_ms``
- ``PerformanceMonitor``: per-operation count/total/min/max aggregation with
  a slow-query threshold

Design:
- Statement logs are DEBUG, or INFO when ``show_sql`` is on
- Failures log ``sql.<operation>.error`` at ERROR and re-raise
- Statements above the slow threshold log ``sql.slow_query`` at WARNING
- Timer overhead is a pair of ``time.perf_counter`` calls
"""

from __future__ import annotations

import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from relmap.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_SLOW_QUERY_MS = 1000.0


@dataclass
class TimingResult:
    """Result of a timed statement."""

    step: str
    started_at: float = field(default_factory=time.perf_counter)
    ended_at: float | None = None
    metrics: dict[str, Any] = field(default_factory=dict)
    status: str = "ok"  # ok, error

    def stop(self) -> TimingResult:
        """Record end time."""
        self.ended_at = time.perf_counter()
        return self

    @property
    def duration_ms(self) -> float:
        """Duration in milliseconds."""
        end = self.ended_at if self.ended_at is not None else time.perf_counter()
        return (end - self.started_at) * 1000

    def add_metric(self, key: str, value: Any) -> TimingResult:
        """Add a metric to include in the log output."""
        self.metrics[key] = value
        return self

    def to_log_dict(self) -> dict[str, Any]:
        result = {"duration_ms": round(self.duration_ms, 2)}
        result.update(self.metrics)
        return result


@dataclass
class OperationStats:
    """Aggregated timings for one operation name."""

    count: int = 0
    total_ms: float = 0.0
    min_ms: float = 0.0
    max_ms: float = 0.0

    @property
    def avg_ms(self) -> float:
        return self.total_ms / self.count if self.count else 0.0

    def record(self, duration_ms: float) -> None:
        if self.count == 0:
            self.min_ms = self.max_ms = duration_ms
        else:
            self.min_ms = min(self.min_ms, duration_ms)
            self.max_ms = max(self.max_ms, duration_ms)
        self.count += 1
        self.total_ms += duration_ms

    def to_dict(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "total_ms": round(self.total_ms, 2),
            "avg_ms": round(self.avg_ms, 2),
            "min_ms": round(self.min_ms, 2),
            "max_ms": round(self.max_ms, 2),
        }


class PerformanceMonitor:
    """Thread-safe statement statistics keyed by operation name.

    Example::

        monitor = PerformanceMonitor(slow_query_ms=250)
        with log_sql("find_by_id", sql, monitor=monitor):
            cursor = conn.execute(sql, params)
        monitor.stats()["find_by_id"]["count"]
    """

    def __init__(self, *, enabled: bool = True, slow_query_ms: float = DEFAULT_SLOW_QUERY_MS):
        self.enabled = enabled
        self.slow_query_ms = slow_query_ms
        self._stats: dict[str, OperationStats] = {}
        self._lock = threading.Lock()

    def record(self, operation: str, duration_ms: float, sql: str | None = None) -> None:
        if self.enabled:
            with self._lock:
                self._stats.setdefault(operation, OperationStats()).record(duration_ms)
        if duration_ms > self.slow_query_ms:
            logger.warning(
                "sql.slow_query",
                operation=operation,
                sql=sql,
                duration_ms=round(duration_ms, 2),
                threshold_ms=self.slow_query_ms,
            )

    def stats(self) -> dict[str, dict[str, Any]]:
        """Snapshot of all operation statistics."""
        with self._lock:
            return {name: s.to_dict() for name, s in self._stats.items()}

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()

    def log_stats(self) -> None:
        for operation, values in self.stats().items():
            logger.info("sql.stats", operation=operation, **values)


@contextmanager
def log_sql(
    operation: str,
    sql: str,
    *,
    monitor: PerformanceMonitor | None = None,
    show_sql: bool = False,
    **extra: Any,
) -> Iterator[TimingResult]:
    """
    Time one SQL statement and log it.

    Usage:
        with log_sql("save", sql, entity="User") as timer:
            cursor = conn.execute(sql, params)
            timer.add_metric("rowcount", cursor.rowcount)

        # DEBUG sql.save sql="INSERT ..." entity=User duration_ms=0.42 rowcount=1
    """
    timer = TimingResult(step=operation, metrics=dict(extra))
    try:
        yield timer
    except Exception as e:
        timer.stop()
        timer.status = "error"
        logger.error(
            f"sql.{operation}.error",
            sql=sql,
            error_type=type(e).__name__,
            error_message=str(e),
            **timer.to_log_dict(),
        )
        raise
    finally:
        timer.stop()
        if monitor is not None:
            monitor.record(operation, timer.duration_ms, sql)

    log_method = logger.info if show_sql else logger.debug
    log_method(f"sql.{operation}", sql=sql, **timer.to_log_dict())


__all__ = [
    "TimingResult",
    "OperationStats",
    "PerformanceMonitor",
    "log_sql",
    "DEFAULT_SLOW_QUERY_MS",
]
