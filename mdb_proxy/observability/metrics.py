"""
Metrics collection for MDB_PROXY.

In-process latency and failure counters for pool dials, probes and
acquires, session sweeps and shutdown.

Each series is identified by an operation name and an optional outcome
label (``pool.acquire[outcome=reused]``). There are no free-form tags:
nothing derived from a request, least of all a credential string or its
hash, can become part of a series key.
"""

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)


def series_key(operation: str, outcome: str | None = None) -> str:
    return f"{operation}[outcome={outcome}]" if outcome else operation


@dataclass
class OperationStats:
    """Running aggregates for one operation/outcome series."""

    operation: str
    outcome: str | None = None
    count: int = 0
    failures: int = 0
    total_ms: float = 0.0
    min_ms: float | None = None
    max_ms: float = 0.0
    last_at: float | None = None

    def add(self, duration_ms: float, success: bool, at: float) -> None:
        self.count += 1
        self.total_ms += duration_ms
        self.min_ms = duration_ms if self.min_ms is None else min(self.min_ms, duration_ms)
        self.max_ms = max(self.max_ms, duration_ms)
        if not success:
            self.failures += 1
        self.last_at = at

    def to_dict(self) -> dict[str, Any]:
        avg = self.total_ms / self.count if self.count else 0.0
        return {
            "operation": self.operation,
            "outcome": self.outcome,
            "count": self.count,
            "avg_duration_ms": round(avg, 2),
            "min_duration_ms": round(self.min_ms or 0.0, 2),
            "max_duration_ms": round(self.max_ms, 2),
            "error_count": self.failures,
            "error_rate_percent": round(self.failures / self.count * 100, 2) if self.count else 0.0,
            "last_execution": (
                datetime.fromtimestamp(self.last_at, tz=timezone.utc).isoformat()
                if self.last_at is not None
                else None
            ),
        }


class MetricsCollector:
    """
    Thread-safe, LRU-bounded collector of operation series.

    Operation names used by the proxy:
    - ``pool.dial`` / ``pool.probe`` / ``pool.acquire`` (outcomes ``reused``,
      ``replaced``, ``dialed``, ``failed``)
    - ``sessions.sweep`` / ``proxy.sweep``
    - ``proxy.shutdown``
    """

    def __init__(self, max_metrics: int = 1000):
        self._series: OrderedDict[str, OperationStats] = OrderedDict()
        self._lock = threading.Lock()
        self._max_metrics = max_metrics

    def record_operation(
        self,
        operation_name: str,
        duration_ms: float,
        success: bool = True,
        outcome: str | None = None,
    ) -> None:
        """
        Record one execution of an operation.

        Args:
            operation_name: Name of the operation (e.g., "pool.dial")
            duration_ms: Duration in milliseconds
            success: Whether the operation succeeded
            outcome: Optional low-cardinality outcome label
        """
        key = series_key(operation_name, outcome)
        now = time.time()
        with self._lock:
            stats = self._series.get(key)
            if stats is None:
                if len(self._series) >= self._max_metrics:
                    evicted, _ = self._series.popitem(last=False)
                    logger.debug(f"Metrics series evicted: {evicted}")
                stats = self._series[key] = OperationStats(operation_name, outcome)
            else:
                self._series.move_to_end(key)
            stats.add(duration_ms, success, now)

    def get_metrics(self, operation_name: str | None = None) -> dict[str, Any]:
        """All series, optionally filtered by operation-name prefix."""
        with self._lock:
            metrics = {
                key: stats.to_dict()
                for key, stats in self._series.items()
                if operation_name is None or key.startswith(operation_name)
            }
            total = len(self._series)

        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "metrics": metrics,
            "total_operations": total,
        }

    def get_operation_count(self, operation_name: str) -> int:
        """Executions of an operation summed over its outcomes."""
        return self.summarize(operation_name)["count"]

    def summarize(self, operation_name: str) -> dict[str, Any]:
        """
        Fold every outcome series of one operation together.

        Returns:
            ``{"count", "failures", "avg_duration_ms", "outcomes"}`` where
            ``outcomes`` maps each outcome label to its count
        """
        with self._lock:
            series = [s for s in self._series.values() if s.operation == operation_name]
            count = sum(s.count for s in series)
            failures = sum(s.failures for s in series)
            total_ms = sum(s.total_ms for s in series)
            outcomes = {s.outcome: s.count for s in series if s.outcome}

        return {
            "count": count,
            "failures": failures,
            "avg_duration_ms": round(total_ms / count, 2) if count else 0.0,
            "outcomes": outcomes,
        }

    def reset(self) -> None:
        with self._lock:
            self._series.clear()


_metrics_collector: MetricsCollector | None = None


def get_metrics_collector() -> MetricsCollector:
    """Get or create the global metrics collector."""
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()
    return _metrics_collector


def record_operation(
    operation_name: str, duration_ms: float, success: bool = True, outcome: str | None = None
) -> None:
    """Record an operation in the global metrics collector."""
    get_metrics_collector().record_operation(operation_name, duration_ms, success, outcome)


@contextmanager
def timed_operation(operation_name: str, outcome: str | None = None) -> Iterator[None]:
    """
    Time the enclosed block and record it, marking failure if it raises.

    Usage:
        with timed_operation("proxy.sweep"):
            await context.sweep_once()
    """
    start_time = time.perf_counter()
    success = True
    try:
        yield
    except Exception:
        success = False
        raise
    finally:
        record_operation(
            operation_name, (time.perf_counter() - start_time) * 1000, success, outcome
        )
