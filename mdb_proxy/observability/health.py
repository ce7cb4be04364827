"""
Health check utilities for MDB_PROXY.

The proxy has no database of its own, so health is about its two in-memory
registries and the background sweeper that keeps them bounded.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from .metrics import get_metrics_collector

if TYPE_CHECKING:
    from ..core.context import ProxyContext

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    """Health status enumeration."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


@dataclass
class HealthCheckResult:
    """Result of a health check."""

    name: str
    status: HealthStatus
    message: str
    details: dict[str, Any] | None = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


class HealthChecker:
    """Runs registered async checks and folds them into one status."""

    def __init__(self):
        self._checks: list[Callable[[], Awaitable[HealthCheckResult]]] = []

    def register_check(self, check_func: Callable[[], Awaitable[HealthCheckResult]]) -> None:
        """
        Register a health check function.

        Args:
            check_func: Async function that returns HealthCheckResult
        """
        self._checks.append(check_func)

    async def check_all(self) -> dict[str, Any]:
        results: list[HealthCheckResult] = []

        for check_func in self._checks:
            name = getattr(check_func, "__name__", repr(check_func))
            try:
                results.append(await check_func())
            except (RuntimeError, ValueError, TypeError, AttributeError) as e:
                logger.error(f"Health check {name} failed: {e}", exc_info=True)
                results.append(
                    HealthCheckResult(
                        name=name,
                        status=HealthStatus.UNKNOWN,
                        message=f"Check failed: {e}",
                    )
                )

        statuses = [r.status for r in results]
        if HealthStatus.UNHEALTHY in statuses:
            overall_status = HealthStatus.UNHEALTHY
        elif HealthStatus.DEGRADED in statuses:
            overall_status = HealthStatus.DEGRADED
        elif all(s == HealthStatus.HEALTHY for s in statuses):
            overall_status = HealthStatus.HEALTHY
        else:
            overall_status = HealthStatus.UNKNOWN

        return {
            "status": overall_status.value,
            "timestamp": datetime.now().isoformat(),
            "checks": [r.to_dict() for r in results],
        }


async def check_session_store_health(context: "ProxyContext | None") -> HealthCheckResult:
    """Report live session count and whether the expiry sweeper is running."""
    if context is None:
        return HealthCheckResult(
            name="sessions",
            status=HealthStatus.UNHEALTHY,
            message="Proxy context not initialized",
        )

    details = {
        "active_sessions": context.sessions.count(),
        "sweeper_running": context.sweeper_running,
    }
    if not context.sweeper_running:
        # Lazy expiry still holds; only memory growth is unbounded.
        return HealthCheckResult(
            name="sessions",
            status=HealthStatus.DEGRADED,
            message="Session sweeper is not running",
            details=details,
        )
    return HealthCheckResult(
        name="sessions",
        status=HealthStatus.HEALTHY,
        message="Session store is healthy",
        details=details,
    )


async def check_pool_health(context: "ProxyContext | None") -> HealthCheckResult:
    """Report pooled connection count and dial statistics."""
    if context is None:
        return HealthCheckResult(
            name="connection_pool",
            status=HealthStatus.UNHEALTHY,
            message="Proxy context not initialized",
        )

    collector = get_metrics_collector()
    details = context.pool.get_metrics()
    details["acquires"] = collector.summarize("pool.acquire")["outcomes"]
    details["dial_failures"] = collector.summarize("pool.dial")["failures"]
    return HealthCheckResult(
        name="connection_pool",
        status=HealthStatus.HEALTHY,
        message="Connection pool is operational",
        details=details,
    )
