"""
Observability components.

Provides contextual logging with credential redaction, in-process metrics,
and health checks for the proxy's registries.
"""

from .health import (
    HealthChecker,
    HealthCheckResult,
    HealthStatus,
    check_pool_health,
    check_session_store_health,
)
from .logging import (
    ContextualLoggerAdapter,
    clear_correlation_id,
    configure_logging,
    get_correlation_id,
    get_logger,
    get_logging_context,
    log_operation,
    mask_uri,
    scrub_credentials,
    set_correlation_id,
)
from .metrics import (
    MetricsCollector,
    OperationStats,
    get_metrics_collector,
    record_operation,
    timed_operation,
)

__all__ = [
    # Metrics
    "MetricsCollector",
    "OperationStats",
    "get_metrics_collector",
    "record_operation",
    "timed_operation",
    # Logging
    "configure_logging",
    "get_correlation_id",
    "set_correlation_id",
    "clear_correlation_id",
    "get_logging_context",
    "ContextualLoggerAdapter",
    "get_logger",
    "log_operation",
    "mask_uri",
    "scrub_credentials",
    # Health
    "HealthStatus",
    "HealthCheckResult",
    "HealthChecker",
    "check_session_store_health",
    "check_pool_health",
]
