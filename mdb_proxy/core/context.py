"""
Process-lifetime proxy context.

Owns the session store, the connection pool, the egress validator, the
payload sanitizer and the rate-limit counters, plus the background sweeper
that keeps the registries bounded. One instance lives on ``app.state.proxy``.
"""

import asyncio
import time

from ..auth.rate_limiter import FixedWindowRateLimitStore
from ..config import ProxyConfig
from ..database.pool import ClientFactory, ConnectionPool
from ..observability import get_logger, log_operation, record_operation, timed_operation
from ..security.egress import EgressValidator, Resolver
from ..security.sanitizer import PayloadSanitizer
from ..session.store import Clock, SessionStore

logger = get_logger(__name__)


class ProxyContext:
    """
    Holds every piece of shared mutable state in the proxy.

    Startup and shutdown are driven by the FastAPI lifespan:

        context = ProxyContext(config)
        context.start()
        ...
        await context.shutdown()
    """

    def __init__(
        self,
        config: ProxyConfig,
        client_factory: ClientFactory | None = None,
        resolver: Resolver | None = None,
        srv_lookup: Resolver | None = None,
        session_clock: Clock | None = None,
        pool_clock: Clock | None = None,
    ):
        """
        Initialize the context. Nothing runs until ``start()``.

        Args:
            config: Proxy configuration
            client_factory: Optional motor client factory (tests)
            resolver: Optional A/AAAA resolver (tests)
            srv_lookup: Optional SRV resolver (tests)
            session_clock: Optional wall clock for session expiry (tests)
            pool_clock: Optional monotonic clock for pool idle time (tests)
        """
        self.config = config
        self.sessions = SessionStore(ttl_seconds=config.session_ttl_seconds, clock=session_clock)
        self.pool = ConnectionPool(
            idle_ttl_seconds=config.pool_idle_ttl_seconds,
            connect_timeout_ms=config.connect_timeout_ms,
            socket_timeout_ms=config.socket_timeout_ms,
            client_factory=client_factory,
            clock=pool_clock,
        )
        self.egress = EgressValidator(resolver=resolver, srv_lookup=srv_lookup)
        self.sanitizer = PayloadSanitizer()
        self.rate_limits = FixedWindowRateLimitStore()
        self._sweeper: asyncio.Task | None = None

    @property
    def sweeper_running(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    def start(self) -> None:
        """Start the background sweeper. Must be called from a running loop."""
        if self.sweeper_running:
            return
        self._sweeper = asyncio.create_task(self._sweep_loop(), name="mdb-proxy-sweeper")
        logger.info(
            f"Sweeper started (interval={self.config.sweep_interval_seconds}s, "
            f"session_ttl={self.config.session_ttl_seconds}s, "
            f"pool_idle_ttl={self.config.pool_idle_ttl_seconds}s)"
        )

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.sweep_interval_seconds)
            try:
                await self.sweep_once()
            except (RuntimeError, OSError, ValueError) as e:
                # Keep sweeping; the next tick retries.
                logger.error(f"Sweep failed: {e}", exc_info=True)

    async def sweep_once(self) -> dict[str, int]:
        """Run one sweep of both registries and the rate-limit counters."""
        with timed_operation("proxy.sweep"):
            expired_sessions = self.sessions.sweep()
            evicted_connections = await self.pool.evict_idle()
            stale_windows = self.rate_limits.cleanup(self.config.rate_limit_window_seconds)
        return {
            "expired_sessions": expired_sessions,
            "evicted_connections": evicted_connections,
            "stale_rate_windows": stale_windows,
        }

    async def shutdown(self) -> None:
        """
        Stop the sweeper, close every pooled client and destroy every session.

        Always completes: close errors are swallowed and both registries end
        up empty.
        """
        start_time = time.perf_counter()
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None

        closed = await self.pool.close_all()
        destroyed = self.sessions.destroy_all()
        duration_ms = (time.perf_counter() - start_time) * 1000
        record_operation("proxy.shutdown", duration_ms)
        log_operation(
            logger,
            "proxy.shutdown",
            duration_ms=duration_ms,
            closed_connections=closed,
            destroyed_sessions=destroyed,
        )
