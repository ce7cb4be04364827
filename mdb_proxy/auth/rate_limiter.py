"""
Rate limiting for the proxy API.

Fixed-window counters per client address, in three tiers:

    connect   POST /api/connect                          5 / 60s
    api       every /api/* request                      100 / 60s
    mutation  non-GET /api/documents*, /api/import       30 / 60s

A request counts against every tier it matches; exceeding any one of them
returns 429 with ``Retry-After`` and the usual error envelope.

Usage:
    app.add_middleware(
        RateLimitMiddleware,
        store=FixedWindowRateLimitStore(),
        tiers=default_tiers(config),
        trust_proxy=config.trust_proxy,
    )
"""

import logging
import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from ..constants import (
    API_RATE_LIMIT,
    CONNECT_RATE_LIMIT,
    MUTATION_RATE_LIMIT,
    RATE_LIMIT_WINDOW_SECONDS,
)

logger = logging.getLogger(__name__)

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


@dataclass(frozen=True)
class RateLimit:
    """Rate limit configuration for a tier."""

    max_attempts: int
    window_seconds: int = RATE_LIMIT_WINDOW_SECONDS
    message: str = "Too many requests. Please slow down."


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of counting one request against one tier."""

    allowed: bool
    limit: int
    remaining: int
    reset_after: int


def default_tiers(config=None) -> dict[str, RateLimit]:
    """Build the three tiers, taking budgets from ``config`` when given."""
    window = getattr(config, "rate_limit_window_seconds", RATE_LIMIT_WINDOW_SECONDS)
    return {
        "api": RateLimit(
            max_attempts=getattr(config, "api_rate_limit", API_RATE_LIMIT),
            window_seconds=window,
            message="Too many requests. Please slow down.",
        ),
        "connect": RateLimit(
            max_attempts=getattr(config, "connect_rate_limit", CONNECT_RATE_LIMIT),
            window_seconds=window,
            message="Too many connection attempts. Please try again in a minute.",
        ),
        "mutation": RateLimit(
            max_attempts=getattr(config, "mutation_rate_limit", MUTATION_RATE_LIMIT),
            window_seconds=window,
            message="Too many write operations. Please slow down.",
        ),
    }


def tiers_for(method: str, path: str) -> list[str]:
    """Names of the tiers a request counts against, broadest first."""
    if path != "/api" and not path.startswith("/api/"):
        return []

    names = ["api"]
    method = method.upper()
    if method == "POST" and path.rstrip("/") == "/api/connect":
        names.append("connect")
    if method not in SAFE_METHODS and (
        path.startswith("/api/documents") or path.rstrip("/") == "/api/import"
    ):
        names.append("mutation")
    return names


class FixedWindowRateLimitStore:
    """
    In-memory fixed-window counters.

    Suitable for a single process; counters reset at each window boundary.
    """

    def __init__(self, clock: Callable[[], float] | None = None):
        # Structure: {identifier: (window_start, count)}
        self._windows: dict[str, tuple[float, int]] = {}
        self._lock = threading.Lock()
        self._clock = clock or time.time

    async def hit(self, identifier: str, limit: RateLimit) -> RateLimitResult:
        """
        Count one request and report whether it is within the limit.

        Args:
            identifier: e.g. "connect:203.0.113.7"
            limit: The tier's limit
        """
        now = self._clock()
        with self._lock:
            window_start, count = self._windows.get(identifier, (now, 0))
            if now - window_start >= limit.window_seconds:
                window_start, count = now, 0
            count += 1
            self._windows[identifier] = (window_start, count)

        reset_after = max(1, math.ceil(window_start + limit.window_seconds - now))
        return RateLimitResult(
            allowed=count <= limit.max_attempts,
            limit=limit.max_attempts,
            remaining=max(0, limit.max_attempts - count),
            reset_after=reset_after,
        )

    def cleanup(self, max_age_seconds: int = RATE_LIMIT_WINDOW_SECONDS) -> int:
        """
        Drop windows older than ``max_age_seconds``.

        Returns:
            Number of identifiers cleaned up
        """
        cutoff = self._clock() - max_age_seconds
        with self._lock:
            stale = [k for k, (start, _) in self._windows.items() if start <= cutoff]
            for identifier in stale:
                del self._windows[identifier]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """ASGI middleware applying the rate-limit tiers to /api requests."""

    def __init__(
        self,
        app: Callable,
        store: FixedWindowRateLimitStore,
        tiers: dict[str, RateLimit] | None = None,
        trust_proxy: bool = False,
    ):
        """
        Initialize rate limit middleware.

        Args:
            app: ASGI application
            store: Counter storage
            tiers: Tier name -> RateLimit. Defaults to default_tiers().
            trust_proxy: Take the client address from X-Forwarded-For
        """
        super().__init__(app)
        self._store = store
        self._tiers = tiers or default_tiers()
        self._trust_proxy = trust_proxy

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Response],
    ) -> Response:
        names = [n for n in tiers_for(request.method, request.url.path) if n in self._tiers]
        if not names:
            return await call_next(request)

        client_ip = self._get_client_ip(request)
        tightest: RateLimitResult | None = None
        for name in names:
            limit = self._tiers[name]
            result = await self._store.hit(f"{name}:{client_ip}", limit)
            if not result.allowed:
                logger.warning(
                    f"Rate limit exceeded: tier={name} "
                    f"({result.limit} per {limit.window_seconds}s)"
                )
                return self._rate_limit_response(limit, result)
            if tightest is None or result.remaining < tightest.remaining:
                tightest = result

        response = await call_next(request)
        if tightest is not None:
            response.headers["RateLimit-Limit"] = str(tightest.limit)
            response.headers["RateLimit-Remaining"] = str(tightest.remaining)
            response.headers["RateLimit-Reset"] = str(tightest.reset_after)
        return response

    def _get_client_ip(self, request: Request) -> str:
        """Client address; X-Forwarded-For is honoured only behind a trusted proxy."""
        if self._trust_proxy:
            forwarded_for = request.headers.get("X-Forwarded-For")
            if forwarded_for:
                # One trusted hop: the address it appended is the last entry.
                hops = [h.strip() for h in forwarded_for.split(",") if h.strip()]
                if hops:
                    return hops[-1]

        if request.client:
            return request.client.host

        return "unknown"

    @staticmethod
    def _rate_limit_response(limit: RateLimit, result: RateLimitResult) -> JSONResponse:
        """Return 429 Too Many Requests response."""
        return JSONResponse(
            status_code=429,
            content={"success": False, "error": limit.message},
            headers={
                "Retry-After": str(result.reset_after),
                "RateLimit-Limit": str(result.limit),
                "RateLimit-Remaining": "0",
                "RateLimit-Reset": str(result.reset_after),
            },
        )
