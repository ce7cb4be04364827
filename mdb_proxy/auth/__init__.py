"""
Session authentication and request throttling.

Possession of the session cookie is the only credential the proxy knows.
"""

from .cookie_utils import (
    clear_session_cookie,
    get_session_cookie_settings,
    get_session_token,
    set_session_cookie,
)
from .dependencies import (
    CurrentSession,
    acquire_client,
    ensure_writable,
    get_current_session,
    get_proxy,
)
from .rate_limiter import (
    FixedWindowRateLimitStore,
    RateLimit,
    RateLimitMiddleware,
    RateLimitResult,
    default_tiers,
    tiers_for,
)

__all__ = [
    # Cookies
    "clear_session_cookie",
    "get_session_cookie_settings",
    "get_session_token",
    "set_session_cookie",
    # Dependencies
    "CurrentSession",
    "acquire_client",
    "ensure_writable",
    "get_current_session",
    "get_proxy",
    # Rate limiting
    "FixedWindowRateLimitStore",
    "RateLimit",
    "RateLimitMiddleware",
    "RateLimitResult",
    "default_tiers",
    "tiers_for",
]
