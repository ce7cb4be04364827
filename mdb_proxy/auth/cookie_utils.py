"""
Session cookie helpers.

The session cookie carries only the opaque session token. It is always
HttpOnly; in production it is also Secure and SameSite=Strict.
"""

import logging
from typing import Any

from fastapi import Request, Response

from ..config import ProxyConfig
from ..constants import SESSION_TTL_SECONDS

logger = logging.getLogger(__name__)


def get_session_cookie_settings(config: ProxyConfig) -> dict[str, Any]:
    """
    Get cookie settings for the current environment.

    Returns:
        Dictionary of cookie settings for Response.set_cookie()
    """
    production = config.is_production
    return {
        "httponly": True,
        "secure": production,
        "samesite": "strict" if production else "lax",
        "path": "/",
    }


def get_session_token(request: Request, config: ProxyConfig) -> str | None:
    """Read the session token from the request cookies, if present."""
    return request.cookies.get(config.cookie_name) or None


def set_session_cookie(
    response: Response,
    token: str,
    config: ProxyConfig,
    max_age: int | None = None,
) -> None:
    """
    Set the session cookie on a response.

    Args:
        response: Outgoing response
        token: Opaque session token
        config: Proxy configuration (environment decides the flags)
        max_age: Cookie lifetime in seconds (defaults to the session TTL)
    """
    response.set_cookie(
        key=config.cookie_name,
        value=token,
        max_age=max_age or config.session_ttl_seconds or SESSION_TTL_SECONDS,
        **get_session_cookie_settings(config),
    )


def clear_session_cookie(response: Response, config: ProxyConfig) -> None:
    """Expire the session cookie."""
    settings = get_session_cookie_settings(config)
    response.delete_cookie(
        key=config.cookie_name,
        path=settings["path"],
        secure=settings["secure"],
        httponly=settings["httponly"],
        samesite=settings["samesite"],
    )
