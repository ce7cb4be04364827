"""
FastAPI dependencies for session-bound routes.

Possession of the session cookie is the only credential: these helpers map
the cookie to a live session record and the session to a pooled client.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from fastapi import Depends, Request

from ..exceptions import (
    ConfigurationError,
    ReadOnlyViolationError,
    UnauthenticatedError,
    UpstreamFailureError,
)
from ..session.store import SessionRecord
from .cookie_utils import get_session_token

if TYPE_CHECKING:
    from ..core.context import ProxyContext

logger = logging.getLogger(__name__)

NO_SESSION_MESSAGE = "No session found. Please connect to a database first."
EXPIRED_SESSION_MESSAGE = "Invalid or expired session. Please reconnect."


@dataclass
class CurrentSession:
    """The token from the cookie and a snapshot of its live record."""

    token: str
    record: SessionRecord

    @property
    def read_only(self) -> bool:
        return self.record.read_only


def get_proxy(request: Request) -> "ProxyContext":
    """
    FastAPI Dependency: Retrieves the ProxyContext from app.state.
    """
    proxy = getattr(request.app.state, "proxy", None)
    if proxy is None:
        raise ConfigurationError("Proxy context is not initialized", config_key="app.state.proxy")
    return proxy


def get_current_session(
    request: Request, proxy=Depends(get_proxy)
) -> CurrentSession:
    """
    FastAPI Dependency: the live session for the request's cookie.

    Raises:
        UnauthenticatedError: If the cookie is missing, unknown or expired
    """
    token = get_session_token(request, proxy.config)
    if not token:
        raise UnauthenticatedError(NO_SESSION_MESSAGE)

    record = proxy.sessions.get(token)
    if record is None:
        raise UnauthenticatedError(EXPIRED_SESSION_MESSAGE)

    return CurrentSession(token=token, record=record)


def ensure_writable(session: CurrentSession, action: str) -> None:
    """
    Refuse a mutating action on a read-only session.

    Args:
        session: The current session
        action: Human-readable action, e.g. "insert documents"
    """
    if session.read_only:
        raise ReadOnlyViolationError(f"Read-only mode: cannot {action}")


async def acquire_client(proxy: "ProxyContext", session: CurrentSession) -> Any:
    """
    Pooled client for the session's credential string.

    Raises:
        UpstreamFailureError: 401, if the database cannot be reached
    """
    try:
        return await proxy.pool.acquire(session.record.uri, session.record.database_name)
    except UpstreamFailureError as e:
        raise UpstreamFailureError(e.message, status_code=401) from None
