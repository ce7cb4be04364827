"""
Logging utilities for MDB_PROXY.

Provides per-request correlation IDs, a contextual logger adapter, and the
redaction helpers that keep credential strings out of every log line.
"""

import contextvars
import logging
import re
import sys
import uuid
from datetime import datetime
from typing import Any
from urllib.parse import urlsplit, urlunsplit

# Context variable for correlation ID
_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "correlation_id", default=None
)

_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# user:password@ inside any mongodb URI embedded in free text
_EMBEDDED_CREDENTIALS = re.compile(r"(mongodb(?:\+srv)?://)[^@/\s]+@", re.IGNORECASE)

REDACTED = "****"


def configure_logging(level: str | int = "INFO") -> None:
    """
    Configure root logging for the proxy process.

    Args:
        level: Log level name or number
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(level=level, format=_LOG_FORMAT, stream=sys.stdout)
    # The driver is chatty at DEBUG and may echo seed lists.
    logging.getLogger("pymongo").setLevel(max(level, logging.INFO))


def get_correlation_id() -> str | None:
    """Get the current correlation ID from context."""
    return _correlation_id.get()


def set_correlation_id(correlation_id: str | None = None) -> str:
    """
    Set a correlation ID in the current context.

    Args:
        correlation_id: Optional correlation ID (generates new one if None)

    Returns:
        The correlation ID that was set
    """
    if correlation_id is None:
        correlation_id = uuid.uuid4().hex
    _correlation_id.set(correlation_id)
    return correlation_id


def clear_correlation_id() -> None:
    """Clear the correlation ID from context."""
    _correlation_id.set(None)


def get_logging_context() -> dict[str, Any]:
    """Get current logging context (timestamp and correlation ID)."""
    context: dict[str, Any] = {
        "timestamp": datetime.now().isoformat(),
    }

    correlation_id = get_correlation_id()
    if correlation_id:
        context["correlation_id"] = correlation_id

    return context


class ContextualLoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that adds the correlation ID to the message and record.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        context = get_logging_context()

        extra = kwargs.get("extra", {})
        if extra:
            context.update(extra)

        kwargs["extra"] = context
        correlation_id = context.get("correlation_id")
        if correlation_id:
            msg = f"[{correlation_id[:8]}] {msg}"
        return msg, kwargs


def get_logger(name: str) -> ContextualLoggerAdapter:
    """
    Get a contextual logger that automatically adds the correlation ID.

    Args:
        name: Logger name (typically __name__)
    """
    return ContextualLoggerAdapter(logging.getLogger(name), {})


def log_operation(
    logger: logging.Logger | logging.LoggerAdapter,
    operation: str,
    level: int = logging.INFO,
    success: bool = True,
    duration_ms: float | None = None,
    **context: Any,
) -> None:
    """
    Log an operation with structured context.

    Never pass a credential string in ``context``; use ``mask_uri`` first.
    """
    log_context: dict[str, Any] = {"operation": operation, "success": success}
    if duration_ms is not None:
        log_context["duration_ms"] = round(duration_ms, 2)
    log_context.update(context)

    message = f"Operation: {operation}" if success else f"Operation failed: {operation}"
    if duration_ms is not None:
        message += f" (duration: {duration_ms:.2f}ms)"

    logger.log(level, message, extra=log_context)


def mask_uri(uri: str) -> str:
    """
    Return ``uri`` with any embedded password replaced by ``****``.

    Multi-host seed lists are supported. Unparseable input is never echoed.
    """
    try:
        parts = urlsplit(uri)
    except ValueError:
        return "[invalid uri]"
    if not parts.scheme or not parts.netloc:
        return "[invalid uri]"

    userinfo, sep, hosts = parts.netloc.rpartition("@")
    if not sep:
        return uri
    user, has_password, _ = userinfo.partition(":")
    if has_password:
        userinfo = f"{user}:{REDACTED}"
    return urlunsplit(parts._replace(netloc=f"{userinfo}@{hosts}"))


def scrub_credentials(message: Any, uri: str | None = None) -> str:
    """
    Remove a credential string (and any embedded userinfo) from ``message``.

    Used on driver error text before it is logged.
    """
    text = str(message)
    if uri:
        text = text.replace(uri, mask_uri(uri))
        try:
            password = urlsplit(uri).password
        except ValueError:
            password = None
        if password:
            text = text.replace(password, REDACTED)
    return _EMBEDDED_CREDENTIALS.sub(rf"\g<1>{REDACTED}@", text)
