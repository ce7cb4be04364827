"""
Shared helpers for the API routers: the response envelope, required-name
checks and translation of driver errors.
"""

from typing import Any

from ..auth.dependencies import CurrentSession
from ..exceptions import InvalidFormatError, UpstreamFailureError
from ..observability import get_logger, scrub_credentials
from ..utils.mongo import clean_mongo_value, error_text

logger = get_logger(__name__)

NAMES_REQUIRED_MESSAGE = "Database and collection names are required"
DATABASE_REQUIRED_MESSAGE = "Database name is required"


def ok(data: Any = None, message: str | None = None) -> dict[str, Any]:
    """Success envelope. ``data`` is converted to JSON-safe values."""
    body: dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = clean_mongo_value(data)
    if message is not None:
        body["message"] = message
    return body


def require_database(database: Any) -> str:
    if not isinstance(database, str) or not database:
        raise InvalidFormatError(DATABASE_REQUIRED_MESSAGE)
    return database


def require_names(database: Any, collection: Any, message: str = NAMES_REQUIRED_MESSAGE) -> tuple[str, str]:
    """Both names must be non-empty strings."""
    if not isinstance(database, str) or not database:
        raise InvalidFormatError(message)
    if not isinstance(collection, str) or not collection:
        raise InvalidFormatError(message)
    return database, collection


def upstream_failure(
    error: BaseException,
    session: CurrentSession,
    operation: str,
    message: str,
    surface: bool = False,
    status_code: int = 500,
) -> UpstreamFailureError:
    """
    Log a driver error (credentials scrubbed) and build the error to raise.

    Args:
        error: The driver exception
        session: Current session (its credential string is scrubbed from the text)
        operation: Short label for the log line
        message: Generic client-facing message
        surface: Show the driver's own message to the client instead
        status_code: HTTP status for the response
    """
    text = scrub_credentials(error_text(error), session.record.uri)
    logger.error(f"[{operation}] error: {text}")
    return UpstreamFailureError(text if surface else message, status_code=status_code)


def log_restricted(operation: str, error: BaseException, session: CurrentSession) -> None:
    """Record that an authorization failure was downgraded to an empty result."""
    text = scrub_credentials(error_text(error), session.record.uri)
    logger.info(f"[{operation}] access restricted: {text}")
