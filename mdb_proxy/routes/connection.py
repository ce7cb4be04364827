"""
Connection routes: connect, disconnect, status, switch-database.

Connect is the only place a credential string enters the proxy. It is
validated for egress, dialled through the pool, and then lives only in the
session record; the browser receives an opaque token in an HttpOnly cookie.
"""

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, ConfigDict

from ..auth.cookie_utils import clear_session_cookie, set_session_cookie
from ..auth.dependencies import CurrentSession, get_current_session, get_proxy
from ..constants import DEFAULT_DATABASE_NAME, UNRESTRICTED_SCOPE
from ..exceptions import InvalidFormatError, UnauthenticatedError, UpstreamFailureError
from ..observability import get_logger, mask_uri
from ..security.egress import parse_mongo_uri
from .helpers import ok

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["connection"])

CONNECT_FAILED_MESSAGE = (
    "Failed to connect to MongoDB. Please check your URI and network connection."
)


class ConnectRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    uri: Any = None
    readOnly: Any = False


class SwitchDatabaseRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    databaseName: Any = None


@router.post("/connect")
async def connect(body: ConnectRequest, response: Response, proxy=Depends(get_proxy)):
    """
    Validate a connection URI, dial it, and start a session.

    Order matters: format, then egress, then dial. Nothing is dialled for a
    URI that fails validation.
    """
    uri = body.uri
    if not uri or not isinstance(uri, str):
        raise InvalidFormatError("URI is required")

    try:
        parsed = parse_mongo_uri(uri)
    except InvalidFormatError:
        raise InvalidFormatError("Invalid MongoDB URI format") from None
    database_name = parsed.database or DEFAULT_DATABASE_NAME

    await proxy.egress.ensure_allowed(uri)

    try:
        await proxy.pool.acquire(uri, database_name)
    except UpstreamFailureError:
        raise UpstreamFailureError(CONNECT_FAILED_MESSAGE, status_code=401) from None

    token = proxy.sessions.create(
        uri=uri,
        database_name=database_name,
        allowed_scope=UNRESTRICTED_SCOPE,
        read_only=body.readOnly is True,
    )
    set_session_cookie(response, token, proxy.config)
    logger.info(f"New session created for database {database_name!r}")

    return ok(
        {
            "databaseName": database_name,
            "maskedUri": mask_uri(uri),
            "readOnly": body.readOnly is True,
            "message": "Successfully connected to database",
        }
    )


@router.post("/disconnect")
async def disconnect(
    response: Response,
    session: CurrentSession = Depends(get_current_session),
    proxy=Depends(get_proxy),
):
    # The pooled client stays: other sessions may share the credential string.
    proxy.sessions.destroy(session.token)
    clear_session_cookie(response, proxy.config)
    return ok(message="Disconnected successfully")


@router.get("/status")
async def status(session: CurrentSession = Depends(get_current_session)):
    record = session.record
    return ok(
        {
            "databaseName": record.database_name,
            "readOnly": record.read_only,
            "expiresAt": datetime.fromtimestamp(record.expires_at, tz=timezone.utc),
        }
    )


@router.post("/switch-database")
async def switch_database(
    body: SwitchDatabaseRequest,
    session: CurrentSession = Depends(get_current_session),
    proxy=Depends(get_proxy),
):
    database_name = body.databaseName
    if not database_name or not isinstance(database_name, str):
        raise InvalidFormatError("Database name is required")

    if not proxy.sessions.update(session.token, database_name=database_name):
        raise UnauthenticatedError("Session expired")

    return ok(
        {
            "databaseName": database_name,
            "message": f"Successfully switched to database: {database_name}",
        }
    )
