"""
MongoDB utility functions for MDB_PROXY.

JSON shaping of driver results, parsing of client-supplied extended JSON,
and the small BSON helpers the routes share.
"""

import base64
import math
import uuid
from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from bson import ObjectId, json_util
from bson.binary import Binary
from bson.code import Code
from bson.decimal128 import Decimal128
from bson.errors import InvalidId
from bson.regex import Regex
from bson.timestamp import Timestamp

from ..exceptions import InvalidFormatError

AUTHORIZATION_ERROR_CODE = 13
_AUTHORIZATION_MARKERS = ("not authorized", "auth failed", "unauthorized")
_RESTRICTED_MARKERS = ("cmd_not_allowed", "not allowed", "command not found")


def clean_mongo_value(value: Any) -> Any:
    """
    Convert a BSON value to a JSON-serializable one.

    - ObjectId -> str
    - datetime/date -> ISO format string
    - Decimal128/Decimal -> str
    - Binary/bytes -> base64 str (UUID subtype -> canonical UUID string)
    - Timestamp -> {"t": ..., "i": ...}
    - Regex -> "/pattern/flags"
    - Nested mappings and lists are processed recursively
    """
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        # JSON has no NaN or Infinity
        return value if math.isfinite(value) else None
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (Decimal128, Decimal)):
        return str(value)
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Binary):
        if value.subtype in (3, 4) and len(value) == 16:
            return str(uuid.UUID(bytes=bytes(value)))
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, bytes):
        return base64.b64encode(value).decode("ascii")
    if isinstance(value, Timestamp):
        return {"t": value.time, "i": value.inc}
    if isinstance(value, Regex):
        return f"/{value.pattern}/{value.flags if isinstance(value.flags, str) else ''}"
    if isinstance(value, Code):
        return str(value)
    if isinstance(value, Mapping):
        return {str(k): clean_mongo_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [clean_mongo_value(item) for item in value]
    return str(value)


def parse_json_param(raw: str | None, name: str) -> Any:
    """
    Parse a query-string parameter holding (extended) JSON.

    Returns None when the parameter is absent or empty.

    Raises:
        InvalidFormatError: If the value is not valid JSON
    """
    if raw is None or raw.strip() == "":
        return None
    try:
        return json_util.loads(raw)
    except (ValueError, TypeError, RecursionError) as e:
        raise InvalidFormatError(f"Invalid {name}: must be valid JSON") from e


def parse_sort(raw: str | None) -> list[tuple[str, int]] | None:
    """
    Parse a JSON sort spec into a driver sort list.

    Directions other than 1 and -1 are coerced to 1.
    """
    parsed = parse_json_param(raw, "sort")
    if parsed is None:
        return None
    if not isinstance(parsed, Mapping):
        raise InvalidFormatError("Invalid sort: must be an object")
    return [(str(key), value if value in (1, -1) else 1) for key, value in parsed.items()]


def is_valid_object_id(value: Any) -> bool:
    """True only for a canonical 24-character hex ObjectId string."""
    if not isinstance(value, str):
        return False
    try:
        return str(ObjectId(value)) == value
    except (InvalidId, TypeError):
        return False


def to_object_id(value: str) -> ObjectId:
    """
    Raises:
        InvalidFormatError: If ``value`` is not a canonical ObjectId string
    """
    if not is_valid_object_id(value):
        raise InvalidFormatError("Invalid document ID format")
    return ObjectId(value)


def bson_type_name(value: Any) -> str:
    """Type label used by schema analysis."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float, Decimal128)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, datetime):
        return "date"
    if isinstance(value, ObjectId):
        return "ObjectId"
    if isinstance(value, Mapping):
        return "object"
    return type(value).__name__


def error_text(error: BaseException) -> str:
    """Driver error text, preferring the server's errmsg when present."""
    details = getattr(error, "details", None)
    if isinstance(details, Mapping) and details.get("errmsg"):
        return str(details["errmsg"])
    return str(error)


def is_authorization_error(error: BaseException) -> bool:
    """True for downstream authorization failures (code 13 or auth wording)."""
    if getattr(error, "code", None) == AUTHORIZATION_ERROR_CODE:
        return True
    text = str(error).lower()
    return any(marker in text for marker in _AUTHORIZATION_MARKERS)


def is_restricted_error(error: BaseException) -> bool:
    """True when a shared/free-tier cluster refuses an admin command."""
    if is_authorization_error(error):
        return True
    text = str(error).lower()
    return any(marker in text for marker in _RESTRICTED_MARKERS)
