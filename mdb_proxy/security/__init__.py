"""
Security components: egress validation, payload sanitization and the
session payload cipher.
"""

from .egress import (
    EgressDecision,
    EgressValidator,
    ParsedMongoURI,
    is_blocked_address,
    parse_mongo_uri,
)
from .encryption import SessionCipher
from .sanitizer import PayloadSanitizer

__all__ = [
    "EgressDecision",
    "EgressValidator",
    "ParsedMongoURI",
    "is_blocked_address",
    "parse_mongo_uri",
    "PayloadSanitizer",
    "SessionCipher",
]
