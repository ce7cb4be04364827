"""
MDB_PROXY - credential-less MongoDB browser proxy

Holds MongoDB connection strings server-side behind an opaque session
cookie, validates egress and client payloads, and pools one driver client
per credential string.
"""

from .app import create_app
from .config import ProxyConfig
from .constants import APP_VERSION
from .core import ProxyContext
from .database import ConnectionPool
from .security import EgressValidator, PayloadSanitizer, SessionCipher
from .session import SessionRecord, SessionStore

__version__ = APP_VERSION

__all__ = [
    # Application
    "create_app",
    "ProxyConfig",
    "ProxyContext",
    # Registries
    "SessionStore",
    "SessionRecord",
    "ConnectionPool",
    # Security
    "EgressValidator",
    "PayloadSanitizer",
    "SessionCipher",
]
