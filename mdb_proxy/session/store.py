"""
In-memory session store.

Maps opaque random tokens to session records holding a live credential
string. Records live for an absolute 24 hours from creation (activity never
extends them) and an expired record is indistinguishable from a missing one.

Nothing here is persisted; a process restart drops every session.
"""

import dataclasses
import logging
import secrets
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from ..constants import SESSION_TOKEN_BYTES, SESSION_TTL_SECONDS, UNRESTRICTED_SCOPE
from ..exceptions import ReadOnlyViolationError
from ..observability import timed_operation

logger = logging.getLogger(__name__)

Clock = Callable[[], float]

UPDATABLE_FIELDS = frozenset({"database_name", "allowed_scope", "read_only"})


@dataclass
class SessionRecord:
    """
    One browser session.

    ``uri`` is the full credential string; it is opaque to everything except
    connection pool hashing and must never be logged.
    """

    uri: str = field(repr=False)
    database_name: str
    allowed_scope: list[str]
    read_only: bool
    created_at: float
    expires_at: float
    last_accessed: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def snapshot(self) -> "SessionRecord":
        return dataclasses.replace(self, allowed_scope=list(self.allowed_scope))


class SessionStore:
    """
    Thread-safe registry of live sessions.

    Every check-then-act sequence runs under one lock, so a record can never
    be observed half-updated or resurrected after expiry.
    """

    def __init__(self, ttl_seconds: int = SESSION_TTL_SECONDS, clock: Clock | None = None):
        """
        Initialize the store.

        Args:
            ttl_seconds: Absolute session lifetime
            clock: Time source returning seconds (defaults to time.time)
        """
        self._sessions: dict[str, SessionRecord] = {}
        self._lock = threading.RLock()
        self._ttl_seconds = ttl_seconds
        self._clock = clock or time.time

    def create(
        self,
        uri: str,
        database_name: str,
        allowed_scope: Iterable[str] = UNRESTRICTED_SCOPE,
        read_only: bool = False,
    ) -> str:
        """
        Register a new session and return its token.

        The token is 256 bits of randomness rendered as 64 hex characters.
        """
        now = self._clock()
        record = SessionRecord(
            uri=uri,
            database_name=database_name,
            allowed_scope=list(allowed_scope),
            read_only=bool(read_only),
            created_at=now,
            expires_at=now + self._ttl_seconds,
            last_accessed=now,
        )
        with self._lock:
            token = secrets.token_hex(SESSION_TOKEN_BYTES)
            while token in self._sessions:
                token = secrets.token_hex(SESSION_TOKEN_BYTES)
            self._sessions[token] = record
        logger.info(f"Session created (read_only={record.read_only}, active={len(self)})")
        return token

    def get(self, token: str | None) -> SessionRecord | None:
        """
        Return a snapshot of the live record for ``token``, or None.

        An expired record is deleted on the spot.
        """
        if not token:
            return None
        with self._lock:
            record = self._sessions.get(token)
            if record is None:
                return None
            now = self._clock()
            if record.is_expired(now):
                del self._sessions[token]
                logger.debug("Expired session removed on access")
                return None
            record.last_accessed = now
            return record.snapshot()

    def update(self, token: str | None, **fields) -> bool:
        """
        Mutate a live record in place.

        Updatable fields: ``database_name``, ``allowed_scope``, ``read_only``.
        ``read_only`` can be set but never cleared.

        Returns:
            False if the session is missing or expired (expired ones are deleted)

        Raises:
            ValueError: If an unknown field is given
            ReadOnlyViolationError: If an update tries to clear ``read_only``
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update session fields: {', '.join(sorted(unknown))}")
        if not token:
            return False

        with self._lock:
            record = self._sessions.get(token)
            if record is None:
                return False
            now = self._clock()
            if record.is_expired(now):
                del self._sessions[token]
                return False

            if "read_only" in fields and record.read_only and not fields["read_only"]:
                raise ReadOnlyViolationError("Read-only mode cannot be disabled for this session")

            if "database_name" in fields:
                record.database_name = fields["database_name"]
            if "allowed_scope" in fields:
                record.allowed_scope = list(fields["allowed_scope"])
            if "read_only" in fields:
                record.read_only = bool(fields["read_only"])
            record.last_accessed = now
            return True

    def destroy(self, token: str | None) -> bool:
        """Remove a session. Returns True if one was removed."""
        if not token:
            return False
        with self._lock:
            removed = self._sessions.pop(token, None) is not None
        if removed:
            logger.info(f"Session destroyed (active={len(self)})")
        return removed

    def sweep(self) -> int:
        """Delete every expired record. Returns the number removed."""
        with timed_operation("sessions.sweep"), self._lock:
            now = self._clock()
            expired = [t for t, r in self._sessions.items() if r.is_expired(now)]
            for token in expired:
                del self._sessions[token]
        if expired:
            logger.info(f"Swept {len(expired)} expired session(s)")
        return len(expired)

    def destroy_all(self) -> int:
        """Empty the registry atomically. Returns the number removed."""
        with self._lock:
            count = len(self._sessions)
            self._sessions.clear()
        logger.info(f"Destroyed all sessions ({count})")
        return count

    def count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __len__(self) -> int:
        return self.count()

    def __contains__(self, token: object) -> bool:
        with self._lock:
            return token in self._sessions
