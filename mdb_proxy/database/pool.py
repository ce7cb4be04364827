"""
Connection pool for downstream MongoDB clients.

Holds at most one live motor client per distinct credential string, keyed by
the SHA-256 hex digest of that string. Sessions never own clients; they hold
only the credential string and ask the pool for a client on every request.

Concurrency:
    The check/probe/dial sequence for a key runs under a per-key
    ``asyncio.Lock``, so any number of concurrent acquires for the same
    credential string produce exactly one dial. Different keys never wait on
    each other.

Neither the credential string nor its digest is ever logged.
"""

import asyncio
import hashlib
import inspect
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError

from ..constants import (
    POOL_IDLE_TTL_SECONDS,
    UPSTREAM_APP_NAME,
    UPSTREAM_CONNECT_TIMEOUT_MS,
    UPSTREAM_MAX_POOL_SIZE,
    UPSTREAM_SERVER_SELECTION_TIMEOUT_MS,
    UPSTREAM_SOCKET_TIMEOUT_MS,
)
from ..exceptions import UpstreamFailureError
from ..observability import record_operation, scrub_credentials

logger = logging.getLogger(__name__)

ClientFactory = Callable[..., Any]

# Everything a dial or probe can reasonably raise
DIAL_ERRORS = (PyMongoError, OSError, ValueError, TypeError, asyncio.TimeoutError)

CONNECT_FAILED_MESSAGE = "Failed to connect to database"


def hash_uri(uri: str) -> str:
    """Pool key for a credential string."""
    return hashlib.sha256(uri.encode("utf-8")).hexdigest()


async def close_client(client: Any) -> None:
    """Close a client best-effort; close errors are swallowed."""
    try:
        result = client.close()
        if inspect.isawaitable(result):
            await result
    except Exception as e:  # noqa: BLE001 - best-effort close
        logger.debug(f"Ignoring error while closing client: {type(e).__name__}")


@dataclass
class PooledConnection:
    """A pooled client and its bookkeeping."""

    client: Any
    database_name: str
    created_at: float
    last_used: float

    def idle_for(self, now: float) -> float:
        return now - self.last_used


class ConnectionPool:
    """
    Registry of live downstream clients keyed by credential-string digest.

    Example:
        pool = ConnectionPool()
        client = await pool.acquire(session.uri, session.database_name)
        await client[database].list_collection_names()
    """

    def __init__(
        self,
        idle_ttl_seconds: float = POOL_IDLE_TTL_SECONDS,
        connect_timeout_ms: int = UPSTREAM_CONNECT_TIMEOUT_MS,
        socket_timeout_ms: int = UPSTREAM_SOCKET_TIMEOUT_MS,
        server_selection_timeout_ms: int = UPSTREAM_SERVER_SELECTION_TIMEOUT_MS,
        client_factory: ClientFactory | None = None,
        clock: Callable[[], float] | None = None,
    ):
        """
        Initialize the pool.

        Args:
            idle_ttl_seconds: Idle time after which an entry is evicted
            connect_timeout_ms: Driver connect timeout
            socket_timeout_ms: Driver socket timeout
            server_selection_timeout_ms: Driver server selection timeout
            client_factory: Callable building a client from (uri, **options);
                defaults to AsyncIOMotorClient
            clock: Monotonic time source in seconds
        """
        self._entries: dict[str, PooledConnection] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._idle_ttl_seconds = idle_ttl_seconds
        self._client_options = {
            "connectTimeoutMS": connect_timeout_ms,
            "socketTimeoutMS": socket_timeout_ms,
            "serverSelectionTimeoutMS": server_selection_timeout_ms,
            "maxPoolSize": UPSTREAM_MAX_POOL_SIZE,
            "minPoolSize": 0,
            "appname": UPSTREAM_APP_NAME,
        }
        self._client_factory = client_factory or AsyncIOMotorClient
        self._clock = clock or time.monotonic
        self._closed = False
        self.dial_count = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, uri: object) -> bool:
        return isinstance(uri, str) and hash_uri(uri) in self._entries

    def _lock_for(self, key: str) -> asyncio.Lock:
        # setdefault with no await in between: one lock per key, ever.
        return self._locks.setdefault(key, asyncio.Lock())

    async def acquire(self, uri: str, database_name: str) -> Any:
        """
        Return a live client for ``uri``, dialling one if needed.

        Raises:
            UpstreamFailureError: If no live client can be produced
        """
        if self._closed:
            raise UpstreamFailureError("Connection pool is closed")

        key = hash_uri(uri)
        start_time = time.perf_counter()
        async with self._lock_for(key):
            entry = self._entries.get(key)
            now = self._clock()

            if entry is not None and entry.idle_for(now) < self._idle_ttl_seconds:
                if await self._probe(entry.client, uri):
                    entry.last_used = now
                    self._record_acquire(start_time, "reused")
                    return entry.client

                logger.warning("Pooled connection failed liveness probe, replacing it")
                await close_client(entry.client)
                try:
                    client = await self._dial(uri)
                except UpstreamFailureError:
                    self._entries.pop(key, None)
                    self._record_acquire(start_time, "failed", success=False)
                    raise
                entry.client = client
                entry.last_used = self._clock()
                self._record_acquire(start_time, "replaced")
                return client

            if entry is not None:
                logger.debug("Pooled connection idle past TTL, redialling")
                self._entries.pop(key, None)
                await close_client(entry.client)

            try:
                client = await self._dial(uri)
            except UpstreamFailureError:
                self._record_acquire(start_time, "failed", success=False)
                raise

            now = self._clock()
            self._entries[key] = PooledConnection(
                client=client, database_name=database_name, created_at=now, last_used=now
            )
            self._record_acquire(start_time, "dialed")
            return client

    async def _dial(self, uri: str) -> Any:
        """Build a client and verify it with ``ping``. Never returns a half-built client."""
        self.dial_count += 1
        start_time = time.perf_counter()
        client = None
        try:
            client = self._client_factory(uri, **self._client_options)
            await client.admin.command("ping")
        except DIAL_ERRORS as e:
            logger.error(f"Failed to connect to database: {scrub_credentials(e, uri)}")
            if client is not None:
                await close_client(client)
            record_operation("pool.dial", (time.perf_counter() - start_time) * 1000, False)
            raise UpstreamFailureError(CONNECT_FAILED_MESSAGE) from None

        record_operation("pool.dial", (time.perf_counter() - start_time) * 1000, True)
        if self._closed:
            # close_all ran while this dial was in flight
            await close_client(client)
            raise UpstreamFailureError("Connection pool is closed")
        logger.info(f"Dialled downstream database (pooled={len(self._entries) + 1})")
        return client

    async def _probe(self, client: Any, uri: str) -> bool:
        start_time = time.perf_counter()
        try:
            await client.admin.command("ping")
        except DIAL_ERRORS as e:
            logger.debug(f"Liveness probe failed: {scrub_credentials(e, uri)}")
            record_operation("pool.probe", (time.perf_counter() - start_time) * 1000, False)
            return False
        record_operation("pool.probe", (time.perf_counter() - start_time) * 1000, True)
        return True

    @staticmethod
    def _record_acquire(start_time: float, outcome: str, success: bool = True) -> None:
        record_operation(
            "pool.acquire", (time.perf_counter() - start_time) * 1000, success, outcome=outcome
        )

    async def evict_idle(self) -> int:
        """
        Close and remove entries idle past the TTL.

        Keys with an acquire in flight are skipped. Returns the number evicted.
        """
        evicted = 0
        for key in list(self._entries):
            lock = self._lock_for(key)
            if lock.locked():
                continue
            async with lock:
                entry = self._entries.get(key)
                if entry is None or entry.idle_for(self._clock()) < self._idle_ttl_seconds:
                    continue
                del self._entries[key]
                await close_client(entry.client)
                evicted += 1

        # Drop locks for keys that no longer have an entry and nobody holds.
        for key in list(self._locks):
            if key not in self._entries and not self._locks[key].locked():
                del self._locks[key]

        if evicted:
            logger.info(f"Evicted {evicted} idle connection(s), {len(self._entries)} remain")
        return evicted

    async def close_all(self) -> int:
        """
        Close every pooled client and empty the pool. Close errors are swallowed.

        Returns:
            Number of clients closed
        """
        self._closed = True
        entries = list(self._entries.values())
        self._entries.clear()
        self._locks.clear()
        for entry in entries:
            await close_client(entry.client)
        logger.info(f"Closed all pooled connections ({len(entries)})")
        return len(entries)

    def get_metrics(self) -> dict[str, Any]:
        return {
            "pooled_connections": len(self._entries),
            "dial_count": self.dial_count,
            "idle_ttl_seconds": self._idle_ttl_seconds,
            "closed": self._closed,
        }
