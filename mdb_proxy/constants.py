"""
Constants for MDB_PROXY.

This module contains all shared constants used across the codebase to avoid
magic numbers and improve maintainability.
"""

from typing import Final

# ============================================================================
# SESSION CONSTANTS
# ============================================================================

SESSION_TTL_SECONDS: Final[int] = 24 * 60 * 60
"""Absolute session lifetime in seconds (24 hours). Not extended by activity."""

SESSION_SWEEP_INTERVAL_SECONDS: Final[int] = 5 * 60
"""Interval between background sweeps of expired sessions (5 minutes)."""

SESSION_TOKEN_BYTES: Final[int] = 32
"""Random bytes per session token (256 bits, rendered as 64 hex characters)."""

SESSION_COOKIE_NAME: Final[str] = "mdb_proxy_session"
"""Session cookie name in production."""

SESSION_COOKIE_NAME_DEV: Final[str] = "mdb_proxy_session_dev"
"""Session cookie name outside production."""

UNRESTRICTED_SCOPE: Final[tuple[str, ...]] = ("*",)
"""Scope granted to every session created by the connect flow."""

DEFAULT_DATABASE_NAME: Final[str] = "test"
"""Database used when the connection URI does not name one."""

# ============================================================================
# CONNECTION POOL CONSTANTS
# ============================================================================

POOL_IDLE_TTL_SECONDS: Final[int] = 5 * 60
"""Idle window after which a pooled connection is evicted (5 minutes)."""

UPSTREAM_CONNECT_TIMEOUT_MS: Final[int] = 10000
"""Connect timeout for downstream MongoDB clients (milliseconds)."""

UPSTREAM_SOCKET_TIMEOUT_MS: Final[int] = 30000
"""Socket timeout for downstream MongoDB clients (milliseconds)."""

UPSTREAM_SERVER_SELECTION_TIMEOUT_MS: Final[int] = 10000
"""Server selection timeout for downstream MongoDB clients (milliseconds)."""

UPSTREAM_MAX_POOL_SIZE: Final[int] = 1
"""Driver-level pool size per pooled credential string."""

UPSTREAM_APP_NAME: Final[str] = "MDB_PROXY"
"""appname reported to the downstream server."""

# ============================================================================
# EGRESS CONSTANTS
# ============================================================================

ALLOWED_URI_SCHEMES: Final[tuple[str, ...]] = ("mongodb", "mongodb+srv")
"""The only URI schemes the proxy will dial."""

SRV_SERVICE_PREFIX: Final[str] = "_mongodb._tcp."
"""DNS SRV service label used by mongodb+srv seed lists."""

DEFAULT_MONGODB_PORT: Final[int] = 27017

BLOCKED_HOSTNAMES: Final[frozenset[str]] = frozenset(
    {
        "localhost",
        "localhost.localdomain",
        "127.0.0.1",
        "::1",
        "0.0.0.0",
        "metadata",
        "metadata.google.internal",  # GCP metadata
        "instance-data",  # AWS metadata alias
        "169.254.169.254",  # AWS/Azure metadata
    }
)
"""Hostnames that are never dialled, regardless of what they resolve to."""

BLOCKED_HOSTNAME_SUFFIXES: Final[tuple[str, ...]] = (".localhost",)

BLOCKED_NETWORKS: Final[tuple[str, ...]] = (
    "0.0.0.0/8",  # current network
    "10.0.0.0/8",  # private class A
    "100.64.0.0/10",  # CGNAT
    "127.0.0.0/8",  # loopback
    "169.254.0.0/16",  # link-local, cloud metadata
    "172.16.0.0/12",  # private class B
    "192.0.2.0/24",  # TEST-NET-1
    "192.168.0.0/16",  # private class C
    "198.51.100.0/24",  # TEST-NET-2
    "203.0.113.0/24",  # TEST-NET-3
    "::/128",  # unspecified
    "::/96",  # IPv4-compatible IPv6 (deprecated)
    "::1/128",  # IPv6 loopback
    "fc00::/7",  # IPv6 unique local
    "fe80::/10",  # IPv6 link-local
)
"""Networks no resolved or literal address may fall into."""

# ============================================================================
# SANITIZER CONSTANTS
# ============================================================================

# Denylist rather than allowlist: the legitimate operator surface is large and
# evolving. Revisit this table whenever MongoDB adds operators.
BLOCKED_OPERATORS: Final[frozenset[str]] = frozenset(
    {
        "$where",  # server-side JavaScript
        "$function",  # custom JavaScript function
        "$accumulator",  # custom JavaScript accumulator
        "$expr",  # aggregation expressions inside queries
        "$jsonSchema",  # schema validation bypass
    }
)
"""Operators rejected anywhere in a filter, update or document."""

BLOCKED_OPERATOR_PREFIXES: Final[tuple[str, ...]] = ("$$",)
"""Key prefixes rejected anywhere in a filter, update or document."""

PIPELINE_CODE_OPERATORS: Final[frozenset[str]] = frozenset(
    {"$where", "$function", "$accumulator"}
)
"""Operators rejected anywhere in an aggregation pipeline."""

PIPELINE_WRITE_STAGES: Final[frozenset[str]] = frozenset({"$out", "$merge"})
"""Stages that would write data from an aggregation pipeline."""

MAX_PAYLOAD_DEPTH: Final[int] = 100
"""Maximum nesting depth of a sanitized payload."""

MAX_PIPELINE_STAGES: Final[int] = 50
"""Maximum number of stages in an aggregation pipeline."""

# ============================================================================
# RATE LIMIT CONSTANTS
# ============================================================================

RATE_LIMIT_WINDOW_SECONDS: Final[int] = 60

CONNECT_RATE_LIMIT: Final[int] = 5
"""Connection attempts per window (protects downstream credentials)."""

API_RATE_LIMIT: Final[int] = 100
"""General API requests per window."""

MUTATION_RATE_LIMIT: Final[int] = 30
"""Mutating requests per window."""

# ============================================================================
# REQUEST / RESULT LIMITS
# ============================================================================

MAX_BODY_BYTES: Final[int] = 1024 * 1024
"""Maximum accepted JSON request body size (1 MiB)."""

DEFAULT_DOCUMENT_LIMIT: Final[int] = 20
MAX_DOCUMENT_LIMIT: Final[int] = 1000
MAX_EXPORT_LIMIT: Final[int] = 10000
DEFAULT_EXPORT_LIMIT: Final[int] = 1000
MAX_AGGREGATE_RESULTS: Final[int] = 100
MAX_IMPORT_DOCUMENTS: Final[int] = 1000
SCHEMA_SAMPLE_SIZE: Final[int] = 100
SCHEMA_MAX_EXAMPLES: Final[int] = 3
SLOW_QUERY_LIMIT: Final[int] = 50
DEFAULT_SLOW_QUERY_MS: Final[int] = 100

# ============================================================================
# SESSION CIPHER CONSTANTS
# ============================================================================

CIPHER_PBKDF2_ITERATIONS: Final[int] = 100000
CIPHER_SALT_BYTES: Final[int] = 16
CIPHER_KEY_BYTES: Final[int] = 32  # AES-256
CIPHER_NONCE_BYTES: Final[int] = 12  # 96 bits for GCM
MIN_SESSION_SECRET_LENGTH: Final[int] = 32

APP_VERSION: Final[str] = "1.0.0"
