"""
Configuration management for MDB_PROXY.

Every setting comes from an explicit constructor argument or, failing that,
from the process environment. ``validate()`` raises ConfigurationError for
anything the proxy must refuse to start with.
"""

import os

from .constants import (
    API_RATE_LIMIT,
    CONNECT_RATE_LIMIT,
    MAX_BODY_BYTES,
    MIN_SESSION_SECRET_LENGTH,
    MUTATION_RATE_LIMIT,
    POOL_IDLE_TTL_SECONDS,
    RATE_LIMIT_WINDOW_SECONDS,
    SESSION_COOKIE_NAME,
    SESSION_COOKIE_NAME_DEV,
    SESSION_SWEEP_INTERVAL_SECONDS,
    SESSION_TTL_SECONDS,
    UPSTREAM_CONNECT_TIMEOUT_MS,
    UPSTREAM_SOCKET_TIMEOUT_MS,
)
from .exceptions import ConfigurationError

ENVIRONMENTS = ("development", "production", "test")
DEFAULT_CORS_ORIGIN = "http://localhost:5173"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}", config_key=name) from e


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def parse_cors_origins(value: str | list[str] | None) -> list[str]:
    """
    Normalize a CORS origin setting into a list of origins.

    Comma-separated input is split; each origin is trimmed, loses a trailing
    slash, and gets ``https://`` when no scheme is given. ``*`` is kept as-is.
    """
    if value is None:
        return [DEFAULT_CORS_ORIGIN]
    items = value.split(",") if isinstance(value, str) else list(value)

    origins = []
    for item in items:
        origin = item.strip().rstrip("/")
        if not origin:
            continue
        if origin != "*" and not origin.startswith(("http://", "https://")):
            origin = f"https://{origin}"
        origins.append(origin)
    return origins or [DEFAULT_CORS_ORIGIN]


class ProxyConfig:
    """
    MongoDB proxy configuration.

    Example:
        # Using environment variables
        config = ProxyConfig()
        config.validate()

        # Or using direct parameters (tests)
        config = ProxyConfig(
            session_secret="x" * 32,
            environment="test",
        )
    """

    def __init__(
        self,
        port: int | None = None,
        host: str | None = None,
        session_secret: str | None = None,
        environment: str | None = None,
        cors_origins: str | list[str] | None = None,
        trust_proxy: bool | None = None,
        log_level: str | None = None,
        max_body_bytes: int | None = None,
        session_ttl_seconds: int | None = None,
        sweep_interval_seconds: int | None = None,
        pool_idle_ttl_seconds: int | None = None,
        connect_timeout_ms: int | None = None,
        socket_timeout_ms: int | None = None,
        rate_limit_window_seconds: int | None = None,
        connect_rate_limit: int | None = None,
        api_rate_limit: int | None = None,
        mutation_rate_limit: int | None = None,
    ):
        """
        Initialize configuration.

        Args:
            port: Listen port (defaults to PORT env var or 3001)
            host: Listen address (defaults to HOST env var or 0.0.0.0)
            session_secret: Server secret, at least 32 characters (SESSION_SECRET)
            environment: development, production or test (ENVIRONMENT / NODE_ENV)
            cors_origins: Allowed browser origins (CORS_ORIGIN, comma-separated)
            trust_proxy: Honour X-Forwarded-For (TRUST_PROXY, defaults to production)
            log_level: Root log level (LOG_LEVEL)
            max_body_bytes: Maximum request body size (MAX_BODY_BYTES)
        """
        self.port = port if port is not None else _env_int("PORT", 3001)
        self.host = host or os.getenv("HOST", "0.0.0.0")
        self.session_secret = (
            session_secret if session_secret is not None else os.getenv("SESSION_SECRET", "")
        )
        env_name = environment or os.getenv("ENVIRONMENT") or os.getenv("NODE_ENV") or "development"
        self.environment = env_name.strip().lower()
        self.cors_origins = parse_cors_origins(
            cors_origins if cors_origins is not None else os.getenv("CORS_ORIGIN")
        )
        self.trust_proxy = (
            trust_proxy
            if trust_proxy is not None
            else _env_bool("TRUST_PROXY", self.environment == "production")
        )
        self.log_level = (log_level or os.getenv("LOG_LEVEL", "INFO")).upper()
        self.max_body_bytes = (
            max_body_bytes
            if max_body_bytes is not None
            else _env_int("MAX_BODY_BYTES", MAX_BODY_BYTES)
        )

        self.session_ttl_seconds = session_ttl_seconds or _env_int(
            "SESSION_TTL_SECONDS", SESSION_TTL_SECONDS
        )
        self.sweep_interval_seconds = sweep_interval_seconds or _env_int(
            "SESSION_SWEEP_INTERVAL_SECONDS", SESSION_SWEEP_INTERVAL_SECONDS
        )
        self.pool_idle_ttl_seconds = pool_idle_ttl_seconds or _env_int(
            "POOL_IDLE_TTL_SECONDS", POOL_IDLE_TTL_SECONDS
        )
        self.connect_timeout_ms = connect_timeout_ms or _env_int(
            "UPSTREAM_CONNECT_TIMEOUT_MS", UPSTREAM_CONNECT_TIMEOUT_MS
        )
        self.socket_timeout_ms = socket_timeout_ms or _env_int(
            "UPSTREAM_SOCKET_TIMEOUT_MS", UPSTREAM_SOCKET_TIMEOUT_MS
        )
        self.rate_limit_window_seconds = rate_limit_window_seconds or _env_int(
            "RATE_LIMIT_WINDOW_SECONDS", RATE_LIMIT_WINDOW_SECONDS
        )
        self.connect_rate_limit = connect_rate_limit or _env_int(
            "CONNECT_RATE_LIMIT", CONNECT_RATE_LIMIT
        )
        self.api_rate_limit = api_rate_limit or _env_int("API_RATE_LIMIT", API_RATE_LIMIT)
        self.mutation_rate_limit = mutation_rate_limit or _env_int(
            "MUTATION_RATE_LIMIT", MUTATION_RATE_LIMIT
        )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def cookie_name(self) -> str:
        """Session cookie name for the current environment."""
        return SESSION_COOKIE_NAME if self.is_production else SESSION_COOKIE_NAME_DEV

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ConfigurationError: If required configuration is missing or invalid
        """
        if len(self.session_secret) < MIN_SESSION_SECRET_LENGTH:
            raise ConfigurationError(
                f"SESSION_SECRET must be at least {MIN_SESSION_SECRET_LENGTH} characters",
                config_key="SESSION_SECRET",
            )

        if self.environment not in ENVIRONMENTS:
            raise ConfigurationError(
                f"ENVIRONMENT must be one of {', '.join(ENVIRONMENTS)}, got {self.environment!r}",
                config_key="ENVIRONMENT",
            )

        if self.is_production and "*" in self.cors_origins:
            raise ConfigurationError(
                'CORS_ORIGIN cannot be "*" in production', config_key="CORS_ORIGIN"
            )

        if not 0 < self.port < 65536:
            raise ConfigurationError(f"PORT must be 1-65535, got {self.port}", config_key="PORT")

        if self.max_body_bytes < 1:
            raise ConfigurationError(
                f"MAX_BODY_BYTES must be >= 1, got {self.max_body_bytes}",
                config_key="MAX_BODY_BYTES",
            )

        for key, value in (
            ("SESSION_TTL_SECONDS", self.session_ttl_seconds),
            ("SESSION_SWEEP_INTERVAL_SECONDS", self.sweep_interval_seconds),
            ("POOL_IDLE_TTL_SECONDS", self.pool_idle_ttl_seconds),
            ("RATE_LIMIT_WINDOW_SECONDS", self.rate_limit_window_seconds),
            ("CONNECT_RATE_LIMIT", self.connect_rate_limit),
            ("API_RATE_LIMIT", self.api_rate_limit),
            ("MUTATION_RATE_LIMIT", self.mutation_rate_limit),
        ):
            if value < 1:
                raise ConfigurationError(f"{key} must be >= 1, got {value}", config_key=key)
