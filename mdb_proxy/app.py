"""
FastAPI application factory.

    from mdb_proxy.app import create_app

    app = create_app()  # configuration from the environment

The proxy context is built eagerly so the application can be handed to a
test client before the lifespan runs; the lifespan starts the sweeper and
shuts everything down.
"""

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .auth.rate_limiter import RateLimitMiddleware, default_tiers
from .config import ProxyConfig
from .constants import APP_VERSION
from .core.context import ProxyContext
from .core.middleware import (
    BodySizeLimitMiddleware,
    RequestContextMiddleware,
    SecurityHeadersMiddleware,
)
from .exceptions import MongoDBProxyError
from .observability import (
    HealthChecker,
    check_pool_health,
    check_session_store_health,
    configure_logging,
    get_logger,
)
from .routes import include_routers

logger = get_logger(__name__)


def _error(status_code: int, message: str, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message},
        headers=headers,
    )


def _install_exception_handlers(app: FastAPI, config: ProxyConfig) -> None:
    @app.exception_handler(MongoDBProxyError)
    async def proxy_error_handler(request: Request, exc: MongoDBProxyError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return _error(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = exc.errors()
        if any(err.get("type") == "json_invalid" for err in errors):
            return _error(400, "Invalid JSON body")
        return _error(400, "Invalid request")

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == 404:
            return _error(404, "Not found")
        return _error(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
        message = str(exc) if config.is_development else "Internal server error"
        return _error(500, message)


def create_app(config: ProxyConfig | None = None, **context_kwargs: Any) -> FastAPI:
    """
    Build the proxy application.

    Args:
        config: Proxy configuration (defaults to the environment)
        **context_kwargs: Passed to ProxyContext (client_factory, resolver,
            srv_lookup and clocks, for tests)

    Raises:
        ConfigurationError: If the configuration is invalid
    """
    config = config or ProxyConfig()
    configure_logging(config.log_level)
    config.validate()

    context = ProxyContext(config, **context_kwargs)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        context.start()
        logger.info(f"mdb-proxy {APP_VERSION} started ({config.environment})")
        try:
            yield
        finally:
            await context.shutdown()

    app = FastAPI(
        title="mdb-proxy",
        version=APP_VERSION,
        lifespan=lifespan,
        docs_url="/docs" if config.is_development else None,
        redoc_url=None,
        openapi_url="/openapi.json" if config.is_development else None,
    )
    app.state.proxy = context

    health_checker = HealthChecker()
    health_checker.register_check(lambda: check_session_store_health(context))
    health_checker.register_check(lambda: check_pool_health(context))
    app.state.health_checker = health_checker

    # Last added runs first: CORS wraps everything so refusals carry its headers.
    app.add_middleware(
        RateLimitMiddleware,
        store=context.rate_limits,
        tiers=default_tiers(config),
        trust_proxy=config.trust_proxy,
    )
    app.add_middleware(BodySizeLimitMiddleware, max_body_bytes=config.max_body_bytes)
    app.add_middleware(SecurityHeadersMiddleware, hsts=config.is_production)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID", "RateLimit-Limit", "RateLimit-Remaining", "RateLimit-Reset"],
    )

    _install_exception_handlers(app, config)

    @app.get("/")
    async def banner():
        return {
            "success": True,
            "data": {"name": "mdb-proxy", "version": APP_VERSION, "status": "running"},
        }

    @app.get("/api/health")
    async def health():
        report = await health_checker.check_all()
        status_code = 503 if report["status"] == "unhealthy" else 200
        return JSONResponse(
            status_code=status_code, content={"success": status_code == 200, "data": report}
        )

    include_routers(app)
    return app
