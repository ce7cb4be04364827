"""
HTTP middleware for the proxy application.

- Request context: correlation ID per request, echoed as ``X-Request-ID``
- Body size limit: oversized JSON bodies are refused with 413
- Security headers on every response
"""

from typing import Awaitable, Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from ..constants import MAX_BODY_BYTES
from ..observability import clear_correlation_id, get_logger, set_correlation_id

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
BODY_METHODS = ("POST", "PUT", "PATCH", "DELETE")


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind a correlation ID to the request's logging context."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        incoming = request.headers.get(REQUEST_ID_HEADER)
        # Accept short client-supplied IDs only; anything else gets a fresh one.
        if incoming and (len(incoming) > 64 or not incoming.isprintable()):
            incoming = None
        correlation_id = set_correlation_id(incoming)
        try:
            response = await call_next(request)
        finally:
            clear_correlation_id()
        response.headers[REQUEST_ID_HEADER] = correlation_id
        return response


class BodySizeLimitMiddleware(BaseHTTPMiddleware):
    """Refuse request bodies larger than ``max_body_bytes``."""

    def __init__(self, app, max_body_bytes: int = MAX_BODY_BYTES):
        super().__init__(app)
        self.max_body_bytes = max_body_bytes

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        if request.method in BODY_METHODS:
            declared = request.headers.get("content-length")
            if declared is not None:
                try:
                    too_large = int(declared) > self.max_body_bytes
                except ValueError:
                    return self._reject(400, "Invalid Content-Length header")
            else:
                too_large = not await self._buffer_stream(request)
            if too_large:
                logger.warning(f"Request body over {self.max_body_bytes} bytes refused")
                return self._reject(413, "Request body too large")

        return await call_next(request)

    async def _buffer_stream(self, request: Request) -> bool:
        """
        Read a body with no Content-Length, stopping once it passes the limit.

        Returns:
            False if the body is too large. Otherwise the body is cached on the
            request so the route reads it without touching the stream again.
        """
        received = 0
        chunks: list[bytes] = []
        async for chunk in request.stream():
            received += len(chunk)
            if received > self.max_body_bytes:
                return False
            chunks.append(chunk)
        # Request.body() caches here too; call_next replays it downstream.
        request._body = b"".join(chunks)
        return True

    @staticmethod
    def _reject(status_code: int, message: str) -> JSONResponse:
        return JSONResponse(status_code=status_code, content={"success": False, "error": message})


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Set conservative security headers on every response."""

    def __init__(self, app, hsts: bool = False):
        """
        Args:
            app: ASGI application
            hsts: Send Strict-Transport-Security (production only)
        """
        super().__init__(app)
        self.hsts = hsts

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Cross-Origin-Resource-Policy"] = "same-origin"
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        if self.hsts:
            response.headers["Strict-Transport-Security"] = "max-age=15552000; includeSubDomains"

        return response
