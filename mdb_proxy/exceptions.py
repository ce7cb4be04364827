"""
Custom exceptions for MDB_PROXY.

Every exception the proxy raises on purpose derives from MongoDBProxyError
and carries the HTTP status the request pipeline renders it with.
"""

from typing import Any, Dict, Optional


class MongoDBProxyError(RuntimeError):
    """
    Base exception for MongoDB proxy errors.

    Attributes:
        message: Error message (safe to show to the client)
        context: Optional dictionary with additional context
        status_code: HTTP status used when the error reaches a client
    """

    status_code: int = 500

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ) -> None:
        """
        Initialize the exception.

        Args:
            message: Error message
            context: Optional dictionary with additional context information
            status_code: Optional override of the class default HTTP status
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}
        if status_code is not None:
            self.status_code = status_code

    def __str__(self) -> str:
        """Return formatted error message with context if available."""
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} (context: {context_str})"
        return self.message


class ConfigurationError(MongoDBProxyError):
    """
    Raised when configuration is invalid or missing.

    Attributes:
        config_key: Configuration key that caused the error (if available)
    """

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        context = context or {}
        if config_key:
            context["config_key"] = config_key
        super().__init__(message, context=context)
        self.config_key = config_key


class InvalidFormatError(MongoDBProxyError):
    """Raised for malformed client input (URI, payload shape, identifiers)."""

    status_code = 400


class ForbiddenError(MongoDBProxyError):
    """Raised when a well-formed request is refused by policy."""

    status_code = 403


class EgressDeniedError(ForbiddenError):
    """
    Raised when a connection URI points at a blocked destination.

    Attributes:
        host: The host that was refused (if known)
    """

    status_code = 400

    def __init__(
        self,
        message: str,
        host: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        context = context or {}
        if host:
            context["host"] = host
        super().__init__(message, context=context)
        self.host = host


class BlockedOperatorError(ForbiddenError):
    """
    Raised when a payload contains a denylisted operator.

    Attributes:
        operator: The offending key
        path: Dotted/bracketed path at which the key was found
        payload_kind: filter, update, document or pipeline
    """

    status_code = 400

    def __init__(
        self,
        message: str,
        operator: str,
        path: str,
        payload_kind: Optional[str] = None,
    ) -> None:
        context: Dict[str, Any] = {"operator": operator, "path": path}
        if payload_kind:
            context["payload_kind"] = payload_kind
        super().__init__(message, context=context)
        self.operator = operator
        self.path = path
        self.payload_kind = payload_kind


class ReadOnlyViolationError(ForbiddenError):
    """Raised when a read-only session attempts a mutating operation."""

    status_code = 403


class UnauthenticatedError(MongoDBProxyError):
    """Raised when the session cookie is missing, unknown or expired."""

    status_code = 401


class UpstreamFailureError(MongoDBProxyError):
    """
    Raised when the downstream database is unreachable or rejects an operation.

    The message is generic unless the route chose to surface the driver's
    own text (caller mistakes such as a bad pipeline); driver text is always
    logged scrubbed.
    """

    status_code = 500
