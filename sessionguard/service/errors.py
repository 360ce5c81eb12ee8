from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Stable error codes the HTTP boundary maps to responses."""

    VALIDATION_ERROR = "validation_error"
    UNAUTHORIZED = "unauthorized"
    INVALID_TOKEN = "invalid_token"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    DEPENDENCY_FAILURE = "dependency_failure"
    SERVER_ERROR = "server_error"


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass carries an HTTP ``status_code`` and a stable ``error_code``
    from ``ErrorKind``.
    """

    status_code: int = 400
    error_code: str = ErrorKind.VALIDATION_ERROR.value

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}

    @property
    def kind(self) -> ErrorKind:
        return ErrorKind(self.error_code)


class ValidationError(ServiceError):
    """Malformed input; nothing was changed (400)."""
    status_code = 400
    error_code = ErrorKind.VALIDATION_ERROR.value


class AuthFailure(ServiceError):
    """Generic authentication failure (401).

    Used for bad credentials and for unknown, expired or replayed refresh
    tokens alike; the message never says which.
    """
    status_code = 401
    error_code = ErrorKind.UNAUTHORIZED.value


class InvalidTokenError(AuthFailure):
    """Password-reset token is unknown, expired or already used (400)."""
    status_code = 400
    error_code = ErrorKind.INVALID_TOKEN.value


class NotFoundError(ServiceError):
    """Referenced entity vanished (404); reported as AuthFailure at the boundary."""
    status_code = 404
    error_code = ErrorKind.NOT_FOUND.value


class ConflictError(ServiceError):
    """Resource conflict, e.g. duplicate registration (409)."""
    status_code = 409
    error_code = ErrorKind.CONFLICT.value


class DependencyFailure(ServiceError):
    """Store or directory unreachable (503)."""
    status_code = 503
    error_code = ErrorKind.DEPENDENCY_FAILURE.value


__all__ = [
    "ErrorKind",
    "ServiceError",
    "ValidationError",
    "AuthFailure",
    "InvalidTokenError",
    "NotFoundError",
    "ConflictError",
    "DependencyFailure",
]
