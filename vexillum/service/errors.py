from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Closed set of failure kinds surfaced by the auth core."""

    BAD_REQUEST = "bad_request"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    RATE_LIMITED = "rate_limited"
    INTERNAL = "internal_error"


# Every kind must have an entry; checked at import time below.
ERROR_STATUS: dict[ErrorKind, int] = {
    ErrorKind.BAD_REQUEST: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.INTERNAL: 500,
}

_missing = set(ErrorKind) - set(ERROR_STATUS)
if _missing:
    raise RuntimeError(f"error kinds without a status mapping: {sorted(k.value for k in _missing)}")


def status_for(kind: ErrorKind) -> int:
    return ERROR_STATUS[kind]


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass pins one ``ErrorKind``; the HTTP status and the stable
    error code are both derived from it through ``ERROR_STATUS``.
    """

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, *, detail: Optional[dict] = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    @property
    def status_code(self) -> int:
        return status_for(self.kind)

    @property
    def error_code(self) -> str:
        return self.kind.value


class BadRequestError(ServiceError):
    """Request is malformed, e.g. an unparsable token string (400)."""
    kind = ErrorKind.BAD_REQUEST


class UnauthorizedError(ServiceError):
    """Authentication failed or missing (401)."""
    kind = ErrorKind.UNAUTHORIZED


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    kind = ErrorKind.NOT_FOUND


class ConflictError(ServiceError):
    """Resource conflict, e.g., duplicate email (409)."""
    kind = ErrorKind.CONFLICT


class RateLimitedError(ServiceError):
    """Rate limit exceeded (429)."""
    kind = ErrorKind.RATE_LIMITED


class InternalError(ServiceError):
    """Internal server error (500)."""
    kind = ErrorKind.INTERNAL


class KeyMaterialError(InternalError):
    """Signing keys could not be loaded, generated or persisted."""


__all__ = [
    "ErrorKind",
    "ERROR_STATUS",
    "status_for",
    "ServiceError",
    "BadRequestError",
    "UnauthorizedError",
    "NotFoundError",
    "ConflictError",
    "RateLimitedError",
    "InternalError",
    "KeyMaterialError",
]
