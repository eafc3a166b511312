from __future__ import annotations

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from vexillum.api.schemas import VALIDATION_ERROR_CODE, Envelope, ErrorBody
from vexillum.logging import get_correlation_id, get_logger
from vexillum.service.errors import (
    ConflictError,
    ErrorKind,
    RateLimitedError,
    ServiceError,
    status_for,
)
from vexillum.storage.errors import ConstraintViolation

logger = get_logger(__name__)

_STATUS_TO_CODE = {status_for(kind): kind.value for kind in ErrorKind}
_STATUS_TO_CODE[422] = VALIDATION_ERROR_CODE


def _error_code_for_status(status_code: int) -> str:
    if status_code in _STATUS_TO_CODE:
        return _STATUS_TO_CODE[status_code]
    return ErrorKind.INTERNAL.value if status_code >= 500 else ErrorKind.BAD_REQUEST.value


def error_response(
    status_code: int,
    message: str,
    details: dict | list | None = None,
    code: Optional[str] = None,
) -> JSONResponse:
    body = ErrorBody(
        code=code or _error_code_for_status(status_code), message=message, details=details
    )
    envelope = Envelope(status="error", error=body)
    if get_correlation_id():
        envelope.request_id = get_correlation_id()
    return JSONResponse(status_code=status_code, content=envelope.model_dump())


def register_exception_handlers(app: FastAPI) -> None:
    """Render every failure in the error envelope."""

    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError):
        log_fn = logger.error if exc.status_code >= 500 else logger.warning
        log_fn(
            "service_error",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            error_code=exc.error_code,
            message=exc.message,
        )
        response = error_response(
            exc.status_code, exc.message, exc.detail or None, code=exc.error_code
        )
        if isinstance(exc, RateLimitedError) and exc.detail.get("retry_after"):
            response.headers["Retry-After"] = str(exc.detail["retry_after"])
        return response

    @app.exception_handler(ConstraintViolation)
    async def handle_constraint_violation(request: Request, exc: ConstraintViolation):
        logger.warning(
            "constraint_violation",
            path=request.url.path,
            method=request.method,
            message=exc.message,
            field=exc.field,
        )
        conflict = ConflictError(exc.message)
        return error_response(
            conflict.status_code, exc.message, exc.detail or None, code=conflict.error_code
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        details = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
            for err in exc.errors()
        ]
        logger.info(
            "request_validation_failed",
            path=request.url.path,
            method=request.method,
            error_count=len(details),
        )
        return error_response(422, "request validation failed", details, code=VALIDATION_ERROR_CODE)

    @app.exception_handler(HTTPException)
    async def handle_http_exception(request: Request, exc: HTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "http error"
        details = exc.detail if isinstance(exc.detail, (dict, list)) else None
        if exc.status_code >= 500:
            logger.error(
                "http_error",
                path=request.url.path,
                method=request.method,
                status_code=exc.status_code,
                message=message,
            )
        response = error_response(exc.status_code, message, details)
        if exc.headers:
            response.headers.update(exc.headers)
        return response

    @app.exception_handler(Exception)
    async def handle_uncaught(request: Request, exc: Exception):
        logger.exception(
            "unhandled_exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return error_response(500, "internal server error", code=ErrorKind.INTERNAL.value)
