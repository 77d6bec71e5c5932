"""Error envelopes, correlation ids and structured logging for MenuStream.

Every rejected request (before an SSE stream opens) is answered with the
``ErrorResponse`` envelope. Production responses carry only the correlation
id, the error type and a stable ``error_code``; development responses add
diagnostics.
"""

import logging
import sys
import traceback
import uuid
from contextvars import ContextVar
from typing import Any

from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from core.config import get_settings
from core.exceptions import DomainError
from core.security_config import get_allowed_error_fields, is_sensitive_key
from schemas.api import ErrorDetail, ErrorResponse


REDACTED = "[REDACTED]"

_correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def get_correlation_id() -> str:
    """Return the request's correlation id, minting one outside a request."""
    correlation_id = _correlation_id_var.get()
    if not correlation_id:
        correlation_id = str(uuid.uuid4())
        _correlation_id_var.set(correlation_id)
    return correlation_id


def set_correlation_id(correlation_id: str | None) -> None:
    _correlation_id_var.set(correlation_id)


def redact(value: Any) -> Any:
    """Recursively replace values stored under sensitive keys."""
    if isinstance(value, dict):
        return {
            key: REDACTED if is_sensitive_key(str(key)) else redact(item)
            for key, item in value.items()
        }
    if isinstance(value, list | tuple):
        return [redact(item) for item in value]
    return value


class StructuredLogger:
    """Logger wrapper attaching the correlation id and redacted fields.

    Fields are passed as keyword arguments and land on the record as
    ``structured_data``; the JSON formatter in production emits them as a
    nested object.
    """

    def __init__(self, logger_name: str):
        self.logger = logging.getLogger(logger_name)

    def _log(
        self, level: int, message: str, fields: dict[str, Any], exc_info: bool = False
    ) -> None:
        correlation_id = get_correlation_id()
        structured_data = {"correlation_id": correlation_id, **redact(fields)}
        if get_settings().ENVIRONMENT != "production":
            message = f"[{correlation_id}] {message}"
        self.logger.log(
            level,
            message,
            extra={"structured_data": structured_data},
            exc_info=exc_info,
        )

    def debug(self, message: str, **fields: Any) -> None:
        self._log(logging.DEBUG, message, fields)

    def info(self, message: str, **fields: Any) -> None:
        self._log(logging.INFO, message, fields)

    def warning(self, message: str, **fields: Any) -> None:
        self._log(logging.WARNING, message, fields)

    def error(self, message: str, **fields: Any) -> None:
        self._log(logging.ERROR, message, fields)

    def exception(self, message: str, **fields: Any) -> None:
        self._log(logging.ERROR, message, fields, exc_info=True)


structured_logger = StructuredLogger(__name__)


class ExceptionNormalizationMiddleware(BaseHTTPMiddleware):
    """Route exceptions that escape the app's handlers to the global handler."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:  # noqa: BLE001
            return await global_exception_handler(request, exc)


def build_error_response(
    *,
    status_code: int,
    error_type: str,
    message: str,
    environment: str,
    headers: dict[str, str] | None = None,
    **fields: Any,
) -> JSONResponse:
    """Render the error envelope, keeping only fields allowed in ``environment``.

    ``fields`` are optional ``ErrorDetail`` attributes (``error_code``,
    ``details``, ``traceback``, ``exception_type``, ``validation_errors``).
    """
    allowed = get_allowed_error_fields(environment)
    detail = ErrorDetail(
        correlation_id=get_correlation_id(),
        type=error_type,
        **{name: value for name, value in fields.items() if name in allowed},
    )
    body = ErrorResponse(message=message, error=detail)
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(exclude_none=True),
        headers=headers,
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Translate any exception into the error envelope."""
    environment = get_settings().ENVIRONMENT

    if isinstance(exc, StarletteHTTPException):
        return build_error_response(
            status_code=exc.status_code,
            error_type="http_error",
            message="An HTTP error occurred",
            environment=environment,
            headers=exc.headers,
            details={"detail": exc.detail},
            exception_type=type(exc).__name__,
        )

    if isinstance(exc, ValidationError | RequestValidationError):
        errors = jsonable_encoder(exc.errors())
        structured_logger.warning(
            "Request validation failed", path=request.url.path, error_count=len(errors)
        )
        return build_error_response(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_type="validation_error",
            message="Invalid request data provided",
            environment=environment,
            validation_errors=errors,
        )

    if isinstance(exc, DomainError):
        # The exception text may name internal keys; clients get the public message
        structured_logger.warning(
            "Domain error",
            error_code=exc.error_code,
            path=request.url.path,
            domain_message=str(exc),
        )
        return build_error_response(
            status_code=exc.status_code,
            error_type="domain_error",
            message=exc.public_message,
            environment=environment,
            error_code=exc.error_code,
        )

    structured_logger.exception(
        "Unhandled exception", path=request.url.path, exception_type=type(exc).__name__
    )
    return build_error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_type="internal_server_error",
        message="An internal error occurred",
        environment=environment,
        exception_type=type(exc).__name__,
        traceback="".join(traceback.format_exception(exc)).strip(),
    )


def setup_logging() -> None:
    """Install a single stdout handler on the root logger (idempotent).

    Production logs are JSON lines via python-json-logger; other environments
    use a plain text format.
    """
    root_logger = logging.getLogger()
    if root_logger.handlers:
        return

    environment = get_settings().ENVIRONMENT
    level = logging.DEBUG if environment == "development" else logging.INFO

    formatter: logging.Formatter
    if environment == "production":
        from pythonjsonlogger.json import JsonFormatter

        formatter = JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "level"},
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root_logger.setLevel(level)
    root_logger.addHandler(handler)

    if environment == "production":
        # Access and outbound HTTP logs stay at WARNING in production
        for noisy in ("uvicorn.access", "httpx", "upstash_redis"):
            logging.getLogger(noisy).setLevel(logging.WARNING)
