"""Response envelopes shared by every JSON endpoint.

Streaming endpoints answer with SSE instead, but reject requests (validation,
rate limiting, duplicate runs) with the same ``ErrorResponse`` envelope.
"""

from __future__ import annotations

from typing import Any, Generic, TypeVar

from pydantic import BaseModel


T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Successful response wrapper: ``{success, data, message}``."""

    success: bool = True
    data: T | None = None
    message: str = "Operation completed successfully"


class ErrorDetail(BaseModel):
    """The ``error`` object of an error envelope.

    Only ``correlation_id`` and ``type`` are guaranteed; the diagnostic fields
    are filled in outside production.
    """

    correlation_id: str
    type: str
    error_code: str | None = None
    details: dict[str, Any] | None = None
    traceback: str | None = None
    exception_type: str | None = None
    validation_errors: list[Any] | None = None


class ErrorResponse(BaseModel):
    success: bool = False
    message: str = "An error occurred"
    error: ErrorDetail
