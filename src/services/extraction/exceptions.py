"""Domain exceptions for the streaming extraction pipeline.

Each exception carries a stable ``error_code`` which the stream service copies
onto the terminal SSE ``error`` event so clients and dashboards can branch on
it without parsing messages.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class ExtractionError(Exception):
    """Base class for extraction domain errors."""

    message: str
    error_code: str

    def __str__(self) -> str:
        return f"{self.error_code}: {self.message}"


class ProtocolEncodingError(ExtractionError):
    """A field cannot be represented in the line protocol (no escaping exists)."""

    def __init__(self, message: str = "Field cannot be encoded") -> None:
        super().__init__(message=message, error_code="encode_failed")


class ExtractionTimeout(ExtractionError):
    def __init__(self, message: str = "Extraction timed out") -> None:
        super().__init__(message=message, error_code="timeout")


class UpstreamStreamError(ExtractionError):
    def __init__(self, message: str = "Extraction stream failed") -> None:
        super().__init__(message=message, error_code="upstream_error")


class IncompleteExtraction(ExtractionError):
    """The stream ended without a usable ``COMPLETE:`` payload."""

    def __init__(
        self, message: str = "Extraction ended without a result"
    ) -> None:
        super().__init__(message=message, error_code="incomplete")
