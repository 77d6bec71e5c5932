from fastapi import status


class DomainError(Exception):
    """Base class for domain-specific errors.

    Subclasses declare how the global exception handler renders them; the
    exception message itself is only logged, never returned to clients.
    """

    status_code: int = status.HTTP_400_BAD_REQUEST
    error_code: str = "domain_error"
    public_message: str = "The request could not be processed"


class ExtractionInProgressError(DomainError):
    """Exception raised when an extraction is already running for a menu."""

    status_code = status.HTTP_409_CONFLICT
    error_code = "extraction_in_progress"
    public_message = "Extraction already in progress for this menu"
