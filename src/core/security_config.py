"""Security configuration constants for the MenuStream API.

This module centralizes security-related configuration including:
- Sensitive keys that should be sanitized from logs
- Error handling security settings
"""

# Keys redacted from structured log fields (substring match, case-insensitive)
SENSITIVE_KEYS: set[str] = {
    # Credentials for upstream services
    "password",
    "secret",
    "token",
    "authorization",
    "api_key",
    "apikey",
    "jwt",
    "session_id",
    "bearer",
    "cookie",
    "x-api-key",
    "connection_string",
    # Signed storage URLs carry access signatures in their query string
    "signed_url",
    "thumbnail_url",
    "enhanced_url",
    # Personal data of restaurant owners
    "email",
    "phone",
    "address",
}

# In production, error responses only contain these fields
PRODUCTION_ERROR_FIELDS: set[str] = {
    "correlation_id",
    "type",
    "error_code",
}

# Additional fields allowed in development
DEVELOPMENT_ERROR_FIELDS: set[str] = PRODUCTION_ERROR_FIELDS | {
    "details",
    "traceback",
    "exception_type",
    "validation_errors",
}


def get_allowed_error_fields(environment: str) -> set[str]:
    """Get allowed error response fields based on environment.

    Args:
        environment: The application environment (production, development, etc.)

    Returns:
        Set of allowed field names for error responses
    """
    if environment == "production":
        return PRODUCTION_ERROR_FIELDS.copy()
    else:
        return DEVELOPMENT_ERROR_FIELDS.copy()


def is_sensitive_key(key: str) -> bool:
    """Check if a key should be considered sensitive and redacted."""
    key_lower = key.lower()
    return any(sensitive in key_lower for sensitive in SENSITIVE_KEYS)
