"""App-wide exception hierarchy.

Every custom exception carries an HTTP status code and an error type so the
exception handlers can render a consistent ``{"type", "message"}`` body.
"""


class AppException(Exception):
    """Base exception for all application errors."""

    status_code: int = 500
    error_type: str = "internal_error"

    def __init__(self, message: str = "An unexpected error occurred"):
        self.message = message
        super().__init__(message)


# Authentication errors (401)
class AuthenticationError(AppException):
    """Base class for authentication failures."""

    status_code = 401
    error_type = "authentication_error"

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message)


class InvalidTokenError(AuthenticationError):
    """Raised when the service token is missing or does not match."""

    error_type = "invalid_token"

    def __init__(self, message: str = "Invalid authentication token"):
        super().__init__(message)


# Validation errors (400)
class ValidationError(AppException):
    """Base class for validation errors."""

    status_code = 400
    error_type = "validation_error"

    def __init__(self, message: str = "Validation failed"):
        super().__init__(message)


# Rate limit errors (429)
class RateLimitError(AppException):
    """Raised when rate limit is exceeded."""

    status_code = 429
    error_type = "rate_limit_exceeded"

    def __init__(
        self,
        message: str = "Too many requests, please try again later",
        retry_after: int | None = None,
    ):
        self.retry_after = retry_after
        super().__init__(message)


# External service errors (502)
class ExternalServiceError(AppException):
    """Base class for external service failures."""

    status_code = 502
    error_type = "external_service_error"

    def __init__(self, message: str = "External service error"):
        super().__init__(message)


class ProviderError(ExternalServiceError):
    """Raised when an upstream provider fails or returns an unexpected response."""

    error_type = "provider_error"

    def __init__(self, message: str = "Provider returned an invalid response"):
        super().__init__(message)


# Configuration errors (503)
class NotConfiguredError(AppException):
    """Raised when a feature is called without the credentials it needs."""

    status_code = 503
    error_type = "not_configured"

    def __init__(self, message: str = "Service is not configured"):
        super().__init__(message)
