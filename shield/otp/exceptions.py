"""OTP domain exceptions."""

from shield.core.exceptions import ExternalServiceError, RateLimitError, ValidationError


class InvalidOtpFormatError(ValidationError):
    """Raised when a submitted code is not exactly six digits."""

    error_type = "invalid_otp_format"

    def __init__(self, message: str = "Verification code must be 6 digits"):
        super().__init__(message)


class ResendCooldownError(RateLimitError):
    """Raised when a new code is requested before the cooldown expires."""

    error_type = "resend_cooldown"

    def __init__(self, retry_after: int):
        super().__init__(
            f"Please wait {retry_after} seconds before requesting a new code",
            retry_after=retry_after,
        )


class SmsDeliveryError(ExternalServiceError):
    """Raised when the SMS provider did not accept the message."""

    error_type = "sms_delivery_failed"

    def __init__(self, message: str = "Failed to send verification code"):
        super().__init__(message)


class TooManyAttemptsError(RateLimitError):
    """Raised when a challenge is dropped after too many wrong codes."""

    error_type = "too_many_attempts"

    def __init__(
        self, message: str = "Too many incorrect codes, please request a new one"
    ):
        super().__init__(message)
