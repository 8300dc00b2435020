"""Application settings using Pydantic Settings for typed configuration.

This module centralizes runtime configuration. Settings are loaded from
environment variables with sensible defaults.

Build-time values (debug build flag, build variant) live in
``shield.core.build`` and are deliberately not part of these settings.
"""

from functools import lru_cache
from importlib.metadata import PackageNotFoundError, version

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict

PACKAGE_NAME = "shield-bootstrap"


def installed_version() -> str:
    """Version of the installed distribution, ``0.0.0`` when run from a checkout."""
    try:
        return version(PACKAGE_NAME)
    except PackageNotFoundError:
        return "0.0.0"


class Settings(BaseSettings):
    """Application-wide settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Environment
    env_name: str = Field(default="development", alias="ENV_NAME")
    app_version: str = Field(default_factory=installed_version, alias="APP_VERSION")

    # Database
    database_url: str = Field(default="sqlite:///./shield.db", alias="DATABASE_URL")

    # CORS
    cors_origins: str = Field(default="*", alias="CORS_ORIGINS")

    # Session routes (bearer token the app backend sends)
    session_api_token: str | None = Field(default=None, alias="SESSION_API_TOKEN")

    # Session bootstrap
    readiness_delay_seconds: float = Field(
        default=0.1, alias="READINESS_DELAY_SECONDS", ge=0, le=5
    )

    # OTP
    otp_resend_cooldown_seconds: int = Field(
        default=60, alias="OTP_RESEND_COOLDOWN_SECONDS", ge=0
    )
    otp_ttl_seconds: int = Field(default=600, alias="OTP_TTL_SECONDS", ge=30)
    otp_max_attempts: int = Field(default=5, alias="OTP_MAX_ATTEMPTS", ge=1)

    # Courial driver API
    courial_api_base_url: str = Field(
        default="https://gocourial.com/driverApis/shield",
        alias="COURIAL_API_BASE_URL",
    )

    # Push token registration backend
    push_api_base_url: str = Field(
        default="https://api.courial.com/notifications",
        alias="PUSH_API_BASE_URL",
    )

    # Billing (RevenueCat)
    revenuecat_api_key: str | None = Field(default=None, alias="REVENUECAT_API_KEY")
    revenuecat_base_url: str = Field(
        default="https://api.revenuecat.com", alias="REVENUECAT_BASE_URL"
    )
    revenuecat_entitlement_id: str = Field(
        default="premium", alias="REVENUECAT_ENTITLEMENT_ID"
    )

    # SMS (Twilio)
    twilio_account_sid: str | None = Field(default=None, alias="TWILIO_ACCOUNT_SID")
    twilio_auth_token: str | None = Field(default=None, alias="TWILIO_AUTH_TOKEN")
    twilio_from_number: str | None = Field(default=None, alias="TWILIO_FROM_NUMBER")

    @computed_field
    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        origins = []
        for o in self.cors_origins.split(","):
            trimmed = o.strip()
            if trimmed:
                origins.append(trimmed)
        return origins


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
