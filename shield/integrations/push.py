"""Push token registration collaborator.

Registers the device push token with the notifications backend. Retrying a
failed registration across evaluations is the scheduler's job; this module
only retries transient network errors within one call.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Protocol

import httpx

from shield.core.http import get_service_client
from shield.core.retry import with_retry
from shield.session.models import DeviceInfo

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PushRegistrationResult:
    success: bool
    token: str | None = None
    error: str | None = None


class PushRegistrar(Protocol):
    """Contract the session scheduler relies on for push registration."""

    async def register(
        self, user_id: str, device: DeviceInfo
    ) -> PushRegistrationResult: ...

    async def unregister(self, user_id: str, device: DeviceInfo) -> None: ...


class NotificationTokenApi:
    """Push registration against the notifications backend ``/tokens`` endpoint."""

    def __init__(self, base_url: str, app_version: str):
        self._base_url = base_url
        self._app_version = app_version

    def _client(self) -> httpx.AsyncClient:
        return get_service_client("push", self._base_url)

    async def register(self, user_id: str, device: DeviceInfo) -> PushRegistrationResult:
        if not device.push_token:
            return PushRegistrationResult(
                success=False, error="Device has not reported a push token"
            )

        payload = {
            "user_id": user_id,
            "device_token": device.push_token,
            "platform": device.platform or "ios",
            "token_type": "expo",
            "app_version": self._app_version,
        }
        client = self._client()

        try:
            response = await with_retry(
                lambda: client.post("/tokens", json=payload),
                exceptions=(httpx.RequestError,),
                label="push.register",
            )
        except httpx.RequestError as e:
            return PushRegistrationResult(success=False, error=str(e) or "Network error")

        if response.is_error:
            logger.info(
                "Push token registration rejected: status=%s", response.status_code
            )
            return PushRegistrationResult(
                success=False, error=f"API error: {response.status_code}"
            )

        return PushRegistrationResult(success=True, token=device.push_token)

    async def unregister(self, user_id: str, device: DeviceInfo) -> None:
        """Remove the device token (best-effort, failures are logged)."""
        if not device.push_token:
            return
        try:
            response = await self._client().request(
                "DELETE",
                "/tokens",
                json={"user_id": user_id, "device_token": device.push_token},
            )
        except httpx.RequestError as e:
            logger.warning("Push token unregistration failed: %s", e)
            return
        if response.is_error:
            logger.warning(
                "Push token unregistration rejected: status=%s", response.status_code
            )


@lru_cache
def get_push_registrar() -> NotificationTokenApi:
    from shield.core.settings import get_settings

    settings = get_settings()
    return NotificationTokenApi(
        base_url=settings.push_api_base_url, app_version=settings.app_version
    )
