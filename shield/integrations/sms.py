"""SMS collaborator for OTP delivery (Twilio)."""

import logging
from dataclasses import dataclass
from functools import lru_cache, partial
from typing import Protocol

import anyio
from twilio.base.exceptions import TwilioException
from twilio.rest import Client

logger = logging.getLogger(__name__)

MESSAGE_TEMPLATE = "Your Courial Shield verification code is {code}"


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    error: str | None = None


class SmsSender(Protocol):
    async def send(self, phone: str, code: str) -> DeliveryResult: ...


class TwilioSmsSender:
    """Sends OTP codes through the Twilio Messages API.

    The Twilio SDK is synchronous, so each send runs in a worker thread.
    """

    def __init__(
        self,
        account_sid: str | None,
        auth_token: str | None,
        from_number: str | None,
    ):
        self._account_sid = account_sid
        self._auth_token = auth_token
        self._from_number = from_number
        self._client: Client | None = None

    @property
    def is_configured(self) -> bool:
        return bool(self._account_sid and self._auth_token and self._from_number)

    def _get_client(self) -> Client:
        if self._client is None:
            self._client = Client(self._account_sid, self._auth_token)
        return self._client

    async def send(self, phone: str, code: str) -> DeliveryResult:
        if not self.is_configured:
            logger.warning("SMS disabled: Twilio credentials are not configured")
            return DeliveryResult(success=False, error="SMS provider not configured")

        create_message = partial(
            self._get_client().messages.create,
            body=MESSAGE_TEMPLATE.format(code=code),
            from_=self._from_number,
            to=phone,
        )
        try:
            message = await anyio.to_thread.run_sync(create_message)
        except (TwilioException, OSError) as e:
            logger.warning("Twilio send failed: %s", type(e).__name__)
            return DeliveryResult(
                success=False, error="Failed to send verification code"
            )

        if not message.sid:
            return DeliveryResult(
                success=False, error="Failed to send verification code"
            )
        return DeliveryResult(success=True)


@lru_cache
def get_sms_sender() -> TwilioSmsSender:
    from shield.core.settings import get_settings

    settings = get_settings()
    return TwilioSmsSender(
        account_sid=settings.twilio_account_sid,
        auth_token=settings.twilio_auth_token,
        from_number=settings.twilio_from_number,
    )
