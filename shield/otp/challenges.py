"""Server-side OTP challenges.

Remembers the expected code per phone number with a TTL and a resend
cooldown. Validation itself always goes through the gate; a challenge is
consumed once it verifies.
"""

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from functools import lru_cache

from shield.integrations.sms import SmsSender
from shield.otp.exceptions import (
    InvalidOtpFormatError,
    ResendCooldownError,
    SmsDeliveryError,
    TooManyAttemptsError,
)
from shield.otp.gate import generate_otp, is_well_formed, send_otp, validate_otp

logger = logging.getLogger(__name__)

MAX_VERIFY_ATTEMPTS = 5


@dataclass
class Challenge:
    code: str
    expires_at: float
    resend_at: float
    attempts: int = 0


@dataclass(frozen=True)
class IssuedChallenge:
    expires_in: int
    resend_in: int


class OtpChallengeStore:
    """In-process store of pending challenges keyed by phone number."""

    def __init__(
        self,
        ttl_seconds: int = 600,
        resend_cooldown_seconds: int = 60,
        max_attempts: int = MAX_VERIFY_ATTEMPTS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttl = ttl_seconds
        self._cooldown = resend_cooldown_seconds
        self._max_attempts = max_attempts
        self._clock = clock
        self._challenges: dict[str, Challenge] = {}

    def _live(self, phone: str) -> Challenge | None:
        challenge = self._challenges.get(phone)
        if challenge is None:
            return None
        if challenge.expires_at <= self._clock():
            del self._challenges[phone]
            return None
        return challenge

    async def issue(self, phone: str, sender: SmsSender) -> IssuedChallenge:
        """Generate and deliver a new code for phone.

        The new challenge is stored before the SMS goes out, so a second
        request for the same phone hits the cooldown instead of sending
        another code. A failed delivery restores the previous challenge.

        Raises:
            ResendCooldownError: A code was sent too recently
            SmsDeliveryError: The SMS provider rejected the message
        """
        now = self._clock()
        previous = self._live(phone)
        if previous is not None and now < previous.resend_at:
            raise ResendCooldownError(retry_after=math.ceil(previous.resend_at - now))

        challenge = Challenge(
            code=generate_otp(),
            expires_at=now + self._ttl,
            resend_at=now + self._cooldown,
        )
        self._challenges[phone] = challenge

        result = await send_otp(phone, challenge.code, sender)
        if not result.success:
            if self._challenges.get(phone) is challenge:
                if previous is None:
                    del self._challenges[phone]
                else:
                    self._challenges[phone] = previous
            raise SmsDeliveryError(result.error or "Failed to send verification code")

        return IssuedChallenge(expires_in=self._ttl, resend_in=self._cooldown)

    def verify(self, phone: str, code: str) -> bool:
        """Check code against the pending challenge for phone.

        A challenge is dropped after ``max_attempts`` wrong codes.

        Raises:
            InvalidOtpFormatError: code is not exactly six digits
            TooManyAttemptsError: This guess used up the last attempt
        """
        if not is_well_formed(code):
            raise InvalidOtpFormatError()

        challenge = self._live(phone)
        expected = challenge.code if challenge is not None else ""
        if validate_otp(code, expected):
            self._challenges.pop(phone, None)
            return True

        logger.info("OTP rejected")
        if challenge is not None:
            challenge.attempts += 1
            if challenge.attempts >= self._max_attempts:
                self._challenges.pop(phone, None)
                raise TooManyAttemptsError()
        return False

    def clear(self) -> None:
        self._challenges.clear()


@lru_cache
def get_challenge_store() -> OtpChallengeStore:
    from shield.core.settings import get_settings

    settings = get_settings()
    return OtpChallengeStore(
        ttl_seconds=settings.otp_ttl_seconds,
        resend_cooldown_seconds=settings.otp_resend_cooldown_seconds,
        max_attempts=settings.otp_max_attempts,
    )
