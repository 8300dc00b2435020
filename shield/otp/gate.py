"""OTP verification gate.

Decides between strict and sandbox validation and validates submitted codes.

Sandbox mode accepts any well-formed code and skips SMS delivery. It is only
reachable when all three signals agree:

1. ``DEBUG_BUILD`` from ``shield.core.build`` (``False`` in release artifacts)
2. the ``OTP_SANDBOX_MODE`` environment value is exactly ``"true"``
3. the build variant is not ``"production"``

When ``DEBUG_BUILD`` is false nothing else is consulted. The mode is
recomputed on every call and never cached.
"""

import hmac
import logging
import os
import re
import secrets
from dataclasses import dataclass
from enum import Enum

from shield.core import build
from shield.integrations.sms import DeliveryResult, SmsSender

logger = logging.getLogger(__name__)

OTP_LENGTH = 6
SANDBOX_OPT_IN_ENV = "OTP_SANDBOX_MODE"
PRODUCTION_VARIANT = "production"

_OTP_PATTERN = re.compile(r"[0-9]{6}")


class OtpMode(str, Enum):
    sandbox = "sandbox"
    production = "production"


@dataclass(frozen=True)
class OtpModeInfo:
    mode: OtpMode
    reason: str


def _read_sandbox_opt_in() -> str | None:
    return os.environ.get(SANDBOX_OPT_IN_ENV)


def _read_build_variant() -> str:
    return build.BUILD_VARIANT


def is_sandbox_mode() -> bool:
    if not build.DEBUG_BUILD:
        return False
    if _read_sandbox_opt_in() != "true":
        return False
    return _read_build_variant() != PRODUCTION_VARIANT


def get_otp_mode_info() -> OtpModeInfo:
    """Describe the current mode and why, for diagnostics only."""
    if not build.DEBUG_BUILD:
        return OtpModeInfo(OtpMode.production, "Release build")
    if _read_sandbox_opt_in() != "true":
        return OtpModeInfo(OtpMode.production, f"{SANDBOX_OPT_IN_ENV} is not enabled")
    if _read_build_variant() == PRODUCTION_VARIANT:
        return OtpModeInfo(OtpMode.production, "Production build variant")
    return OtpModeInfo(OtpMode.sandbox, "Debug build with sandbox opt-in")


def is_well_formed(code: object) -> bool:
    """Exactly six ASCII digits."""
    return isinstance(code, str) and _OTP_PATTERN.fullmatch(code) is not None


def validate_otp(entered: object, expected: str) -> bool:
    if not is_well_formed(entered):
        return False
    if is_sandbox_mode():
        logger.info("Sandbox mode: accepting any well-formed code", extra={"otp_mode": "sandbox"})
        return True
    return hmac.compare_digest(entered.encode(), expected.encode())


def should_send_sms() -> bool:
    return not is_sandbox_mode()


def generate_otp() -> str:
    return str(secrets.randbelow(900_000) + 100_000)


async def send_otp(phone: str, code: str, sender: SmsSender) -> DeliveryResult:
    """Deliver a code, or only log it in sandbox mode."""
    if not should_send_sms():
        logger.info(
            "Sandbox mode: not sending SMS to %s", _mask_phone(phone),
            extra={"otp_mode": "sandbox"},
        )
        return DeliveryResult(success=True)

    try:
        return await sender.send(phone, code)
    except Exception as e:
        logger.warning("SMS delivery raised: %s", type(e).__name__)
        return DeliveryResult(success=False, error="Failed to send verification code")


def _mask_phone(phone: str) -> str:
    return f"***{phone[-4:]}" if len(phone) > 4 else "***"
