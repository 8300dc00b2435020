"""OTP domain router.

Issues and verifies phone verification codes.
"""

from fastapi import APIRouter

from shield.core.constants import CommonResponses, Routes
from shield.core.deps import ChallengeStoreDep, SmsSenderDep
from shield.otp.schemas import (
    OtpSendRequest,
    OtpSendResponse,
    OtpVerifyRequest,
    OtpVerifyResponse,
)

router = APIRouter(prefix=Routes.OTP.prefix, tags=[Routes.OTP.tag])


@router.post(
    "/send",
    response_model=OtpSendResponse,
    responses={**CommonResponses.RATE_LIMITED, **CommonResponses.UPSTREAM_ERROR},
)
async def send_code(
    body: OtpSendRequest, challenges: ChallengeStoreDep, sender: SmsSenderDep
):
    """Send a new verification code to a phone number."""
    issued = await challenges.issue(body.phone, sender)
    return OtpSendResponse(
        sent=True, expires_in=issued.expires_in, resend_in=issued.resend_in
    )


@router.post(
    "/verify",
    response_model=OtpVerifyResponse,
    responses={**CommonResponses.BAD_REQUEST, **CommonResponses.RATE_LIMITED},
)
async def verify_code(body: OtpVerifyRequest, challenges: ChallengeStoreDep):
    """Verify a code against the pending challenge."""
    return OtpVerifyResponse(verified=challenges.verify(body.phone, body.code))

