"""OTP domain schemas."""

from pydantic import BaseModel, Field


class OtpSendRequest(BaseModel):
    """Request schema for issuing a code. Phone numbers are E.164."""

    phone: str = Field(pattern=r"^\+[1-9][0-9]{6,14}$")


class OtpSendResponse(BaseModel):
    sent: bool
    expires_in: int
    resend_in: int


class OtpVerifyRequest(BaseModel):
    phone: str = Field(pattern=r"^\+[1-9][0-9]{6,14}$")
    # Format is checked by the gate so malformed codes map to invalid_otp_format.
    code: str = Field(max_length=32)


class OtpVerifyResponse(BaseModel):
    verified: bool

