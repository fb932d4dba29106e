"""OTP models for the OTP Gateway web application."""

from typing import Optional

from pydantic import BaseModel, Field, field_validator


class SendOTPRequest(BaseModel):
    """Send a generated code through the caller's own session."""

    phone_number: str = Field(..., min_length=1, max_length=32)


class PublicSendOTPRequest(BaseModel):
    """Send a code through a session identified by its id."""

    phone_number: str = Field(..., min_length=1, max_length=32)
    session_id: str = Field(..., min_length=1)
    otp: Optional[str] = Field(default=None, max_length=12)
    message: Optional[str] = Field(default=None, max_length=4096)

    @field_validator("otp", "message")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        """Treat blank strings as absent."""
        if v is None or not v.strip():
            return None
        return v.strip()


class VerifyOTPRequest(BaseModel):
    """Verify a code for an address and session."""

    phone_number: str = Field(..., min_length=1, max_length=32)
    otp_code: str = Field(..., min_length=1, max_length=12)
    session_id: str = Field(..., min_length=1)


class SendOTPResponse(BaseModel):
    """Result of sending a code."""

    success: bool
    message: str
    session_id: str
    phone_number: str
    expires_at: Optional[str] = None
    otp_code: Optional[str] = None


class VerifyOTPResponse(BaseModel):
    """Result of a successful verification."""

    success: bool = True
    message: str = "OTP verified successfully"
