"""Pydantic models for the OTP Gateway web application."""

from .auth import LoginRequest, TenantProfile, TokenResponse
from .otp import (
    PublicSendOTPRequest,
    SendOTPRequest,
    SendOTPResponse,
    VerifyOTPRequest,
    VerifyOTPResponse,
)
from .session import (
    GenerateResponse,
    SessionEnvelope,
    SessionInfo,
    SessionStatusRequest,
    SessionStatusResponse,
)

__all__ = [
    # Auth models
    "LoginRequest",
    "TenantProfile",
    "TokenResponse",
    # Session models
    "GenerateResponse",
    "SessionEnvelope",
    "SessionInfo",
    "SessionStatusRequest",
    "SessionStatusResponse",
    # OTP models
    "PublicSendOTPRequest",
    "SendOTPRequest",
    "SendOTPResponse",
    "VerifyOTPRequest",
    "VerifyOTPResponse",
]
