"""OTP issuance and verification."""

from .service import IssueResult, OTPService

__all__ = ["IssueResult", "OTPService"]
