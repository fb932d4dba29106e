"""Repository pattern implementation."""

from .base import BaseRepository
from .otp_repository import OTPRecord, OTPRepository
from .session_repository import SessionRecord, SessionRepository
from .tenant_repository import Tenant, TenantRepository

__all__ = [
    "BaseRepository",
    "OTPRecord",
    "OTPRepository",
    "SessionRecord",
    "SessionRepository",
    "Tenant",
    "TenantRepository",
]
