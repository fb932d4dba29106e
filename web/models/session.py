"""Messaging session models for the OTP Gateway web application."""

from typing import Optional

from pydantic import BaseModel


class SessionInfo(BaseModel):
    """Current state of a tenant's messaging session."""

    session_id: str
    status: str
    qr_code: Optional[str] = None
    last_activity: Optional[str] = None


class SessionEnvelope(BaseModel):
    """Tenant session lookup; ``session`` is null when none exists."""

    session: Optional[SessionInfo] = None


class GenerateResponse(BaseModel):
    """Outcome of creating or regenerating a session."""

    session_id: Optional[str] = None
    status: str
    qr_code: Optional[str] = None
    error: Optional[str] = None


class SessionStatusRequest(BaseModel):
    """Public session status lookup."""

    session_id: str


class SessionStatusResponse(BaseModel):
    """Public session status."""

    exists: bool
    session_id: Optional[str] = None
    status: str
    is_connected: bool = False
    last_activity: Optional[str] = None
    tenant_id: Optional[int] = None
