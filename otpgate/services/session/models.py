"""Data models returned by the session lifecycle."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from otpgate.core.enums import PairingOutcome, SessionStatus


@dataclass
class PairingResult:
    """Answer to a create/regenerate request."""

    status: PairingOutcome
    session_id: Optional[str] = None
    artifact: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "session_id": self.session_id,
            "status": self.status.value,
            "qr_code": self.artifact,
            "error": self.error,
        }


@dataclass
class SessionView:
    """Read model of a tenant's session for status polling."""

    session_id: str
    tenant_id: int
    status: SessionStatus
    artifact: Optional[str] = None
    last_activity: Optional[datetime] = None

    @property
    def is_connected(self) -> bool:
        return self.status == SessionStatus.READY

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "session_id": self.session_id,
            "tenant_id": self.tenant_id,
            "status": self.status.value,
            "qr_code": self.artifact,
            "is_connected": self.is_connected,
            "last_activity": self.last_activity.isoformat() if self.last_activity else None,
        }
