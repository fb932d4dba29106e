"""Centralized enum definitions for OTP Gateway."""

from enum import Enum


class SessionStatus(str, Enum):
    """Connection status values for a tenant messaging session."""

    INITIALIZING = "initializing"
    QR = "qr"
    AUTHENTICATED = "authenticated"
    READY = "ready"
    DISCONNECTED = "disconnected"
    AUTH_FAILURE = "auth_failure"

    @property
    def is_terminal(self) -> bool:
        """Terminal statuses end the session instance."""
        return self in (SessionStatus.DISCONNECTED, SessionStatus.AUTH_FAILURE)

    @property
    def shows_artifact(self) -> bool:
        """Statuses during which the pairing artifact is displayed."""
        return self in (SessionStatus.QR, SessionStatus.AUTHENTICATED)

    @classmethod
    def values(cls) -> list:
        """Return list of all enum values."""
        return [e.value for e in cls]


class PairingOutcome(str, Enum):
    """Result statuses returned to a caller that requested pairing."""

    QR = "qr"
    READY = "ready"
    TIMEOUT = "timeout"
    ERROR = "error"
    DISCONNECTED = "disconnected"
    AUTH_FAILURE = "auth_failure"

    @classmethod
    def values(cls) -> list:
        """Return list of all enum values."""
        return [e.value for e in cls]


class TransportEventKind(str, Enum):
    """Events emitted by the messaging transport during a session lifetime."""

    PAIRING_CODE = "qr"
    AUTHENTICATED = "authenticated"
    READY = "ready"
    AUTH_FAILURE = "auth_failure"
    DISCONNECTED = "disconnected"

    @classmethod
    def values(cls) -> list:
        """Return list of all enum values."""
        return [e.value for e in cls]


class ConnectionState(str, Enum):
    """Connection states reported by the messaging transport."""

    CONNECTED = "CONNECTED"
    OPENING = "OPENING"
    PAIRING = "PAIRING"
    UNPAIRED = "UNPAIRED"
    UNPAIRED_IDLE = "UNPAIRED_IDLE"
    UNLAUNCHED = "UNLAUNCHED"
    CONFLICT = "CONFLICT"
    TIMEOUT = "TIMEOUT"
    PROXYBLOCK = "PROXYBLOCK"
    TOS_BLOCK = "TOS_BLOCK"
    SMB_TOS_BLOCK = "SMB_TOS_BLOCK"
    DEPRECATED_VERSION = "DEPRECATED_VERSION"
    UNKNOWN = "UNKNOWN"

    @property
    def is_dead(self) -> bool:
        """States in which the session can no longer send without re-pairing."""
        return self in (
            ConnectionState.UNPAIRED,
            ConnectionState.UNPAIRED_IDLE,
            ConnectionState.UNLAUNCHED,
        )

    @classmethod
    def parse(cls, raw: str) -> "ConnectionState":
        """Map a raw transport state string, falling back to UNKNOWN."""
        try:
            return cls(str(raw).upper())
        except ValueError:
            return cls.UNKNOWN

    @classmethod
    def values(cls) -> list:
        """Return list of all enum values."""
        return [e.value for e in cls]


class MetricsStatus(str, Enum):
    """Status values for Prometheus metrics."""

    SUCCESS = "success"
    FAILED = "failed"

    @classmethod
    def values(cls) -> list:
        """Return list of all enum values."""
        return [e.value for e in cls]


class TenantRole(str, Enum):
    """Roles for tenant accounts."""

    SUPERADMIN = "superadmin"
    USER = "user"

    @classmethod
    def values(cls) -> list:
        """Return list of all enum values."""
        return [e.value for e in cls]
