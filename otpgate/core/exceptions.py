"""Custom exception classes for OTP Gateway."""

from datetime import datetime, timezone
from typing import Any, Dict, Optional


class OTPGatewayError(Exception):
    """Base exception for OTP Gateway."""

    def __init__(
        self, message: str, recoverable: bool = True, details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize OTP Gateway error.

        Args:
            message: Error message
            recoverable: Whether the error is recoverable with retry
            details: Additional error details
        """
        self.message = message
        self.recoverable = recoverable
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "recoverable": self.recoverable,
            "details": self.details,
            "timestamp": self.timestamp,
        }


class SessionError(OTPGatewayError):
    """Messaging session error."""

    def __init__(
        self,
        message: str = "Session error occurred",
        recoverable: bool = True,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, recoverable, details)


class SessionNotReadyError(SessionError):
    """Session cannot send messages in its current state."""

    def __init__(self, current_status: str, message: Optional[str] = None):
        """
        Initialize session not ready error.

        Args:
            current_status: Status the session reported at the time of the call
            message: Optional override message
        """
        self.current_status = current_status
        super().__init__(
            message or f"Messaging session is not ready (status: {current_status})",
            recoverable=True,
            details={"status": current_status},
        )


class SessionNotFoundError(SessionError):
    """No session exists for the given identifier or tenant."""

    def __init__(self, message: str = "Session not found", session_id: Optional[str] = None):
        details = {"session_id": session_id} if session_id else {}
        super().__init__(message, recoverable=False, details=details)


class PairingTimeoutError(SessionError):
    """Pairing produced neither a code nor readiness within the bounded wait."""

    def __init__(self, message: str = "Pairing timed out", timeout: Optional[float] = None):
        details = {"timeout": timeout} if timeout else {}
        super().__init__(message, recoverable=True, details=details)


class TransportError(OTPGatewayError):
    """Messaging transport call failed."""

    def __init__(
        self,
        message: str = "Messaging transport error",
        recoverable: bool = True,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, recoverable, details)


class ResourceBusyError(OTPGatewayError):
    """On-disk session resource is still held open and cannot be removed yet."""

    def __init__(self, path: str, message: Optional[str] = None):
        self.path = path
        super().__init__(
            message or f"Resource busy: {path}", recoverable=True, details={"path": path}
        )


class OTPError(OTPGatewayError):
    """OTP verification error."""

    def __init__(
        self,
        message: str = "OTP error occurred",
        recoverable: bool = False,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, recoverable, details)


class InvalidCodeError(OTPError):
    """No unused record matches the submitted code."""

    def __init__(self, message: str = "Invalid OTP code"):
        super().__init__(message)


class OTPExpiredError(OTPError):
    """Matching record was found but its expiry has passed."""

    def __init__(self, message: str = "OTP code has expired"):
        super().__init__(message)


class AuthenticationError(OTPGatewayError):
    """Tenant authentication failed."""

    def __init__(self, message: str = "Incorrect username or password"):
        super().__init__(message, recoverable=False)


class DatabaseError(OTPGatewayError):
    """Database operation error."""

    def __init__(self, message: str = "Database error occurred", recoverable: bool = True):
        super().__init__(message, recoverable)


class DatabaseNotConnectedError(DatabaseError):
    """Database connection is not established."""

    def __init__(self, message: str = "Database connection is not established"):
        super().__init__(message, recoverable=False)


class DatabasePoolTimeoutError(DatabaseError):
    """Database connection pool exhausted."""

    def __init__(self, timeout: float, pool_size: int):
        self.timeout = timeout
        self.pool_size = pool_size
        super().__init__(
            f"Database connection pool exhausted (timeout: {timeout}s, pool_size: {pool_size})",
            recoverable=True,
        )


class ConfigurationError(OTPGatewayError):
    """Configuration error."""

    def __init__(self, message: str = "Configuration error", recoverable: bool = False):
        super().__init__(message, recoverable)
