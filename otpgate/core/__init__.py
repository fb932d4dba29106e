"""Core infrastructure module."""

from .enums import ConnectionState, PairingOutcome, SessionStatus, TransportEventKind
from .exceptions import (
    AuthenticationError,
    ConfigurationError,
    DatabaseNotConnectedError,
    InvalidCodeError,
    OTPExpiredError,
    OTPGatewayError,
    PairingTimeoutError,
    ResourceBusyError,
    SessionNotFoundError,
    SessionNotReadyError,
    TransportError,
)

__all__ = [
    "ConnectionState",
    "PairingOutcome",
    "SessionStatus",
    "TransportEventKind",
    "OTPGatewayError",
    "SessionNotReadyError",
    "SessionNotFoundError",
    "PairingTimeoutError",
    "TransportError",
    "ResourceBusyError",
    "InvalidCodeError",
    "OTPExpiredError",
    "AuthenticationError",
    "DatabaseNotConnectedError",
    "ConfigurationError",
]
