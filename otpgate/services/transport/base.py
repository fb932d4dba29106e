"""Messaging transport contract consumed by the session lifecycle."""

from dataclasses import dataclass
from typing import AsyncIterator, Optional, Protocol, runtime_checkable

from otpgate.core.enums import ConnectionState, TransportEventKind


@dataclass(frozen=True)
class TransportEvent:
    """
    One event from a session's pairing stream.

    Attributes:
        kind: Event type
        payload: Raw pairing payload for PAIRING_CODE events
        reason: Reason string for AUTH_FAILURE and DISCONNECTED events
    """

    kind: TransportEventKind
    payload: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def pairing_code(cls, payload: str) -> "TransportEvent":
        return cls(TransportEventKind.PAIRING_CODE, payload=payload)

    @classmethod
    def authenticated(cls) -> "TransportEvent":
        return cls(TransportEventKind.AUTHENTICATED)

    @classmethod
    def ready(cls) -> "TransportEvent":
        return cls(TransportEventKind.READY)

    @classmethod
    def auth_failure(cls, reason: str = "") -> "TransportEvent":
        return cls(TransportEventKind.AUTH_FAILURE, reason=reason)

    @classmethod
    def disconnected(cls, reason: str = "") -> "TransportEvent":
        return cls(TransportEventKind.DISCONNECTED, reason=reason)


@runtime_checkable
class MessagingTransport(Protocol):
    """
    Opaque messaging capability: pair via scannable code, send text, report
    connection state, tear down.

    Implementations wrap their own failures in ``TransportError``.
    """

    async def initiate_pairing(self, session_id: str) -> AsyncIterator[TransportEvent]:
        """
        Start pairing for a session.

        Returns once the transport accepted the request; the returned iterator
        yields lifecycle events until the session ends.
        """
        ...

    async def query_state(self, session_id: str) -> ConnectionState:
        """Report the authoritative connection state of a session."""
        ...

    async def send(self, session_id: str, address: str, text: str) -> bool:
        """Send text to a normalized address; True when the transport accepted it."""
        ...

    async def shutdown(self, session_id: str, timeout: float) -> None:
        """Tear down a session's transport-level state."""
        ...

    async def close(self) -> None:
        """Release client resources held by the transport itself."""
        ...
