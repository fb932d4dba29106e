"""Connection state machine for a messaging session.

``transition`` is a pure function of (status, event). It decides the next
status and the ordered list of effects the lifecycle controller must apply;
it performs no I/O.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Tuple

from otpgate.core.enums import SessionStatus, TransportEventKind


class Effect(str, Enum):
    """Side effects requested by a transition, applied in order."""

    CACHE_ARTIFACT = "cache_artifact"
    MARK_READY = "mark_ready"
    REVOKE_READY = "revoke_ready"
    CLEAR_ARTIFACT = "clear_artifact"
    STAMP_ACTIVITY = "stamp_activity"
    PERSIST_STATUS = "persist_status"
    RESOLVE_PENDING = "resolve_pending"
    CLEANUP = "cleanup"


@dataclass(frozen=True)
class Transition:
    """Outcome of applying one event to a status."""

    status: SessionStatus
    effects: Tuple[Effect, ...] = ()

    @property
    def ignored(self) -> bool:
        return not self.effects


_HANDSHAKE = (SessionStatus.INITIALIZING, SessionStatus.QR)
_BEFORE_READY = (SessionStatus.INITIALIZING, SessionStatus.QR, SessionStatus.AUTHENTICATED)

_TERMINAL_EFFECTS = (
    Effect.REVOKE_READY,
    Effect.PERSIST_STATUS,
    Effect.RESOLVE_PENDING,
    Effect.CLEANUP,
)


def transition(status: SessionStatus, event: TransportEventKind) -> Transition:
    """
    Apply a transport event to the current status.

    Rules:
        - pairing code while initializing or showing a code: ``qr``, artifact cached
          and mirrored, pending caller resolved with the artifact
        - authenticated while initializing or showing a code: ``authenticated``;
          the artifact stays visible until readiness
        - ready before readiness: ``ready``, flag set, artifact cleared, activity
          stamped, pending caller resolved
        - disconnected or auth failure from any non-terminal status: that status,
          persisted best-effort, then full cleanup
        - anything else, including every event after a terminal status, is ignored

    Args:
        status: Current status
        event: Incoming event kind

    Returns:
        Transition with the next status and ordered effects
    """
    if status.is_terminal:
        return Transition(status)

    if event == TransportEventKind.PAIRING_CODE and status in _HANDSHAKE:
        return Transition(
            SessionStatus.QR,
            (Effect.CACHE_ARTIFACT, Effect.PERSIST_STATUS, Effect.RESOLVE_PENDING),
        )

    if event == TransportEventKind.AUTHENTICATED and status in _HANDSHAKE:
        return Transition(SessionStatus.AUTHENTICATED, (Effect.PERSIST_STATUS,))

    if event == TransportEventKind.READY and status in _BEFORE_READY:
        return Transition(
            SessionStatus.READY,
            (
                Effect.MARK_READY,
                Effect.CLEAR_ARTIFACT,
                Effect.STAMP_ACTIVITY,
                Effect.PERSIST_STATUS,
                Effect.RESOLVE_PENDING,
            ),
        )

    if event == TransportEventKind.DISCONNECTED:
        return Transition(SessionStatus.DISCONNECTED, _TERMINAL_EFFECTS)

    if event == TransportEventKind.AUTH_FAILURE:
        return Transition(SessionStatus.AUTH_FAILURE, _TERMINAL_EFFECTS)

    return Transition(status)
