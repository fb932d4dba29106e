"""Messaging session lifecycle: registry, state machine, cleanup and health monitoring."""

from .cleanup import CleanupService
from .health_monitor import SessionHealthMonitor
from .lifecycle import SessionLifecycleController
from .models import PairingResult, SessionView
from .registry import SessionEntry, SessionRegistry
from .state_machine import Effect, Transition, transition

__all__ = [
    "CleanupService",
    "SessionHealthMonitor",
    "SessionLifecycleController",
    "PairingResult",
    "SessionView",
    "SessionEntry",
    "SessionRegistry",
    "Effect",
    "Transition",
    "transition",
]
