"""Session registry for live messaging sessions.

The registry is the single in-process authority over which sessions are live.
It is constructed once at startup and injected into the lifecycle controller,
the cleanup service and the health monitor.
"""

import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from loguru import logger

from otpgate.core.enums import SessionStatus
from otpgate.utils.prometheus_metrics import metrics_helper


@dataclass
class SessionEntry:
    """In-memory state of one live session instance."""

    session_id: str
    tenant_id: int
    status: SessionStatus = SessionStatus.INITIALIZING
    ready: bool = False
    artifact: Optional[str] = None
    last_activity: Optional[datetime] = None
    pending: Optional["asyncio.Future[Any]"] = None
    consumer: Optional["asyncio.Task[None]"] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def resolve(self, result: Any) -> bool:
        """
        Resolve the caller's pending pairing request if it is still waiting.

        Returns:
            True if this call resolved it
        """
        if self.pending is None or self.pending.done():
            return False
        self.pending.set_result(result)
        return True


class SessionRegistry:
    """Mapping of session identifier to live entry, with per-identifier locks."""

    def __init__(self) -> None:
        self._entries: Dict[str, SessionEntry] = {}
        # Locks are never discarded so that every waiter on an id shares one lock
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def lock(self, key: str) -> asyncio.Lock:
        """
        Get the critical-section lock for a session identifier.

        Every operation that mutates the entry, durable row or on-disk
        artifacts of a session holds this lock.

        Args:
            key: Session identifier (or another namespaced key)

        Returns:
            asyncio.Lock shared by all callers using the same key
        """
        return self._locks[key]

    def register(self, entry: SessionEntry) -> None:
        """
        Register a live entry.

        Args:
            entry: Entry to register

        Raises:
            ValueError: If an entry is already registered for the identifier
        """
        if entry.session_id in self._entries:
            raise ValueError(f"Session {entry.session_id} is already registered")
        self._entries[entry.session_id] = entry
        metrics_helper.set_live_sessions(len(self._entries))
        logger.info(f"Session registered: {entry.session_id} (tenant {entry.tenant_id})")

    def get(self, session_id: str) -> Optional[SessionEntry]:
        """Get the live entry for an identifier."""
        return self._entries.get(session_id)

    def remove(self, session_id: str) -> Optional[SessionEntry]:
        """
        Remove the live entry for an identifier.

        Returns:
            The removed entry, or None if none was registered
        """
        entry = self._entries.pop(session_id, None)
        if entry is not None:
            metrics_helper.set_live_sessions(len(self._entries))
            logger.info(f"Session unregistered: {session_id}")
        return entry

    def snapshot(self) -> List[SessionEntry]:
        """Entries registered at the time of the call."""
        return list(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._entries
