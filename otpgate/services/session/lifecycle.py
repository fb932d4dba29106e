"""Session lifecycle controller.

Drives each tenant session from creation through pairing to ready or a
terminal status. Every mutation for a session identifier happens while
holding ``registry.lock(session_id)``; transport events are consumed by one
task per session instance and applied through the pure state machine.
"""

import asyncio
import contextlib
import uuid
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Dict, Optional, Set

from loguru import logger

from otpgate.core.enums import ConnectionState, PairingOutcome, SessionStatus
from otpgate.core.exceptions import SessionNotReadyError
from otpgate.repositories.session_repository import SessionRepository
from otpgate.services.session.cleanup import CleanupService
from otpgate.services.session.models import PairingResult, SessionView
from otpgate.services.session.pairing import encode_pairing_artifact
from otpgate.services.session.registry import SessionEntry, SessionRegistry
from otpgate.services.session.state_machine import Effect, transition
from otpgate.services.transport.base import MessagingTransport, TransportEvent
from otpgate.utils.masking import mask_address
from otpgate.utils.prometheus_metrics import metrics_helper

_OUTCOME_BY_STATUS = {
    SessionStatus.QR: PairingOutcome.QR,
    SessionStatus.READY: PairingOutcome.READY,
    SessionStatus.DISCONNECTED: PairingOutcome.DISCONNECTED,
    SessionStatus.AUTH_FAILURE: PairingOutcome.AUTH_FAILURE,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionLifecycleController:
    """Creates, regenerates, observes and reclaims tenant messaging sessions."""

    def __init__(
        self,
        registry: SessionRegistry,
        transport: MessagingTransport,
        sessions: SessionRepository,
        cleanup: CleanupService,
        pairing_timeout: float = 30.0,
        state_query_timeout: float = 5.0,
        encoder: Callable[[str], str] = encode_pairing_artifact,
    ):
        """
        Initialize lifecycle controller.

        Args:
            registry: Session registry
            transport: Messaging transport
            sessions: Durable session storage
            cleanup: Cleanup service
            pairing_timeout: Bounded wait for a pairing code or readiness
            state_query_timeout: Bounded wait for a connection state query
            encoder: Turns a raw pairing payload into a displayable artifact
        """
        self.registry = registry
        self.transport = transport
        self.sessions = sessions
        self.cleanup = cleanup
        self.pairing_timeout = pairing_timeout
        self.state_query_timeout = state_query_timeout
        self._encoder = encoder
        self._background: Set["asyncio.Task[Any]"] = set()

    async def generate(self, tenant_id: int) -> PairingResult:
        """
        Create or regenerate the tenant's session and wait for the first pairing outcome.

        Never raises: transport and storage failures come back as an ``error``
        result, and a pairing that produces neither a code nor readiness in
        time comes back as ``timeout`` while the session keeps running.

        Args:
            tenant_id: Owning tenant

        Returns:
            PairingResult
        """
        try:
            entry = await self._start(tenant_id)
        except Exception as e:
            logger.error(f"Pairing for tenant {tenant_id} failed to start: {e}")
            metrics_helper.record_pairing_result(PairingOutcome.ERROR.value)
            return PairingResult(status=PairingOutcome.ERROR, error=str(e))

        result = await self._await_pairing(entry)
        metrics_helper.record_pairing_result(result.status.value)
        return result

    async def _start(self, tenant_id: int) -> SessionEntry:
        # Serializes concurrent generate calls of one tenant before an id exists
        async with self.registry.lock(f"tenant:{tenant_id}"):
            existing = await self.sessions.find_by_tenant(tenant_id)
            session_id = existing.session_id if existing else str(uuid.uuid4())

            async with self.registry.lock(session_id):
                now = _utcnow()
                kept = False
                if existing:
                    await self.cleanup.destroy_session(session_id)
                    # The row may have been reclaimed while waiting for the lock
                    kept = await self.sessions.update(
                        session_id,
                        {
                            "status": SessionStatus.INITIALIZING,
                            "pairing_artifact": None,
                            "last_activity": now,
                        },
                    )
                if kept:
                    logger.info(f"Regenerating session {session_id} for tenant {tenant_id}")
                else:
                    await self.sessions.create(
                        {
                            "session_id": session_id,
                            "tenant_id": tenant_id,
                            "status": SessionStatus.INITIALIZING,
                            "last_activity": now,
                        }
                    )
                    logger.info(f"Created session {session_id} for tenant {tenant_id}")

                entry = SessionEntry(
                    session_id=session_id,
                    tenant_id=tenant_id,
                    last_activity=now,
                    pending=asyncio.get_running_loop().create_future(),
                )
                self.registry.register(entry)
                metrics_helper.record_transition(SessionStatus.INITIALIZING.value)

                try:
                    events = await self.transport.initiate_pairing(session_id)
                except Exception:
                    self.registry.remove(session_id)
                    await self._persist(
                        session_id, {"status": SessionStatus.DISCONNECTED, "pairing_artifact": None}
                    )
                    raise

                entry.consumer = asyncio.create_task(
                    self._consume(entry, events), name=f"session-events-{session_id}"
                )
                return entry

    async def _await_pairing(self, entry: SessionEntry) -> PairingResult:
        if entry.pending is None:
            return PairingResult(status=PairingOutcome.ERROR, session_id=entry.session_id)
        try:
            # shield: the timeout releases the caller without cancelling the lifecycle
            return await asyncio.wait_for(asyncio.shield(entry.pending), self.pairing_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Session {entry.session_id} produced no pairing code within "
                f"{self.pairing_timeout}s; pairing continues in background"
            )
            return PairingResult(status=PairingOutcome.TIMEOUT, session_id=entry.session_id)

    async def _consume(self, entry: SessionEntry, events: AsyncIterator[TransportEvent]) -> None:
        """Feed one session instance's transport events through the state machine."""
        try:
            async for event in events:
                if await self._apply(entry, event):
                    return
            reason = "event stream closed"
        except Exception as e:
            reason = f"event stream failed: {e}"
        finally:
            aclose = getattr(events, "aclose", None)
            if aclose is not None:
                with contextlib.suppress(Exception):
                    await aclose()

        logger.warning(f"Session {entry.session_id}: {reason}")
        await self._apply(entry, TransportEvent.disconnected(reason))

    async def _apply(self, entry: SessionEntry, event: TransportEvent) -> bool:
        """
        Apply one event to a session instance under its lock.

        Returns:
            True once the instance is finished (terminal or superseded)
        """
        async with self.registry.lock(entry.session_id):
            if self.registry.get(entry.session_id) is not entry:
                logger.debug(f"Dropping {event.kind.value} for superseded {entry.session_id}")
                return True

            step = transition(entry.status, event.kind)
            if step.ignored:
                logger.debug(
                    f"Session {entry.session_id} ignored {event.kind.value} "
                    f"in status {entry.status.value}"
                )
                return entry.status.is_terminal

            previous = entry.status
            entry.status = step.status
            metrics_helper.record_transition(step.status.value)
            log = logger.warning if step.status.is_terminal else logger.info
            log(
                f"Session {entry.session_id}: {previous.value} -> {step.status.value}"
                + (f" ({event.reason})" if event.reason else "")
            )

            changes: Dict[str, Any] = {"status": step.status}
            for effect in step.effects:
                if effect == Effect.CACHE_ARTIFACT:
                    entry.artifact = await asyncio.to_thread(self._encoder, event.payload or "")
                    changes["pairing_artifact"] = entry.artifact
                elif effect == Effect.MARK_READY:
                    entry.ready = True
                elif effect == Effect.REVOKE_READY:
                    entry.ready = False
                elif effect == Effect.CLEAR_ARTIFACT:
                    entry.artifact = None
                    changes["pairing_artifact"] = None
                elif effect == Effect.STAMP_ACTIVITY:
                    entry.last_activity = _utcnow()
                    changes["last_activity"] = entry.last_activity
                elif effect == Effect.PERSIST_STATUS:
                    await self._persist(entry.session_id, changes)
                elif effect == Effect.RESOLVE_PENDING:
                    entry.resolve(
                        PairingResult(
                            status=_OUTCOME_BY_STATUS[step.status],
                            session_id=entry.session_id,
                            artifact=entry.artifact if step.status == SessionStatus.QR else None,
                        )
                    )
                elif effect == Effect.CLEANUP:
                    await self.cleanup.cleanup_disconnected(entry.session_id)

            return step.status.is_terminal

    async def _persist(self, session_id: str, changes: Dict[str, Any]) -> None:
        """Mirror changes to durable storage; failures are logged and swallowed."""
        try:
            await self.sessions.update(session_id, changes)
        except Exception as e:
            logger.warning(f"Failed to persist session {session_id} ({sorted(changes)}): {e}")

    async def get_status(self, session_id: str) -> SessionStatus:
        """
        Current status of a session.

        Ready sessions are checked against the transport's authoritative
        connection state; durable storage is reconciled in the background when
        it disagrees. Query failures yield the last known status.

        Args:
            session_id: Session identifier

        Returns:
            SessionStatus (``disconnected`` when no live instance exists)
        """
        entry = self.registry.get(session_id)
        if entry is None:
            return SessionStatus.DISCONNECTED
        if not entry.ready:
            return entry.status

        try:
            state = await asyncio.wait_for(
                self.transport.query_state(session_id), self.state_query_timeout
            )
        except Exception as e:
            logger.debug(f"State query for {session_id} failed, using last known status: {e}")
            return entry.status

        if state == ConnectionState.CONNECTED:
            return SessionStatus.READY
        if state.is_dead:
            return SessionStatus.DISCONNECTED
        return entry.status

    async def get_session_for_tenant(self, tenant_id: int) -> Optional[SessionView]:
        """
        Read model of the tenant's session, or None when the tenant has no session.

        Args:
            tenant_id: Owning tenant
        """
        record = await self.sessions.find_by_tenant(tenant_id)
        if record is None:
            return None
        return await self._view(
            record.session_id, record.tenant_id, record.status, record.last_activity
        )

    async def get_session_by_id(self, session_id: str) -> Optional[SessionView]:
        """
        Read model of a session by identifier, or None when no row exists.

        Args:
            session_id: Session identifier
        """
        record = await self.sessions.get_by_id(session_id)
        if record is None:
            return None
        return await self._view(
            record.session_id, record.tenant_id, record.status, record.last_activity
        )

    async def _view(
        self,
        session_id: str,
        tenant_id: int,
        durable_status: SessionStatus,
        durable_activity: Optional[datetime],
    ) -> SessionView:
        status = await self.get_status(session_id)
        if status != durable_status:
            self._spawn(self._reconcile(session_id, status))

        entry = self.registry.get(session_id)
        artifact = entry.artifact if entry is not None and status.shows_artifact else None
        last_activity = entry.last_activity if entry is not None else durable_activity
        return SessionView(
            session_id=session_id,
            tenant_id=tenant_id,
            status=status,
            artifact=artifact,
            last_activity=last_activity or durable_activity,
        )

    async def _reconcile(self, session_id: str, status: SessionStatus) -> None:
        async with self.registry.lock(session_id):
            entry = self.registry.get(session_id)
            # A live instance may have moved on since the read
            if entry is not None and entry.status != status and not entry.ready:
                return
            await self._persist(session_id, {"status": status})

    def _spawn(self, coro: Any) -> "asyncio.Task[Any]":
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def send_message(self, session_id: str, address: str, text: str) -> bool:
        """
        Send text through a ready session.

        Args:
            session_id: Session identifier
            address: Normalized address
            text: Message body

        Returns:
            True if the transport accepted the message

        Raises:
            SessionNotReadyError: If the session is not ready
        """
        entry = self.registry.get(session_id)
        if entry is None or not entry.ready:
            status = entry.status if entry is not None else SessionStatus.DISCONNECTED
            raise SessionNotReadyError(status.value)

        try:
            delivered = await self.transport.send(session_id, address, text)
        except Exception as e:
            logger.error(f"Send via {session_id} to {mask_address(address)} failed: {e}")
            return False

        if delivered:
            entry.last_activity = _utcnow()
            self._spawn(self._persist(session_id, {"last_activity": entry.last_activity}))
        return delivered

    async def reclaim_unhealthy(self, entry: SessionEntry, reason: str) -> bool:
        """
        Route an unhealthy session through the unexpected-disconnect path.

        Args:
            entry: Entry observed as unhealthy; ignored if it was replaced since
            reason: Reason recorded with the transition

        Returns:
            True if the entry was still live and got reclaimed
        """
        if self.registry.get(entry.session_id) is not entry:
            return False
        finished = await self._apply(entry, TransportEvent.disconnected(reason))
        return finished and entry.status.is_terminal

    async def close_tenant(self, tenant_id: int) -> bool:
        """
        Tear down a tenant's session and drop its durable row.

        Used when the tenant account itself is removed.

        Returns:
            True if the tenant had a session
        """
        async with self.registry.lock(f"tenant:{tenant_id}"):
            existing = await self.sessions.find_by_tenant(tenant_id)
            if existing is None:
                return False
            session_id = existing.session_id
            async with self.registry.lock(session_id):
                if self.registry.get(session_id) is not None:
                    await self.cleanup.destroy_session(session_id)
                await self.sessions.delete(session_id)
        logger.info(f"Closed session {session_id} of removed tenant {tenant_id}")
        return True

    async def shutdown(self) -> None:
        """Destroy every live session and drain background work."""
        for entry in self.registry.snapshot():
            async with self.registry.lock(entry.session_id):
                if self.registry.get(entry.session_id) is entry:
                    await self.cleanup.destroy_session(entry.session_id)
        await self.wait_idle()

    async def wait_idle(self) -> None:
        """Wait for background reconciliation writes to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
