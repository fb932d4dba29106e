"""Reclamation of in-memory, durable and on-disk resources of ended sessions."""

import asyncio
import errno
import shutil
from pathlib import Path
from typing import Dict, Optional

from loguru import logger

from otpgate.core.enums import PairingOutcome
from otpgate.core.exceptions import ResourceBusyError
from otpgate.core.retry import RetryPolicy, get_reclaim_policy
from otpgate.repositories.session_repository import SessionRepository
from otpgate.services.session.models import PairingResult
from otpgate.services.session.registry import SessionEntry, SessionRegistry
from otpgate.services.transport.base import MessagingTransport
from otpgate.utils.prometheus_metrics import metrics_helper

# OS errors meaning "still held open by the transport process"
BUSY_ERRNOS = frozenset({errno.EBUSY, errno.ENOTEMPTY, errno.EACCES, errno.EPERM})


class CleanupService:
    """
    Reclaims resources for sessions that ended or are being replaced.

    ``cleanup_disconnected`` and ``destroy_session`` expect the caller to hold
    ``registry.lock(session_id)``. On-disk reclamation runs in background tasks
    and never raises to anyone.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        sessions: SessionRepository,
        transport: MessagingTransport,
        sessions_dir: str = ".sessions",
        shutdown_timeout: float = 5.0,
        immediate_attempts: int = 3,
        backoff_seconds: float = 1.0,
        deferred_attempts: int = 3,
        deferred_interval: float = 60.0,
        disconnect_delay: float = 0.5,
        destroy_delay: float = 2.0,
    ):
        """
        Initialize cleanup service.

        Args:
            registry: Session registry
            sessions: Durable session storage
            transport: Messaging transport
            sessions_dir: Root of per-session on-disk artifacts
            shutdown_timeout: Bounded wait for graceful transport shutdown
            immediate_attempts: Removal attempts before deferring
            backoff_seconds: Delay before the first immediate retry (doubles each time)
            deferred_attempts: Deferred removal attempts after immediate ones fail
            deferred_interval: Delay between deferred attempts
            disconnect_delay: Delay before reclaiming files after a disconnect
            destroy_delay: Delay before reclaiming files after a manual destroy
        """
        self.registry = registry
        self.sessions = sessions
        self.transport = transport
        self.sessions_dir = Path(sessions_dir)
        self.shutdown_timeout = shutdown_timeout
        self.deferred_attempts = deferred_attempts
        self.deferred_interval = deferred_interval
        self.disconnect_delay = disconnect_delay
        self.destroy_delay = destroy_delay
        self._policy: RetryPolicy = get_reclaim_policy(
            attempts=immediate_attempts, base_delay=backoff_seconds
        )
        self._reclaims: Dict[str, "asyncio.Task[bool]"] = {}

    def session_path(self, session_id: str) -> Path:
        """On-disk artifact directory of a session."""
        return self.sessions_dir / f"session-{session_id}"

    async def cleanup_disconnected(self, session_id: str) -> None:
        """
        Tear down a session that ended on its own (disconnect, auth failure, unhealthy).

        Removes the registry entry, shuts the transport down best-effort,
        deletes the durable row and schedules on-disk reclamation.

        Args:
            session_id: Session identifier
        """
        self._release_entry(self.registry.remove(session_id), PairingOutcome.DISCONNECTED)
        await self._shutdown_transport(session_id)

        try:
            await self.sessions.delete(session_id)
        except Exception as e:
            metrics_helper.record_cleanup_failure("row")
            logger.error(f"Failed to delete session row {session_id}: {e}")

        self.schedule_reclaim(session_id, self.disconnect_delay)
        logger.info(f"Session {session_id} cleaned up after disconnect")

    async def destroy_session(self, session_id: str) -> None:
        """
        Tear down a live session before regeneration or at shutdown.

        The durable row is kept. The registry entry is always removed, even
        when the transport shutdown fails or times out.

        Args:
            session_id: Session identifier
        """
        try:
            await self._shutdown_transport(session_id)
        finally:
            self._release_entry(self.registry.remove(session_id), PairingOutcome.DISCONNECTED)
        self.schedule_reclaim(session_id, self.destroy_delay)

    def _release_entry(self, entry: Optional[SessionEntry], outcome: PairingOutcome) -> None:
        if entry is None:
            return
        entry.ready = False
        entry.resolve(PairingResult(status=outcome, session_id=entry.session_id))
        consumer = entry.consumer
        if consumer is not None and not consumer.done() and consumer is not asyncio.current_task():
            consumer.cancel()

    async def _shutdown_transport(self, session_id: str) -> None:
        try:
            await asyncio.wait_for(
                self.transport.shutdown(session_id, self.shutdown_timeout),
                timeout=self.shutdown_timeout,
            )
        except asyncio.TimeoutError:
            metrics_helper.record_cleanup_failure("shutdown")
            logger.warning(
                f"Transport shutdown for {session_id} timed out after {self.shutdown_timeout}s"
            )
        except Exception as e:
            metrics_helper.record_cleanup_failure("shutdown")
            logger.warning(f"Transport shutdown for {session_id} failed: {e}")

    def schedule_reclaim(self, session_id: str, delay: float) -> "asyncio.Task[bool]":
        """
        Schedule on-disk reclamation without blocking the caller.

        A reclaim already pending for the same identifier is replaced.

        Args:
            session_id: Session identifier
            delay: Seconds to wait before the first attempt

        Returns:
            The reclaim task (result True once the directory is gone)
        """
        previous = self._reclaims.pop(session_id, None)
        if previous is not None and not previous.done():
            previous.cancel()

        task = asyncio.create_task(
            self._reclaim_files(session_id, delay), name=f"reclaim-{session_id}"
        )
        self._reclaims[session_id] = task

        def _forget(done: "asyncio.Task[bool]") -> None:
            if self._reclaims.get(session_id) is done:
                del self._reclaims[session_id]

        task.add_done_callback(_forget)
        return task

    async def _reclaim_files(self, session_id: str, delay: float) -> bool:
        path = self.session_path(session_id)
        await asyncio.sleep(delay)

        if self._revived(session_id):
            return False
        try:
            await self._policy.run(self._remove_dir, path)
            return True
        except ResourceBusyError:
            logger.warning(
                f"Session files for {session_id} still busy, deferring "
                f"({self.deferred_attempts} attempts every {self.deferred_interval}s)"
            )
        except Exception as e:
            metrics_helper.record_cleanup_failure("files")
            logger.error(f"Failed to remove session files for {session_id}: {e}")
            return False

        for attempt in range(1, self.deferred_attempts + 1):
            await asyncio.sleep(self.deferred_interval)
            if self._revived(session_id):
                return False
            try:
                await self._remove_dir(path)
                logger.info(f"Session files for {session_id} removed on deferred attempt {attempt}")
                return True
            except ResourceBusyError:
                logger.warning(
                    f"Session files for {session_id} still busy "
                    f"(deferred attempt {attempt}/{self.deferred_attempts})"
                )
            except Exception as e:
                metrics_helper.record_cleanup_failure("files")
                logger.error(f"Failed to remove session files for {session_id}: {e}")
                return False

        metrics_helper.record_cleanup_failure("files")
        logger.error(f"Giving up on session files for {session_id} at {path}")
        return False

    def _revived(self, session_id: str) -> bool:
        # A new instance for the same id owns the directory now
        if session_id in self.registry:
            logger.info(f"Session {session_id} is live again, skipping file reclamation")
            return True
        return False

    async def _remove_dir(self, path: Path) -> bool:
        return await asyncio.to_thread(self._remove_dir_sync, path)

    @staticmethod
    def _remove_dir_sync(path: Path) -> bool:
        """Remove a session directory; False if it does not exist."""
        if not path.exists():
            return False
        try:
            shutil.rmtree(path)
        except OSError as e:
            if e.errno in BUSY_ERRNOS:
                raise ResourceBusyError(str(path)) from e
            raise
        logger.debug(f"Removed session directory {path}")
        return True

    async def wait_idle(self) -> None:
        """Wait for pending reclaims to finish."""
        while self._reclaims:
            await asyncio.gather(*list(self._reclaims.values()), return_exceptions=True)

    async def stop(self) -> None:
        """Cancel pending reclaims."""
        pending = list(self._reclaims.values())
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
