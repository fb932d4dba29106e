"""Periodic health sweep over live messaging sessions."""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from loguru import logger

from otpgate.core.enums import SessionStatus
from otpgate.services.session.lifecycle import SessionLifecycleController
from otpgate.services.session.registry import SessionEntry, SessionRegistry
from otpgate.services.transport.base import MessagingTransport
from otpgate.utils.prometheus_metrics import metrics_helper

# A dead transport state is expected while the handshake is within its grace period
_PAIRED_STATUSES = (SessionStatus.AUTHENTICATED, SessionStatus.READY)


class SessionHealthMonitor:
    """Detects and reclaims sessions whose transport died without a disconnect event."""

    def __init__(
        self,
        registry: SessionRegistry,
        transport: MessagingTransport,
        controller: SessionLifecycleController,
        interval_seconds: float = 300.0,
        query_timeout: float = 5.0,
        pairing_grace_seconds: float = 300.0,
    ):
        """
        Initialize health monitor.

        Args:
            registry: Session registry
            transport: Messaging transport
            controller: Lifecycle controller used to reclaim unhealthy sessions
            interval_seconds: Interval between sweeps
            query_timeout: Bounded wait for each connection state query
            pairing_grace_seconds: How long an unpaired handshake may report a dead state
        """
        self.registry = registry
        self.transport = transport
        self.controller = controller
        self.interval_seconds = interval_seconds
        self.query_timeout = query_timeout
        self.pairing_grace_seconds = pairing_grace_seconds
        self._running = False
        self._task: Optional["asyncio.Task[None]"] = None
        self._sweeps = 0
        self._last_sweep: Dict[str, int] = {}

    async def check_once(self) -> Dict[str, int]:
        """
        Run one sweep over every registry entry.

        Each entry is checked and, if unhealthy, reclaimed in isolation; a
        failure while handling one entry never stops the sweep.

        Returns:
            Counters: checked, healthy, reclaimed, failed
        """
        started = time.monotonic()
        summary = {"checked": 0, "healthy": 0, "reclaimed": 0, "failed": 0}

        for entry in self.registry.snapshot():
            summary["checked"] += 1
            try:
                finding = await self._inspect(entry)
                if finding is None:
                    summary["healthy"] += 1
                    continue

                label, reason = finding
                logger.warning(f"Session {entry.session_id} unhealthy: {reason}")
                if await self.controller.reclaim_unhealthy(entry, reason):
                    summary["reclaimed"] += 1
                    metrics_helper.record_health_reclaim(label)
            except Exception as e:
                summary["failed"] += 1
                logger.error(f"Health check for session {entry.session_id} failed: {e}")

        metrics_helper.record_health_sweep(time.monotonic() - started)
        self._sweeps += 1
        self._last_sweep = summary
        if summary["checked"]:
            logger.info(
                f"Health sweep: {summary['checked']} checked, {summary['reclaimed']} reclaimed, "
                f"{summary['failed']} failed"
            )
        return summary

    async def _inspect(self, entry: SessionEntry) -> Optional[Tuple[str, str]]:
        """Return (metric label, reason) when the entry is unhealthy, else None."""
        try:
            state = await asyncio.wait_for(
                self.transport.query_state(entry.session_id), self.query_timeout
            )
        except asyncio.TimeoutError:
            return "timeout", f"state query timed out after {self.query_timeout}s"
        except Exception as e:
            return "query_failed", f"state query failed: {e}"

        if not state.is_dead:
            return None
        if entry.status in _PAIRED_STATUSES:
            return "dead_state", f"transport reported {state.value}"
        age = (datetime.now(timezone.utc) - entry.created_at).total_seconds()
        if age >= self.pairing_grace_seconds:
            return "dead_state", (
                f"transport reported {state.value} {age:.0f}s into pairing "
                f"(grace {self.pairing_grace_seconds:.0f}s)"
            )
        return None

    async def run_periodic(self) -> None:
        """Sweep every ``interval_seconds`` until stopped."""
        self._running = True
        logger.info(f"Starting session health monitor (interval: {self.interval_seconds}s)")

        while self._running:
            await asyncio.sleep(self.interval_seconds)
            if not self._running:
                break
            try:
                await self.check_once()
            except Exception as e:
                logger.opt(exception=True).error(f"Health sweep error: {e}")

    def start(self) -> "asyncio.Task[None]":
        """Start the periodic sweep as a background task."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run_periodic(), name="session-health-monitor")
        return self._task

    async def stop(self) -> None:
        """Stop the periodic sweep."""
        self._running = False
        if self._task is not None and not self._task.done():
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
        logger.info("Session health monitor stopped")

    def get_status(self) -> Dict[str, Any]:
        """
        Get current status of the health monitor.

        Returns:
            Dictionary with status information
        """
        return {
            "running": self._running,
            "interval_seconds": self.interval_seconds,
            "sweeps": self._sweeps,
            "last_sweep": self._last_sweep,
            "live_sessions": len(self.registry),
        }
