"""Tests for the session health monitor."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import pair_to_qr, pair_to_ready
from otpgate.core.enums import ConnectionState, SessionStatus
from otpgate.core.exceptions import TransportError
from otpgate.services.session.health_monitor import SessionHealthMonitor
from otpgate.services.session.registry import SessionEntry, SessionRegistry


@pytest.fixture
def monitor(registry, transport, controller):
    return SessionHealthMonitor(
        registry, transport, controller, interval_seconds=60, query_timeout=0.05
    )


class TestCheckOnce:
    """Single sweeps against a live controller."""

    @pytest.mark.asyncio
    async def test_healthy_session_untouched(self, monitor, controller, transport, registry):
        session_id = await pair_to_ready(controller, transport, registry)

        summary = await monitor.check_once()

        assert summary == {"checked": 1, "healthy": 1, "reclaimed": 0, "failed": 0}
        assert registry.get(session_id) is not None

    @pytest.mark.asyncio
    async def test_dead_ready_session_is_reclaimed(
        self, monitor, controller, transport, registry, session_repo
    ):
        session_id = await pair_to_ready(controller, transport, registry)
        transport.states[session_id] = ConnectionState.UNPAIRED

        summary = await monitor.check_once()

        assert summary["reclaimed"] == 1
        assert registry.get(session_id) is None
        assert session_id not in session_repo.rows

    @pytest.mark.asyncio
    async def test_dead_state_within_pairing_grace_is_expected(
        self, monitor, controller, transport, registry
    ):
        _, session_id = await pair_to_qr(controller, transport)
        transport.states[session_id] = ConnectionState.UNPAIRED

        summary = await monitor.check_once()

        assert summary["healthy"] == 1
        assert registry.get(session_id).status == SessionStatus.QR

    @pytest.mark.asyncio
    async def test_unscanned_pairing_past_grace_is_reclaimed(
        self, controller, transport, registry, session_repo
    ):
        monitor = SessionHealthMonitor(
            registry, transport, controller, query_timeout=0.05, pairing_grace_seconds=60
        )
        _, session_id = await pair_to_qr(controller, transport)
        registry.get(session_id).created_at = datetime.now(timezone.utc) - timedelta(seconds=61)
        transport.states[session_id] = ConnectionState.UNPAIRED

        summary = await monitor.check_once()

        assert summary["reclaimed"] == 1
        assert registry.get(session_id) is None
        assert session_id not in session_repo.rows

    @pytest.mark.asyncio
    async def test_connected_pairing_past_grace_is_left_alone(
        self, controller, transport, registry
    ):
        monitor = SessionHealthMonitor(
            registry, transport, controller, query_timeout=0.05, pairing_grace_seconds=60
        )
        _, session_id = await pair_to_qr(controller, transport)
        registry.get(session_id).created_at = datetime.now(timezone.utc) - timedelta(seconds=600)

        summary = await monitor.check_once()

        assert summary["healthy"] == 1
        assert registry.get(session_id) is not None

    @pytest.mark.asyncio
    async def test_query_timeout_is_unhealthy(self, monitor, controller, transport, registry):
        _, session_id = await pair_to_qr(controller, transport)
        transport.state_delay = 0.5

        summary = await monitor.check_once()

        assert summary["reclaimed"] == 1
        assert registry.get(session_id) is None

    @pytest.mark.asyncio
    async def test_query_error_is_unhealthy(self, monitor, controller, transport, registry):
        session_id = await pair_to_ready(controller, transport, registry)
        transport.state_errors[session_id] = TransportError("bridge down")

        summary = await monitor.check_once()

        assert summary["reclaimed"] == 1
        assert registry.get(session_id) is None

    @pytest.mark.asyncio
    async def test_empty_registry(self, monitor):
        assert await monitor.check_once() == {
            "checked": 0,
            "healthy": 0,
            "reclaimed": 0,
            "failed": 0,
        }


class TestIsolation:
    """A failure on one session never stops the sweep."""

    @pytest.mark.asyncio
    async def test_one_failing_reclaim_among_many(self, transport):
        registry = SessionRegistry()
        for i in range(3):
            registry.register(
                SessionEntry(session_id=f"s{i}", tenant_id=i, status=SessionStatus.READY, ready=True)
            )
            transport.states[f"s{i}"] = ConnectionState.UNLAUNCHED

        controller = MagicMock()
        controller.reclaim_unhealthy = AsyncMock(side_effect=[True, RuntimeError("boom"), True])
        monitor = SessionHealthMonitor(registry, transport, controller, query_timeout=0.05)

        summary = await monitor.check_once()

        assert summary == {"checked": 3, "healthy": 0, "reclaimed": 2, "failed": 1}
        assert controller.reclaim_unhealthy.await_count == 3

    @pytest.mark.asyncio
    async def test_replaced_entry_not_counted(self, transport):
        registry = SessionRegistry()
        registry.register(
            SessionEntry(session_id="s1", tenant_id=1, status=SessionStatus.READY, ready=True)
        )
        transport.states["s1"] = ConnectionState.UNPAIRED_IDLE
        controller = MagicMock()
        controller.reclaim_unhealthy = AsyncMock(return_value=False)
        monitor = SessionHealthMonitor(registry, transport, controller)

        summary = await monitor.check_once()

        assert summary["reclaimed"] == 0
        assert summary["failed"] == 0


class TestPeriodic:
    """Background loop control."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, transport):
        monitor = SessionHealthMonitor(SessionRegistry(), transport, MagicMock(), interval_seconds=60)

        task = monitor.start()
        assert monitor.start() is task

        await monitor.stop()

        assert task.done()
        status = monitor.get_status()
        assert status["running"] is False
        assert status["interval_seconds"] == 60

    @pytest.mark.asyncio
    async def test_sweep_error_with_braces_keeps_loop_alive(self, transport):
        monitor = SessionHealthMonitor(
            SessionRegistry(), transport, MagicMock(), interval_seconds=0.01
        )
        monitor.check_once = AsyncMock(
            side_effect=[RuntimeError("bad payload {'state': None}"), {"checked": 0}, {"checked": 0}]
        )

        task = monitor.start()
        try:
            loop = asyncio.get_running_loop()
            deadline = loop.time() + 2.0
            while monitor.check_once.await_count < 2 and loop.time() < deadline:
                await asyncio.sleep(0.01)
            assert not task.done()
        finally:
            await monitor.stop()

        assert monitor.check_once.await_count >= 2
