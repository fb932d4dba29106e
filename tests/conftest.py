"""Pytest configuration and common fixtures."""

import asyncio
import itertools
import os
import secrets
import sys
import warnings
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

# Set environment variables BEFORE any otpgate imports.
# Actual test isolation is provided by the setup_test_environment fixture.
os.environ.setdefault("API_SECRET_KEY", secrets.token_urlsafe(48))
os.environ.setdefault("ENV", "testing")

sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest
import pytest_asyncio

from otpgate.core.enums import ConnectionState, SessionStatus, TenantRole
from otpgate.repositories.otp_repository import OTPRecord
from otpgate.repositories.session_repository import SessionRecord
from otpgate.repositories.tenant_repository import Tenant
from otpgate.services.session.cleanup import CleanupService
from otpgate.services.session.lifecycle import SessionLifecycleController
from otpgate.services.session.registry import SessionRegistry
from otpgate.services.transport.base import TransportEvent

# Sentinel that ends a fake event stream
END_OF_STREAM = object()


def pytest_configure(config):
    """Configure pytest environment before tests run."""
    warnings.filterwarnings("ignore", message="coroutine.*was never awaited")


@pytest.fixture(autouse=True)
def setup_test_environment(monkeypatch):
    """Automatically set up test environment for all tests."""
    monkeypatch.setenv("API_SECRET_KEY", secrets.token_urlsafe(48))
    monkeypatch.setenv("ENV", "testing")
    monkeypatch.setenv("DATABASE_URL", "postgresql://localhost:5432/otp_gateway_test")

    from otpgate.core.config.settings import reset_settings

    reset_settings()
    yield
    reset_settings()


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll until ``predicate`` holds or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


class FakeTransport:
    """Scripted transport: tests push events into per-session queues."""

    def __init__(self) -> None:
        self.queues: Dict[str, "asyncio.Queue[Any]"] = {}
        self.pairings: List[str] = []
        self.states: Dict[str, ConnectionState] = {}
        self.state_errors: Dict[str, BaseException] = {}
        self.state_delay: float = 0.0
        self.sent: List[Tuple[str, str, str]] = []
        self.send_result = True
        self.send_error: Optional[BaseException] = None
        self.pairing_error: Optional[BaseException] = None
        self.shutdowns: List[str] = []
        self.shutdown_error: Optional[BaseException] = None
        self.shutdown_delay: float = 0.0
        self.closed = False

    async def initiate_pairing(self, session_id: str):
        if self.pairing_error is not None:
            raise self.pairing_error
        queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self.queues[session_id] = queue
        self.pairings.append(session_id)
        return self._stream(queue)

    async def _stream(self, queue: "asyncio.Queue[Any]"):
        while True:
            item = await queue.get()
            if item is END_OF_STREAM:
                return
            if isinstance(item, BaseException):
                raise item
            yield item

    async def emit(self, session_id: str, item: Any) -> None:
        await self.queues[session_id].put(item)

    async def query_state(self, session_id: str) -> ConnectionState:
        if self.state_delay:
            await asyncio.sleep(self.state_delay)
        if session_id in self.state_errors:
            raise self.state_errors[session_id]
        return self.states.get(session_id, ConnectionState.CONNECTED)

    async def send(self, session_id: str, address: str, text: str) -> bool:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((session_id, address, text))
        return self.send_result

    async def shutdown(self, session_id: str, timeout: float) -> None:
        self.shutdowns.append(session_id)
        if self.shutdown_delay:
            await asyncio.sleep(self.shutdown_delay)
        if self.shutdown_error is not None:
            raise self.shutdown_error

    async def close(self) -> None:
        self.closed = True


class InMemorySessionRepository:
    """Session storage double with the SessionRepository contract."""

    def __init__(self) -> None:
        self.rows: Dict[str, SessionRecord] = {}
        self.fail_updates = False

    async def get_by_id(self, id: str) -> Optional[SessionRecord]:
        return self.rows.get(id)

    async def find_by_tenant(self, tenant_id: int) -> Optional[SessionRecord]:
        for row in self.rows.values():
            if row.tenant_id == tenant_id:
                return row
        return None

    async def create(self, data: Dict[str, Any]) -> str:
        record = SessionRecord(
            session_id=data["session_id"],
            tenant_id=data["tenant_id"],
            status=data.get("status", SessionStatus.INITIALIZING),
            last_activity=data.get("last_activity"),
            created_at=datetime.now(timezone.utc),
        )
        self.rows[record.session_id] = record
        return record.session_id

    async def update(self, id: str, data: Dict[str, Any]) -> bool:
        if self.fail_updates:
            raise RuntimeError("storage unavailable")
        record = self.rows.get(id)
        if record is None:
            return False
        for key, value in data.items():
            setattr(record, key, SessionStatus(value) if key == "status" else value)
        return True

    async def delete(self, id: str) -> bool:
        return self.rows.pop(id, None) is not None


class InMemoryOTPRepository:
    """OTP storage double with the OTPRepository contract."""

    def __init__(self) -> None:
        self.rows: Dict[int, OTPRecord] = {}
        self._ids = itertools.count(1)

    async def get_by_id(self, id: int) -> Optional[OTPRecord]:
        return self.rows.get(id)

    async def create(self, data: Dict[str, Any]) -> int:
        record_id = next(self._ids)
        self.rows[record_id] = OTPRecord(
            id=record_id,
            tenant_id=data["tenant_id"],
            address=data["address"],
            code=data["code"],
            session_id=data["session_id"],
            expires_at=data["expires_at"],
            created_at=datetime.now(timezone.utc),
        )
        return record_id

    async def find_latest_unused(
        self, address: str, code: str, session_id: str
    ) -> Optional[OTPRecord]:
        matches = [
            r
            for r in self.rows.values()
            if r.address == address and r.code == code and r.session_id == session_id and not r.used
        ]
        return max(matches, key=lambda r: r.id) if matches else None

    async def mark_used(self, id: int) -> bool:
        record = self.rows.get(id)
        if record is None or record.used:
            return False
        record.used = True
        return True

    async def delete_expired(self, now: datetime) -> int:
        expired = [id for id, r in self.rows.items() if r.expires_at < now]
        for id in expired:
            del self.rows[id]
        return len(expired)


class InMemoryTenantRepository:
    """Tenant storage double with the TenantRepository contract."""

    def __init__(self) -> None:
        self.rows: Dict[int, Tenant] = {}

    async def get_by_id(self, id: int) -> Optional[Tenant]:
        return self.rows.get(id)

    async def get_by_username(self, username: str) -> Optional[Tenant]:
        for tenant in self.rows.values():
            if tenant.username == username:
                return tenant
        return None

    async def create(self, data: Dict[str, Any]) -> int:
        # Rows are also seeded directly by tests
        tenant_id = max(self.rows, default=0) + 1
        self.rows[tenant_id] = Tenant(
            id=tenant_id,
            username=data["username"],
            password_hash=data["password_hash"],
            role=data.get("role", TenantRole.USER),
            created_at=datetime.now(timezone.utc),
        )
        return tenant_id

    async def list_all(self) -> List[Tenant]:
        return sorted(self.rows.values(), key=lambda t: t.id, reverse=True)

    async def update(self, id: int, data: Dict[str, Any]) -> bool:
        tenant = self.rows.get(id)
        if tenant is None or not data:
            return False
        for key, value in data.items():
            setattr(tenant, key, TenantRole(value) if key == "role" else value)
        return True

    async def delete(self, id: int) -> bool:
        return self.rows.pop(id, None) is not None


def fake_encoder(payload: str) -> str:
    return f"data:text/plain,{payload}"


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def registry() -> SessionRegistry:
    return SessionRegistry()


@pytest.fixture
def session_repo() -> InMemorySessionRepository:
    return InMemorySessionRepository()


@pytest.fixture
def otp_repo() -> InMemoryOTPRepository:
    return InMemoryOTPRepository()


@pytest.fixture
def tenant_repo() -> InMemoryTenantRepository:
    return InMemoryTenantRepository()


@pytest_asyncio.fixture
async def cleanup(registry, session_repo, transport, tmp_path):
    """Cleanup service with short delays rooted in a temporary directory."""
    service = CleanupService(
        registry,
        session_repo,
        transport,
        sessions_dir=str(tmp_path / "sessions"),
        shutdown_timeout=0.2,
        immediate_attempts=2,
        backoff_seconds=0.01,
        deferred_attempts=2,
        deferred_interval=0.02,
        disconnect_delay=0.0,
        destroy_delay=0.0,
    )
    yield service
    await service.stop()


@pytest_asyncio.fixture
async def controller(registry, transport, session_repo, cleanup):
    """Lifecycle controller wired to the fakes."""
    ctrl = SessionLifecycleController(
        registry,
        transport,
        session_repo,
        cleanup,
        pairing_timeout=0.5,
        state_query_timeout=0.2,
        encoder=fake_encoder,
    )
    yield ctrl
    consumers = [e.consumer for e in registry.snapshot() if e.consumer is not None]
    for task in consumers:
        task.cancel()
    await asyncio.gather(*consumers, return_exceptions=True)
    await ctrl.wait_idle()


async def pair_to_qr(controller, transport, tenant_id: int = 1, payload: str = "qr-1"):
    """Run generate() up to the first pairing code and return (result, session_id)."""
    count = len(transport.pairings)
    task = asyncio.create_task(controller.generate(tenant_id))
    await wait_until(lambda: len(transport.pairings) > count)
    session_id = transport.pairings[-1]
    await transport.emit(session_id, TransportEvent.pairing_code(payload))
    return await task, session_id


async def pair_to_ready(controller, transport, registry, tenant_id: int = 1):
    """Pair a session all the way to ready and return its identifier."""
    _, session_id = await pair_to_qr(controller, transport, tenant_id)
    await transport.emit(session_id, TransportEvent.authenticated())
    await transport.emit(session_id, TransportEvent.ready())
    await wait_until(lambda: registry.get(session_id) is not None and registry.get(session_id).ready)
    return session_id
