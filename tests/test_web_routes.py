"""Tests for the HTTP API."""

import time
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from otpgate.core.auth import create_access_token, hash_password, verify_password
from otpgate.core.config.settings import Settings, reset_settings
from otpgate.core.enums import SessionStatus, TenantRole
from otpgate.core.exceptions import TransportError
from otpgate.repositories.session_repository import SessionRecord
from otpgate.repositories.tenant_repository import Tenant
from otpgate.services.container import ServiceContainer
from otpgate.services.session.registry import SessionEntry
from otpgate.services.transport.base import TransportEvent
from web.app import create_app
from web.routes.auth import limiter

PASSWORD = "correct-horse-battery"
PHONE = "0812-3456-7890"
NORMALIZED = "6281234567890"


@pytest.fixture
def container(transport, session_repo, otp_repo, tenant_repo, tmp_path):
    settings = Settings(
        pairing_timeout_seconds=0.2,
        transport_shutdown_timeout=0.2,
        sessions_dir=str(tmp_path / "sessions"),
        disconnect_reclaim_delay_seconds=0,
        destroy_reclaim_delay_seconds=0,
    )
    tenant_repo.rows[1] = Tenant(id=1, username="acme", password_hash=hash_password(PASSWORD))
    return ServiceContainer(settings, transport, session_repo, otp_repo, tenant_repo)


@pytest.fixture
def db():
    database = MagicMock()
    database.health_check = AsyncMock(return_value=True)
    return database


@pytest.fixture
def client(container, db):
    limiter.reset()
    app = create_app(container=container, db=db)
    with TestClient(app) as test_client:
        yield test_client
        test_client.portal.call(container.shutdown)


@pytest.fixture
def auth_headers():
    token = create_access_token({"sub": "1", "username": "acme", "role": "user"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(container):
    container.tenants.rows[2] = Tenant(
        id=2, username="root", password_hash=hash_password(PASSWORD), role=TenantRole.SUPERADMIN
    )
    token = create_access_token({"sub": "2", "username": "root", "role": "superadmin"})
    return {"Authorization": f"Bearer {token}"}


def seed_session(container, session_id="sess-1", tenant_id=1, status=SessionStatus.READY):
    """Place a live session directly into storage and the registry."""
    container.sessions.rows[session_id] = SessionRecord(session_id, tenant_id, status=status)
    container.registry.register(
        SessionEntry(
            session_id=session_id,
            tenant_id=tenant_id,
            status=status,
            ready=status == SessionStatus.READY,
        )
    )
    return session_id


def poll_session(client, headers, predicate, timeout=2.0):
    """Poll GET /api/session until ``predicate(session)`` holds."""
    deadline = time.monotonic() + timeout
    while True:
        session = client.get("/api/session", headers=headers).json()["session"]
        if session is not None and predicate(session):
            return session
        if time.monotonic() > deadline:
            raise AssertionError(f"session never matched, last seen: {session}")
        time.sleep(0.02)


def assert_problem(response, status_code, error_type):
    assert response.status_code == status_code
    assert response.headers["content-type"].startswith("application/problem+json")
    body = response.json()
    assert body["type"] == error_type
    assert body["status"] == status_code
    return body


class TestAuth:
    """Login, profile and logout."""

    def test_login_sets_cookie(self, client):
        response = client.post("/api/auth/login", json={"username": "acme", "password": PASSWORD})

        assert response.status_code == 200
        assert response.json()["token_type"] == "bearer"
        assert "access_token" in response.cookies

        profile = client.get("/api/auth/profile")
        assert profile.status_code == 200
        assert profile.json()["username"] == "acme"
        assert "password_hash" not in profile.json()

    def test_wrong_password(self, client):
        response = client.post("/api/auth/login", json={"username": "acme", "password": "nope"})
        assert_problem(response, 401, "urn:otpgateway:error:unauthorized")
        assert response.headers["www-authenticate"] == "Bearer"

    def test_unknown_tenant(self, client):
        response = client.post("/api/auth/login", json={"username": "ghost", "password": "x"})
        assert response.status_code == 401

    def test_login_is_rate_limited(self, client):
        codes = [
            client.post("/api/auth/login", json={"username": "ghost", "password": "x"}).status_code
            for _ in range(11)
        ]
        assert codes[:10] == [401] * 10
        assert codes[10] == 429

    def test_missing_token(self, client):
        assert_problem(client.get("/api/auth/profile"), 401, "urn:otpgateway:error:unauthorized")

    def test_invalid_token(self, client):
        response = client.get("/api/auth/profile", headers={"Authorization": "Bearer garbage"})
        assert_problem(response, 401, "urn:otpgateway:error:unauthorized")

    def test_token_for_missing_tenant(self, client):
        token = create_access_token({"sub": "99"})
        response = client.get("/api/auth/profile", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_logout(self, client, auth_headers):
        response = client.post("/api/auth/logout", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["message"] == "Logged out successfully"


class TestAccountManagement:
    """Password change and superadmin tenant administration."""

    def test_change_password(self, client, container, auth_headers):
        response = client.put(
            "/api/auth/change-password",
            headers=auth_headers,
            json={"current_password": PASSWORD, "new_password": "new-secret-1"},
        )

        assert response.status_code == 200
        assert verify_password("new-secret-1", container.tenants.rows[1].password_hash)
        login = client.post(
            "/api/auth/login", json={"username": "acme", "password": "new-secret-1"}
        )
        assert login.status_code == 200

    def test_change_password_rejects_wrong_current(self, client, container, auth_headers):
        before = container.tenants.rows[1].password_hash

        response = client.put(
            "/api/auth/change-password",
            headers=auth_headers,
            json={"current_password": "nope", "new_password": "new-secret-1"},
        )

        assert_problem(response, 400, "urn:otpgateway:error:bad-request")
        assert container.tenants.rows[1].password_hash == before

    def test_change_password_too_short(self, client, auth_headers):
        response = client.put(
            "/api/auth/change-password",
            headers=auth_headers,
            json={"current_password": PASSWORD, "new_password": "abc"},
        )
        assert_problem(response, 422, "urn:otpgateway:error:validation")

    def test_user_admin_requires_superadmin(self, client, auth_headers):
        assert_problem(
            client.get("/api/auth/users", headers=auth_headers),
            403,
            "urn:otpgateway:error:forbidden",
        )
        assert client.get("/api/auth/users").status_code == 401

    def test_list_tenants(self, client, admin_headers):
        response = client.get("/api/auth/users", headers=admin_headers)

        assert response.status_code == 200
        assert [t["username"] for t in response.json()] == ["root", "acme"]
        assert all("password_hash" not in t for t in response.json())

    def test_create_tenant_and_login(self, client, admin_headers):
        response = client.post(
            "/api/auth/users",
            headers=admin_headers,
            json={"username": "globex", "password": "globex-pass"},
        )

        assert response.status_code == 201
        assert response.json()["username"] == "globex"
        assert response.json()["role"] == "user"
        login = client.post(
            "/api/auth/login", json={"username": "globex", "password": "globex-pass"}
        )
        assert login.status_code == 200

    def test_create_duplicate_username(self, client, admin_headers):
        response = client.post(
            "/api/auth/users",
            headers=admin_headers,
            json={"username": "acme", "password": "whatever-1"},
        )
        assert_problem(response, 409, "urn:otpgateway:error:conflict")

    def test_update_role_and_username(self, client, container, admin_headers):
        response = client.put(
            "/api/auth/users/1",
            headers=admin_headers,
            json={"username": "acme-corp", "role": "superadmin"},
        )

        assert response.status_code == 200
        assert response.json()["username"] == "acme-corp"
        assert container.tenants.rows[1].role == TenantRole.SUPERADMIN

    def test_update_to_taken_username(self, client, admin_headers):
        response = client.put(
            "/api/auth/users/1", headers=admin_headers, json={"username": "root"}
        )
        assert_problem(response, 409, "urn:otpgateway:error:conflict")

    def test_update_unknown_tenant(self, client, admin_headers):
        response = client.put("/api/auth/users/99", headers=admin_headers, json={"role": "user"})
        assert_problem(response, 404, "urn:otpgateway:error:not-found")

    def test_reset_password(self, client, container, admin_headers):
        response = client.put(
            "/api/auth/users/1/reset-password",
            headers=admin_headers,
            json={"new_password": "reset-pass-1"},
        )

        assert response.status_code == 200
        assert verify_password("reset-pass-1", container.tenants.rows[1].password_hash)

    def test_delete_tenant_closes_session(self, client, container, admin_headers, transport):
        session_id = seed_session(container)

        response = client.delete("/api/auth/users/1", headers=admin_headers)

        assert response.status_code == 200
        assert 1 not in container.tenants.rows
        assert container.registry.get(session_id) is None
        assert session_id not in container.sessions.rows
        assert session_id in transport.shutdowns

    def test_cannot_delete_self(self, client, container, admin_headers):
        response = client.delete("/api/auth/users/2", headers=admin_headers)

        assert_problem(response, 400, "urn:otpgateway:error:bad-request")
        assert 2 in container.tenants.rows

    def test_delete_unknown_tenant(self, client, admin_headers):
        response = client.delete("/api/auth/users/99", headers=admin_headers)
        assert_problem(response, 404, "urn:otpgateway:error:not-found")


class TestTenantSession:
    """Tenant session routes."""

    def test_no_session_yet(self, client, auth_headers):
        response = client.get("/api/session", headers=auth_headers)
        assert response.status_code == 200
        assert response.json() == {"session": None}

    def test_pairing_flow_to_sending(self, client, auth_headers, transport):
        response = client.post("/api/session/generate", headers=auth_headers)
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "timeout"
        session_id = body["session_id"]

        client.portal.call(transport.emit, session_id, TransportEvent.pairing_code("2@abc"))
        session = poll_session(client, auth_headers, lambda s: s["status"] == "qr")
        assert session["session_id"] == session_id
        assert session["qr_code"].startswith("data:image/png;base64,")

        client.portal.call(transport.emit, session_id, TransportEvent.authenticated())
        client.portal.call(transport.emit, session_id, TransportEvent.ready())
        session = poll_session(client, auth_headers, lambda s: s["status"] == "ready")
        assert session["qr_code"] is None

        response = client.post(
            "/api/session/send-otp", headers=auth_headers, json={"phone_number": PHONE}
        )
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["phone_number"] == NORMALIZED
        assert body["otp_code"] is None
        assert transport.sent[0][:2] == (session_id, NORMALIZED)

    def test_generate_transport_failure(self, client, auth_headers, transport):
        transport.pairing_error = TransportError("bridge down")

        response = client.post("/api/session/generate", headers=auth_headers)

        assert response.status_code == 502
        assert response.json()["status"] == "error"
        assert "bridge down" in response.json()["error"]

    def test_send_without_session(self, client, auth_headers):
        response = client.post(
            "/api/session/send-otp", headers=auth_headers, json={"phone_number": PHONE}
        )
        assert_problem(response, 404, "urn:otpgateway:error:session-not-found")

    def test_send_before_ready(self, client, container, auth_headers):
        seed_session(container, status=SessionStatus.QR)

        response = client.post(
            "/api/session/send-otp", headers=auth_headers, json={"phone_number": PHONE}
        )

        body = assert_problem(response, 400, "urn:otpgateway:error:session-not-ready")
        assert body["details"] == {"status": "qr"}

    def test_undelivered_message(self, client, container, auth_headers, transport, otp_repo):
        seed_session(container)
        transport.send_result = False

        response = client.post(
            "/api/session/send-otp", headers=auth_headers, json={"phone_number": PHONE}
        )

        assert response.status_code == 502
        assert response.json()["success"] is False
        assert len(otp_repo.rows) == 1

    def test_malformed_phone_number(self, client, container, auth_headers):
        seed_session(container)
        response = client.post(
            "/api/session/send-otp", headers=auth_headers, json={"phone_number": "abc"}
        )
        assert_problem(response, 400, "urn:otpgateway:error:bad-request")

    def test_requires_authentication(self, client):
        assert client.post("/api/session/generate").status_code == 401


class TestPublicApi:
    """Session-id authenticated routes."""

    def test_send_and_verify_once(self, client, container, otp_repo):
        session_id = seed_session(container)

        response = client.post(
            "/api/send-otp", json={"phone_number": PHONE, "session_id": session_id}
        )
        assert response.status_code == 200
        assert response.json()["expires_at"] is not None
        (record,) = otp_repo.rows.values()

        payload = {"phone_number": PHONE, "otp_code": record.code, "session_id": session_id}
        response = client.post("/api/verify-otp", json=payload)
        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "OTP verified successfully"}

        response = client.post("/api/verify-otp", json=payload)
        assert_problem(response, 400, "urn:otpgateway:error:otp-invalid")

    def test_expired_code(self, client, container, otp_repo):
        session_id = seed_session(container)
        client.post("/api/send-otp", json={"phone_number": PHONE, "session_id": session_id})
        (record,) = otp_repo.rows.values()
        record.expires_at = datetime.now(timezone.utc) - timedelta(seconds=1)

        response = client.post(
            "/api/verify-otp",
            json={"phone_number": PHONE, "otp_code": record.code, "session_id": session_id},
        )
        assert_problem(response, 400, "urn:otpgateway:error:otp-expired")

    def test_custom_code_and_message(self, client, container, otp_repo, transport):
        session_id = seed_session(container)

        response = client.post(
            "/api/send-otp",
            json={
                "phone_number": PHONE,
                "session_id": session_id,
                "otp": "9876",
                "message": "Welcome!",
            },
        )

        assert response.status_code == 200
        assert response.json()["expires_at"] is None
        assert otp_repo.rows == {}
        assert transport.sent[0][2] == "Welcome!"

    def test_development_echoes_code(self, client, container, otp_repo, monkeypatch):
        monkeypatch.setenv("ENV", "development")
        reset_settings()
        session_id = seed_session(container)

        response = client.post(
            "/api/send-otp", json={"phone_number": PHONE, "session_id": session_id}
        )

        (record,) = otp_repo.rows.values()
        assert response.json()["otp_code"] == record.code

    def test_unknown_session(self, client):
        response = client.post("/api/send-otp", json={"phone_number": PHONE, "session_id": "nope"})
        body = assert_problem(response, 404, "urn:otpgateway:error:session-not-found")
        assert body["details"] == {"session_id": "nope"}

    def test_status(self, client, container):
        session_id = seed_session(container, tenant_id=1)

        body = client.post("/api/status", json={"session_id": session_id}).json()
        assert body["exists"] is True
        assert body["status"] == "ready"
        assert body["is_connected"] is True
        assert body["tenant_id"] == 1

        body = client.post("/api/status", json={"session_id": "missing"}).json()
        assert body == {
            "exists": False,
            "session_id": None,
            "status": "not_found",
            "is_connected": False,
            "last_activity": None,
            "tenant_id": None,
        }

    def test_validation_error(self, client):
        response = client.post("/api/verify-otp", json={"session_id": "s"})
        body = assert_problem(response, 422, "urn:otpgateway:error:validation")
        assert "phone_number" in body["errors"]
        assert "otp_code" in body["errors"]


class TestHealth:
    """Health, metrics and middleware."""

    def test_healthy(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["components"]["database"] == {"status": "healthy"}
        assert body["components"]["sessions"]["live_sessions"] == 0

    def test_database_down(self, client, db):
        db.health_check.return_value = False
        response = client.get("/health")
        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"

    def test_not_started(self, db):
        client = TestClient(create_app(db=db))
        assert client.get("/health").status_code == 503
        response = client.post("/api/status", json={"session_id": "s"})
        assert_problem(response, 503, "urn:otpgateway:error:service-unavailable")

    def test_liveness_and_metrics(self, client):
        assert client.get("/health/live").json()["status"] == "alive"
        response = client.get("/metrics")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")

    def test_headers(self, client):
        response = client.get("/health/live", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert "X-Request-ID" in client.get("/health/live").headers
