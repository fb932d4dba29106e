"""Process-wide wiring of the session lifecycle and OTP services."""

import asyncio
from typing import Any, Dict, Optional

from loguru import logger

from otpgate.core.auth.password import hash_password
from otpgate.core.config.settings import Settings
from otpgate.core.enums import TenantRole
from otpgate.models.database import Database
from otpgate.repositories.otp_repository import OTPRepository
from otpgate.repositories.session_repository import SessionRepository
from otpgate.repositories.tenant_repository import TenantRepository
from otpgate.services.otp.service import OTPService
from otpgate.services.session.cleanup import CleanupService
from otpgate.services.session.health_monitor import SessionHealthMonitor
from otpgate.services.session.lifecycle import SessionLifecycleController
from otpgate.services.session.registry import SessionRegistry
from otpgate.services.transport.base import MessagingTransport
from otpgate.services.transport.bridge import BridgeTransport


class ServiceContainer:
    """
    Owns one registry, one transport and every service built on top of them.

    Example:
        ```python
        container = ServiceContainer.from_database(settings, db)
        await container.start()
        ...
        await container.shutdown()
        ```
    """

    def __init__(
        self,
        settings: Settings,
        transport: MessagingTransport,
        sessions: SessionRepository,
        otp_records: OTPRepository,
        tenants: TenantRepository,
        registry: Optional[SessionRegistry] = None,
    ):
        """
        Initialize container.

        Args:
            settings: Application settings
            transport: Messaging transport
            sessions: Durable session storage
            otp_records: OTP record storage
            tenants: Tenant account storage
            registry: Session registry (a new one if omitted)
        """
        self.settings = settings
        self.transport = transport
        self.sessions = sessions
        self.otp_records = otp_records
        self.tenants = tenants
        self.registry = registry or SessionRegistry()

        self.cleanup = CleanupService(
            self.registry,
            sessions,
            transport,
            sessions_dir=settings.sessions_dir,
            shutdown_timeout=settings.transport_shutdown_timeout,
            immediate_attempts=settings.reclaim_immediate_attempts,
            backoff_seconds=settings.reclaim_backoff_seconds,
            deferred_attempts=settings.reclaim_deferred_attempts,
            deferred_interval=settings.reclaim_deferred_interval_seconds,
            disconnect_delay=settings.disconnect_reclaim_delay_seconds,
            destroy_delay=settings.destroy_reclaim_delay_seconds,
        )
        self.controller = SessionLifecycleController(
            self.registry,
            transport,
            sessions,
            self.cleanup,
            pairing_timeout=settings.pairing_timeout_seconds,
            state_query_timeout=settings.state_query_timeout,
        )
        self.health_monitor = SessionHealthMonitor(
            self.registry,
            transport,
            self.controller,
            interval_seconds=settings.health_check_interval_seconds,
            query_timeout=settings.state_query_timeout,
            pairing_grace_seconds=settings.pairing_grace_seconds,
        )
        self.otp_service = OTPService(
            self.controller,
            otp_records,
            ttl_seconds=settings.otp_ttl_seconds,
            message_template=settings.otp_message_template,
            country_code=settings.default_country_code,
            purge_interval_seconds=settings.otp_purge_interval_seconds,
        )
        self._started = False

    @classmethod
    def from_database(cls, settings: Settings, database: Database) -> "ServiceContainer":
        """Build a container backed by PostgreSQL and the messaging bridge."""
        return cls(
            settings,
            BridgeTransport(settings.bridge_url, timeout=settings.bridge_timeout),
            SessionRepository(database),
            OTPRepository(database),
            TenantRepository(database),
        )

    async def seed_admin(self) -> Optional[int]:
        """
        Create the configured superadmin tenant if it does not exist yet.

        Returns:
            Tenant ID when created, otherwise None
        """
        username = self.settings.admin_username
        password = self.settings.admin_password
        if not username or password is None:
            return None
        if await self.tenants.get_by_username(username) is not None:
            return None

        password_hash = await asyncio.to_thread(hash_password, password.get_secret_value())
        return await self.tenants.create(
            {"username": username, "password_hash": password_hash, "role": TenantRole.SUPERADMIN}
        )

    async def start(self) -> None:
        """Seed the admin tenant and start the background loops."""
        if self._started:
            return
        await self.seed_admin()
        self.health_monitor.start()
        self.otp_service.start()
        self._started = True
        logger.info("Service container started")

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """
        Stop background loops, tear down live sessions and close the transport.

        Args:
            timeout: Bound for tearing down live sessions
        """
        await self.health_monitor.stop()
        await self.otp_service.stop()

        timeout = timeout or self.settings.transport_shutdown_timeout * 2
        try:
            await asyncio.wait_for(self.controller.shutdown(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Session teardown timed out after {timeout}s")
        except Exception as e:
            logger.error(f"Error tearing down sessions: {e}")

        await self.cleanup.stop()
        try:
            await self.transport.close()
        except Exception as e:
            logger.error(f"Error closing transport: {e}")
        self._started = False
        logger.info("Service container stopped")

    def get_status(self) -> Dict[str, Any]:
        return {
            "live_sessions": len(self.registry),
            "health_monitor": self.health_monitor.get_status(),
            "otp_purge": self.otp_service.get_status(),
        }
