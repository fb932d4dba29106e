"""OTP issuance over a ready messaging session and one-time verification."""

import asyncio
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from loguru import logger

from otpgate.core.config.settings import DEFAULT_OTP_TEMPLATE
from otpgate.core.enums import SessionStatus
from otpgate.core.exceptions import InvalidCodeError, OTPExpiredError, SessionNotReadyError
from otpgate.repositories.otp_repository import OTPRecord, OTPRepository
from otpgate.services.session.lifecycle import SessionLifecycleController
from otpgate.utils.masking import mask_address, mask_code
from otpgate.utils.phone import normalize_address
from otpgate.utils.prometheus_metrics import metrics_helper

CODE_MIN = 100000
CODE_MAX = 999999

# Exponential backoff constants for the purge loop
BASE_BACKOFF_SECONDS = 30
MAX_BACKOFF_SECONDS = 600


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class IssueResult:
    """Outcome of issuing a code."""

    code: str
    address: str
    session_id: str
    delivered: bool
    persisted: bool
    record_id: Optional[int] = None
    expires_at: Optional[datetime] = None

    def to_dict(self, include_code: bool = False) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "success": self.delivered,
            "session_id": self.session_id,
            "address": self.address,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }
        if include_code:
            data["otp"] = self.code
        return data


class OTPService:
    """Issues codes through the lifecycle controller and verifies them against storage."""

    def __init__(
        self,
        controller: SessionLifecycleController,
        otp_repo: OTPRepository,
        ttl_seconds: int = 300,
        message_template: str = DEFAULT_OTP_TEMPLATE,
        country_code: str = "62",
        purge_interval_seconds: float = 60.0,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """
        Initialize OTP service.

        Args:
            controller: Session lifecycle controller
            otp_repo: OTP record storage
            ttl_seconds: Lifetime of an issued code
            message_template: Message body with ``{code}`` and ``{minutes}`` placeholders
            country_code: Default country calling code for address normalization
            purge_interval_seconds: Interval of the expiry sweep
            clock: Source of the current UTC time
        """
        self.controller = controller
        self.otp_repo = otp_repo
        self.ttl_seconds = ttl_seconds
        self.message_template = message_template
        self.country_code = country_code
        self.purge_interval_seconds = purge_interval_seconds
        self.clock = clock
        self._running = False
        self._consecutive_errors = 0
        self._task: Optional["asyncio.Task[None]"] = None

    @staticmethod
    def generate_code() -> str:
        """Six-digit code drawn uniformly from [100000, 999999]."""
        return str(CODE_MIN + secrets.randbelow(CODE_MAX - CODE_MIN + 1))

    def render_message(self, code: str) -> str:
        minutes = max(1, self.ttl_seconds // 60)
        return self.message_template.format(code=code, minutes=minutes)

    async def _require_ready(self, session_id: str) -> None:
        status = await self.controller.get_status(session_id)
        if status != SessionStatus.READY:
            raise SessionNotReadyError(status.value)

    async def issue_and_send(self, tenant_id: int, address: str, session_id: str) -> IssueResult:
        """
        Generate, persist and send a code through a ready session.

        The record is persisted before sending; when the send fails the record
        stays in storage and the result reports ``delivered=False``.

        Args:
            tenant_id: Owning tenant
            address: Target address in any accepted format
            session_id: Session that sends the code

        Returns:
            IssueResult

        Raises:
            SessionNotReadyError: If the session does not report ready
            ValueError: If the address contains no digits
        """
        return await self.send_custom(tenant_id, address, session_id)

    async def send_custom(
        self,
        tenant_id: int,
        address: str,
        session_id: str,
        code: Optional[str] = None,
        message: Optional[str] = None,
    ) -> IssueResult:
        """
        Send a code with an optional caller-supplied code or message.

        A supplied code is sent as-is and not persisted, so it cannot be
        verified later. A supplied message replaces the template entirely.

        Args:
            tenant_id: Owning tenant
            address: Target address in any accepted format
            session_id: Session that sends the code
            code: Caller-supplied code
            message: Caller-supplied message body

        Returns:
            IssueResult

        Raises:
            SessionNotReadyError: If the session does not report ready
            ValueError: If the address contains no digits
        """
        await self._require_ready(session_id)
        normalized = normalize_address(address, self.country_code)

        record_id: Optional[int] = None
        expires_at: Optional[datetime] = None
        persisted = code is None
        if code is None:
            code = self.generate_code()
            expires_at = self.clock() + timedelta(seconds=self.ttl_seconds)
            record_id = await self.otp_repo.create(
                {
                    "tenant_id": tenant_id,
                    "address": normalized,
                    "code": code,
                    "session_id": session_id,
                    "expires_at": expires_at,
                }
            )

        text = message if message is not None else self.render_message(code)
        delivered = await self.controller.send_message(session_id, normalized, text)
        metrics_helper.record_otp_issued(delivered)

        if delivered:
            logger.info(
                f"OTP {mask_code(code)} sent to {mask_address(normalized)} via {session_id}"
            )
        else:
            logger.warning(
                f"OTP for {mask_address(normalized)} via {session_id} was not delivered"
                + (f" (record {record_id} kept)" if persisted else "")
            )

        return IssueResult(
            code=code,
            address=normalized,
            session_id=session_id,
            delivered=delivered,
            persisted=persisted,
            record_id=record_id,
            expires_at=expires_at,
        )

    async def verify(self, address: str, code: str, session_id: str) -> OTPRecord:
        """
        Consume a code for the exact (address, code, session) triple.

        Args:
            address: Target address in any accepted format
            code: Submitted code
            session_id: Session the code was issued through

        Returns:
            The consumed record

        Raises:
            InvalidCodeError: No unused match, or another caller consumed it first
            OTPExpiredError: The newest match is past its expiry
        """
        try:
            normalized = normalize_address(address, self.country_code)
        except ValueError:
            metrics_helper.record_otp_verified("invalid")
            raise InvalidCodeError()

        record = await self.otp_repo.find_latest_unused(normalized, code.strip(), session_id)
        if record is None:
            metrics_helper.record_otp_verified("invalid")
            raise InvalidCodeError()

        if record.is_expired(self.clock()):
            metrics_helper.record_otp_verified("expired")
            raise OTPExpiredError()

        if not await self.otp_repo.mark_used(record.id):
            metrics_helper.record_otp_verified("invalid")
            raise InvalidCodeError()

        record.used = True
        metrics_helper.record_otp_verified("success")
        logger.info(f"OTP verified for {mask_address(normalized)} via {session_id}")
        return record

    async def purge_expired(self) -> int:
        """
        Delete every record past its expiry, used or not.

        Returns:
            Number of records deleted
        """
        deleted = await self.otp_repo.delete_expired(self.clock())
        metrics_helper.record_otp_purged(deleted)
        if deleted:
            logger.info(f"Purged {deleted} expired OTP records")
        return deleted

    async def run_periodic_purge(self) -> None:
        """Run the expiry sweep with exponential backoff on errors."""
        self._running = True
        self._consecutive_errors = 0
        logger.info(f"Starting OTP purge loop (interval: {self.purge_interval_seconds}s)")

        while self._running:
            try:
                await self.purge_expired()
                self._consecutive_errors = 0
            except Exception as e:
                self._consecutive_errors += 1
                backoff_seconds = min(
                    BASE_BACKOFF_SECONDS * (2 ** (self._consecutive_errors - 1)),
                    MAX_BACKOFF_SECONDS,
                )
                logger.error(
                    f"OTP purge error (attempt {self._consecutive_errors}), "
                    f"retrying in {backoff_seconds}s: {e}"
                )
                await asyncio.sleep(backoff_seconds)
                continue

            await asyncio.sleep(self.purge_interval_seconds)

    def start(self) -> "asyncio.Task[None]":
        """Start the expiry sweep as a background task."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run_periodic_purge(), name="otp-purge")
        return self._task

    async def stop(self) -> None:
        """Stop the expiry sweep."""
        self._running = False
        if self._task is not None and not self._task.done():
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
        logger.info("OTP purge loop stopped")

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "purge_interval_seconds": self.purge_interval_seconds,
            "consecutive_errors": self._consecutive_errors,
        }
