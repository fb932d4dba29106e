"""OTP record repository implementation."""

from datetime import datetime
from typing import Any, Dict, Optional

from otpgate.models.database import Database
from otpgate.repositories.base import BaseRepository


class OTPRecord:
    """Issued one-time passcode entity model."""

    def __init__(
        self,
        id: int,
        tenant_id: int,
        address: str,
        code: str,
        session_id: str,
        expires_at: datetime,
        used: bool = False,
        created_at: Optional[datetime] = None,
    ):
        """Initialize OTP record entity."""
        self.id = id
        self.tenant_id = tenant_id
        self.address = address
        self.code = code
        self.session_id = session_id
        self.expires_at = expires_at
        self.used = used
        self.created_at = created_at

    @classmethod
    def from_row(cls, row: Any) -> "OTPRecord":
        return cls(
            id=row["id"],
            tenant_id=row["tenant_id"],
            address=row["address"],
            code=row["code"],
            session_id=row["session_id"],
            expires_at=row["expires_at"],
            used=row["used"],
            created_at=row["created_at"],
        )

    def is_expired(self, now: datetime) -> bool:
        """A record is valid strictly before its expiry instant."""
        return now >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        """Convert OTP record to dictionary (code omitted)."""
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "address": self.address,
            "session_id": self.session_id,
            "used": self.used,
            "expires_at": self.expires_at.isoformat(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class OTPRepository(BaseRepository[OTPRecord, int]):
    """Repository for OTP records."""

    def __init__(self, database: Database):
        super().__init__(database)

    async def get_by_id(self, id: int) -> Optional[OTPRecord]:
        async with self.db.get_connection() as conn:
            row = await conn.fetchrow("SELECT * FROM otp_records WHERE id = $1", id)
            return OTPRecord.from_row(row) if row else None

    async def create(self, data: Dict[str, Any]) -> int:
        """
        Persist an issued code.

        Args:
            data: Record data (tenant_id, address, code, session_id, expires_at)

        Returns:
            Created record ID

        Raises:
            ValueError: If a required field is missing
        """
        required = ("tenant_id", "address", "code", "session_id", "expires_at")
        missing = [key for key in required if data.get(key) is None]
        if missing:
            raise ValueError(f"Missing OTP fields: {missing}")

        async with self.db.get_connection() as conn:
            record_id = await conn.fetchval(
                """
                INSERT INTO otp_records (tenant_id, address, code, session_id, expires_at)
                VALUES ($1, $2, $3, $4, $5)
                RETURNING id
                """,
                data["tenant_id"],
                data["address"],
                data["code"],
                data["session_id"],
                data["expires_at"],
            )
            return int(record_id)

    async def find_latest_unused(
        self, address: str, code: str, session_id: str
    ) -> Optional[OTPRecord]:
        """
        Find the most recent unused record for the exact (address, code, session) triple.

        Args:
            address: Normalized target address
            code: Submitted code
            session_id: Owning session identifier

        Returns:
            Newest matching unused record or None
        """
        async with self.db.get_connection() as conn:
            row = await conn.fetchrow(
                """
                SELECT * FROM otp_records
                WHERE address = $1 AND code = $2 AND session_id = $3 AND used = FALSE
                ORDER BY created_at DESC, id DESC
                LIMIT 1
                """,
                address,
                code,
                session_id,
            )
            return OTPRecord.from_row(row) if row else None

    async def mark_used(self, id: int) -> bool:
        """
        Mark a record used if it is still unused.

        Only one concurrent caller can win this transition.

        Args:
            id: Record ID

        Returns:
            True if this call flipped the flag
        """
        async with self.db.get_connection() as conn:
            result = await conn.execute(
                "UPDATE otp_records SET used = TRUE WHERE id = $1 AND used = FALSE", id
            )
        return Database._parse_command_tag(result) == 1

    async def delete_expired(self, now: datetime) -> int:
        """
        Delete every record whose expiry is before ``now``, used or not.

        Args:
            now: Reference instant

        Returns:
            Number of rows deleted
        """
        async with self.db.get_connection() as conn:
            result = await conn.execute("DELETE FROM otp_records WHERE expires_at < $1", now)
        return Database._parse_command_tag(result)

    async def update(self, id: int, data: Dict[str, Any]) -> bool:
        """
        Update a record. Only the used flag can change, and only to True.

        Args:
            id: Record ID
            data: {"used": True}

        Returns:
            True if updated
        """
        if set(data) != {"used"} or data["used"] is not True:
            raise ValueError("OTP records can only be marked used")
        return await self.mark_used(id)

    async def delete(self, id: int) -> bool:
        async with self.db.get_connection() as conn:
            result = await conn.execute("DELETE FROM otp_records WHERE id = $1", id)
        return Database._parse_command_tag(result) > 0
