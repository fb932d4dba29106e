"""Messaging session repository implementation."""

from datetime import datetime
from typing import Any, Dict, Optional

from loguru import logger

from otpgate.core.enums import SessionStatus
from otpgate.models.database import Database
from otpgate.repositories.base import BaseRepository

# Columns a partial update may touch (SQL injection prevention)
ALLOWED_SESSION_UPDATE_FIELDS = frozenset({"status", "pairing_artifact", "last_activity"})


class SessionRecord:
    """Durable messaging session entity model."""

    def __init__(
        self,
        session_id: str,
        tenant_id: int,
        status: SessionStatus = SessionStatus.INITIALIZING,
        pairing_artifact: Optional[str] = None,
        last_activity: Optional[datetime] = None,
        created_at: Optional[datetime] = None,
    ):
        """Initialize session entity."""
        self.session_id = session_id
        self.tenant_id = tenant_id
        self.status = SessionStatus(status)
        self.pairing_artifact = pairing_artifact
        self.last_activity = last_activity
        self.created_at = created_at

    @classmethod
    def from_row(cls, row: Any) -> "SessionRecord":
        return cls(
            session_id=row["session_id"],
            tenant_id=row["tenant_id"],
            status=row["status"],
            pairing_artifact=row["pairing_artifact"],
            last_activity=row["last_activity"],
            created_at=row["created_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert session to dictionary."""
        return {
            "session_id": self.session_id,
            "tenant_id": self.tenant_id,
            "status": self.status.value,
            "pairing_artifact": self.pairing_artifact,
            "last_activity": self.last_activity.isoformat() if self.last_activity else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class SessionRepository(BaseRepository[SessionRecord, str]):
    """Repository for messaging session rows (one per tenant)."""

    def __init__(self, database: Database):
        super().__init__(database)

    async def get_by_id(self, id: str) -> Optional[SessionRecord]:
        """
        Get session by its identifier.

        Args:
            id: Session UUID

        Returns:
            SessionRecord or None if not found
        """
        async with self.db.get_connection() as conn:
            row = await conn.fetchrow(
                """
                SELECT session_id, tenant_id, status, pairing_artifact, last_activity, created_at
                FROM messaging_sessions WHERE session_id = $1
                """,
                id,
            )
            return SessionRecord.from_row(row) if row else None

    async def find_by_tenant(self, tenant_id: int) -> Optional[SessionRecord]:
        """
        Get the session owned by a tenant.

        Args:
            tenant_id: Owning tenant ID

        Returns:
            SessionRecord or None if the tenant never paired
        """
        async with self.db.get_connection() as conn:
            row = await conn.fetchrow(
                """
                SELECT session_id, tenant_id, status, pairing_artifact, last_activity, created_at
                FROM messaging_sessions WHERE tenant_id = $1
                """,
                tenant_id,
            )
            return SessionRecord.from_row(row) if row else None

    async def create(self, data: Dict[str, Any]) -> str:
        """
        Create a session row.

        Args:
            data: Session data (session_id, tenant_id, optional status/last_activity)

        Returns:
            Session identifier

        Raises:
            ValueError: If session_id or tenant_id is missing
        """
        session_id = data.get("session_id")
        tenant_id = data.get("tenant_id")
        if not session_id or tenant_id is None:
            raise ValueError("Both session_id and tenant_id are required")

        status = SessionStatus(data.get("status", SessionStatus.INITIALIZING))
        async with self.db.get_connection() as conn:
            await conn.execute(
                """
                INSERT INTO messaging_sessions (session_id, tenant_id, status, last_activity)
                VALUES ($1, $2, $3, $4)
                """,
                session_id,
                tenant_id,
                status.value,
                data.get("last_activity"),
            )
        logger.debug(f"Session row created: {session_id} (tenant {tenant_id})")
        return str(session_id)

    async def update(self, id: str, data: Dict[str, Any]) -> bool:
        """
        Partially update a session row.

        Args:
            id: Session UUID
            data: Fields to change (status, pairing_artifact, last_activity)

        Returns:
            True if a row was updated

        Raises:
            ValueError: If data contains a field outside the allowed set
        """
        unknown = set(data) - ALLOWED_SESSION_UPDATE_FIELDS
        if unknown:
            raise ValueError(f"Unsupported session fields: {sorted(unknown)}")
        if not data:
            return False

        assignments = []
        params: list = []
        for index, (field, value) in enumerate(data.items(), start=1):
            if isinstance(value, SessionStatus):
                value = value.value
            assignments.append(f"{field} = ${index}")
            params.append(value)
        params.append(id)

        query = (
            f"UPDATE messaging_sessions SET {', '.join(assignments)}, updated_at = NOW() "
            f"WHERE session_id = ${len(params)}"
        )
        async with self.db.get_connection() as conn:
            result = await conn.execute(query, *params)
        return Database._parse_command_tag(result) > 0

    async def delete(self, id: str) -> bool:
        """
        Delete a session row.

        Args:
            id: Session UUID

        Returns:
            True if a row was deleted
        """
        async with self.db.get_connection() as conn:
            result = await conn.execute("DELETE FROM messaging_sessions WHERE session_id = $1", id)
        return Database._parse_command_tag(result) > 0
