"""Tenant account repository implementation."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from loguru import logger

from otpgate.core.enums import TenantRole
from otpgate.models.database import Database
from otpgate.repositories.base import BaseRepository


class Tenant:
    """Tenant account entity model."""

    def __init__(
        self,
        id: int,
        username: str,
        password_hash: str,
        role: TenantRole = TenantRole.USER,
        created_at: Optional[datetime] = None,
    ):
        """Initialize tenant entity."""
        self.id = id
        self.username = username
        self.password_hash = password_hash
        self.role = TenantRole(role)
        self.created_at = created_at

    @classmethod
    def from_row(cls, row: Any) -> "Tenant":
        return cls(
            id=row["id"],
            username=row["username"],
            password_hash=row["password_hash"],
            role=row["role"],
            created_at=row["created_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert tenant to dictionary (without password hash)."""
        return {
            "id": self.id,
            "username": self.username,
            "role": self.role.value,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class TenantRepository(BaseRepository[Tenant, int]):
    """Repository for tenant accounts."""

    def __init__(self, database: Database):
        super().__init__(database)

    async def get_by_id(self, id: int) -> Optional[Tenant]:
        async with self.db.get_connection() as conn:
            row = await conn.fetchrow(
                "SELECT id, username, password_hash, role, created_at FROM tenants WHERE id = $1",
                id,
            )
            return Tenant.from_row(row) if row else None

    async def get_by_username(self, username: str) -> Optional[Tenant]:
        """
        Get tenant by login name.

        Args:
            username: Login name

        Returns:
            Tenant or None if not found
        """
        async with self.db.get_connection() as conn:
            row = await conn.fetchrow(
                "SELECT id, username, password_hash, role, created_at "
                "FROM tenants WHERE username = $1",
                username,
            )
            return Tenant.from_row(row) if row else None

    async def list_all(self) -> List[Tenant]:
        """List every tenant account, newest first."""
        async with self.db.get_connection() as conn:
            rows = await conn.fetch(
                "SELECT id, username, password_hash, role, created_at "
                "FROM tenants ORDER BY created_at DESC, id DESC"
            )
            return [Tenant.from_row(row) for row in rows]

    async def create(self, data: Dict[str, Any]) -> int:
        """
        Create a tenant account.

        Args:
            data: Tenant data (username, password_hash, optional role)

        Returns:
            Created tenant ID

        Raises:
            ValueError: If username or password_hash is missing
        """
        username = data.get("username")
        password_hash = data.get("password_hash")
        if not username or not password_hash:
            raise ValueError("Both username and password_hash are required")

        role = TenantRole(data.get("role", TenantRole.USER))
        async with self.db.get_connection() as conn:
            tenant_id = await conn.fetchval(
                """
                INSERT INTO tenants (username, password_hash, role)
                VALUES ($1, $2, $3)
                RETURNING id
                """,
                username,
                password_hash,
                role.value,
            )
        logger.info(f"Tenant created: {username} (id {tenant_id}, role {role.value})")
        return int(tenant_id)

    async def update(self, id: int, data: Dict[str, Any]) -> bool:
        """
        Update tenant login name, password hash or role.

        Args:
            id: Tenant ID
            data: Fields to change (username, password_hash, role)

        Returns:
            True if updated
        """
        allowed = {"username", "password_hash", "role"}
        unknown = set(data) - allowed
        if unknown:
            raise ValueError(f"Unsupported tenant fields: {sorted(unknown)}")
        if not data:
            return False

        assignments = []
        params: list = []
        for index, (field, value) in enumerate(data.items(), start=1):
            if isinstance(value, TenantRole):
                value = value.value
            assignments.append(f"{field} = ${index}")
            params.append(value)
        params.append(id)
        async with self.db.get_connection() as conn:
            result = await conn.execute(
                f"UPDATE tenants SET {', '.join(assignments)}, updated_at = NOW() "
                f"WHERE id = ${len(params)}",
                *params,
            )
        return Database._parse_command_tag(result) > 0

    async def delete(self, id: int) -> bool:
        async with self.db.get_connection() as conn:
            result = await conn.execute("DELETE FROM tenants WHERE id = $1", id)
        return Database._parse_command_tag(result) > 0
