"""Process-wide database handle shared by the web application."""

import asyncio
from typing import Optional

from loguru import logger

from otpgate.models.database import Database


class DatabaseFactory:
    """Owns the single connected ``Database`` of the process."""

    _db: Optional[Database] = None
    _lock: Optional[asyncio.Lock] = None

    @classmethod
    def _guard(cls) -> asyncio.Lock:
        # Created lazily so it is made inside the running event loop
        if cls._lock is None:
            cls._lock = asyncio.Lock()
        return cls._lock

    @classmethod
    async def ensure_connected(
        cls, database_url: Optional[str] = None, pool_size: Optional[int] = None
    ) -> Database:
        """
        Return the shared database, opening its pool on first use.

        The URL and pool size only apply when the handle is first created.
        A handle whose pool was closed out from under it is reconnected.

        Args:
            database_url: PostgreSQL connection URL
            pool_size: Connection pool size

        Returns:
            Connected database
        """
        async with cls._guard():
            if cls._db is None:
                cls._db = Database(database_url=database_url, pool_size=pool_size)
            if cls._db.pool is None:
                await cls._db.connect()
                logger.info(f"Database pool opened (size {cls._db.pool_size})")
            return cls._db

    @classmethod
    async def close_instance(cls) -> None:
        """Close the shared database, if any. The next ``ensure_connected`` starts fresh."""
        async with cls._guard():
            db, cls._db = cls._db, None
            if db is not None:
                await db.close()
                logger.info("Database pool closed")
