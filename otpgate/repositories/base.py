"""Base repository class."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Generic, Optional, TypeVar

from otpgate.models.database import Database

T = TypeVar("T")
K = TypeVar("K")


class BaseRepository(ABC, Generic[T, K]):
    """Base repository with common CRUD operations keyed by ``K``."""

    def __init__(self, database: Database):
        """
        Initialize repository with database connection.

        Args:
            database: Database instance
        """
        self.db = database

    @abstractmethod
    async def get_by_id(self, id: K) -> Optional[T]:
        """
        Get entity by ID.

        Args:
            id: Entity ID

        Returns:
            Entity or None if not found
        """

    @abstractmethod
    async def create(self, data: Dict[str, Any]) -> K:
        """
        Create new entity.

        Args:
            data: Entity data

        Returns:
            Created entity ID
        """

    @abstractmethod
    async def update(self, id: K, data: Dict[str, Any]) -> bool:
        """
        Update entity.

        Args:
            id: Entity ID
            data: Update data

        Returns:
            True if updated, False otherwise
        """

    @abstractmethod
    async def delete(self, id: K) -> bool:
        """
        Delete entity.

        Args:
            id: Entity ID

        Returns:
            True if deleted, False otherwise
        """
