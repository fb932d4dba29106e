"""Database models and connection management."""

from .database import Database, DatabaseState
from .db_factory import DatabaseFactory

__all__ = ["Database", "DatabaseState", "DatabaseFactory"]
