"""Storage layer - PostgreSQL connection management."""

from guardian.storage.database import Database, Executor

__all__ = ["Database", "Executor"]
