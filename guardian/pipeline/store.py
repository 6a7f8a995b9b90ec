"""
Store facade handed to pipeline stages and the scheduler.

Groups the per-table repositories behind one object so a stage can write
to several tables inside one transaction:

    async with store.transaction() as tx:
        await tx.runs.mark_running(run.id, now)
        await tx.audit.record(...)
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from guardian.audit.repository import AuditRepository
from guardian.content.repository import ContentRepository
from guardian.ingestion.repository import IngestionRunRepository
from guardian.sources.repository import SourcesRepository
from guardian.storage.database import Database, Executor


class PipelineStore:
    """Repositories bound to one executor (pool or transaction connection)."""

    def __init__(self, executor: Executor, database: Database | None = None):
        self.sources = SourcesRepository(executor)
        self.runs = IngestionRunRepository(executor)
        self.content = ContentRepository(executor)
        self.audit = AuditRepository(executor)
        self._database = database

    @classmethod
    def from_database(cls, database: Database) -> "PipelineStore":
        return cls(database, database=database)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["PipelineStore"]:
        """
        Yield a store whose repositories share one transaction.

        Inside a transaction this joins the enclosing one.
        """
        if self._database is None:
            yield self
            return

        async with self._database.transaction() as conn:
            yield PipelineStore(conn)

    async def create_tables(self) -> None:
        """Create every table the ingestion core uses, in dependency order."""
        await self.sources.create_table()
        await self.runs.create_tables()
        await self.content.create_tables()
        await self.audit.create_table()
