"""
asyncpg pool shared by the scheduler, the worker and the CLI.

Repositories are written against an ``Executor``: anything with
execute/fetch/fetchrow/fetchval. A ``Database`` runs each statement on its
own pooled connection (autocommit); the connection yielded by
``Database.transaction()`` runs every statement inside one transaction.
That is how a stage commits several repository writes together.
"""

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import asyncpg

from guardian.config.settings import get_settings

logger = logging.getLogger(__name__)


async def _register_codecs(conn: asyncpg.Connection) -> None:
    # JSONB columns (payloads, violations, metadata) round-trip as dict/list
    await conn.set_type_codec(
        "jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog"
    )


class Database:
    """
    Lazily created asyncpg pool.

    Example:
        async with Database() as db:
            await db.fetchval("SELECT count(*) FROM sources")

            async with db.transaction() as conn:
                await conn.execute("UPDATE ingestion_runs SET ...")
                await conn.execute("INSERT INTO audit_events ...")
    """

    def __init__(
        self,
        database_url: str | None = None,
        min_size: int | None = None,
        max_size: int | None = None,
    ):
        settings = get_settings()
        self._dsn = database_url or str(settings.database_url)
        self._pool_size = (
            min_size or settings.db_pool_min_size,
            max_size or settings.db_pool_max_size,
        )
        self._command_timeout = settings.db_command_timeout
        self._pool: asyncpg.Pool | None = None

    async def connect(self) -> None:
        """Create the pool. Calling it again is a no-op."""
        if self._pool is not None:
            return

        min_size, max_size = self._pool_size
        try:
            self._pool = await asyncpg.create_pool(
                self._dsn,
                min_size=min_size,
                max_size=max_size,
                command_timeout=self._command_timeout,
                init=_register_codecs,
            )
        except (OSError, asyncpg.PostgresError) as e:
            logger.error(f"Could not create database pool: {e}")
            raise
        logger.info(f"Database pool ready ({min_size}-{max_size} connections)")

    async def close(self) -> None:
        pool, self._pool = self._pool, None
        if pool is not None:
            await pool.close()
            logger.info("Database pool closed")

    async def __aenter__(self) -> "Database":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._pool

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[asyncpg.Connection]:
        """Hold one pooled connection, e.g. for session-level advisory locks."""
        async with self.pool.acquire() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """Connection whose statements commit together, or roll back on error."""
        async with self.pool.acquire() as conn, conn.transaction():
            yield conn

    async def execute(self, query: str, *args: Any) -> str:
        async with self.pool.acquire() as conn:
            return await conn.execute(query, *args)

    async def fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        async with self.pool.acquire() as conn:
            return await conn.fetch(query, *args)

    async def fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        async with self.pool.acquire() as conn:
            return await conn.fetchrow(query, *args)

    async def fetchval(self, query: str, *args: Any) -> Any:
        async with self.pool.acquire() as conn:
            return await conn.fetchval(query, *args)

    async def health_check(self) -> bool:
        """True when ``SELECT 1`` succeeds."""
        try:
            return await self.fetchval("SELECT 1") == 1
        except (OSError, RuntimeError, asyncpg.PostgresError) as e:
            logger.warning(f"Database health check failed: {e}")
            return False


# Anything repositories can issue queries through
Executor = Database | asyncpg.Connection
