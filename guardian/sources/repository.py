"""Database repository for the sources table."""

import logging
from datetime import datetime

from guardian.sources.schemas import Channel, Source
from guardian.storage.database import Executor

logger = logging.getLogger(__name__)

_CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS sources (
    id                      TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
    channel                 TEXT NOT NULL,
    country_code            TEXT NOT NULL,
    display_name            TEXT NOT NULL DEFAULT '',
    crawl_frequency_minutes INTEGER,
    is_enabled              BOOLEAN NOT NULL DEFAULT TRUE,
    is_deleted              BOOLEAN NOT NULL DEFAULT FALSE,
    last_run_at             TIMESTAMPTZ,
    next_run_at             TIMESTAMPTZ,
    start_urls              TEXT[] NOT NULL DEFAULT '{}',
    metadata                JSONB NOT NULL DEFAULT '{}',
    created_at              TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at              TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_sources_due
    ON sources(next_run_at)
    WHERE is_enabled = TRUE AND is_deleted = FALSE
      AND crawl_frequency_minutes IS NOT NULL;
"""

_INSERT_SQL = """
INSERT INTO sources (
    channel, country_code, display_name, crawl_frequency_minutes,
    is_enabled, start_urls, metadata
)
VALUES ($1, $2, $3, $4, $5, $6, $7)
RETURNING *
"""

_FIND_DUE_SQL = """
SELECT * FROM sources
WHERE is_enabled = TRUE
  AND is_deleted = FALSE
  AND crawl_frequency_minutes IS NOT NULL
  AND (
    next_run_at <= $1
    OR (next_run_at IS NULL AND last_run_at IS NULL)
  )
ORDER BY next_run_at NULLS FIRST, id
"""

_UPDATE_SCHEDULE_SQL = """
UPDATE sources
SET last_run_at = $2, next_run_at = $3, updated_at = NOW()
WHERE id = $1
"""


def _record_to_source(record) -> Source:
    """Convert an asyncpg Record to a Source dataclass."""
    return Source(
        id=record["id"],
        channel=Channel(record["channel"]),
        country_code=record["country_code"],
        display_name=record["display_name"],
        crawl_frequency_minutes=record["crawl_frequency_minutes"],
        is_enabled=record["is_enabled"],
        is_deleted=record["is_deleted"],
        last_run_at=record["last_run_at"],
        next_run_at=record["next_run_at"],
        start_urls=list(record["start_urls"] or []),
        metadata=dict(record["metadata"]) if record["metadata"] else {},
    )


class SourcesRepository:
    """Reads sources and maintains their run schedule."""

    def __init__(self, executor: Executor) -> None:
        self._db = executor

    async def create_table(self) -> None:
        """Create the sources table and indexes (idempotent)."""
        await self._db.execute(_CREATE_TABLE_SQL)
        logger.info("Sources table ensured")

    async def create(
        self,
        channel: Channel,
        country_code: str,
        display_name: str = "",
        crawl_frequency_minutes: int | None = None,
        start_urls: list[str] | None = None,
        metadata: dict | None = None,
        is_enabled: bool = True,
    ) -> Source:
        """Insert a source and return it with its generated id."""
        row = await self._db.fetchrow(
            _INSERT_SQL,
            channel.value,
            country_code,
            display_name,
            crawl_frequency_minutes,
            is_enabled,
            start_urls or [],
            metadata or {},
        )
        return _record_to_source(row)

    async def get_by_id(self, source_id: str) -> Source | None:
        """Fetch one source, deleted or not."""
        row = await self._db.fetchrow(
            "SELECT * FROM sources WHERE id = $1",
            source_id,
        )
        return _record_to_source(row) if row else None

    async def find_due(self, now: datetime) -> list[Source]:
        """Sources a sweep at ``now`` should queue.

        Enabled, not deleted, with a frequency, and either past their
        ``next_run_at`` or never run and never scheduled.
        """
        rows = await self._db.fetch(_FIND_DUE_SQL, now)
        return [_record_to_source(r) for r in rows]

    async def update_schedule(
        self,
        source_id: str,
        last_run_at: datetime | None,
        next_run_at: datetime | None,
    ) -> None:
        """Write the run-tracking timestamps back to the source."""
        await self._db.execute(
            _UPDATE_SCHEDULE_SQL,
            source_id,
            last_run_at,
            next_run_at,
        )
