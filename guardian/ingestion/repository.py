"""Database repository for ingestion runs and ingestion items."""

import logging
from datetime import datetime

from guardian.ingestion.schemas import (
    FETCH_STATUS_OK,
    FetchedItem,
    IngestionItem,
    IngestionRun,
    RunStatus,
    RunType,
)
from guardian.sources.schemas import Channel, Source
from guardian.storage.database import Executor

logger = logging.getLogger(__name__)

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS ingestion_runs (
    id                 TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
    source_id          TEXT NOT NULL REFERENCES sources(id),
    run_type           TEXT NOT NULL,
    channel            TEXT NOT NULL,
    country_code       TEXT NOT NULL,
    status             TEXT NOT NULL DEFAULT 'PENDING',
    started_at         TIMESTAMPTZ,
    completed_at       TIMESTAMPTZ,
    items_fetched      INTEGER NOT NULL DEFAULT 0,
    items_changed      INTEGER NOT NULL DEFAULT 0,
    items_failed       INTEGER NOT NULL DEFAULT 0,
    analysis_queued    INTEGER NOT NULL DEFAULT 0,
    analysis_completed INTEGER NOT NULL DEFAULT 0,
    last_error         TEXT,
    created_at         TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_ingestion_runs_source
    ON ingestion_runs(source_id, created_at DESC);

CREATE TABLE IF NOT EXISTS ingestion_items (
    id           TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
    run_id       TEXT NOT NULL REFERENCES ingestion_runs(id),
    source_id    TEXT NOT NULL REFERENCES sources(id),
    channel      TEXT NOT NULL,
    country_code TEXT NOT NULL,
    external_id  TEXT NOT NULL,
    url          TEXT,
    fetch_status TEXT NOT NULL,
    error        TEXT,
    created_at   TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_ingestion_items_run
    ON ingestion_items(run_id, fetch_status);
"""

_INSERT_RUN_SQL = """
INSERT INTO ingestion_runs (source_id, run_type, channel, country_code, status, started_at)
VALUES ($1, $2, $3, $4, $5, $6)
RETURNING *
"""

_MARK_RUNNING_SQL = """
UPDATE ingestion_runs
SET status = 'RUNNING', started_at = COALESCE(started_at, $2),
    completed_at = NULL, last_error = NULL
WHERE id = $1
"""

_BULK_INSERT_ITEMS_SQL = """
INSERT INTO ingestion_items (
    run_id, source_id, channel, country_code, external_id, url, fetch_status, error
)
SELECT $1, $2, $3, $4, t.external_id, t.url, t.fetch_status, t.error
FROM unnest($5::text[], $6::text[], $7::text[], $8::text[])
    AS t(external_id, url, fetch_status, error)
RETURNING *
"""

_FINISH_RUN_SQL = """
UPDATE ingestion_runs
SET status = $2, completed_at = $3, items_failed = $4
WHERE id = $1
"""

_FAIL_RUN_SQL = """
UPDATE ingestion_runs
SET status = 'FAILED', completed_at = $2, last_error = $3
WHERE id = $1
"""

# Counters a stage may persist through update_counters()
_COUNTER_COLUMNS = frozenset(
    {
        "items_fetched",
        "items_changed",
        "items_failed",
        "analysis_queued",
        "analysis_completed",
    }
)


def _record_to_run(record) -> IngestionRun:
    """Convert an asyncpg Record to an IngestionRun."""
    return IngestionRun(
        id=record["id"],
        source_id=record["source_id"],
        run_type=RunType(record["run_type"]),
        channel=Channel(record["channel"]),
        country_code=record["country_code"],
        status=RunStatus(record["status"]),
        started_at=record["started_at"],
        completed_at=record["completed_at"],
        items_fetched=record["items_fetched"],
        items_changed=record["items_changed"],
        items_failed=record["items_failed"],
        analysis_queued=record["analysis_queued"],
        analysis_completed=record["analysis_completed"],
        last_error=record["last_error"],
        created_at=record["created_at"],
    )


def _record_to_item(record) -> IngestionItem:
    return IngestionItem(
        id=record["id"],
        run_id=record["run_id"],
        source_id=record["source_id"],
        channel=Channel(record["channel"]),
        country_code=record["country_code"],
        external_id=record["external_id"],
        url=record["url"],
        fetch_status=record["fetch_status"],
        error=record["error"],
        created_at=record["created_at"],
    )


class IngestionRunRepository:
    """Persistence for ingestion_runs and ingestion_items.

    Runs are never deleted. Items are insert-only.
    """

    def __init__(self, executor: Executor) -> None:
        self._db = executor

    async def create_tables(self) -> None:
        """Create both tables and their indexes (idempotent)."""
        await self._db.execute(_CREATE_TABLES_SQL)
        logger.info("Ingestion tables ensured")

    async def create_run(
        self,
        source: Source,
        status: RunStatus = RunStatus.RUNNING,
        started_at: datetime | None = None,
    ) -> IngestionRun:
        """Insert a run for ``source`` and return it."""
        row = await self._db.fetchrow(
            _INSERT_RUN_SQL,
            source.id,
            RunType.for_channel(source.channel).value,
            source.channel.value,
            source.country_code,
            status.value,
            started_at,
        )
        return _record_to_run(row)

    async def get_run(self, run_id: str) -> IngestionRun | None:
        row = await self._db.fetchrow(
            "SELECT * FROM ingestion_runs WHERE id = $1",
            run_id,
        )
        return _record_to_run(row) if row else None

    async def mark_running(self, run_id: str, started_at: datetime) -> None:
        """Set status RUNNING and clear a previous attempt's outcome. Keeps an existing started_at."""
        await self._db.execute(_MARK_RUNNING_SQL, run_id, started_at)

    async def update_counters(self, run_id: str, **counters: int) -> None:
        """Persist one or more run counters, e.g. ``items_fetched=12``."""
        if not counters:
            return
        unknown = set(counters) - _COUNTER_COLUMNS
        if unknown:
            raise ValueError(f"Unknown run counters: {sorted(unknown)}")

        names = sorted(counters)
        assignments = ", ".join(
            f"{name} = ${idx}" for idx, name in enumerate(names, start=2)
        )
        await self._db.execute(
            f"UPDATE ingestion_runs SET {assignments} WHERE id = $1",
            run_id,
            *(counters[name] for name in names),
        )

    async def finish_run(
        self,
        run_id: str,
        status: RunStatus,
        completed_at: datetime,
        items_failed: int,
    ) -> None:
        """Write the terminal status of a run that reached run-finish."""
        await self._db.execute(
            _FINISH_RUN_SQL,
            run_id,
            status.value,
            completed_at,
            items_failed,
        )

    async def fail_run(
        self,
        run_id: str,
        completed_at: datetime,
        last_error: str,
    ) -> None:
        await self._db.execute(_FAIL_RUN_SQL, run_id, completed_at, last_error)

    async def record_items(
        self,
        run: IngestionRun,
        items: list[FetchedItem],
    ) -> list[IngestionItem]:
        """Insert one ingestion item per fetched item in a single statement."""
        if not items:
            return []

        rows = await self._db.fetch(
            _BULK_INSERT_ITEMS_SQL,
            run.id,
            run.source_id,
            run.channel.value,
            run.country_code,
            [i.external_id for i in items],
            [i.url for i in items],
            [i.fetch_status for i in items],
            [i.error for i in items],
        )
        logger.debug("Recorded %d ingestion items for run %s", len(rows), run.id)
        return [_record_to_item(r) for r in rows]

    async def count_failed_items(self, run_id: str) -> int:
        """Distinct external ids recorded for the run with a non-OK fetch status.

        Distinct because a retried run records its items again.
        """
        count = await self._db.fetchval(
            "SELECT COUNT(DISTINCT external_id) FROM ingestion_items "
            "WHERE run_id = $1 AND fetch_status <> $2",
            run_id,
            FETCH_STATUS_OK,
        )
        return count or 0
