"""Database repository for content items, revisions and analysis results."""

import logging
from datetime import datetime

from guardian.analysis.schemas import AnalysisOutput, ComplianceStatus
from guardian.content.schemas import (
    AnalysisResult,
    ContentItem,
    ContentRevision,
    ContentType,
)
from guardian.ingestion.schemas import NormalizedItem
from guardian.sources.schemas import Channel, Source
from guardian.storage.database import Executor

logger = logging.getLogger(__name__)

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS content_items (
    id                  TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
    source_id           TEXT NOT NULL REFERENCES sources(id),
    channel             TEXT NOT NULL,
    country_code        TEXT NOT NULL,
    content_type        TEXT NOT NULL,
    external_id         TEXT NOT NULL,
    url                 TEXT,
    author_handle       TEXT,
    published_at        TIMESTAMPTZ,
    current_revision_id TEXT,
    last_seen_at        TIMESTAMPTZ,
    created_at          TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (source_id, external_id)
);

CREATE TABLE IF NOT EXISTS content_revisions (
    id                   TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
    content_id           TEXT NOT NULL REFERENCES content_items(id),
    revision_number      INTEGER NOT NULL,
    normalized_text_hash TEXT NOT NULL,
    content_key          TEXT NOT NULL,
    run_id               TEXT,
    title                TEXT,
    main_text            TEXT,
    caption              TEXT,
    description          TEXT,
    comment_text         TEXT,
    ocr_text             TEXT,
    transcript           TEXT,
    tags                 TEXT[] NOT NULL DEFAULT '{}',
    created_at           TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (content_id, revision_number)
);

CREATE INDEX IF NOT EXISTS idx_content_revisions_run
    ON content_revisions(content_id, run_id);

CREATE TABLE IF NOT EXISTS analysis_results (
    id                  TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
    revision_id         TEXT NOT NULL REFERENCES content_revisions(id),
    content_id          TEXT NOT NULL REFERENCES content_items(id),
    compliance_status   TEXT NOT NULL,
    violations          JSONB NOT NULL DEFAULT '[]',
    language_detected   TEXT,
    language_confidence DOUBLE PRECISION,
    uncertain_reason    TEXT,
    model               TEXT,
    latency_ms          INTEGER,
    created_at          TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_analysis_results_revision
    ON analysis_results(revision_id);
"""

# xmax = 0 only for a row this statement inserted
_UPSERT_ITEM_SQL = """
INSERT INTO content_items (
    source_id, channel, country_code, content_type, external_id,
    url, author_handle, published_at, last_seen_at
)
VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
ON CONFLICT (source_id, external_id) DO UPDATE SET
    url = COALESCE(EXCLUDED.url, content_items.url),
    author_handle = COALESCE(EXCLUDED.author_handle, content_items.author_handle),
    published_at = COALESCE(EXCLUDED.published_at, content_items.published_at),
    last_seen_at = EXCLUDED.last_seen_at
RETURNING *, (xmax = 0) AS inserted
"""

_INSERT_REVISION_SQL = """
INSERT INTO content_revisions (
    content_id, revision_number, normalized_text_hash, content_key,
    title, main_text, caption, description, comment_text, ocr_text,
    transcript, tags, run_id
)
VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
RETURNING *
"""

_INSERT_RESULT_SQL = """
INSERT INTO analysis_results (
    revision_id, content_id, compliance_status, violations,
    language_detected, language_confidence, uncertain_reason, model, latency_ms
)
VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
RETURNING *
"""


def _record_to_item(record) -> ContentItem:
    return ContentItem(
        id=record["id"],
        source_id=record["source_id"],
        channel=Channel(record["channel"]),
        country_code=record["country_code"],
        content_type=ContentType(record["content_type"]),
        external_id=record["external_id"],
        url=record["url"],
        author_handle=record["author_handle"],
        published_at=record["published_at"],
        current_revision_id=record["current_revision_id"],
        last_seen_at=record["last_seen_at"],
    )


def _record_to_revision(record) -> ContentRevision:
    return ContentRevision(
        id=record["id"],
        content_id=record["content_id"],
        revision_number=record["revision_number"],
        normalized_text_hash=record["normalized_text_hash"],
        content_key=record["content_key"],
        run_id=record["run_id"],
        title=record["title"],
        main_text=record["main_text"],
        caption=record["caption"],
        description=record["description"],
        comment_text=record["comment_text"],
        ocr_text=record["ocr_text"],
        transcript=record["transcript"],
        tags=list(record["tags"] or []),
        created_at=record["created_at"],
    )


def _record_to_result(record) -> AnalysisResult:
    return AnalysisResult(
        id=record["id"],
        revision_id=record["revision_id"],
        content_id=record["content_id"],
        compliance_status=ComplianceStatus(record["compliance_status"]),
        violations=list(record["violations"] or []),
        language_detected=record["language_detected"],
        language_confidence=record["language_confidence"],
        uncertain_reason=record["uncertain_reason"],
        model=record["model"],
        latency_ms=record["latency_ms"],
        created_at=record["created_at"],
    )


class ContentRepository:
    """Content items, their revision history and analysis results."""

    def __init__(self, executor: Executor) -> None:
        self._db = executor

    async def create_tables(self) -> None:
        """Create content tables (idempotent). Requires the sources table."""
        await self._db.execute(_CREATE_TABLES_SQL)
        logger.info("Content tables ensured")

    async def upsert_item(
        self,
        source: Source,
        item: NormalizedItem,
        seen_at: datetime,
    ) -> tuple[ContentItem, bool]:
        """
        Find or create the content item for ``(source.id, item.external_id)``.

        The upsert locks the row until the surrounding transaction ends, so
        two runs cannot number revisions of the same item concurrently.

        Returns:
            (content_item, created)
        """
        row = await self._db.fetchrow(
            _UPSERT_ITEM_SQL,
            source.id,
            source.channel.value,
            source.country_code,
            ContentType.for_channel(source.channel).value,
            item.external_id,
            item.url,
            item.author_handle,
            item.published_at,
            seen_at,
        )
        return _record_to_item(row), bool(row["inserted"])

    async def latest_revision_number(self, content_id: str) -> int:
        """Highest revision number for the item, 0 when it has none."""
        value = await self._db.fetchval(
            "SELECT MAX(revision_number) FROM content_revisions WHERE content_id = $1",
            content_id,
        )
        return value or 0

    async def create_revision(
        self,
        content_id: str,
        revision_number: int,
        item: NormalizedItem,
        run_id: str | None = None,
    ) -> ContentRevision:
        row = await self._db.fetchrow(
            _INSERT_REVISION_SQL,
            content_id,
            revision_number,
            item.normalized_text_hash,
            item.content_key,
            item.title,
            item.main_text,
            item.caption,
            item.description,
            item.comment_text,
            item.ocr_text,
            item.transcript,
            item.tags,
            run_id,
        )
        return _record_to_revision(row)

    async def get_run_revision(self, content_id: str, run_id: str) -> ContentRevision | None:
        """Latest revision of the item written by ``run_id``, if any."""
        row = await self._db.fetchrow(
            """
            SELECT * FROM content_revisions
            WHERE content_id = $1 AND run_id = $2
            ORDER BY revision_number DESC
            LIMIT 1
            """,
            content_id,
            run_id,
        )
        return _record_to_revision(row) if row else None

    async def set_current_revision(self, content_id: str, revision_id: str) -> None:
        await self._db.execute(
            "UPDATE content_items SET current_revision_id = $2 WHERE id = $1",
            content_id,
            revision_id,
        )

    async def get_revision_hash(
        self,
        content_id: str,
        revision_number: int,
    ) -> str | None:
        """Text hash of one revision, or None if it does not exist."""
        return await self._db.fetchval(
            """
            SELECT normalized_text_hash FROM content_revisions
            WHERE content_id = $1 AND revision_number = $2
            """,
            content_id,
            revision_number,
        )

    async def get_analysis_result(self, revision_id: str) -> AnalysisResult | None:
        row = await self._db.fetchrow(
            """
            SELECT * FROM analysis_results
            WHERE revision_id = $1
            ORDER BY created_at DESC
            LIMIT 1
            """,
            revision_id,
        )
        return _record_to_result(row) if row else None

    async def save_analysis_result(
        self,
        revision: ContentRevision,
        output: AnalysisOutput,
        model: str | None = None,
        latency_ms: int | None = None,
    ) -> AnalysisResult:
        """Persist the classifier verdict for a revision."""
        row = await self._db.fetchrow(
            _INSERT_RESULT_SQL,
            revision.id,
            revision.content_id,
            output.compliance_status.value,
            [v.model_dump(mode="json") for v in output.violations],
            output.language_detected,
            output.language_confidence,
            output.uncertain_reason,
            model,
            latency_ms,
        )
        return _record_to_result(row)
