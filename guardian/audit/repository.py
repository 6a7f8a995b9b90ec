"""Database repository for the audit_events table."""

import logging

from guardian.audit.schemas import ActorType, AuditEvent, AuditEventType, EntityType
from guardian.storage.database import Executor

logger = logging.getLogger(__name__)

_CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS audit_events (
    id            TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
    event_type    TEXT NOT NULL,
    entity_type   TEXT NOT NULL,
    entity_id     TEXT NOT NULL,
    actor_type    TEXT NOT NULL,
    actor_user_id TEXT,
    country_code  TEXT,
    channel       TEXT,
    message       TEXT,
    payload       JSONB NOT NULL DEFAULT '{}',
    created_at    TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_audit_events_entity
    ON audit_events(entity_type, entity_id, created_at);
"""

_INSERT_SQL = """
INSERT INTO audit_events (
    event_type, entity_type, entity_id, actor_type, actor_user_id,
    country_code, channel, message, payload
)
VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
RETURNING *
"""


def _record_to_event(record) -> AuditEvent:
    return AuditEvent(
        id=record["id"],
        event_type=AuditEventType(record["event_type"]),
        entity_type=EntityType(record["entity_type"]),
        entity_id=record["entity_id"],
        actor_type=ActorType(record["actor_type"]),
        actor_user_id=record["actor_user_id"],
        country_code=record["country_code"],
        channel=record["channel"],
        message=record["message"],
        payload=dict(record["payload"]) if record["payload"] else {},
        created_at=record["created_at"],
    )


class AuditRepository:
    """Append-only writer (and reader) for audit events."""

    def __init__(self, executor: Executor) -> None:
        self._db = executor

    async def create_table(self) -> None:
        await self._db.execute(_CREATE_TABLE_SQL)
        logger.info("Audit table ensured")

    async def record(
        self,
        event_type: AuditEventType,
        entity_type: EntityType,
        entity_id: str,
        actor_type: ActorType = ActorType.SYSTEM,
        message: str | None = None,
        payload: dict | None = None,
        country_code: str | None = None,
        channel: str | None = None,
        actor_user_id: str | None = None,
    ) -> AuditEvent:
        """Append one event."""
        row = await self._db.fetchrow(
            _INSERT_SQL,
            event_type.value,
            entity_type.value,
            entity_id,
            actor_type.value,
            actor_user_id,
            country_code,
            channel,
            message,
            payload or {},
        )
        return _record_to_event(row)
