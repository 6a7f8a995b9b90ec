"""Audit trail event model. Events are append-only."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class AuditEventType(str, Enum):
    INGESTION_RUN_QUEUED = "INGESTION_RUN_QUEUED"
    INGESTION_RUN_STARTED = "INGESTION_RUN_STARTED"
    INGESTION_RUN_COMPLETED = "INGESTION_RUN_COMPLETED"
    INGESTION_RUN_FAILED = "INGESTION_RUN_FAILED"


class EntityType(str, Enum):
    INGESTION_RUN = "INGESTION_RUN"
    SOURCE = "SOURCE"


class ActorType(str, Enum):
    SYSTEM = "SYSTEM"
    USER = "USER"


@dataclass
class AuditEvent:
    id: str
    event_type: AuditEventType
    entity_type: EntityType
    entity_id: str
    actor_type: ActorType = ActorType.SYSTEM
    actor_user_id: str | None = None
    country_code: str | None = None
    channel: str | None = None
    message: str | None = None
    payload: dict = field(default_factory=dict)
    created_at: datetime | None = None
