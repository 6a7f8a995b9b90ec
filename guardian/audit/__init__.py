"""Append-only audit trail."""

from guardian.audit.repository import AuditRepository
from guardian.audit.schemas import ActorType, AuditEvent, AuditEventType, EntityType

__all__ = ["ActorType", "AuditEvent", "AuditEventType", "AuditRepository", "EntityType"]
