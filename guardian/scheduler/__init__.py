"""Periodic scheduler that queues ingestion runs for due sources."""

from guardian.scheduler.config import SchedulerConfig
from guardian.scheduler.service import IngestionScheduler, queue_due_ingestion_runs

__all__ = ["IngestionScheduler", "SchedulerConfig", "queue_due_ingestion_runs"]
