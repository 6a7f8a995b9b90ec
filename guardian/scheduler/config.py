"""Scheduler configuration."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SchedulerConfig(BaseSettings):
    """
    Configuration for the periodic ingestion scheduler.

    All settings can be overridden via environment variables prefixed with SCHEDULER_.

    Example:
        SCHEDULER_INTERVAL_SECONDS=30
    """

    model_config = SettingsConfigDict(
        env_prefix="SCHEDULER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    interval_seconds: float = Field(
        default=60.0,
        gt=0.0,
        le=3600.0,
        description="Time between sweeps for due sources.",
    )
    lock_key: int = Field(
        default=3,
        description="PostgreSQL advisory lock key held during a sweep.",
    )
