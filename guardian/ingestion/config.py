"""
Ingestion queue and worker configuration.

Tuning notes:
    - idle_timeout_ms is also the retry delay for a failed run: a job the
      worker leaves unacknowledged is reclaimed once it has been idle this
      long. Keep it above the slowest expected run, otherwise a second
      worker starts the same run while the first is still busy.
    - max_delivery_attempts counts the first delivery, so 3 means two
      whole-run retries before the job lands in the dead letter stream.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class IngestionConfig(BaseSettings):
    """
    Configuration for the ingestion job queue and worker.

    All settings can be overridden via environment variables prefixed with INGESTION_.

    Example:
        INGESTION_IDLE_TIMEOUT_MS=600000
        INGESTION_MAX_DELIVERY_ATTEMPTS=5
    """

    model_config = SettingsConfigDict(
        env_prefix="INGESTION_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Queue
    stream_name: str = Field(default="ingestion-run")
    consumer_group: str = Field(default="ingestion_workers")
    dlq_stream_name: str = Field(default="ingestion-run:dlq")
    max_stream_length: int = Field(default=50_000, ge=1_000)

    # Reclaim / retry
    idle_timeout_ms: int = Field(
        default=300_000,
        ge=1_000,
        description="Idle time before an unacknowledged job is redelivered.",
    )
    max_delivery_attempts: int = Field(default=3, ge=1, le=20)

    # Worker
    block_ms: int = Field(
        default=5_000,
        ge=100,
        description="How long one XREADGROUP call waits for new jobs.",
    )
    connector_requests_per_minute: int = Field(
        default=60,
        ge=1,
        description="Outbound request budget per connector instance.",
    )
