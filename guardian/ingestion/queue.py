"""
Redis Streams queue for ingestion run jobs.

The scheduler publishes ``{source_id, run_id}`` after creating the run;
ingestion workers consume and execute it. The publisher's trace context
rides along in the ``traceparent`` field.
"""

import logging
import time
from dataclasses import dataclass

from guardian.config.settings import get_settings
from guardian.ingestion.config import IngestionConfig
from guardian.observability.tracing import TRACE_PARENT_FIELD, inject_trace_context
from guardian.queues import BaseRedisQueue, QueueConfig, StreamConfig

logger = logging.getLogger(__name__)

JOB_NAME = "ingestion-run"


@dataclass
class IngestionJob:
    """One queued ingestion run."""

    source_id: str
    run_id: str
    message_id: str
    retry_count: int = 0
    traceparent: str | None = None

    @property
    def trace_fields(self) -> dict[str, str]:
        return {TRACE_PARENT_FIELD: self.traceparent} if self.traceparent else {}


class IngestionQueue(BaseRedisQueue[IngestionJob]):
    """
    Queue of ingestion runs waiting for a worker.

    Usage:
        async with IngestionQueue() as queue:
            await queue.publish(source.id, run.id)

            async for job in queue.consume():
                ...
                await queue.ack(job.message_id)
    """

    def __init__(
        self,
        config: IngestionConfig | None = None,
        redis_url: str | None = None,
    ):
        self._config = config or IngestionConfig()

        super().__init__(
            redis_url=redis_url or str(get_settings().redis_url),
            queue_config=QueueConfig(
                idle_timeout_ms=self._config.idle_timeout_ms,
                max_delivery_attempts=self._config.max_delivery_attempts,
            ),
        )

    def _get_stream_config(self) -> StreamConfig:
        return StreamConfig(
            stream_name=self._config.stream_name,
            consumer_group=self._config.consumer_group,
            dlq_stream_name=self._config.dlq_stream_name,
            max_stream_length=self._config.max_stream_length,
        )

    def _get_consumer_prefix(self) -> str:
        return "ingestion_worker"

    def _parse_job(self, message_id: str, fields: dict[str, str]) -> IngestionJob:
        """Parse a stream message; a missing id raises KeyError (dead-lettered)."""
        return IngestionJob(
            source_id=fields["source_id"],
            run_id=fields["run_id"],
            message_id=message_id,
            traceparent=fields.get(TRACE_PARENT_FIELD),
        )

    def _set_job_retry_count(self, job: IngestionJob, retry_count: int) -> None:
        job.retry_count = retry_count

    async def publish(self, source_id: str, run_id: str) -> str:
        """
        Enqueue a run.

        Returns:
            Stream message id
        """
        message_id = await self.redis.xadd(
            name=self.stream_config.stream_name,
            fields={
                "job": JOB_NAME,
                "source_id": source_id,
                "run_id": run_id,
                "queued_at": str(time.time()),
                **inject_trace_context(),
            },
            maxlen=self.stream_config.max_stream_length,
            approximate=True,
        )

        logger.debug(f"Published ingestion job run_id={run_id} source_id={source_id}")
        return str(message_id)
