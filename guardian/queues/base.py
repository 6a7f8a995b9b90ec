"""
Redis Streams job queue with at-least-once delivery.

Workers read through a consumer group. A job stays in the group's pending
entries list (PEL) until it is acknowledged, so a worker that dies or
decides not to acknowledge leaves the job behind for someone else. Every
pass of ``consume()`` first takes over PEL entries idle for longer than
``QueueConfig.idle_timeout_ms`` (XAUTOCLAIM, Redis 6.2+) and only then
reads new messages. Reclaim is therefore the retry path, and Redis' own
delivery counter bounds it: past ``max_delivery_attempts`` the job is
copied to the dead letter stream and acknowledged.
"""

import asyncio
import logging
import time
import uuid
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import redis.asyncio as redis

from guardian.observability.metrics import get_metrics
from guardian.queues.backoff import ExponentialBackoff
from guardian.queues.config import QueueConfig

logger = logging.getLogger(__name__)

JobT = TypeVar("JobT")

DLQ_MAX_LENGTH = 10_000

# Messages that _parse_job rejects; anything else is a bug and propagates
PARSE_ERRORS = (KeyError, ValueError)


@dataclass
class StreamConfig:
    """Where a queue's jobs live: stream, consumer group and dead letter stream."""

    stream_name: str
    consumer_group: str
    dlq_stream_name: str
    # Approximate MAXLEN applied on every publish
    max_stream_length: int = 50_000


class BaseRedisQueue(ABC, Generic[JobT]):
    """
    Consumer-group queue over one Redis stream.

    A subclass names its stream (``_get_stream_config``), prefixes its
    consumer names (``_get_consumer_prefix``), turns message fields into a
    job (``_parse_job``) and stores the number of earlier deliveries on it
    (``_set_job_retry_count``). Publishing is left to the subclass.

    Usage:
        async with IngestionQueue() as queue:
            async for job in queue.consume():
                await handle(job)
                await queue.ack(job.message_id)
    """

    def __init__(self, redis_url: str, queue_config: QueueConfig | None = None):
        self._redis_url = redis_url
        self._queue_config = queue_config or QueueConfig()

        self._redis: redis.Redis | None = None
        self._consumer_name: str | None = None
        self._stream_config: StreamConfig | None = None

    @abstractmethod
    def _get_stream_config(self) -> StreamConfig:
        ...

    @abstractmethod
    def _get_consumer_prefix(self) -> str:
        ...

    @abstractmethod
    def _parse_job(self, message_id: str, fields: dict[str, str]) -> JobT:
        """Build a job from message fields. KeyError/ValueError dead-letter the message."""
        ...

    @abstractmethod
    def _set_job_retry_count(self, job: JobT, retry_count: int) -> None:
        ...

    # -- connection -------------------------------------------------------

    async def connect(self) -> None:
        self._stream_config = self._get_stream_config()
        self._consumer_name = f"{self._get_consumer_prefix()}_{uuid.uuid4().hex[:8]}"
        self._redis = redis.from_url(
            self._redis_url, encoding="utf-8", decode_responses=True
        )
        await self._ensure_group()
        logger.info(
            f"Queue {self._stream_config.stream_name} ready, "
            f"consumer {self._consumer_name}"
        )

    async def _ensure_group(self) -> None:
        """Create the consumer group (and the stream) unless it exists."""
        try:
            await self.redis.xgroup_create(
                name=self.stream_config.stream_name,
                groupname=self.stream_config.consumer_group,
                id="0",
                mkstream=True,
            )
        except redis.ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise
        else:
            logger.info(
                f"Created consumer group {self.stream_config.consumer_group} "
                f"on {self.stream_config.stream_name}"
            )

    async def close(self) -> None:
        client, self._redis = self._redis, None
        if client is not None:
            await client.aclose()
            logger.info("Queue connection closed")

    async def __aenter__(self) -> "BaseRedisQueue[JobT]":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def redis(self) -> redis.Redis:
        if self._redis is None:
            raise RuntimeError("Not connected to Redis. Call connect() first.")
        return self._redis

    @property
    def stream_config(self) -> StreamConfig:
        if self._stream_config is None:
            raise RuntimeError("Not connected. Call connect() first.")
        return self._stream_config

    # -- consuming ----------------------------------------------------------

    async def consume(self, count: int = 1, block_ms: int = 5000) -> AsyncIterator[JobT]:
        """
        Yield jobs until cancelled: reclaimed jobs first, then new ones.

        Redis errors never end the iterator. They are logged and the pass is
        retried after an exponential backoff that resets on the next
        successful read.

        Args:
            count: Maximum new jobs per XREADGROUP
            block_ms: How long XREADGROUP blocks waiting for new jobs
        """
        if self._consumer_name is None:
            raise RuntimeError("Not connected. Call connect() first.")

        backoff = ExponentialBackoff(
            base_delay=self._queue_config.backoff_base_delay,
            max_delay=self._queue_config.backoff_max_delay,
        )
        reclaim_count = max(count, self._queue_config.reclaim_batch_size)

        while True:
            try:
                async for job in self._reclaim_pending(reclaim_count):
                    yield job
                async for job in self._read_new(count, block_ms):
                    yield job
                backoff.reset()
            except asyncio.CancelledError:
                logger.info("Consumer cancelled, stopping")
                return
            except redis.RedisError as e:
                delay = backoff.next_delay()
                logger.error(
                    f"Redis error on {self.stream_config.stream_name}, "
                    f"retrying in {delay:.1f}s: {e}"
                )
                await asyncio.sleep(delay)

    async def _read_new(self, count: int, block_ms: int) -> AsyncIterator[JobT]:
        response = await self.redis.xreadgroup(
            groupname=self.stream_config.consumer_group,
            consumername=self._consumer_name,
            streams={self.stream_config.stream_name: ">"},
            count=count,
            block=block_ms,
        )
        # [[stream, [(message_id, fields), ...]]] or empty after the block
        for _stream, entries in response or []:
            for message_id, fields in entries:
                job = await self._parse_or_dead_letter(message_id, fields)
                if job is not None:
                    self._set_job_retry_count(job, 0)
                    yield job

    async def _reclaim_pending(self, count: int) -> AsyncIterator[JobT]:
        """
        Take over jobs idle past ``idle_timeout_ms`` from any consumer.

        A reclaimed job carries ``retry_count = deliveries - 1``; one already
        delivered more than ``max_delivery_attempts`` times is dead-lettered.
        """
        stream = self.stream_config.stream_name
        try:
            # [next_start_id, [(message_id, fields), ...], [deleted_ids]]
            result = await self.redis.xautoclaim(
                name=stream,
                groupname=self.stream_config.consumer_group,
                consumername=self._consumer_name,
                min_idle_time=self._queue_config.idle_timeout_ms,
                start_id="0-0",
                count=count,
            )
        except redis.ResponseError as e:
            if "unknown command" not in str(e).lower():
                raise
            logger.warning("Redis lacks XAUTOCLAIM (needs 6.2+), pending jobs are not reclaimed")
            return

        claimed = result[1] if result else []
        if not claimed:
            return

        logger.info(f"Reclaimed {len(claimed)} idle jobs on {stream}")
        metrics = get_metrics()
        deliveries_by_id = await self._delivery_counts({message_id for message_id, _ in claimed})
        max_attempts = self._queue_config.max_delivery_attempts

        for message_id, fields in claimed:
            deliveries = deliveries_by_id.get(message_id, 1)
            if deliveries > max_attempts:
                logger.warning(
                    f"Job {message_id} delivered {deliveries} times "
                    f"(limit {max_attempts}), dead-lettering"
                )
                await self._dead_letter(message_id, fields, "max_retries_exceeded")
                metrics.dlq_max_retries.labels(queue=stream).inc()
                continue

            job = await self._parse_or_dead_letter(message_id, fields)
            if job is None:
                continue
            self._set_job_retry_count(job, deliveries - 1)
            metrics.pending_reclaimed.labels(queue=stream).inc()
            yield job

    async def _delivery_counts(self, message_ids: set[str]) -> dict[str, int]:
        """times_delivered per message id, read from the PEL one id at a time."""
        counts: dict[str, int] = {}
        for message_id in message_ids:
            entries = await self.redis.xpending_range(
                name=self.stream_config.stream_name,
                groupname=self.stream_config.consumer_group,
                min=message_id,
                max=message_id,
                count=1,
            )
            if entries:
                counts[message_id] = entries[0]["times_delivered"]
        return counts

    async def _parse_or_dead_letter(self, message_id: str, fields: dict[str, str]) -> JobT | None:
        try:
            return self._parse_job(message_id, fields)
        except PARSE_ERRORS as e:
            logger.error(f"Cannot parse job {message_id}: {e!r}")
            await self._dead_letter(message_id, fields, f"parse_error: {e!r}")
            get_metrics().dlq_rejected.labels(
                queue=self.stream_config.stream_name,
                error_type=type(e).__name__,
            ).inc()
            return None

    # -- settling -----------------------------------------------------------

    async def ack(self, message_id: str) -> None:
        """Remove a finished job from the PEL."""
        await self.redis.xack(
            self.stream_config.stream_name,
            self.stream_config.consumer_group,
            message_id,
        )

    async def nack(self, message_id: str, error: str | None = None) -> None:
        """Give up on a job: copy it to the dead letter stream, then ack it.

        A job already trimmed from the stream is only acknowledged.
        """
        found = await self.redis.xrange(
            self.stream_config.stream_name, min=message_id, max=message_id
        )
        if found:
            await self._copy_to_dlq(message_id, found[0][1], error)
        await self.ack(message_id)

    async def _dead_letter(self, message_id: str, fields: dict[str, str], reason: str) -> None:
        await self._copy_to_dlq(message_id, fields, reason)
        await self.ack(message_id)

    async def _copy_to_dlq(
        self, message_id: str, fields: dict[str, str], error: str | None
    ) -> None:
        dlq_fields = {
            **fields,
            "original_id": message_id,
            "error": error or "unknown",
            "failed_at": str(time.time()),
        }
        await self.redis.xadd(
            self.stream_config.dlq_stream_name,
            dlq_fields,
            maxlen=DLQ_MAX_LENGTH,
            approximate=True,
        )
        logger.warning(f"Job {message_id} dead-lettered: {error}")

    # -- introspection ------------------------------------------------------

    async def get_pending_count(self) -> int:
        """Delivered but unacknowledged jobs across the group."""
        summary = await self.redis.xpending(
            self.stream_config.stream_name, self.stream_config.consumer_group
        )
        return summary["pending"] if summary else 0

    async def get_stream_length(self) -> int:
        length = await self.redis.xlen(self.stream_config.stream_name)
        get_metrics().set_queue_depth(self.stream_config.stream_name, length)
        return length

    async def health_check(self) -> bool:
        try:
            return bool(await self.redis.ping())
        except redis.RedisError:
            return False
