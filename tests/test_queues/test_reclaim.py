"""
Tests for Redis Streams pending message reclaim and dead-lettering.

Verifies that BaseRedisQueue:
- Reclaims idle jobs with the right retry count
- Dead-letters jobs past max delivery attempts
- Dead-letters unparseable messages instead of crashing the consumer
- Serves reclaimed jobs before new ones
"""

from dataclasses import dataclass
from unittest.mock import AsyncMock, patch

import pytest
from redis import ConnectionError as RedisConnectionError
from redis import ResponseError

from guardian.queues import BaseRedisQueue, QueueConfig, StreamConfig


@dataclass
class FakeJob:
    message_id: str
    payload: str
    retry_count: int = 0


class FakeQueue(BaseRedisQueue[FakeJob]):
    def __init__(self, queue_config: QueueConfig | None = None):
        super().__init__(redis_url="redis://localhost:6379", queue_config=queue_config)

    def _get_stream_config(self) -> StreamConfig:
        return StreamConfig(
            stream_name="jobs",
            consumer_group="job_workers",
            dlq_stream_name="jobs:dlq",
            max_stream_length=1000,
        )

    def _get_consumer_prefix(self) -> str:
        return "job_worker"

    def _parse_job(self, message_id: str, fields: dict[str, str]) -> FakeJob:
        return FakeJob(message_id=message_id, payload=fields["payload"])

    def _set_job_retry_count(self, job: FakeJob, retry_count: int) -> None:
        job.retry_count = retry_count


@pytest.fixture
def queue() -> FakeQueue:
    q = FakeQueue(QueueConfig(idle_timeout_ms=1_000, max_delivery_attempts=3))
    q._redis = AsyncMock()
    q._consumer_name = "job_worker_abc123"
    q._stream_config = q._get_stream_config()
    return q


async def collect(iterator):
    return [job async for job in iterator]


class TestQueueConfig:
    def test_defaults(self):
        config = QueueConfig()
        assert config.idle_timeout_ms == 300_000
        assert config.max_delivery_attempts == 3
        assert config.reclaim_batch_size == 10

    def test_stream_config_default_length(self):
        config = StreamConfig(stream_name="s", consumer_group="g", dlq_stream_name="s:dlq")
        assert config.max_stream_length == 50_000


class TestReclaim:
    async def test_reclaims_idle_messages(self, queue):
        queue._redis.xautoclaim.return_value = ["0-0", [("1-0", {"payload": "x"})], []]
        queue._redis.xpending_range.return_value = [
            {"message_id": "1-0", "consumer": "old", "times_delivered": 2}
        ]

        jobs = await collect(queue._reclaim_pending(count=10))

        assert len(jobs) == 1
        assert jobs[0].payload == "x"
        assert jobs[0].retry_count == 1
        queue._redis.xautoclaim.assert_awaited_once_with(
            name="jobs",
            groupname="job_workers",
            consumername="job_worker_abc123",
            min_idle_time=1_000,
            start_id="0-0",
            count=10,
        )

    async def test_delivery_count_found_behind_older_pending_entries(self, queue):
        # Older entries still being processed by other workers sit first in the PEL
        pel = [
            {"message_id": f"{n}-0", "consumer": "busy", "times_delivered": 1}
            for n in range(1, 9)
        ] + [{"message_id": "9-0", "consumer": "old", "times_delivered": 5}]

        def position(message_id, default):
            return default if message_id in ("-", "+") else int(message_id.split("-")[0])

        async def xpending_range(**kwargs):
            low = position(kwargs["min"], 0)
            high = position(kwargs["max"], len(pel))
            in_range = [e for e in pel if low <= position(e["message_id"], 0) <= high]
            return in_range[: kwargs["count"]]

        queue._redis.xautoclaim.return_value = ["0-0", [("9-0", {"payload": "a"})], []]
        queue._redis.xpending_range = xpending_range

        jobs = await collect(queue._reclaim_pending(count=10))

        assert jobs == []
        _, dlq_fields = queue._redis.xadd.await_args.args
        assert dlq_fields["original_id"] == "9-0"
        assert dlq_fields["error"] == "max_retries_exceeded"

    async def test_delivery_counts_are_read_per_message(self, queue):
        queue._redis.xautoclaim.return_value = [
            "0-0",
            [("9-0", {"payload": "a"}), ("10-0", {"payload": "b"})],
            [],
        ]
        queue._redis.xpending_range.return_value = []

        await collect(queue._reclaim_pending(count=10))

        ranges = sorted(
            (call.kwargs["min"], call.kwargs["max"], call.kwargs["count"])
            for call in queue._redis.xpending_range.await_args_list
        )
        assert ranges == [("10-0", "10-0", 1), ("9-0", "9-0", 1)]

    async def test_exhausted_message_goes_to_dlq(self, queue):
        queue._redis.xautoclaim.return_value = ["0-0", [("1-0", {"payload": "x"})], []]
        queue._redis.xpending_range.return_value = [
            {"message_id": "1-0", "consumer": "old", "times_delivered": 4}
        ]

        jobs = await collect(queue._reclaim_pending(count=10))

        assert jobs == []
        dlq_stream, dlq_fields = queue._redis.xadd.await_args.args
        assert dlq_stream == "jobs:dlq"
        assert dlq_fields["error"] == "max_retries_exceeded"
        assert dlq_fields["original_id"] == "1-0"
        assert dlq_fields["payload"] == "x"
        queue._redis.xack.assert_awaited_once_with("jobs", "job_workers", "1-0")

    async def test_last_allowed_attempt_is_delivered(self, queue):
        queue._redis.xautoclaim.return_value = ["0-0", [("1-0", {"payload": "x"})], []]
        queue._redis.xpending_range.return_value = [
            {"message_id": "1-0", "consumer": "old", "times_delivered": 3}
        ]

        jobs = await collect(queue._reclaim_pending(count=10))

        assert jobs[0].retry_count == 2
        queue._redis.xadd.assert_not_called()

    async def test_unparseable_reclaimed_message_goes_to_dlq(self, queue):
        queue._redis.xautoclaim.return_value = ["0-0", [("1-0", {"other": "x"})], []]
        queue._redis.xpending_range.return_value = []

        jobs = await collect(queue._reclaim_pending(count=10))

        assert jobs == []
        dlq_stream, dlq_fields = queue._redis.xadd.await_args.args
        assert dlq_stream == "jobs:dlq"
        assert dlq_fields["error"].startswith("parse_error")
        queue._redis.xack.assert_awaited_once()

    async def test_no_pending(self, queue):
        queue._redis.xautoclaim.return_value = ["0-0", [], []]

        assert await collect(queue._reclaim_pending(count=10)) == []
        queue._redis.xpending_range.assert_not_called()

    async def test_xautoclaim_unsupported_is_skipped(self, queue):
        queue._redis.xautoclaim.side_effect = ResponseError("ERR unknown command 'XAUTOCLAIM'")

        assert await collect(queue._reclaim_pending(count=10)) == []

    async def test_other_response_errors_propagate(self, queue):
        queue._redis.xautoclaim.side_effect = ResponseError("LOADING Redis is loading")

        with pytest.raises(ResponseError):
            await collect(queue._reclaim_pending(count=10))


class TestConsume:
    async def test_pending_before_new(self, queue):
        calls = []

        async def xautoclaim(**kwargs):
            calls.append("xautoclaim")
            return ["0-0", [("1-0", {"payload": "pending"})], []]

        async def xreadgroup(**kwargs):
            calls.append("xreadgroup")
            return [["jobs", [("2-0", {"payload": "new"})]]]

        queue._redis.xautoclaim = xautoclaim
        queue._redis.xreadgroup = xreadgroup
        queue._redis.xpending_range.return_value = []

        jobs = []
        async for job in queue.consume(count=1, block_ms=10):
            jobs.append(job)
            if len(jobs) == 2:
                break

        assert calls == ["xautoclaim", "xreadgroup"]
        assert [j.payload for j in jobs] == ["pending", "new"]
        assert jobs[1].retry_count == 0

    async def test_redis_error_backs_off_and_retries(self, queue):
        queue._redis.xautoclaim.return_value = ["0-0", [], []]
        queue._redis.xreadgroup.side_effect = [
            RedisConnectionError("down"),
            [["jobs", [("3-0", {"payload": "after"})]]],
        ]

        with patch("guardian.queues.base.asyncio.sleep", AsyncMock()) as sleep:
            async for job in queue.consume(count=1, block_ms=10):
                break

        assert job.payload == "after"
        sleep.assert_awaited_once()

    async def test_requires_connect(self):
        with pytest.raises(RuntimeError):
            async for _ in FakeQueue().consume():
                pass


class TestMessageHandling:
    async def test_nack_copies_to_dlq_and_acks(self, queue):
        queue._redis.xrange.return_value = [("5-0", {"payload": "p"})]

        await queue.nack("5-0", error="SourceNotFoundError: gone")

        dlq_stream, dlq_fields = queue._redis.xadd.await_args.args
        assert dlq_stream == "jobs:dlq"
        assert dlq_fields["error"] == "SourceNotFoundError: gone"
        queue._redis.xack.assert_awaited_once_with("jobs", "job_workers", "5-0")

    async def test_nack_of_trimmed_message_still_acks(self, queue):
        queue._redis.xrange.return_value = []

        await queue.nack("5-0")

        queue._redis.xadd.assert_not_called()
        queue._redis.xack.assert_awaited_once()


class TestLifecycle:
    async def test_context_manager(self):
        with patch("guardian.queues.base.redis") as redis_module:
            client = AsyncMock()
            redis_module.from_url.return_value = client

            async with FakeQueue() as q:
                assert q._consumer_name.startswith("job_worker_")

            client.xgroup_create.assert_awaited_once()
            client.aclose.assert_awaited_once()

    async def test_health_check(self, queue):
        queue._redis.ping = AsyncMock(return_value=True)
        assert await queue.health_check() is True

        queue._redis.ping = AsyncMock(side_effect=RedisConnectionError())
        assert await queue.health_check() is False

    async def test_pending_count_and_length(self, queue):
        queue._redis.xpending.return_value = {"pending": 4}
        queue._redis.xlen.return_value = 12

        assert await queue.get_pending_count() == 4
        assert await queue.get_stream_length() == 12
