"""Tests for the ingestion scheduler."""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis import ConnectionError as RedisConnectionError

from guardian.audit.schemas import AuditEventType
from guardian.ingestion.schemas import RunStatus
from guardian.scheduler.config import SchedulerConfig
from guardian.scheduler.service import IngestionScheduler, queue_due_ingestion_runs


@pytest.fixture
def queue() -> AsyncMock:
    q = AsyncMock()
    q.publish = AsyncMock(side_effect=lambda source_id, run_id: f"{run_id}-msg")
    return q


class TestQueueDueIngestionRuns:
    async def test_never_run_source_is_queued_once(self, memory_store, queue, now):
        source = memory_store.add_source(crawl_frequency_minutes=60)

        queued = await queue_due_ingestion_runs(memory_store, queue, now)

        assert queued == 1
        runs = list(memory_store.state.runs.values())
        assert len(runs) == 1
        assert runs[0].status == RunStatus.RUNNING
        assert runs[0].source_id == source.id
        queue.publish.assert_awaited_once_with(source.id, runs[0].id)

        stored = memory_store.state.sources[source.id]
        assert stored.last_run_at == now
        assert stored.next_run_at == now + timedelta(minutes=60)

    async def test_second_sweep_at_same_time_queues_nothing(self, memory_store, queue, now):
        memory_store.add_source(crawl_frequency_minutes=60)

        await queue_due_ingestion_runs(memory_store, queue, now)
        queued = await queue_due_ingestion_runs(memory_store, queue, now + timedelta(minutes=5))

        assert queued == 0
        assert queue.publish.await_count == 1

    async def test_due_again_after_frequency(self, memory_store, queue, now):
        memory_store.add_source(crawl_frequency_minutes=60)

        await queue_due_ingestion_runs(memory_store, queue, now)
        queued = await queue_due_ingestion_runs(memory_store, queue, now + timedelta(minutes=60))

        assert queued == 1

    async def test_excludes_disabled_deleted_and_manual_sources(self, memory_store, queue, now):
        memory_store.add_source(is_enabled=False)
        memory_store.add_source(is_deleted=True)
        memory_store.add_source(crawl_frequency_minutes=None)
        memory_store.add_source(next_run_at=now + timedelta(minutes=1))
        due = memory_store.add_source(next_run_at=now - timedelta(minutes=1))

        queued = await queue_due_ingestion_runs(memory_store, queue, now)

        assert queued == 1
        queue.publish.assert_awaited_once()
        assert queue.publish.await_args.args[0] == due.id

    async def test_source_with_last_run_but_no_next_run_is_not_due(self, memory_store, queue, now):
        memory_store.add_source(last_run_at=now - timedelta(days=1), next_run_at=None)

        assert await queue_due_ingestion_runs(memory_store, queue, now) == 0

    async def test_duplicate_rows_are_queued_once(self, memory_store, queue, now):
        source = memory_store.add_source()
        memory_store.sources.find_due = AsyncMock(return_value=[source, source])

        queued = await queue_due_ingestion_runs(memory_store, queue, now)

        assert queued == 1
        assert len(memory_store.state.runs) == 1

    async def test_records_queued_audit_event(self, memory_store, queue, now):
        source = memory_store.add_source()

        await queue_due_ingestion_runs(memory_store, queue, now)

        events = memory_store.events(AuditEventType.INGESTION_RUN_QUEUED)
        assert len(events) == 1
        assert events[0].payload["source_id"] == source.id
        assert events[0].payload["message_id"].endswith("-msg")

    async def test_run_is_committed_before_publish(self, memory_store, queue, now):
        source = memory_store.add_source()

        async def publish(source_id, run_id):
            assert not memory_store.in_transaction
            run = await memory_store.runs.get_run(run_id)
            assert run is not None
            assert run.status == RunStatus.RUNNING
            return f"{run_id}-msg"

        queue.publish = AsyncMock(side_effect=publish)

        assert await queue_due_ingestion_runs(memory_store, queue, now) == 1
        assert memory_store.state.sources[source.id].last_run_at == now

    async def test_publish_failure_fails_run_and_keeps_schedule(self, memory_store, queue, now):
        source = memory_store.add_source()
        queue.publish = AsyncMock(side_effect=RedisConnectionError("redis down"))

        with pytest.raises(RedisConnectionError):
            await queue_due_ingestion_runs(memory_store, queue, now)

        [run] = memory_store.state.runs.values()
        assert run.status == RunStatus.FAILED
        assert run.completed_at == now
        assert "redis down" in run.last_error
        assert memory_store.events(AuditEventType.INGESTION_RUN_QUEUED) == []
        failed = memory_store.events(AuditEventType.INGESTION_RUN_FAILED)
        assert failed[0].payload == {"source_id": source.id, "stage": "enqueue"}
        stored = memory_store.state.sources[source.id]
        assert stored.next_run_at is None
        assert stored.last_run_at is None

    async def test_failed_publish_is_not_masked_by_store_error(self, memory_store, queue, now):
        memory_store.add_source()
        queue.publish = AsyncMock(side_effect=RedisConnectionError("redis down"))
        memory_store.runs.fail_run = AsyncMock(side_effect=OSError("db gone"))

        with pytest.raises(RedisConnectionError):
            await queue_due_ingestion_runs(memory_store, queue, now)

    async def test_unpublished_source_is_picked_up_next_sweep(self, memory_store, queue, now):
        memory_store.add_source()
        failing = AsyncMock(side_effect=RedisConnectionError("redis down"))
        working = queue.publish
        queue.publish = failing

        with pytest.raises(RedisConnectionError):
            await queue_due_ingestion_runs(memory_store, queue, now)

        queue.publish = working
        assert await queue_due_ingestion_runs(memory_store, queue, now) == 1


class TestIngestionSchedulerSweep:
    @pytest.fixture
    def conn(self) -> AsyncMock:
        conn = AsyncMock()
        conn.fetchval = AsyncMock(return_value=True)
        return conn

    @pytest.fixture
    def scheduler(self, conn) -> IngestionScheduler:
        database = MagicMock()
        database.acquire.return_value.__aenter__ = AsyncMock(return_value=conn)
        database.acquire.return_value.__aexit__ = AsyncMock(return_value=False)
        return IngestionScheduler(
            database=database,
            queue=AsyncMock(),
            config=SchedulerConfig(lock_key=42),
        )

    async def test_sweeps_under_lock(self, scheduler, conn):
        with patch(
            "guardian.scheduler.service.queue_due_ingestion_runs",
            AsyncMock(return_value=3),
        ) as sweep_fn:
            result = await scheduler.sweep()

        assert result == 3
        sweep_fn.assert_awaited_once()
        conn.fetchval.assert_awaited_once_with("SELECT pg_try_advisory_lock($1)", 42)
        conn.execute.assert_awaited_once_with("SELECT pg_advisory_unlock($1)", 42)

    async def test_skips_when_lock_held(self, scheduler, conn):
        conn.fetchval.return_value = False

        with patch(
            "guardian.scheduler.service.queue_due_ingestion_runs",
            AsyncMock(return_value=3),
        ) as sweep_fn:
            result = await scheduler.sweep()

        assert result is None
        sweep_fn.assert_not_called()
        conn.execute.assert_not_called()

    async def test_failure_is_logged_and_lock_released(self, scheduler, conn):
        with patch(
            "guardian.scheduler.service.queue_due_ingestion_runs",
            AsyncMock(side_effect=RedisConnectionError("down")),
        ):
            result = await scheduler.sweep()

        assert result is None
        conn.execute.assert_awaited_once_with("SELECT pg_advisory_unlock($1)", 42)

    async def test_stop_ends_loop(self, scheduler):
        scheduler._database.connect = AsyncMock()
        scheduler._database.close = AsyncMock()

        async def sweep_then_stop(now=None):
            await scheduler.stop()
            return 0

        scheduler.sweep = sweep_then_stop
        await scheduler.start()

        scheduler._queue.close.assert_awaited_once()
        scheduler._database.close.assert_awaited_once()
