"""
Scheduler service - queues ingestion runs for sources that are due.

Every sweep:
1. Selects enabled, non-deleted sources with a frequency that are past
   their next_run_at (or have never been run nor scheduled)
2. For each: commits the run (RUNNING), publishes the job, then advances
   the source's schedule and audits the enqueue together
3. Records the sweep outcome in metrics

Only one process sweeps at a time: the sweep runs while holding a
PostgreSQL advisory lock, and a scheduler that cannot take it skips.
"""

import asyncio
from datetime import datetime

import structlog

from guardian.audit.schemas import ActorType, AuditEventType, EntityType
from guardian.ingestion.queue import IngestionQueue
from guardian.ingestion.schemas import IngestionRun, RunStatus
from guardian.observability.metrics import get_metrics
from guardian.observability.tracing import get_tracer, traced
from guardian.pipeline.context import utc_now
from guardian.pipeline.orchestrator import describe_error
from guardian.pipeline.store import PipelineStore
from guardian.scheduler.config import SchedulerConfig
from guardian.sources.schemas import Source
from guardian.storage.database import Database

logger = structlog.get_logger(__name__)


async def enqueue_run(
    store: PipelineStore,
    queue: IngestionQueue,
    source: Source,
    now: datetime,
    actor_type: ActorType = ActorType.SYSTEM,
    advance_schedule: bool = True,
) -> tuple[IngestionRun, str]:
    """
    Create a run for ``source`` and publish its job.

    The run row is committed before the publish so a worker never receives
    a job whose run it cannot load. If the publish fails the run is marked
    FAILED and the schedule is left alone, so the next sweep retries the
    source. The schedule update and the QUEUED audit event commit together
    once the job is on the stream.

    Returns:
        (run, message_id)
    """
    run = await store.runs.create_run(source, status=RunStatus.RUNNING)

    try:
        message_id = await queue.publish(source.id, run.id)
    except Exception as e:
        await _fail_unpublished_run(store, run, source, now, actor_type, e)
        raise

    async with store.transaction() as tx:
        if advance_schedule:
            await tx.sources.update_schedule(
                source.id,
                last_run_at=now,
                next_run_at=source.next_run_after(now),
            )
        await tx.audit.record(
            AuditEventType.INGESTION_RUN_QUEUED,
            EntityType.INGESTION_RUN,
            run.id,
            actor_type=actor_type,
            message=f"Ingestion run queued for source {source.display_name or source.id}",
            payload={"source_id": source.id, "message_id": message_id},
            country_code=source.country_code,
            channel=source.channel.value,
        )

    return run, message_id


async def _fail_unpublished_run(
    store: PipelineStore,
    run: IngestionRun,
    source: Source,
    now: datetime,
    actor_type: ActorType,
    error: Exception,
) -> None:
    """Mark a run whose job never reached the queue FAILED. Never masks ``error``."""
    last_error = f"Could not publish job: {describe_error(error)}"
    try:
        async with store.transaction() as tx:
            await tx.runs.fail_run(run.id, now, last_error)
            await tx.audit.record(
                AuditEventType.INGESTION_RUN_FAILED,
                EntityType.INGESTION_RUN,
                run.id,
                actor_type=actor_type,
                message=last_error,
                payload={"source_id": source.id, "stage": "enqueue"},
                country_code=source.country_code,
                channel=source.channel.value,
            )
    except Exception:
        logger.exception("Could not record enqueue failure", run_id=run.id)


async def queue_due_ingestion_runs(
    store: PipelineStore,
    queue: IngestionQueue,
    now: datetime | None = None,
) -> int:
    """
    Create and enqueue one run per due source.

    A failed publish marks that source's run FAILED and stops the sweep
    without advancing the schedule, so the source is picked up again by
    the next sweep.

    Known limitation: next_run_at advances at enqueue time, so a run that
    outlasts its frequency window can overlap the next one. run_finish
    recomputes next_run_at from completion time.

    Returns:
        Number of runs queued
    """
    now = now or utc_now()
    metrics = get_metrics()
    due = await store.sources.find_due(now)

    seen: set[str] = set()
    queued = 0

    for source in due:
        if source.id in seen:
            continue
        seen.add(source.id)

        run, _message_id = await enqueue_run(store, queue, source, now)

        queued += 1
        metrics.record_run_queued(source.channel)
        logger.debug("Queued ingestion run", source_id=source.id, run_id=run.id)

    return queued


class IngestionScheduler:
    """
    Runs ``queue_due_ingestion_runs`` every ``interval_seconds``.

    Usage:
        scheduler = IngestionScheduler()
        await scheduler.start()  # Runs until stopped
    """

    def __init__(
        self,
        database: Database | None = None,
        queue: IngestionQueue | None = None,
        config: SchedulerConfig | None = None,
    ):
        self._config = config or SchedulerConfig()
        self._database = database or Database()
        self._queue = queue or IngestionQueue()
        self._store = PipelineStore.from_database(self._database)
        self._running = False
        self._stopped = asyncio.Event()
        self._metrics = get_metrics()
        self._tracer = get_tracer(__name__)

        logger.info(
            "IngestionScheduler initialized",
            interval_seconds=self._config.interval_seconds,
            lock_key=self._config.lock_key,
        )

    async def start(self) -> None:
        """Sweep periodically until stop() is called."""
        self._running = True
        self._stopped.clear()

        await self._database.connect()
        await self._queue.connect()
        logger.info("Starting ingestion scheduler")

        try:
            while self._running:
                await self.sweep()
                try:
                    await asyncio.wait_for(
                        self._stopped.wait(),
                        timeout=self._config.interval_seconds,
                    )
                except asyncio.TimeoutError:
                    pass
        except asyncio.CancelledError:
            logger.info("Ingestion scheduler cancelled")
        finally:
            await self._cleanup()

    async def stop(self) -> None:
        logger.info("Stopping ingestion scheduler")
        self._running = False
        self._stopped.set()

    async def run_once(self, now: datetime | None = None) -> int | None:
        """Connect, sweep once, and clean up."""
        await self._database.connect()
        await self._queue.connect()
        try:
            return await self.sweep(now)
        finally:
            await self._cleanup()

    async def _cleanup(self) -> None:
        await self._queue.close()
        await self._database.close()
        logger.info("Ingestion scheduler cleaned up")

    async def sweep(self, now: datetime | None = None) -> int | None:
        """
        One sweep under the advisory lock.

        Returns:
            Runs queued, or None when another scheduler holds the lock or
            the sweep failed
        """
        with traced(self._tracer, "scheduler.sweep"):
            async with self._database.acquire() as conn:
                locked = await conn.fetchval(
                    "SELECT pg_try_advisory_lock($1)", self._config.lock_key
                )
                if not locked:
                    self._metrics.record_sweep("skipped_locked")
                    logger.debug("Sweep skipped, lock held elsewhere")
                    return None

                try:
                    queued = await queue_due_ingestion_runs(self._store, self._queue, now)
                except Exception as e:
                    self._metrics.record_sweep("error")
                    logger.error(
                        "Periodic ingestion sweep failed",
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    return None
                finally:
                    await conn.execute(
                        "SELECT pg_advisory_unlock($1)", self._config.lock_key
                    )

        self._metrics.record_sweep("ok")
        if queued:
            logger.info("Periodic ingestion queued runs", queued=queued)
        return queued
