"""
Ingestion worker - consumes ingestion-run jobs and executes the pipeline.

Runs as a standalone service that:
1. Consumes {source_id, run_id} jobs from the ingestion queue
2. Loads the source from PostgreSQL
3. Executes the pipeline orchestrator for the run
4. Acknowledges the job, dead-letters it, or leaves it for redelivery

Acknowledgement policy:
- success: ack
- ConfigurationError (unknown channel, missing source, ...): nack to the
  dead letter stream, since retrying cannot help
- anything else: no ack; the job is reclaimed after the queue's idle
  timeout and retried until max_delivery_attempts, then dead-lettered
"""

import asyncio

import structlog

from guardian.analysis.classifier import ComplianceClassifier, build_classifier
from guardian.connectors.registry import ConnectorRegistry
from guardian.ingestion.config import IngestionConfig
from guardian.ingestion.queue import IngestionJob, IngestionQueue
from guardian.observability.logging import bind_context, clear_context
from guardian.observability.metrics import get_metrics
from guardian.observability.tracing import extract_trace_context
from guardian.pipeline.context import RunContext, TicketSink
from guardian.pipeline.errors import ConfigurationError, SourceNotFoundError
from guardian.pipeline.orchestrator import PipelineOrchestrator
from guardian.pipeline.store import PipelineStore
from guardian.storage.database import Database

logger = structlog.get_logger(__name__)


class IngestionWorker:
    """
    Worker that executes ingestion runs from the queue.

    The classifier is built in start() and closed in cleanup; pass one in
    to share it or to run without analysis in tests.

    Usage:
        worker = IngestionWorker()
        await worker.start()  # Runs until stopped
    """

    def __init__(
        self,
        queue: IngestionQueue | None = None,
        database: Database | None = None,
        classifier: ComplianceClassifier | None = None,
        connectors: ConnectorRegistry | None = None,
        ticket_sink: TicketSink | None = None,
        config: IngestionConfig | None = None,
    ):
        self._config = config or IngestionConfig()
        self._queue = queue or IngestionQueue(config=self._config)
        self._database = database or Database()
        self._store = PipelineStore.from_database(self._database)
        self._connectors = connectors or ConnectorRegistry.default(
            rate_limit=self._config.connector_requests_per_minute
        )
        self._classifier = classifier
        self._owns_classifier = classifier is None
        self._ticket_sink = ticket_sink
        self._orchestrator: PipelineOrchestrator | None = None
        self._running = False

        logger.info(
            "IngestionWorker initialized",
            stream=self._config.stream_name,
            max_delivery_attempts=self._config.max_delivery_attempts,
        )

    @property
    def orchestrator(self) -> PipelineOrchestrator:
        if self._orchestrator is None:
            self._orchestrator = PipelineOrchestrator(
                self._store,
                connectors=self._connectors,
                classifier=self._classifier,
                ticket_sink=self._ticket_sink,
            )
        return self._orchestrator

    async def start(self) -> None:
        """Consume jobs until stop() is called."""
        self._running = True
        logger.info("Starting ingestion worker")

        await self._queue.connect()
        await self._database.connect()
        if self._classifier is None:
            self._classifier = build_classifier()

        try:
            await self._process_loop()
        except asyncio.CancelledError:
            logger.info("Ingestion worker cancelled")
        finally:
            await self._cleanup()

    async def stop(self) -> None:
        """Finish the current job, then exit the loop."""
        logger.info("Stopping ingestion worker")
        self._running = False

    async def _cleanup(self) -> None:
        await self._queue.close()
        await self._database.close()
        if self._owns_classifier and self._classifier is not None:
            await self._classifier.close()
            self._classifier = None
        logger.info("Ingestion worker cleaned up")

    async def _process_loop(self) -> None:
        async for job in self._queue.consume(count=1, block_ms=self._config.block_ms):
            await self.process_job(job)
            if not self._running:
                break

    async def handle(self, job: IngestionJob) -> RunContext:
        """
        Execute the run a job refers to.

        Raises:
            SourceNotFoundError: The job's source does not exist
            Exception: Whatever the orchestrator raised
        """
        source = await self._store.sources.get_by_id(job.source_id)
        if source is None:
            raise SourceNotFoundError(job.source_id)

        return await self.orchestrator.execute(
            source,
            job.run_id,
            parent_context=extract_trace_context(job.trace_fields),
        )

    async def process_job(self, job: IngestionJob) -> None:
        """Handle one job and settle it with the queue."""
        bind_context(run_id=job.run_id, source_id=job.source_id, retry_count=job.retry_count)
        try:
            ctx = await self.handle(job)
        except ConfigurationError as e:
            logger.error(
                "Ingestion job rejected",
                error=str(e),
                error_type=type(e).__name__,
            )
            await self._queue.nack(job.message_id, error=f"{type(e).__name__}: {e}")
            get_metrics().dlq_rejected.labels(
                queue=self._config.stream_name,
                error_type=type(e).__name__,
            ).inc()
        except Exception as e:
            logger.warning(
                "Ingestion job failed, leaving for redelivery",
                error=str(e),
                error_type=type(e).__name__,
                attempt=job.retry_count + 1,
                max_attempts=self._config.max_delivery_attempts,
            )
        else:
            await self._queue.ack(job.message_id)
            logger.info("Ingestion job done", status=ctx.run.status.value)
        finally:
            clear_context()

    async def health_check(self) -> dict[str, bool]:
        return {
            "redis": await self._queue.health_check(),
            "database": await self._database.health_check(),
        }
