"""
Pipeline orchestrator: runs the stages of one ingestion run in order.

State machine of a run as seen from here:

    RUNNING --(every stage returned)--> SUCCEEDED | PARTIAL   (run_finish)
    RUNNING --(any stage raised)------> FAILED, error re-raised

There is no per-stage retry. A failed run is retried as a whole by the job
queue redelivering its job, starting again at run_start.
"""

import time
from collections.abc import Sequence

import structlog
from opentelemetry.context import Context

from guardian.analysis.classifier import ComplianceClassifier
from guardian.audit.schemas import AuditEventType, EntityType
from guardian.connectors.registry import ConnectorRegistry, get_connector_registry
from guardian.ingestion.schemas import RunStatus
from guardian.observability.metrics import get_metrics
from guardian.observability.tracing import get_tracer, traced
from guardian.pipeline.context import RunContext, TicketSink, utc_now
from guardian.pipeline.errors import RunNotFoundError
from guardian.pipeline.stages import PIPELINE_STAGES, Stage
from guardian.pipeline.store import PipelineStore
from guardian.sources.schemas import Source

logger = structlog.get_logger(__name__)


def describe_error(error: BaseException) -> str:
    """Error text stored as the run's last_error."""
    return str(error) or type(error).__name__


class PipelineOrchestrator:
    """
    Executes the pipeline for one run.

    Usage:
        orchestrator = PipelineOrchestrator(store, classifier=classifier)
        ctx = await orchestrator.execute(source, run_id)
        print(ctx.run.status)
    """

    def __init__(
        self,
        store: PipelineStore,
        connectors: ConnectorRegistry | None = None,
        classifier: ComplianceClassifier | None = None,
        ticket_sink: TicketSink | None = None,
        stages: Sequence[Stage] = PIPELINE_STAGES,
        clock=utc_now,
    ):
        self._store = store
        self._connectors = connectors or get_connector_registry()
        self._classifier = classifier
        self._ticket_sink = ticket_sink
        self._stages = list(stages)
        self._clock = clock
        self._metrics = get_metrics()
        self._tracer = get_tracer(__name__)

    async def execute(
        self,
        source: Source,
        run_id: str,
        parent_context: Context | None = None,
    ) -> RunContext:
        """
        Run every stage for ``run_id``.

        Args:
            source: Source being ingested
            run_id: Existing run (created by the scheduler or an operator)
            parent_context: Trace context of whoever enqueued the run

        Returns:
            The final RunContext; ``ctx.run.status`` is SUCCEEDED or PARTIAL

        Raises:
            RunNotFoundError: No run with that id
            Exception: Whatever a stage raised, after the run is marked FAILED
        """
        run = await self._store.runs.get_run(run_id)
        if run is None:
            raise RunNotFoundError(run_id)

        ctx = RunContext(
            store=self._store,
            source=source,
            run=run,
            connectors=self._connectors,
            classifier=self._classifier,
            ticket_sink=self._ticket_sink,
            clock=self._clock,
        )

        log = logger.bind(run_id=run.id, source_id=source.id, channel=source.channel.value)
        log.info("Ingestion run executing")
        self._metrics.record_run_started(source.channel)
        run_start_time = time.monotonic()

        with traced(
            self._tracer,
            "ingestion.run",
            {"run_id": run.id, "source_id": source.id, "channel": source.channel.value},
            parent_context=parent_context,
        ):
            for stage in self._stages:
                await self._run_stage(ctx, stage, run_start_time)

        self._metrics.record_run_completed(
            source.channel,
            ctx.run.status,
            latency=time.monotonic() - run_start_time,
        )
        log.info(
            "Ingestion run finished",
            status=ctx.run.status.value,
            items_fetched=ctx.run.items_fetched,
            items_changed=ctx.run.items_changed,
            items_failed=ctx.run.items_failed,
        )
        return ctx

    async def _run_stage(self, ctx: RunContext, stage: Stage, run_start_time: float) -> None:
        name = stage.__name__
        stage_start = time.monotonic()

        try:
            with traced(self._tracer, f"stage.{name}", {"run_id": ctx.run.id}):
                await stage(ctx)
        except Exception as e:
            self._metrics.record_stage_latency(name, time.monotonic() - stage_start)
            self._metrics.record_run_failure(name, type(e).__name__)
            logger.error(
                "Pipeline stage failed",
                run_id=ctx.run.id,
                stage=name,
                error=describe_error(e),
                error_type=type(e).__name__,
            )
            await self._mark_failed(ctx, name, e)
            self._metrics.record_run_completed(
                ctx.source.channel,
                RunStatus.FAILED,
                latency=time.monotonic() - run_start_time,
            )
            raise

        self._metrics.record_stage_latency(name, time.monotonic() - stage_start)

    async def _mark_failed(self, ctx: RunContext, stage_name: str, error: Exception) -> None:
        """Persist FAILED plus its audit event. Never masks the original error."""
        run = ctx.run
        now = self._clock()
        last_error = describe_error(error)

        try:
            async with self._store.transaction() as tx:
                await tx.runs.fail_run(run.id, now, last_error)
                await tx.audit.record(
                    AuditEventType.INGESTION_RUN_FAILED,
                    EntityType.INGESTION_RUN,
                    run.id,
                    message=f"Ingestion run failed at {stage_name}: {last_error}",
                    payload={
                        "stage": stage_name,
                        "error_type": type(error).__name__,
                        "items_fetched": run.items_fetched,
                    },
                    country_code=run.country_code,
                    channel=run.channel.value,
                )
        except Exception:
            logger.exception("Could not record run failure", run_id=run.id)
            return

        run.status = RunStatus.FAILED
        run.completed_at = now
        run.last_error = last_error
