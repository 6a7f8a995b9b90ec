"""
Ingestion pipeline stages.

Each stage is ``async def stage(ctx: RunContext) -> None`` and runs only
after the previous one returned. A stage that raises aborts the run; the
orchestrator then marks it FAILED. Item-level problems never raise: they
are recorded and turn a successful run into PARTIAL.

Order (PIPELINE_STAGES):
    run_start -> fetch_items -> normalize_and_hash -> store_revisions
    -> diff -> analyze -> run_finish
"""

import time
from collections.abc import Awaitable, Callable

import structlog

from guardian.analysis.parser import AnalysisParseError, parse_analysis_response
from guardian.analysis.schemas import AnalysisOutput
from guardian.audit.schemas import AuditEventType, EntityType
from guardian.ingestion.normalizer import normalize_item
from guardian.ingestion.schemas import RunStatus
from guardian.observability.metrics import get_metrics
from guardian.pipeline.context import RunContext, StoredRevision

logger = structlog.get_logger(__name__)

Stage = Callable[[RunContext], Awaitable[None]]

CLASSIFIER_NOT_CONFIGURED = "classifier not configured"


async def run_start(ctx: RunContext) -> None:
    """Mark the run RUNNING and audit the start, atomically."""
    now = ctx.clock()
    run = ctx.run

    async with ctx.store.transaction() as tx:
        await tx.runs.mark_running(run.id, now)
        await tx.audit.record(
            AuditEventType.INGESTION_RUN_STARTED,
            EntityType.INGESTION_RUN,
            run.id,
            message=f"Ingestion run started for source {ctx.source.display_name or ctx.source.id}",
            payload={"source_id": ctx.source.id, "run_type": run.run_type.value},
            country_code=run.country_code,
            channel=run.channel.value,
        )

    run.status = RunStatus.RUNNING
    run.started_at = run.started_at or now
    run.completed_at = None
    run.last_error = None


async def fetch_items(ctx: RunContext) -> None:
    """Fetch through the channel's connector and record every item."""
    connector = ctx.connectors.resolve(ctx.source.channel)
    items = await connector.fetch(ctx.source)

    await ctx.store.runs.record_items(ctx.run, items)
    await ctx.store.runs.update_counters(ctx.run.id, items_fetched=len(items))

    failed = sum(1 for item in items if not item.is_ok)
    ctx.fetched_items = items
    ctx.run.items_fetched = len(items)

    get_metrics().record_items(ctx.source.channel, fetched=len(items), failed=failed)
    logger.info("Items fetched", fetched=len(items), failed=failed)


async def normalize_and_hash(ctx: RunContext) -> None:
    """Fingerprint every successfully fetched item. In memory only."""
    ctx.normalized_items = [normalize_item(item) for item in ctx.fetched_items if item.is_ok]


async def store_revisions(ctx: RunContext) -> None:
    """
    Append a revision per normalized item.

    Content item lookup/creation, revision insert and the current-revision
    pointer commit together per item. A redelivered run reuses the revision
    it wrote on an earlier attempt when the text hash is unchanged, so diff
    still compares against the previous run's revision.
    """
    stored: list[StoredRevision] = []
    run_id = ctx.run.id

    for item in ctx.normalized_items:
        now = ctx.clock()
        async with ctx.store.transaction() as tx:
            content_item, _created = await tx.content.upsert_item(ctx.source, item, now)
            revision = await tx.content.get_run_revision(content_item.id, run_id)
            if revision is None or revision.normalized_text_hash != item.normalized_text_hash:
                number = await tx.content.latest_revision_number(content_item.id) + 1
                revision = await tx.content.create_revision(
                    content_item.id, number, item, run_id=run_id
                )
                await tx.content.set_current_revision(content_item.id, revision.id)
            else:
                logger.info("Reusing revision from earlier attempt", revision_id=revision.id)

        content_item.current_revision_id = revision.id
        stored.append(
            StoredRevision(
                content_item=content_item,
                revision=revision,
                is_new=revision.revision_number == 1,
            )
        )

    ctx.stored_revisions = stored


async def diff(ctx: RunContext) -> None:
    """
    Decide which stored revisions changed since the previous revision.

    A first revision is always changed. Otherwise revision N is compared
    with revision N-1 only; a missing predecessor counts as changed.
    Running diff twice over the same context gives the same answer.
    """
    changed: list[StoredRevision] = []

    for stored in ctx.stored_revisions:
        if stored.is_new:
            stored.is_changed = True
        else:
            revision = stored.revision
            previous_hash = await ctx.store.content.get_revision_hash(
                revision.content_id, revision.revision_number - 1
            )
            stored.is_changed = (
                previous_hash is None or previous_hash != revision.normalized_text_hash
            )

        if stored.is_changed:
            changed.append(stored)

    ctx.changed_revisions = changed
    ctx.run.items_changed = len(changed)
    await ctx.store.runs.update_counters(ctx.run.id, items_changed=len(changed))

    get_metrics().record_items(ctx.source.channel, changed=len(changed))
    logger.info("Diff complete", stored=len(ctx.stored_revisions), changed=len(changed))


async def _classify(ctx: RunContext, stored: StoredRevision) -> tuple[AnalysisOutput, int | None, bool]:
    """Run the classifier for one revision: (output, latency_ms, parse_error)."""
    if ctx.classifier is None:
        return AnalysisOutput.uncertain(CLASSIFIER_NOT_CONFIGURED), None, False

    start = time.monotonic()
    raw = await ctx.classifier.classify(stored.revision.text_for_analysis())
    latency_ms = int((time.monotonic() - start) * 1000)

    try:
        return parse_analysis_response(raw), latency_ms, False
    except AnalysisParseError as e:
        logger.warning(
            "Unparseable classifier response",
            revision_id=stored.revision.id,
            error=str(e),
        )
        return AnalysisOutput.uncertain(str(e)), latency_ms, True


async def analyze(ctx: RunContext) -> None:
    """
    Classify every changed revision and persist the verdicts.

    NON_COMPLIANT and UNCERTAIN results go to the ticket sink when one is
    configured. Classifier API errors propagate and fail the run; a revision
    that already has a result from an earlier attempt is not classified again.
    """
    metrics = get_metrics()
    changed = ctx.changed_revisions

    ctx.run.analysis_queued = len(changed)
    await ctx.store.runs.update_counters(ctx.run.id, analysis_queued=len(changed))

    model = ctx.classifier.model if ctx.classifier else None

    for stored in changed:
        # Saved on an earlier attempt of this run; its ticket went out then
        existing = await ctx.store.content.get_analysis_result(stored.revision.id)
        if existing is not None:
            ctx.analysis_results.append(existing)
            continue

        output, latency_ms, parse_error = await _classify(ctx, stored)
        result = await ctx.store.content.save_analysis_result(
            stored.revision,
            output,
            model=model,
            latency_ms=latency_ms,
        )
        ctx.analysis_results.append(result)
        metrics.record_analysis(
            result.compliance_status,
            latency=latency_ms / 1000 if latency_ms is not None else None,
            parse_error=parse_error,
        )

        if ctx.ticket_sink is not None and result.compliance_status.needs_review:
            if await ctx.ticket_sink.submit(ctx, stored, result):
                ctx.tickets_created += 1

    ctx.run.analysis_completed = len(ctx.analysis_results)
    await ctx.store.runs.update_counters(
        ctx.run.id, analysis_completed=len(ctx.analysis_results)
    )


async def run_finish(ctx: RunContext) -> None:
    """
    Close the run as SUCCEEDED or PARTIAL and reschedule the source.

    Any item recorded with a non-OK fetch status makes the run PARTIAL.
    ``next_run_at`` is computed from completion time.
    """
    run = ctx.run
    source = ctx.source
    now = ctx.clock()

    failed = await ctx.store.runs.count_failed_items(run.id)
    status = RunStatus.PARTIAL if failed else RunStatus.SUCCEEDED
    next_run_at = source.next_run_after(now)

    message = (
        f"Ingestion run {status.value}. "
        f"Fetched: {run.items_fetched}, "
        f"Changed: {run.items_changed}, "
        f"Tickets: {ctx.tickets_created}"
    )

    async with ctx.store.transaction() as tx:
        await tx.runs.finish_run(run.id, status, now, failed)
        await tx.sources.update_schedule(source.id, now, next_run_at)
        await tx.audit.record(
            AuditEventType.INGESTION_RUN_COMPLETED,
            EntityType.INGESTION_RUN,
            run.id,
            message=message,
            payload={
                "status": status.value,
                "items_fetched": run.items_fetched,
                "items_changed": run.items_changed,
                "items_failed": failed,
                "analysis_completed": run.analysis_completed,
                "tickets_created": ctx.tickets_created,
            },
            country_code=run.country_code,
            channel=run.channel.value,
        )

    run.status = status
    run.completed_at = now
    run.items_failed = failed
    source.last_run_at = now
    source.next_run_at = next_run_at

    logger.info(message, status=status.value)


PIPELINE_STAGES: list[Stage] = [
    run_start,
    fetch_items,
    normalize_and_hash,
    store_revisions,
    diff,
    analyze,
    run_finish,
]
