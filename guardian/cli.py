"""
Command-line interface for the guardian ingestion core.

Usage:
    guardian init-db              # Create tables
    guardian scheduler            # Queue due ingestion runs periodically
    guardian sweep                # Queue due runs once and exit
    guardian worker               # Consume ingestion-run jobs
    guardian run-source SOURCE_ID # Run one source now
    guardian health               # Check service health
"""

import asyncio
import signal
import sys

import click

from guardian.config.settings import get_settings
from guardian.observability.logging import setup_logging
from guardian.observability.metrics import get_metrics


def _install_signal_handlers(service) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda: asyncio.create_task(service.stop()))


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """Content Guardian - channel ingestion and compliance analysis."""
    if debug:
        import os
        os.environ["LOG_LEVEL"] = "DEBUG"
        get_settings.cache_clear()

    setup_logging()

    settings = get_settings()
    if settings.tracing_enabled:
        from guardian.observability.tracing import setup_tracing

        setup_tracing(
            service_name=settings.otel_service_name,
            otlp_endpoint=settings.otel_exporter_otlp_endpoint,
        )


@main.command("init-db")
def init_db() -> None:
    """Initialize the database schema."""
    from guardian.pipeline.store import PipelineStore
    from guardian.storage.database import Database

    async def run():
        async with Database() as db:
            await PipelineStore.from_database(db).create_tables()
        click.echo("Database initialized successfully")

    asyncio.run(run())


@main.command()
@click.option("--interval", default=None, type=int, help="Seconds between sweeps")
@click.option("--metrics/--no-metrics", default=True, help="Enable metrics server")
def scheduler(interval: int | None, metrics: bool) -> None:
    """Run the periodic ingestion scheduler."""
    from guardian.scheduler.config import SchedulerConfig
    from guardian.scheduler.service import IngestionScheduler

    async def run():
        config = SchedulerConfig()
        if interval is not None:
            config = config.model_copy(update={"interval_seconds": interval})

        service = IngestionScheduler(config=config)
        if metrics:
            get_metrics().start_server()

        _install_signal_handlers(service)
        await service.start()

    asyncio.run(run())


@main.command()
def sweep() -> None:
    """Queue every due source once, then exit."""
    from guardian.scheduler.service import IngestionScheduler

    queued = asyncio.run(IngestionScheduler().run_once())
    if queued is None:
        click.echo(click.style("Sweep skipped or failed, see logs", fg="yellow"))
        sys.exit(1)
    click.echo(f"Queued {queued} ingestion run(s)")


@main.command()
@click.option("--metrics-port", default=None, type=int, help="Metrics server port")
@click.option("--metrics/--no-metrics", default=True, help="Enable metrics server")
def worker(metrics_port: int | None, metrics: bool) -> None:
    """Run the ingestion worker."""
    from guardian.ingestion.worker import IngestionWorker

    async def run():
        service = IngestionWorker()
        if metrics:
            get_metrics().start_server(port=metrics_port)

        _install_signal_handlers(service)
        await service.start()

    asyncio.run(run())


@main.command("run-source")
@click.argument("source_id")
@click.option("--enqueue", is_flag=True, help="Publish a job instead of running inline")
def run_source(source_id: str, enqueue: bool) -> None:
    """Create a run for SOURCE_ID and execute it now.

    With --enqueue, the run is published to the ingestion queue for a
    worker to pick up instead.
    """
    from guardian.analysis.classifier import build_classifier
    from guardian.audit.schemas import ActorType
    from guardian.ingestion.queue import IngestionQueue
    from guardian.ingestion.schemas import RunStatus
    from guardian.pipeline.context import utc_now
    from guardian.pipeline.orchestrator import PipelineOrchestrator
    from guardian.pipeline.store import PipelineStore
    from guardian.scheduler.service import enqueue_run
    from guardian.storage.database import Database

    async def run() -> int:
        async with Database() as db:
            store = PipelineStore.from_database(db)
            source = await store.sources.get_by_id(source_id)
            if source is None:
                click.echo(click.style(f"Source not found: {source_id}", fg="red"))
                return 1

            if enqueue:
                async with IngestionQueue() as queue:
                    run, _message_id = await enqueue_run(
                        store,
                        queue,
                        source,
                        utc_now(),
                        actor_type=ActorType.USER,
                        advance_schedule=False,
                    )
                click.echo(f"Queued run {run.id}")
                return 0

            run = await store.runs.create_run(source, status=RunStatus.RUNNING)
            classifier = build_classifier()
            try:
                ctx = await PipelineOrchestrator(store, classifier=classifier).execute(
                    source, run.id
                )
            except Exception as e:
                click.echo(click.style(f"Run {run.id} FAILED: {e}", fg="red"))
                return 1
            finally:
                if classifier is not None:
                    await classifier.close()

        click.echo(f"\nRun {ctx.run.id}: {ctx.run.status.value}")
        click.echo(f"  fetched: {ctx.run.items_fetched}")
        click.echo(f"  failed: {ctx.run.items_failed}")
        click.echo(f"  changed: {ctx.run.items_changed}")
        click.echo(f"  analyzed: {ctx.run.analysis_completed}")
        return 0

    sys.exit(asyncio.run(run()))


@main.command()
def health() -> None:
    """Check health of all dependencies."""
    import structlog
    logger = structlog.get_logger()

    async def check():
        results: dict[str, bool] = {}

        try:
            from guardian.ingestion.queue import IngestionQueue
            async with IngestionQueue() as queue:
                results["redis"] = await queue.health_check()
        except Exception as e:
            results["redis"] = False
            logger.error("Redis health check failed", error=str(e))

        try:
            from guardian.storage.database import Database
            async with Database() as db:
                results["postgres"] = await db.health_check()
        except Exception as e:
            results["postgres"] = False
            logger.error("Postgres health check failed", error=str(e))

        from guardian.analysis.config import AnalysisConfig
        results["classifier_configured"] = AnalysisConfig().is_configured

        click.echo("\nHealth Check Results:")
        click.echo("-" * 40)

        all_healthy = True
        for name, status in results.items():
            icon = "✓" if status else "✗"
            color = "green" if status else "red"
            click.echo(click.style(f"  {icon} {name}: {status}", fg=color))
            if name in ("redis", "postgres") and not status:
                all_healthy = False

        click.echo("-" * 40)

        if all_healthy:
            click.echo(click.style("All core services healthy!", fg="green"))
            sys.exit(0)
        else:
            click.echo(click.style("Some services unhealthy!", fg="red"))
            sys.exit(1)

    asyncio.run(check())
