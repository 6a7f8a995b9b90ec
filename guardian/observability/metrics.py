"""
Prometheus metrics for monitoring the ingestion pipeline.

Defines and exposes metrics for:
- Ingestion runs by terminal status
- Stage latency
- Items fetched, failed and changed per channel
- Compliance analysis outcomes
- Scheduler sweeps and queued runs
- Queue reclaim and dead letter activity

Metrics are exposed via HTTP endpoint for Prometheus scraping.
"""

import logging
from enum import Enum

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from guardian.config.settings import get_settings

logger = logging.getLogger(__name__)

# Buckets for latency histograms (in seconds)
LATENCY_BUCKETS = (0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 120.0)


def _label(value: Enum | str) -> str:
    return value.value if isinstance(value, Enum) else str(value)


class MetricsCollector:
    """
    Prometheus metrics collector for the ingestion core.

    Usage:
        metrics = get_metrics()
        metrics.start_server()

        metrics.record_stage_latency("fetch_items", 1.2)
        metrics.record_run_completed("WEB", "PARTIAL")
    """

    def __init__(self):
        """Initialize Prometheus metrics."""

        # Run lifecycle
        self.runs_started = Counter(
            "guardian_ingestion_runs_started_total",
            "Total ingestion runs started by a worker",
            ["channel"],
        )

        self.runs_completed = Counter(
            "guardian_ingestion_runs_completed_total",
            "Total ingestion runs reaching a terminal status",
            ["channel", "status"],  # status: SUCCEEDED, PARTIAL, FAILED
        )

        self.run_failures = Counter(
            "guardian_ingestion_run_failures_total",
            "Total stage-level failures that aborted a run",
            ["stage", "error_type"],
        )

        self.stage_latency = Histogram(
            "guardian_pipeline_stage_latency_seconds",
            "Time spent in each pipeline stage",
            ["stage"],
            buckets=LATENCY_BUCKETS,
        )

        self.run_latency = Histogram(
            "guardian_ingestion_run_latency_seconds",
            "End-to-end time to execute one ingestion run",
            ["channel"],
            buckets=LATENCY_BUCKETS,
        )

        # Items
        self.items_fetched = Counter(
            "guardian_items_fetched_total",
            "Total items returned by connectors",
            ["channel"],
        )

        self.items_failed = Counter(
            "guardian_items_failed_total",
            "Total items recorded with a non-OK fetch status",
            ["channel"],
        )

        self.items_changed = Counter(
            "guardian_items_changed_total",
            "Total new or changed revisions detected by diff",
            ["channel"],
        )

        # Analysis
        self.analysis_results = Counter(
            "guardian_analysis_results_total",
            "Compliance analysis results",
            ["status"],  # COMPLIANT, NON_COMPLIANT, UNCERTAIN
        )

        self.analysis_parse_errors = Counter(
            "guardian_analysis_parse_errors_total",
            "Classifier responses that could not be parsed",
        )

        self.analysis_latency = Histogram(
            "guardian_analysis_latency_seconds",
            "Time for one classifier call",
            buckets=LATENCY_BUCKETS,
        )

        # Scheduler
        self.scheduler_sweeps = Counter(
            "guardian_scheduler_sweeps_total",
            "Scheduler sweeps by outcome",
            ["outcome"],  # ok, skipped_locked, error
        )

        self.runs_queued = Counter(
            "guardian_scheduler_runs_queued_total",
            "Ingestion runs created and enqueued by the scheduler",
            ["channel"],
        )

        # Connectors
        self.connector_errors = Counter(
            "guardian_connector_errors_total",
            "Connector errors by channel and type",
            ["channel", "error_type"],
        )

        # Queue metrics
        self.queue_depth = Gauge(
            "guardian_queue_depth",
            "Number of messages in a Redis stream",
            ["stream"],
        )

        self.pending_reclaimed = Counter(
            "guardian_queue_pending_reclaimed_total",
            "Total messages reclaimed from pending state",
            ["queue"],
        )

        self.dlq_max_retries = Counter(
            "guardian_queue_dlq_max_retries_total",
            "Total messages moved to DLQ due to max retries exceeded",
            ["queue"],
        )

        self.dlq_rejected = Counter(
            "guardian_queue_dlq_rejected_total",
            "Total messages rejected to DLQ without retry",
            ["queue", "error_type"],
        )

        logger.info("Prometheus metrics initialized")

    def start_server(self, port: int | None = None) -> None:
        """
        Start Prometheus metrics HTTP server.

        Args:
            port: Port to expose metrics on (default from settings)
        """
        settings = get_settings()
        port = port or settings.metrics_port

        start_http_server(port, registry=REGISTRY)
        logger.info(f"Prometheus metrics server started on port {port}")

    # Convenience methods

    def record_run_started(self, channel: Enum | str) -> None:
        self.runs_started.labels(channel=_label(channel)).inc()

    def record_run_completed(
        self,
        channel: Enum | str,
        status: Enum | str,
        latency: float | None = None,
    ) -> None:
        """
        Record a run reaching a terminal status.

        Args:
            channel: Source channel
            status: Terminal run status
            latency: Optional end-to-end latency in seconds
        """
        channel_str = _label(channel)
        self.runs_completed.labels(channel=channel_str, status=_label(status)).inc()
        if latency is not None:
            self.run_latency.labels(channel=channel_str).observe(latency)

    def record_run_failure(self, stage: str, error_type: str) -> None:
        self.run_failures.labels(stage=stage, error_type=error_type).inc()

    def record_stage_latency(self, stage: str, latency: float) -> None:
        """
        Record pipeline stage latency.

        Args:
            stage: Stage name (run_start, fetch_items, diff, ...)
            latency: Latency in seconds
        """
        self.stage_latency.labels(stage=stage).observe(latency)

    def record_items(
        self,
        channel: Enum | str,
        fetched: int = 0,
        failed: int = 0,
        changed: int = 0,
    ) -> None:
        """Record item counts for one stage of one run."""
        channel_str = _label(channel)
        if fetched:
            self.items_fetched.labels(channel=channel_str).inc(fetched)
        if failed:
            self.items_failed.labels(channel=channel_str).inc(failed)
        if changed:
            self.items_changed.labels(channel=channel_str).inc(changed)

    def record_analysis(
        self,
        status: Enum | str,
        latency: float | None = None,
        parse_error: bool = False,
    ) -> None:
        """Record one compliance analysis outcome."""
        self.analysis_results.labels(status=_label(status)).inc()
        if latency is not None:
            self.analysis_latency.observe(latency)
        if parse_error:
            self.analysis_parse_errors.inc()

    def record_sweep(self, outcome: str) -> None:
        self.scheduler_sweeps.labels(outcome=outcome).inc()

    def record_run_queued(self, channel: Enum | str) -> None:
        self.runs_queued.labels(channel=_label(channel)).inc()

    def record_connector_error(self, channel: Enum | str, error_type: str) -> None:
        self.connector_errors.labels(
            channel=_label(channel),
            error_type=error_type,
        ).inc()

    def set_queue_depth(self, stream: str, depth: int) -> None:
        """
        Set queue depth metric.

        Args:
            stream: Stream name
            depth: Number of messages
        """
        self.queue_depth.labels(stream=stream).set(depth)


# Global metrics instance
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
