"""Observability layer - logging, metrics, and tracing."""

from guardian.observability.logging import setup_logging
from guardian.observability.metrics import MetricsCollector, get_metrics
from guardian.observability.tracing import get_tracer, setup_tracing

__all__ = ["setup_logging", "MetricsCollector", "get_metrics", "setup_tracing", "get_tracer"]
