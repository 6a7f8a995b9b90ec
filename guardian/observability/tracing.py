"""
OpenTelemetry tracing for scheduler sweeps and ingestion runs.

A run is traced as one ``ingestion.run`` span with a child span per
pipeline stage. The scheduler and the worker are separate processes, so
the W3C ``traceparent`` of the publishing span travels inside the Redis
Streams message and the worker continues the same trace:

    scheduler.sweep (publish) -> ingestion.run -> stage.fetch_items, ...

Tracing is opt-in (``TRACING_ENABLED``). Until ``setup_tracing`` runs the
global provider is the OpenTelemetry no-op, so spans cost nothing.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.context import Context
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SimpleSpanProcessor,
    SpanExporter,
)
from opentelemetry.trace import StatusCode, Tracer
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

logger = logging.getLogger(__name__)

TRACE_PARENT_FIELD = "traceparent"

_propagator = TraceContextTextMapPropagator()
_tracing_enabled = False


def setup_tracing(
    service_name: str,
    otlp_endpoint: str | None = None,
    *,
    exporter: SpanExporter | None = None,
) -> TracerProvider:
    """
    Install a global TracerProvider for this process.

    Spans go to an OTLP gRPC collector through a batch processor. Tests pass
    their own ``exporter`` (e.g. InMemorySpanExporter), which is exported
    synchronously instead.
    """
    global _tracing_enabled

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))

    if exporter is not None:
        provider.add_span_processor(SimpleSpanProcessor(exporter))
    else:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
            OTLPSpanExporter,
        )

        endpoint = otlp_endpoint or "http://localhost:4317"
        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, insecure=True))
        )

    trace.set_tracer_provider(provider)
    _tracing_enabled = True
    logger.info(
        "Tracing enabled for %s, exporting to %s",
        service_name,
        otlp_endpoint or ("custom exporter" if exporter else "http://localhost:4317"),
    )
    return provider


def get_tracer(name: str) -> Tracer:
    """Tracer from the global provider (no-op until tracing is set up)."""
    return trace.get_tracer(name)


def is_tracing_enabled() -> bool:
    return _tracing_enabled


def inject_trace_context() -> dict[str, str]:
    """
    Message fields carrying the active span, for XADD.

    Empty when there is no active span, so untraced publishers add nothing.
    """
    carrier: dict[str, str] = {}
    _propagator.inject(carrier)
    if TRACE_PARENT_FIELD not in carrier:
        return {}
    return {TRACE_PARENT_FIELD: carrier[TRACE_PARENT_FIELD]}


def extract_trace_context(fields: dict[str, str]) -> Context | None:
    """
    Parent context from a consumed message's fields.

    Returns None when the message has no traceparent or it is malformed,
    in which case the run starts a new trace.
    """
    if not fields.get(TRACE_PARENT_FIELD):
        return None

    ctx = _propagator.extract({TRACE_PARENT_FIELD: fields[TRACE_PARENT_FIELD]})
    if not trace.get_current_span(ctx).get_span_context().is_valid:
        logger.debug("Ignoring malformed traceparent %r", fields[TRACE_PARENT_FIELD])
        return None
    return ctx


@contextmanager
def traced(
    tracer: Tracer,
    name: str,
    attributes: dict[str, Any] | None = None,
    parent_context: Context | None = None,
):
    """
    Open a span, marking it ERROR when the block raises.

    None-valued attributes are skipped.
    """
    with tracer.start_as_current_span(
        name,
        context=parent_context,
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        for key, value in (attributes or {}).items():
            if value is not None:
                span.set_attribute(key, value)
        try:
            yield span
        except Exception as exc:
            span.record_exception(exc)
            span.set_status(StatusCode.ERROR, str(exc) or type(exc).__name__)
            raise


def add_trace_context(
    logger_: Any, method: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Structlog processor adding trace_id/span_id of the active span."""
    ctx = trace.get_current_span().get_span_context()
    if ctx.is_valid:
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict
