"""
structlog configuration for guardian processes.

Service code (scheduler, worker, orchestrator) logs through structlog with
bound fields; library code (repositories, connectors, queues) uses plain
``logging.getLogger(__name__)``. Both end up on stdout through one
``ProcessorFormatter``, as JSON in production and as coloured console
output elsewhere, each line carrying the active trace_id/span_id.
"""

import logging
import sys

import structlog
from structlog.types import Processor

from guardian.config.settings import get_settings
from guardian.observability.tracing import add_trace_context

NOISY_LOGGERS = ("httpx", "httpcore", "asyncio", "openai")


def _pre_chain() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        add_trace_context,
        structlog.processors.StackInfoRenderer(),
    ]


def setup_logging() -> None:
    """
    Route structlog and stdlib logging to stdout.

    Safe to call more than once; the root handler is replaced each time.

    Usage:
        setup_logging()
        logger = structlog.get_logger(__name__)
        logger.info("Ingestion run executing", run_id=run.id, channel="WEB")
    """
    settings = get_settings()

    if settings.is_production:
        renderer: Processor = structlog.processors.JSONRenderer()
        final: list[Processor] = [structlog.processors.format_exc_info, renderer]
    else:
        final = [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]

    structlog.configure(
        processors=_pre_chain() + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_pre_chain(),
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *final],
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(settings.log_level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_context(**kwargs) -> None:
    """Attach fields to every log line of the current task (e.g. run_id)."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
