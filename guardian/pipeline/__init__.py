"""
Ingestion pipeline: stages, run context, store facade and orchestrator.

Import the orchestrator from ``guardian.pipeline.orchestrator``; this
package module only re-exports the error types so that connectors can
raise them without importing the stages.
"""

from guardian.pipeline.errors import (
    ConfigurationError,
    MissingSourceFieldError,
    PipelineError,
    RunNotFoundError,
    SourceNotFoundError,
    UnsupportedChannelError,
)

__all__ = [
    "ConfigurationError",
    "MissingSourceFieldError",
    "PipelineError",
    "RunNotFoundError",
    "SourceNotFoundError",
    "UnsupportedChannelError",
]
