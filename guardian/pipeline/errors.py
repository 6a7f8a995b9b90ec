"""Exceptions raised by the ingestion pipeline.

``ConfigurationError`` and its subclasses mean a run cannot succeed until
someone changes data or configuration; workers do not retry them.
Infrastructure errors (asyncpg, redis, httpx, openai) are not wrapped.
"""


class PipelineError(Exception):
    """Base class for ingestion pipeline errors."""


class ConfigurationError(PipelineError):
    """A run is misconfigured; retrying will not help."""


class UnsupportedChannelError(ConfigurationError):
    """No connector is registered for a channel."""

    def __init__(self, channel: str):
        self.channel = channel
        super().__init__(f"No connector registered for channel {channel}")


class MissingSourceFieldError(ConfigurationError):
    """A source lacks a field its connector needs."""

    def __init__(self, source_id: str, field: str):
        self.source_id = source_id
        self.field = field
        super().__init__(f"Source {source_id} has no {field}")


class SourceNotFoundError(ConfigurationError):
    def __init__(self, source_id: str):
        self.source_id = source_id
        super().__init__(f"Source {source_id} not found")


class RunNotFoundError(ConfigurationError):
    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Ingestion run {run_id} not found")
