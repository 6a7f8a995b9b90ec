"""Ingestion sources: channel, schedule and connector inputs."""

from guardian.sources.repository import SourcesRepository
from guardian.sources.schemas import Channel, Source

__all__ = ["Channel", "Source", "SourcesRepository"]
