"""Content items, revision history and analysis results."""

from guardian.content.repository import ContentRepository
from guardian.content.schemas import (
    AnalysisResult,
    ContentItem,
    ContentRevision,
    ContentType,
)

__all__ = [
    "AnalysisResult",
    "ContentItem",
    "ContentRepository",
    "ContentRevision",
    "ContentType",
]
