"""Data models for content items, their revisions and analysis results."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from guardian.analysis.schemas import ComplianceStatus
from guardian.sources.schemas import Channel


class ContentType(str, Enum):
    WEB_PAGE = "WEB_PAGE"
    SOCIAL_POST = "SOCIAL_POST"

    @classmethod
    def for_channel(cls, channel: Channel) -> "ContentType":
        return cls.WEB_PAGE if channel == Channel.WEB else cls.SOCIAL_POST


@dataclass
class ContentItem:
    """A piece of content tracked across runs, unique per (source, external_id)."""

    id: str
    source_id: str
    channel: Channel
    country_code: str
    content_type: ContentType
    external_id: str
    url: str | None = None
    author_handle: str | None = None
    published_at: datetime | None = None
    current_revision_id: str | None = None
    last_seen_at: datetime | None = None


@dataclass
class ContentRevision:
    """Immutable snapshot of a content item's text at one point in time.

    ``revision_number`` starts at 1 and increases by one per new snapshot
    of the same content item.
    ``run_id`` is the ingestion run that wrote it.
    """

    id: str
    content_id: str
    revision_number: int
    normalized_text_hash: str
    content_key: str
    run_id: str | None = None
    title: str | None = None
    main_text: str | None = None
    caption: str | None = None
    description: str | None = None
    comment_text: str | None = None
    ocr_text: str | None = None
    transcript: str | None = None
    tags: list[str] = field(default_factory=list)
    created_at: datetime | None = None

    def text_for_analysis(self) -> str:
        """Labelled text fields, one per paragraph, in a fixed order."""
        fields = [
            ("Title", self.title),
            ("Text", self.main_text),
            ("Caption", self.caption),
            ("Description", self.description),
            ("Comments", self.comment_text),
            ("Image text", self.ocr_text),
            ("Transcript", self.transcript),
        ]
        return "\n\n".join(f"{label}: {value}" for label, value in fields if value)


@dataclass
class AnalysisResult:
    """Persisted compliance verdict for one revision."""

    id: str
    revision_id: str
    content_id: str
    compliance_status: ComplianceStatus
    violations: list[dict] = field(default_factory=list)
    language_detected: str | None = None
    language_confidence: float | None = None
    uncertain_reason: str | None = None
    model: str | None = None
    latency_ms: int | None = None
    created_at: datetime | None = None
