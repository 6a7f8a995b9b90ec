"""
Schemas for ingestion runs and the items they fetch.

``FetchedItem`` is what every connector returns, whatever the channel.
Stages downstream of fetch depend on these field names.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from guardian.sources.schemas import Channel

FETCH_STATUS_OK = "OK"


class RunStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"


class RunType(str, Enum):
    CRAWL = "CRAWL"
    SOCIAL_PULL = "SOCIAL_PULL"

    @classmethod
    def for_channel(cls, channel: Channel) -> "RunType":
        return cls.CRAWL if channel == Channel.WEB else cls.SOCIAL_PULL


class FetchedItem(BaseModel):
    """
    One piece of content as returned by a connector.

    A connector that could not read an item still returns it, with a
    ``fetch_status`` other than ``OK`` (``HTTP_404``, ``TIMEOUT``, ...) and
    a human-readable ``error``. Those items are recorded but never hashed.
    """

    external_id: str = Field(..., min_length=1, description="Platform-native id or URL")
    url: str | None = None
    title: str | None = None
    main_text: str | None = None
    caption: str | None = None
    description: str | None = None
    tags: list[str] = Field(default_factory=list)
    comment_text: str | None = None
    ocr_text: str | None = None
    transcript: str | None = None
    author_handle: str | None = None
    published_at: datetime | None = None
    fetch_status: str = FETCH_STATUS_OK
    error: str | None = None

    @property
    def is_ok(self) -> bool:
        return self.fetch_status == FETCH_STATUS_OK


class NormalizedItem(FetchedItem):
    """A fetched item with its content fingerprints."""

    normalized_text_hash: str = Field(..., min_length=64, max_length=64)
    content_key: str = Field(..., min_length=64, max_length=64)


@dataclass
class IngestionRun:
    """One execution of the pipeline for one source."""

    id: str
    source_id: str
    run_type: RunType
    channel: Channel
    country_code: str
    status: RunStatus = RunStatus.PENDING
    started_at: datetime | None = None
    completed_at: datetime | None = None
    items_fetched: int = 0
    items_changed: int = 0
    items_failed: int = 0
    analysis_queued: int = 0
    analysis_completed: int = 0
    last_error: str | None = None
    created_at: datetime | None = None


@dataclass
class IngestionItem:
    """Per-item fetch record for a run. Written once, never updated."""

    id: str
    run_id: str
    source_id: str
    channel: Channel
    country_code: str
    external_id: str
    url: str | None = None
    fetch_status: str = FETCH_STATUS_OK
    error: str | None = None
    created_at: datetime | None = None
