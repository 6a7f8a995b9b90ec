"""Data models for ingestion sources."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum


class Channel(str, Enum):
    """Platform a source is read from."""

    WEB = "WEB"
    FACEBOOK = "FACEBOOK"
    INSTAGRAM = "INSTAGRAM"
    LINKEDIN = "LINKEDIN"
    YOUTUBE = "YOUTUBE"


@dataclass
class Source:
    """A configured origin of content.

    A null ``crawl_frequency_minutes`` means the source is only ever run on
    demand. The ingestion core reads sources and writes back
    ``last_run_at``/``next_run_at``; everything else is owned elsewhere.
    """

    id: str
    channel: Channel
    country_code: str
    display_name: str = ""
    crawl_frequency_minutes: int | None = None
    is_enabled: bool = True
    is_deleted: bool = False
    last_run_at: datetime | None = None
    next_run_at: datetime | None = None
    start_urls: list[str] = field(default_factory=list)
    metadata: dict = field(default_factory=dict)

    def next_run_after(self, moment: datetime) -> datetime | None:
        """When the source is due again if its last run happened at ``moment``."""
        if self.crawl_frequency_minutes is None:
            return None
        return moment + timedelta(minutes=self.crawl_frequency_minutes)

    def is_due(self, now: datetime) -> bool:
        """Whether a scheduler sweep at ``now`` should queue this source."""
        if not self.is_enabled or self.is_deleted:
            return False
        if self.crawl_frequency_minutes is None:
            return False
        if self.next_run_at is None:
            return self.last_run_at is None
        return self.next_run_at <= now
