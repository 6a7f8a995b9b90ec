"""
YouTube connector over public channel Atom feeds.

No API key is needed: ``https://www.youtube.com/feeds/videos.xml`` lists a
channel's recent uploads. Feeds come from ``metadata["channel_id"]`` and
from any feed URLs in ``start_urls``.
"""

import calendar
import logging
from datetime import datetime, timezone
from typing import Any

import feedparser

from guardian.connectors.base import BaseConnector
from guardian.connectors.http_client import HTTPClient, HTTPClientError
from guardian.connectors.web import PARSE_ERROR
from guardian.ingestion.schemas import FetchedItem
from guardian.pipeline.errors import MissingSourceFieldError
from guardian.sources.schemas import Channel, Source

logger = logging.getLogger(__name__)

FEED_URL_TEMPLATE = "https://www.youtube.com/feeds/videos.xml?channel_id={channel_id}"


def feed_urls_for(source: Source) -> list[str]:
    """Feed URLs to read for a source, channel id feed first."""
    urls: list[str] = []
    channel_id = source.metadata.get("channel_id")
    if channel_id:
        urls.append(FEED_URL_TEMPLATE.format(channel_id=channel_id))
    urls.extend(u for u in source.start_urls if u not in urls)
    return urls


def _published(entry: Any) -> datetime | None:
    parsed = entry.get("published_parsed") or entry.get("updated_parsed")
    if not parsed:
        return None
    return datetime.fromtimestamp(calendar.timegm(parsed), tz=timezone.utc)


def entry_to_item(entry: Any, feed_url: str) -> FetchedItem:
    """Map one feedparser entry to a FetchedItem.

    An entry carrying no video id, entry id or link cannot be tracked across
    runs; it is reported against the feed as a PARSE_ERROR item.
    """
    video_id = entry.get("yt_videoid") or entry.get("id") or entry.get("link")
    if not video_id:
        logger.warning(f"Feed entry without an id in {feed_url}: {entry.get('title')!r}")
        return FetchedItem(
            external_id=feed_url,
            url=feed_url,
            fetch_status=PARSE_ERROR,
            error="Feed entry has no video id, id or link",
        )

    return FetchedItem(
        external_id=video_id,
        url=entry.get("link"),
        title=entry.get("title"),
        description=entry.get("summary"),
        author_handle=entry.get("author"),
        tags=[t.get("term", "") for t in entry.get("tags", []) if t.get("term")],
        published_at=_published(entry),
    )


class YouTubeConnector(BaseConnector):
    """Connector for the YOUTUBE channel."""

    def __init__(
        self,
        rate_limit: int = 30,
        http_client_factory=HTTPClient,
    ):
        super().__init__(rate_limit=rate_limit)
        self._http_client_factory = http_client_factory

    @property
    def channel(self) -> Channel:
        return Channel.YOUTUBE

    async def _fetch_items(self, source: Source) -> list[FetchedItem]:
        feed_urls = feed_urls_for(source)
        if not feed_urls:
            raise MissingSourceFieldError(source.id, "metadata.channel_id or start_urls")

        items: list[FetchedItem] = []
        async with self._http_client_factory() as client:
            for feed_url in feed_urls:
                await self._rate_limiter.acquire()
                items.extend(await self._read_feed(client, feed_url))
        return items

    async def _read_feed(self, client: HTTPClient, feed_url: str) -> list[FetchedItem]:
        try:
            response = await client.get(feed_url)
        except HTTPClientError as e:
            logger.warning(f"Failed to fetch feed {feed_url}: {e}")
            return [
                FetchedItem(
                    external_id=feed_url,
                    url=feed_url,
                    fetch_status=e.fetch_status,
                    error=str(e),
                )
            ]

        feed = feedparser.parse(response.text)
        entries = feed.get("entries", [])
        if feed.get("bozo") and not entries:
            reason = feed.get("bozo_exception")
            logger.warning(f"Unreadable feed {feed_url}: {reason}")
            return [
                FetchedItem(
                    external_id=feed_url,
                    url=feed_url,
                    fetch_status=PARSE_ERROR,
                    error=f"Could not parse feed: {reason}",
                )
            ]

        logger.debug(f"Read {len(entries)} entries from {feed_url}")
        return [entry_to_item(entry, feed_url) for entry in entries]
