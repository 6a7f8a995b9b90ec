"""
Web page connector.

Reads every URL in ``source.start_urls`` and extracts:
- the document title
- the meta description
- visible body text (script, style and noscript removed)

One FetchedItem per URL, keyed by the URL itself. A URL that cannot be read
still yields an item, with the failure recorded in ``fetch_status``.
"""

import logging
import re

from bs4 import BeautifulSoup

from guardian.connectors.base import BaseConnector
from guardian.connectors.http_client import HTTPClient, HTTPClientError
from guardian.ingestion.schemas import FetchedItem
from guardian.pipeline.errors import MissingSourceFieldError
from guardian.sources.schemas import Channel, Source

logger = logging.getLogger(__name__)

PARSE_ERROR = "PARSE_ERROR"

# Elements whose text is never shown to a reader
_INVISIBLE_TAGS = ["script", "style", "noscript"]


def _squash(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def extract_page(html_content: str) -> tuple[str | None, str | None, str]:
    """
    Pull ``(title, meta_description, body_text)`` out of an HTML document.

    Missing title or description come back as None; body text is "" for a
    page with no body.
    """
    soup = BeautifulSoup(html_content, "html.parser")

    title = None
    if soup.title and soup.title.string:
        title = _squash(soup.title.string) or None

    description = None
    meta = soup.find("meta", attrs={"name": re.compile(r"^description$", re.I)})
    if meta and meta.get("content"):
        description = _squash(meta["content"]) or None

    body = soup.body or soup
    for element in body(_INVISIBLE_TAGS):
        element.decompose()
    body_text = _squash(body.get_text(separator=" "))

    return title, description, body_text


class WebConnector(BaseConnector):
    """
    Connector for the WEB channel.

    Requests go through HTTPClient, so 429/5xx and transport errors are
    retried with backoff before a URL is recorded as failed.
    """

    def __init__(
        self,
        rate_limit: int = 60,
        http_client_factory=HTTPClient,
    ):
        super().__init__(rate_limit=rate_limit)
        self._http_client_factory = http_client_factory

    @property
    def channel(self) -> Channel:
        return Channel.WEB

    async def _fetch_items(self, source: Source) -> list[FetchedItem]:
        if not source.start_urls:
            raise MissingSourceFieldError(source.id, "start_urls")

        items: list[FetchedItem] = []
        async with self._http_client_factory() as client:
            for url in source.start_urls:
                await self._rate_limiter.acquire()
                items.append(await self._fetch_page(client, url))
        return items

    async def _fetch_page(self, client: HTTPClient, url: str) -> FetchedItem:
        try:
            response = await client.get(url)
        except HTTPClientError as e:
            logger.warning(f"Failed to fetch {url}: {e}")
            return FetchedItem(
                external_id=url,
                url=url,
                fetch_status=e.fetch_status,
                error=str(e),
            )

        try:
            title, description, body_text = extract_page(response.text)
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Failed to parse {url}: {e}")
            return FetchedItem(
                external_id=url,
                url=url,
                fetch_status=PARSE_ERROR,
                error=f"Could not parse HTML: {e}",
            )

        return FetchedItem(
            external_id=url,
            url=url,
            title=title,
            description=description,
            main_text=body_text,
        )
