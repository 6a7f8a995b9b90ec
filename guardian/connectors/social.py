"""
Placeholder connectors for social channels without an integration yet.

They return no items, which the pipeline cannot tell apart from a source
that genuinely has no content. The warning is the only signal.
"""

import logging

from guardian.connectors.base import BaseConnector
from guardian.ingestion.schemas import FetchedItem
from guardian.sources.schemas import Channel, Source

logger = logging.getLogger(__name__)


class UnimplementedSocialConnector(BaseConnector):
    """Connector that logs and returns nothing."""

    def __init__(self, channel: Channel, rate_limit: int = 60):
        super().__init__(rate_limit=rate_limit)
        self._channel = channel

    @property
    def channel(self) -> Channel:
        return self._channel

    async def _fetch_items(self, source: Source) -> list[FetchedItem]:
        logger.warning(
            f"{self._channel.value} connector not yet implemented, "
            f"returning no items for source {source.id}"
        )
        return []


class FacebookConnector(UnimplementedSocialConnector):
    def __init__(self, rate_limit: int = 60):
        super().__init__(Channel.FACEBOOK, rate_limit=rate_limit)


class InstagramConnector(UnimplementedSocialConnector):
    def __init__(self, rate_limit: int = 60):
        super().__init__(Channel.INSTAGRAM, rate_limit=rate_limit)


class LinkedInConnector(UnimplementedSocialConnector):
    def __init__(self, rate_limit: int = 60):
        super().__init__(Channel.LINKEDIN, rate_limit=rate_limit)
