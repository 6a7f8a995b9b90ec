"""
Channel -> connector lookup.

The pipeline never branches on channel itself; fetch-items asks the
registry for the connector and calls ``fetch(source)``.
"""

import logging

from guardian.connectors.base import BaseConnector
from guardian.connectors.social import (
    FacebookConnector,
    InstagramConnector,
    LinkedInConnector,
)
from guardian.connectors.web import WebConnector
from guardian.connectors.youtube import YouTubeConnector
from guardian.pipeline.errors import UnsupportedChannelError
from guardian.sources.schemas import Channel

logger = logging.getLogger(__name__)


class ConnectorRegistry:
    """
    Lookup table of connectors keyed by channel.

    Usage:
        registry = ConnectorRegistry.default()
        connector = registry.resolve(Channel.WEB)
        items = await connector.fetch(source)
    """

    def __init__(self, connectors: dict[Channel, BaseConnector] | None = None):
        self._connectors: dict[Channel, BaseConnector] = dict(connectors or {})

    @classmethod
    def default(cls, rate_limit: int = 60) -> "ConnectorRegistry":
        """Registry with a connector for every known channel."""
        return cls(
            {
                Channel.WEB: WebConnector(rate_limit=rate_limit),
                Channel.YOUTUBE: YouTubeConnector(rate_limit=rate_limit),
                Channel.FACEBOOK: FacebookConnector(rate_limit=rate_limit),
                Channel.INSTAGRAM: InstagramConnector(rate_limit=rate_limit),
                Channel.LINKEDIN: LinkedInConnector(rate_limit=rate_limit),
            }
        )

    def register(self, connector: BaseConnector) -> None:
        """Add or replace the connector for ``connector.channel``."""
        self._connectors[connector.channel] = connector

    def resolve(self, channel: Channel | str) -> BaseConnector:
        """
        Return the connector for ``channel``.

        Raises:
            UnsupportedChannelError: Nothing is registered for the channel
        """
        try:
            key = Channel(channel)
        except ValueError as e:
            raise UnsupportedChannelError(str(channel)) from e

        connector = self._connectors.get(key)
        if connector is None:
            raise UnsupportedChannelError(key.value)
        return connector

    @property
    def channels(self) -> list[Channel]:
        return list(self._connectors)


_default_registry: ConnectorRegistry | None = None


def get_connector_registry() -> ConnectorRegistry:
    """Process-wide default registry."""
    global _default_registry
    if _default_registry is None:
        _default_registry = ConnectorRegistry.default()
    return _default_registry


def resolve_connector(channel: Channel | str) -> BaseConnector:
    """Resolve ``channel`` against the default registry."""
    return get_connector_registry().resolve(channel)
