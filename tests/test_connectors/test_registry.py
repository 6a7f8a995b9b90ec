"""Tests for channel -> connector dispatch."""

import pytest

from guardian.connectors.registry import ConnectorRegistry, get_connector_registry, resolve_connector
from guardian.connectors.social import FacebookConnector, UnimplementedSocialConnector
from guardian.connectors.web import WebConnector
from guardian.connectors.youtube import YouTubeConnector
from guardian.pipeline.errors import ConfigurationError, UnsupportedChannelError
from guardian.sources.schemas import Channel, Source


class TestConnectorRegistry:
    def test_default_covers_every_channel(self):
        registry = ConnectorRegistry.default()
        assert set(registry.channels) == set(Channel)

    def test_resolves_by_enum_and_string(self):
        registry = ConnectorRegistry.default()
        assert isinstance(registry.resolve(Channel.WEB), WebConnector)
        assert isinstance(registry.resolve("YOUTUBE"), YouTubeConnector)

    def test_unknown_channel_string(self):
        with pytest.raises(UnsupportedChannelError) as exc_info:
            ConnectorRegistry.default().resolve("TIKTOK")
        assert exc_info.value.channel == "TIKTOK"
        assert isinstance(exc_info.value, ConfigurationError)

    def test_unregistered_channel(self):
        registry = ConnectorRegistry({Channel.WEB: WebConnector()})
        with pytest.raises(UnsupportedChannelError):
            registry.resolve(Channel.LINKEDIN)

    def test_register_replaces(self, stub_connector):
        registry = ConnectorRegistry.default()
        registry.register(stub_connector)
        assert registry.resolve(Channel.WEB) is stub_connector

    def test_module_level_default(self):
        assert get_connector_registry() is get_connector_registry()
        assert isinstance(resolve_connector(Channel.FACEBOOK), FacebookConnector)


class TestSocialPlaceholders:
    @pytest.mark.parametrize("channel", [Channel.FACEBOOK, Channel.INSTAGRAM, Channel.LINKEDIN])
    async def test_return_no_items(self, channel):
        connector = ConnectorRegistry.default().resolve(channel)
        source = Source(id="src-1", channel=channel, country_code="IT")

        assert isinstance(connector, UnimplementedSocialConnector)
        assert await connector.fetch(source) == []
        assert connector.stats.items_ok == 0
