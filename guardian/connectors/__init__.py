"""Channel connectors: fetch a source's current content as FetchedItems."""

from guardian.connectors.base import BaseConnector, ConnectorStats, RateLimiter
from guardian.connectors.registry import (
    ConnectorRegistry,
    get_connector_registry,
    resolve_connector,
)

__all__ = [
    "BaseConnector",
    "ConnectorRegistry",
    "ConnectorStats",
    "RateLimiter",
    "get_connector_registry",
    "resolve_connector",
]
