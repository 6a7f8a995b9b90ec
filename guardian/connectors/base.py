"""
Base connector interface shared by every channel.

A connector turns a Source into a list of FetchedItem. The base class
provides:
- Rate limiting (token bucket, per connector instance)
- Per-fetch statistics and a completion log line
- Connector error metrics for items that could not be read
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from guardian.ingestion.schemas import FetchedItem
from guardian.observability.metrics import get_metrics
from guardian.sources.schemas import Channel, Source

logger = logging.getLogger(__name__)


@dataclass
class RateLimiter:
    """
    Token bucket rate limiter.

    Allows ``rate`` requests per minute, refilled continuously, with a
    burst capacity of ``rate``.
    """

    rate: int  # requests per minute
    _tokens: float = field(init=False)
    _last_update: float = field(init=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def __post_init__(self) -> None:
        self._tokens = float(self.rate)
        self._last_update = time.monotonic()

    async def acquire(self) -> None:
        """Wait until a token is available, then consume it."""
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_update
            self._last_update = now

            self._tokens = min(
                float(self.rate),
                self._tokens + elapsed * (self.rate / 60.0),
            )

            if self._tokens < 1:
                wait_time = (1 - self._tokens) * 60.0 / self.rate
                logger.debug(f"Rate limited, waiting {wait_time:.2f}s")
                await asyncio.sleep(wait_time)
                self._tokens = 0
            else:
                self._tokens -= 1


@dataclass
class ConnectorStats:
    """Counters for one fetch() call."""

    items_ok: int = 0
    items_failed: int = 0
    start_time: float = field(default_factory=time.monotonic)

    @property
    def elapsed_seconds(self) -> float:
        return time.monotonic() - self.start_time


class BaseConnector(ABC):
    """
    Abstract base class for channel connectors.

    Subclasses must implement:
        - channel: the Channel this connector serves
        - _fetch_items(source): read the source and return FetchedItems

    Item-level problems (a 404 page, a broken feed) must be returned as
    FetchedItems with a non-OK ``fetch_status``, never dropped. Raising
    from ``_fetch_items`` fails the whole run.

    IMPORTANT: Subclasses call ``await self._rate_limiter.acquire()``
    before each outbound request.
    """

    def __init__(self, rate_limit: int = 60):
        """
        Args:
            rate_limit: Maximum outbound requests per minute
        """
        self._rate_limiter = RateLimiter(rate=rate_limit)
        self._stats = ConnectorStats()

    @property
    @abstractmethod
    def channel(self) -> Channel:
        ...

    @property
    def name(self) -> str:
        return f"{self.channel.value.lower()}_connector"

    @abstractmethod
    async def _fetch_items(self, source: Source) -> list[FetchedItem]:
        ...

    async def fetch(self, source: Source) -> list[FetchedItem]:
        """
        Fetch the current content of ``source``.

        Returns every item the connector saw, including failed ones.
        """
        self._stats = ConnectorStats()
        metrics = get_metrics()

        logger.info(f"Starting fetch for source {source.id} with {self.name}")

        try:
            items = await self._fetch_items(source)
        except Exception as e:
            logger.error(f"Error in {self.name} fetch for source {source.id}: {e}")
            metrics.record_connector_error(self.channel, type(e).__name__)
            raise

        for item in items:
            if item.is_ok:
                self._stats.items_ok += 1
            else:
                self._stats.items_failed += 1
                metrics.record_connector_error(self.channel, item.fetch_status)

        logger.info(
            f"{self.name} completed for source {source.id}: "
            f"ok={self._stats.items_ok}, "
            f"failed={self._stats.items_failed}, "
            f"elapsed={self._stats.elapsed_seconds:.2f}s"
        )
        return items

    @property
    def stats(self) -> ConnectorStats:
        return self._stats

    async def health_check(self) -> bool:
        """Whether the connector can reach its platform. Override per channel."""
        return True
