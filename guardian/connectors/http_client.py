"""
HTTP layer for connectors: retry with exponential backoff and jitter.

Connectors never see raw httpx errors. Every failure surfaces as an
``HTTPClientError`` whose ``fetch_status`` is the code recorded on the
ingestion item (``HTTP_404``, ``TIMEOUT``, ``CONNECT_ERROR``, ...).
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any

import httpx

from guardian.config.settings import get_settings

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


@dataclass
class RetryConfig:
    """
    Exponential backoff configuration for HTTP retries.

    Formula: min(max_backoff, base_delay * 2^attempt) * (1 + random(0, jitter_factor))
    """

    max_retries: int = 3
    max_backoff_seconds: float = 60.0
    base_delay: float = 1.0
    jitter_factor: float = 0.1

    @classmethod
    def from_settings(cls) -> "RetryConfig":
        settings = get_settings()
        return cls(
            max_retries=settings.max_http_retries,
            max_backoff_seconds=settings.max_backoff_seconds,
        )

    def calculate_backoff(self, attempt: int) -> float:
        """Backoff in seconds before retry number ``attempt`` (0-indexed)."""
        delay = min(self.base_delay * (2**attempt), self.max_backoff_seconds)
        return delay + delay * self.jitter_factor * random.random()

    def is_retryable_status(self, status_code: int) -> bool:
        return status_code in RETRYABLE_STATUS_CODES


def _status_for_exception(exc: httpx.TransportError) -> str:
    if isinstance(exc, httpx.TimeoutException):
        return "TIMEOUT"
    if isinstance(exc, httpx.ConnectError):
        return "CONNECT_ERROR"
    return "NETWORK_ERROR"


class HTTPClientError(Exception):
    """A request that failed for good (non-retryable, or retries exhausted)."""

    def __init__(
        self,
        message: str,
        fetch_status: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ):
        super().__init__(message)
        self.fetch_status = fetch_status
        self.status_code = status_code
        self.response_body = response_body


class RateLimitError(HTTPClientError):
    """Still rate limited (429) after all retries."""


class HTTPClient:
    """
    Async HTTP client with retry on 429, 5xx and transport errors.

    Example:
        async with HTTPClient() as client:
            response = await client.get("https://example.com/")
    """

    def __init__(
        self,
        retry_config: RetryConfig | None = None,
        timeout: float | None = None,
        user_agent: str | None = None,
    ):
        settings = get_settings()
        self.retry_config = retry_config or RetryConfig.from_settings()
        self.timeout = timeout or settings.http_timeout_seconds
        self.user_agent = user_agent or settings.http_user_agent
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "HTTPClient":
        self._client = httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            headers={"User-Agent": self.user_agent},
        )
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """
        GET with retries.

        Raises:
            HTTPClientError: Non-retryable status, or retries exhausted
            RateLimitError: Still receiving 429 after the last retry
        """
        if not self._client:
            raise RuntimeError("HTTPClient must be used as async context manager")

        attempts = self.retry_config.max_retries + 1

        for attempt in range(attempts):
            try:
                response = await self._client.get(url, params=params, headers=headers)
            except httpx.TransportError as e:
                fetch_status = _status_for_exception(e)
                if attempt < self.retry_config.max_retries:
                    await self._backoff(attempt, url, type(e).__name__)
                    continue
                raise HTTPClientError(
                    f"Request to {url} failed after {attempt + 1} attempts: {e!r}",
                    fetch_status=fetch_status,
                ) from e

            status = response.status_code
            if self.retry_config.is_retryable_status(status):
                if attempt < self.retry_config.max_retries:
                    await self._backoff(attempt, url, f"status {status}")
                    continue
                error_cls = RateLimitError if status == 429 else HTTPClientError
                raise error_cls(
                    f"Request to {url} returned {status} after {attempt + 1} attempts",
                    fetch_status=f"HTTP_{status}",
                    status_code=status,
                    response_body=response.text,
                )

            if status >= 400:
                raise HTTPClientError(
                    f"Request to {url} returned {status}",
                    fetch_status=f"HTTP_{status}",
                    status_code=status,
                    response_body=response.text,
                )

            return response

        # range() always runs at least once, so this is unreachable
        raise RuntimeError(f"Request to {url} made no attempts")

    async def _backoff(self, attempt: int, url: str, reason: str) -> None:
        delay = self.retry_config.calculate_backoff(attempt)
        logger.warning(
            f"Retryable {reason} from {url}, "
            f"attempt {attempt + 1}/{self.retry_config.max_retries + 1}, "
            f"backing off {delay:.2f}s"
        )
        await asyncio.sleep(delay)
