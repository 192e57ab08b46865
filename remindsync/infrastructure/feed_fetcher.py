"""
HTTP fetching of calendar feeds with retry logic.
"""

import logging
from typing import Optional, Protocol

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from remindsync.config.settings import get_settings
from remindsync.domain.errors import FetchError

logger = logging.getLogger(__name__)


class FeedFetcher(Protocol):
    """Fetch-by-URL collaborator."""

    async def fetch(self, url: str) -> bytes:
        """Return the body of url. Raises FetchError."""
        ...


def normalize_feed_url(url: str) -> str:
    """Calendar apps publish feeds as webcal:// links; they are plain HTTP(S)."""
    if url.lower().startswith("webcals://"):
        return "https://" + url[len("webcals://"):]
    if url.lower().startswith("webcal://"):
        return "https://" + url[len("webcal://"):]
    return url


class HttpFeedFetcher:
    """Downloads feeds with httpx, retrying transport errors."""

    def __init__(
        self,
        timeout: Optional[float] = None,
        attempts: Optional[int] = None,
        client: Optional[httpx.AsyncClient] = None
    ):
        settings = get_settings()
        self.timeout = timeout if timeout is not None else settings.fetch_timeout_seconds
        self.attempts = attempts if attempts is not None else settings.fetch_retry_attempts
        self._client = client
        self._get = retry(
            stop=stop_after_attempt(self.attempts),
            wait=wait_exponential(multiplier=1, min=1, max=5),
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True
        )(self._get_once)

    async def _get_once(self, client: httpx.AsyncClient, url: str) -> httpx.Response:
        return await client.get(url, follow_redirects=True, timeout=self.timeout)

    async def fetch(self, url: str) -> bytes:
        """
        Download a calendar feed.

        Args:
            url: Feed endpoint (http, https or webcal)

        Returns:
            Raw response body

        Raises:
            FetchError: when no 2xx response arrives, a malformed URL included
        """
        target = normalize_feed_url(url)

        try:
            if self._client is not None:
                response = await self._get(self._client, target)
            else:
                async with httpx.AsyncClient() as client:
                    response = await self._get(client, target)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(f"Failed to fetch feed {target}: {e}")
            raise FetchError(f"Could not reach {target}: {e}") from e

        if not 200 <= response.status_code <= 299:
            logger.error(f"Failed to fetch feed {target}: HTTP {response.status_code}")
            raise FetchError(
                f"Invalid response from {target}: HTTP {response.status_code}",
                status_code=response.status_code,
            )

        logger.info(f"Downloaded feed {target}: {len(response.content)} bytes")
        return response.content
