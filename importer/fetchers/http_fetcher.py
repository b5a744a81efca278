"""
HTTP page fetcher for site crawling.

Async httpx client with a bounded timeout, an identifying user agent and
retry with exponential backoff on transient failures (timeouts, 5xx).
Client errors and non-HTML responses are reported, never raised.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from django.conf import settings

logger = logging.getLogger(__name__)


@dataclass
class FetchResponse:
    """Response from a fetch operation."""

    content: str
    status_code: int
    success: bool
    headers: Dict[str, str] = field(default_factory=dict)
    final_url: str = ""
    error: Optional[str] = None


class HttpFetcher:
    """
    Async page fetcher used by the crawler and the feed sync.

    Use as an async context manager so the connection pool is shared
    across all fetches of one crawl.
    """

    DEFAULT_HEADERS = {
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.9",
        # httpx does not decode brotli without an extra package
        "Accept-Encoding": "gzip, deflate",
    }

    HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml")

    def __init__(
        self,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        user_agent: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the fetcher.

        Args:
            timeout: Request timeout in seconds (default IMPORTER_REQUEST_TIMEOUT)
            max_retries: Extra attempts on transient errors (default IMPORTER_MAX_RETRIES)
            user_agent: User-Agent header (default IMPORTER_USER_AGENT)
            transport: Optional httpx transport, used by tests
        """
        self.timeout = timeout if timeout is not None else getattr(
            settings, "IMPORTER_REQUEST_TIMEOUT", 10
        )
        self.max_retries = max_retries if max_retries is not None else getattr(
            settings, "IMPORTER_MAX_RETRIES", 1
        )
        self.user_agent = user_agent or getattr(
            settings, "IMPORTER_USER_AGENT", "SiteImporter-Crawler/1.0"
        )
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        """Async context manager entry."""
        await self._init_http_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def _init_http_client(self):
        """Initialize HTTP client."""
        if self._http_client is None:
            headers = {
                **self.DEFAULT_HEADERS,
                "User-Agent": self.user_agent,
            }
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers=headers,
                follow_redirects=True,
                transport=self._transport,
            )

    async def close(self):
        """Close HTTP client connection."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def fetch(self, url: str) -> FetchResponse:
        """
        Fetch an HTML page.

        Args:
            url: URL to fetch

        Returns:
            FetchResponse; ``success`` is False for transport errors,
            HTTP error statuses and non-HTML content types.
        """
        if self._http_client is None:
            await self._init_http_client()

        try:
            response = await self._fetch_with_retry(url)
        except httpx.TimeoutException as e:
            logger.warning(f"Timeout fetching {url}: {e}")
            return FetchResponse(
                content="", status_code=0, success=False, error=f"Timeout: {e}"
            )
        except httpx.HTTPStatusError as e:
            logger.warning(f"HTTP error for {url}: {e.response.status_code}")
            return FetchResponse(
                content="",
                status_code=e.response.status_code,
                success=False,
                error=f"HTTP {e.response.status_code}",
            )
        except httpx.HTTPError as e:
            logger.warning(f"Error fetching {url}: {e}")
            return FetchResponse(content="", status_code=0, success=False, error=str(e))

        headers = dict(response.headers)
        if not 200 <= response.status_code < 400:
            logger.warning(f"HTTP {response.status_code} for {url}")
            return FetchResponse(
                content="",
                status_code=response.status_code,
                success=False,
                headers=headers,
                final_url=str(response.url),
                error=f"HTTP {response.status_code}",
            )

        content_type = response.headers.get("content-type", "text/html").lower()
        if not any(t in content_type for t in self.HTML_CONTENT_TYPES):
            logger.debug(f"Skipping non-HTML response for {url} ({content_type})")
            return FetchResponse(
                content="",
                status_code=response.status_code,
                success=False,
                headers=headers,
                final_url=str(response.url),
                error=f"Not HTML: {content_type}",
            )

        return FetchResponse(
            content=response.text,
            status_code=response.status_code,
            success=True,
            headers=headers,
            final_url=str(response.url),
        )

    async def fetch_json(self, url: str) -> Optional[Any]:
        """
        Fetch and decode a JSON document.

        Returns:
            The decoded payload, or None when the request or decoding fails.
        """
        if self._http_client is None:
            await self._init_http_client()

        try:
            response = await self._fetch_with_retry(
                url, headers={"Accept": "application/json"}
            )
        except httpx.HTTPError as e:
            logger.warning(f"Error fetching JSON from {url}: {e}")
            return None

        if response.status_code != 200:
            logger.warning(f"HTTP {response.status_code} fetching JSON from {url}")
            return None

        try:
            return response.json()
        except ValueError as e:
            logger.warning(f"Invalid JSON from {url}: {e}")
            return None

    async def _fetch_with_retry(
        self, url: str, headers: Optional[Dict[str, str]] = None
    ) -> httpx.Response:
        """
        Fetch with exponential backoff retry logic.

        4xx responses are returned immediately; timeouts and 5xx are retried.
        """
        attempts = self.max_retries + 1
        last_error: Optional[Exception] = None

        for attempt in range(attempts):
            try:
                response = await self._http_client.get(url, headers=headers)

                # Don't retry on 4xx client errors
                if 400 <= response.status_code < 500:
                    return response

                response.raise_for_status()
                return response

            except httpx.TimeoutException as e:
                last_error = e
                logger.warning(f"Timeout fetching {url} (attempt {attempt + 1}/{attempts})")

            except httpx.HTTPStatusError as e:
                last_error = e
                logger.warning(
                    f"HTTP error {e.response.status_code} for {url} "
                    f"(attempt {attempt + 1}/{attempts})"
                )

            except httpx.TransportError as e:
                last_error = e
                logger.warning(f"Error fetching {url}: {e} (attempt {attempt + 1}/{attempts})")

            # Exponential backoff
            if attempt < attempts - 1:
                await asyncio.sleep(2 ** attempt)

        raise last_error

