"""
Page fetcher: downloads HTML over aiohttp and hands it to the content parser.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, asdict
from typing import Dict, Optional

import aiohttp
from aiohttp import ClientError, ClientResponse, ClientSession, ClientTimeout

from .parser import ContentParser, FetchedDocument

HTML_CONTENT_TYPES = ('text/html', 'application/xhtml+xml')
FALLBACK_ENCODINGS = ('utf-8', 'cp1252', 'latin-1')
CHUNK_SIZE = 8192


class FetchError(Exception):
    """A page could not be downloaded or parsed."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"{reason}: {url}")
        self.url = url
        self.reason = reason


@dataclass
class FetchStats:
    requests: int = 0
    succeeded: int = 0
    failed: int = 0
    bytes_downloaded: int = 0


def decode_body(body: bytes, charset: Optional[str]) -> str:
    """Decode with the declared charset, falling back to common encodings."""
    for encoding in ((charset,) if charset else ()) + FALLBACK_ENCODINGS:
        try:
            return body.decode(encoding)
        except (UnicodeDecodeError, LookupError):
            continue
    return body.decode('utf-8', errors='replace')


class WebFetcher:
    """
    Downloads pages for the crawl workers.

    At most ``max_concurrent_requests`` downloads run at once. Anything but
    a 200 response with an HTML body no larger than ``max_content_size``
    raises FetchError.
    """

    def __init__(self, user_agent: str, request_timeout: float = 30,
                 max_concurrent_requests: int = 8,
                 max_content_size: int = 10 * 1024 * 1024,
                 parser: Optional[ContentParser] = None):
        self.user_agent = user_agent
        self.request_timeout = request_timeout
        self.max_concurrent_requests = max_concurrent_requests
        self.max_content_size = max_content_size
        self.parser = parser or ContentParser()

        self.session: Optional[ClientSession] = None
        self.stats = FetchStats()
        self._slots = asyncio.Semaphore(max_concurrent_requests)
        self.logger = logging.getLogger(__name__)

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self):
        """Open the HTTP session if it is not open yet."""
        if self.session is not None:
            return

        self.session = aiohttp.ClientSession(
            timeout=ClientTimeout(total=self.request_timeout),
            headers={'User-Agent': self.user_agent},
            connector=aiohttp.TCPConnector(
                limit=self.max_concurrent_requests * 2,
                limit_per_host=self.max_concurrent_requests,
                ttl_dns_cache=300
            )
        )
        self.logger.info(f"HTTP session opened as {self.user_agent!r}")

    async def close(self):
        if self.session is not None:
            await self.session.close()
            self.session = None
            self.logger.info("HTTP session closed")

    async def fetch(self, url: str) -> FetchedDocument:
        """
        Download and parse one page.

        Args:
            url: Absolute URL of the page

        Returns:
            The parsed page

        Raises:
            FetchError: on network failure, timeout, non-200 status, non-HTML
                content type, oversized body or unparseable HTML
        """
        html = await self.fetch_html(url)
        try:
            return self.parser.parse(url, html)
        except Exception as e:
            raise FetchError(url, f"Parse error: {e}") from e

    async def fetch_html(self, url: str) -> str:
        """Download the HTML of a page."""
        await self.start()
        started = time.monotonic()

        async with self._slots:
            self.stats.requests += 1
            try:
                async with self.session.get(url) as response:
                    self._check_response(url, response)
                    body = await self._read_body(url, response)
                    html = decode_body(body, response.charset)
            except FetchError:
                self.stats.failed += 1
                raise
            except asyncio.TimeoutError as e:
                self.stats.failed += 1
                raise FetchError(url, "Request timeout") from e
            except ClientError as e:
                self.stats.failed += 1
                raise FetchError(url, f"Client error: {e}") from e

        self.stats.succeeded += 1
        self.stats.bytes_downloaded += len(body)
        self.logger.debug(f"Fetched {url}: {len(body)} bytes in {time.monotonic() - started:.2f}s")
        return html

    def _check_response(self, url: str, response: ClientResponse):
        if response.status != 200:
            raise FetchError(url, f"HTTP {response.status}")

        content_type = response.headers.get('Content-Type', '').lower()
        if not content_type.startswith(HTML_CONTENT_TYPES):
            raise FetchError(url, f"Non-HTML content type {content_type!r}")

        declared = response.content_length
        if declared is not None and declared > self.max_content_size:
            raise FetchError(url, f"Content too large ({declared} bytes)")

    async def _read_body(self, url: str, response: ClientResponse) -> bytes:
        """Read the body, giving up as soon as it passes max_content_size."""
        body = bytearray()
        async for chunk in response.content.iter_chunked(CHUNK_SIZE):
            body.extend(chunk)
            if len(body) > self.max_content_size:
                raise FetchError(url, "Content too large (exceeded limit while reading)")
        return bytes(body)

    def get_stats(self) -> Dict[str, int]:
        """Get fetcher statistics."""
        return asdict(self.stats)
