# File: tests/conftest.py
import asyncio
from collections.abc import AsyncIterator
from typing import Dict, List, Optional

import fakeredis.aioredis
import pytest
import pytest_asyncio
from aiohttp import web

from websearch.crawler.fetcher import FetchError
from websearch.crawler.parser import FetchedDocument
from websearch.crawler.url_frontier import (
    FrontierStore, RedisFrontierStore, SqliteFrontierStore, normalize_url
)
from websearch.storage.search_index import SearchIndex
from websearch.utils.config import CrawlerConfig
from websearch.utils.monitoring import CrawlerMonitor

ROOT_URL = "http://example.com/"


class FakeFetcher:
    """
    Serves FetchedDocuments from a dict keyed by normalized URL.

    Unknown URLs raise FetchError, as a 404 would. ``delay`` keeps every
    fetch in flight for a while so concurrency can be observed.
    """

    def __init__(self, pages: Dict[str, FetchedDocument], delay: float = 0.0):
        self.pages = {normalize_url(url): page for url, page in pages.items()}
        self.delay = delay
        self.fetched: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def fetch(self, url: str) -> FetchedDocument:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            self.fetched.append(url)
            if url not in self.pages:
                raise FetchError(url, "HTTP 404")
            return self.pages[url]
        finally:
            self.in_flight -= 1


def page(url: str, title: str = "", content: str = "", description: str = "",
         links: Optional[List[str]] = None) -> FetchedDocument:
    return FetchedDocument(url=url, title=title, content=content,
                           description=description, outbound_links=links or [])


async def serve_app(app: web.Application, port: int) -> AsyncIterator[str]:
    """Start *app* on *port*, yield base URL, ensure cleanup."""
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "localhost", port)
    await site.start()
    try:
        yield f"http://localhost:{port}"
    finally:
        await runner.cleanup()


@pytest.fixture()
def crawler_config() -> CrawlerConfig:
    """Return a crawler config that never waits between cycles."""
    return CrawlerConfig(
        root_url=ROOT_URL,
        allowed_domains=["http://example.com"],
        cycle_delay=0,
        worker_count=2,
    )


@pytest.fixture()
def monitor() -> CrawlerMonitor:
    return CrawlerMonitor()


@pytest_asyncio.fixture
async def sqlite_frontier() -> AsyncIterator[SqliteFrontierStore]:
    store = SqliteFrontierStore(":memory:")
    await store.initialize()
    yield store
    await store.close()


@pytest_asyncio.fixture(params=["sqlite", "redis"])
async def frontier(request) -> AsyncIterator[FrontierStore]:
    """Every frontier backend, each starting empty."""
    if request.param == "sqlite":
        store: FrontierStore = SqliteFrontierStore(":memory:")
    else:
        store = RedisFrontierStore(fakeredis.aioredis.FakeRedis(), key_prefix="test:frontier")
    await store.initialize()
    yield store
    await store.close()


@pytest_asyncio.fixture
async def search_index() -> AsyncIterator[SearchIndex]:
    """In-memory index."""
    index = SearchIndex(directory=None)
    await index.initialize()
    yield index
    await index.close()
