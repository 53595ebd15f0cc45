"""
Crawl scheduler: periodic cycles that pull uncrawled URLs from the frontier,
fan them out to a bounded pool of workers and feed the index.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Protocol
from urllib.parse import urlparse

from .url_frontier import FrontierStore, StorageError, normalize_url
from .fetcher import FetchError
from .parser import FetchedDocument
from ..storage.search_index import SearchIndex, SearchIndexError, IndexedDocument
from ..utils.config import CrawlerConfig
from ..utils.logger import get_worker_logger
from ..utils.monitoring import CrawlerMonitor


class DocumentFetcher(Protocol):
    """Anything that turns a URL into a FetchedDocument or raises FetchError."""

    async def fetch(self, url: str) -> FetchedDocument:
        ...


class SchedulerState(Enum):
    """Scheduler lifecycle; SEEDING only lasts until the root is queued."""
    SEEDING = "seeding"
    STEADY = "steady"


def resolve_link(page_url: str, link: str) -> str:
    """
    Make a link found on page_url absolute.

    ``/path`` is resolved against the page origin and ``//host/path``
    against its scheme; anything else is returned as written.
    """
    link = link.strip()
    parsed = urlparse(page_url)

    if link.startswith('//'):
        return f"{parsed.scheme}:{link}"
    if link.startswith('/'):
        return f"{parsed.scheme}://{parsed.netloc}{link}"
    return link


class DomainFilter:
    """Allow-list of URL prefixes."""

    def __init__(self, allowed_prefixes: Iterable[str]):
        self.allowed_prefixes = tuple(normalize_url(p) for p in allowed_prefixes if p.strip())

    def allows(self, url: str) -> bool:
        return normalize_url(url).startswith(self.allowed_prefixes)


@dataclass
class CrawlOutcome:
    """Result of one worker procedure, reported back to the scheduling loop."""
    url: str
    success: bool
    links_added: int = 0
    error: Optional[str] = None
    failures: int = 0


@dataclass
class CrawlStats:
    """Statistics for crawl operations."""
    start_time: float
    cycles: int = 0
    urls_crawled: int = 0
    pages_indexed: int = 0
    errors: int = 0
    links_added: int = 0

    @property
    def elapsed_time(self) -> float:
        return time.time() - self.start_time

    @property
    def pages_per_minute(self) -> float:
        elapsed_minutes = self.elapsed_time / 60
        return self.pages_indexed / elapsed_minutes if elapsed_minutes > 0 else 0


class CrawlScheduler:
    """
    Drives crawl cycles against a frontier store and a search index.

    The scheduler is the only writer of both stores. It owns the active set:
    URLs selected for a cycle that have not completed yet. A URL leaves the
    active set only when its worker procedure succeeded, or once it has used
    up ``max_failures`` attempts.
    """

    def __init__(self, config: CrawlerConfig, frontier: FrontierStore,
                 index: SearchIndex, fetcher: DocumentFetcher,
                 monitor: Optional[CrawlerMonitor] = None):
        self.config = config
        self.frontier = frontier
        self.index = index
        self.fetcher = fetcher
        self.monitor = monitor or CrawlerMonitor()
        self.logger = logging.getLogger(__name__)

        self.worker_count = config.worker_count
        self.root_url = normalize_url(config.root_url)
        self.domain_filter = DomainFilter(config.allowed_domains)

        self.state = SchedulerState.SEEDING
        self.stats = CrawlStats(start_time=time.time())
        self.is_running = False

        # insertion-ordered set of in-flight / carried-over URLs
        self._active: Dict[str, None] = {}
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def active_urls(self) -> List[str]:
        return list(self._active)

    async def run(self, stop_event: Optional[asyncio.Event] = None,
                  max_cycles: Optional[int] = None,
                  max_duration: Optional[float] = None):
        """
        Run crawl cycles until stopped.

        Args:
            stop_event: Setting it ends the loop and interrupts the pacing delay
            max_cycles: Maximum number of cycles (None for unlimited)
            max_duration: Maximum duration in seconds (None for unlimited)
        """
        if self.is_running:
            self.logger.warning("Crawler is already running")
            return

        self._stop_event = stop_event or asyncio.Event()
        self.is_running = True
        self.stats = CrawlStats(start_time=time.time())
        self.logger.info(f"Crawler started with {self.worker_count} workers at {self.root_url}")

        try:
            while not self._stop_event.is_set():
                try:
                    await self.run_cycle()
                except Exception as e:
                    self.logger.error(f"Crawl cycle failed: {e}", exc_info=True)
                    self.stats.errors += 1

                if max_cycles and self.stats.cycles >= max_cycles:
                    self.logger.info(f"Reached max cycles limit: {max_cycles}")
                    break

                if max_duration and self.stats.elapsed_time >= max_duration:
                    self.logger.info(f"Reached max duration: {max_duration} seconds")
                    break

                self.logger.info(f"Running each {self.config.cycle_delay}s")
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.config.cycle_delay)
                except asyncio.TimeoutError:
                    pass
        finally:
            self.is_running = False
            self._log_final_stats()

    def stop(self):
        """Ask the loop to finish after the current cycle."""
        self.logger.info("Stopping crawler...")
        if self._stop_event is not None:
            self._stop_event.set()

    async def run_cycle(self) -> List[CrawlOutcome]:
        """Run one seed/select/dispatch cycle and return its outcomes."""
        cycle_start = time.time()

        if self.state is SchedulerState.SEEDING:
            await self._seed()
            self.state = SchedulerState.STEADY

        batch = await self._select()
        outcomes = await self._dispatch(batch) if batch else []

        for outcome in outcomes:
            self.stats.urls_crawled += 1
            self.stats.links_added += outcome.links_added
            if outcome.success:
                self.stats.pages_indexed += 1
                self._active.pop(outcome.url, None)
                continue

            self.stats.errors += 1
            max_failures = self.config.max_failures
            if max_failures is not None and outcome.failures >= max_failures:
                self.logger.warning(
                    f"Giving up on {outcome.url} after {outcome.failures} failed attempts"
                )
                self._active.pop(outcome.url, None)

        self.stats.cycles += 1
        self.monitor.update_active_urls(len(self._active))
        self.monitor.observe_cycle(time.time() - cycle_start)

        succeeded = sum(1 for outcome in outcomes if outcome.success)
        self.logger.info(
            f"Cycle {self.stats.cycles}: {succeeded}/{len(outcomes)} pages indexed, "
            f"{len(self._active)} URLs still active"
        )
        return outcomes

    async def _seed(self):
        """Queue the configured root URL."""
        try:
            await self.frontier.add_url(self.root_url)
        except StorageError as e:
            self.logger.error(f"Could not add root URL to frontier: {e}")
        self._active.setdefault(self.root_url, None)
        self.logger.info(f"Seeded crawl with {self.root_url}")

    async def _select(self) -> List[str]:
        """Merge fresh uncrawled URLs into the active set and snapshot it."""
        try:
            entries = await self.frontier.take_uncrawled(
                self.worker_count, self.config.max_failures
            )
        except StorageError as e:
            self.logger.error(f"Could not read uncrawled URLs: {e}")
            entries = []

        for entry in entries:
            self._active.setdefault(entry.url, None)

        return list(self._active)

    async def _dispatch(self, batch: List[str]) -> List[CrawlOutcome]:
        """Run batch through at most worker_count concurrent workers."""
        work: asyncio.Queue = asyncio.Queue()
        results: asyncio.Queue = asyncio.Queue()
        for url in batch:
            work.put_nowait(url)

        workers = [
            asyncio.create_task(self._worker(f"worker-{i}", work, results))
            for i in range(min(self.worker_count, len(batch)))
        ]
        await asyncio.gather(*workers)

        outcomes = []
        while not results.empty():
            outcomes.append(results.get_nowait())
        return outcomes

    async def _worker(self, worker_id: str, work: asyncio.Queue, results: asyncio.Queue):
        """Take URLs from the work queue until it is empty."""
        while True:
            try:
                url = work.get_nowait()
            except asyncio.QueueEmpty:
                return

            outcome = await self.crawl_url(url, worker_id)
            results.put_nowait(outcome)

    async def crawl_url(self, url: str, worker_id: Optional[str] = None) -> CrawlOutcome:
        """
        Fetch, enqueue links, index and mark one URL, in that order.

        A URL is marked crawled only after its content is in the index.
        Failures are logged and returned, never raised.
        """
        worker_id = worker_id or uuid.uuid4().hex[:8]
        log = get_worker_logger(__name__, worker_id=worker_id, url=url)
        log.info(f"Worker[{worker_id}] crawling the link: {url}")

        links_added = 0
        try:
            document = await self.fetcher.fetch(url)
            links_added = await self._enqueue_links(url, document.outbound_links, log)

            await self.index.upsert(IndexedDocument(
                url=url,
                title=document.title,
                description=document.description,
                content=document.content,
                last_crawl=document.last_crawl,
            ))
            self.monitor.record_page_indexed()

            await self.frontier.mark_crawled(url)
            return CrawlOutcome(url=url, success=True, links_added=links_added)

        except FetchError as e:
            log.url_event(logging.WARNING, f"Worker[{worker_id}] could not fetch ({e.reason})")
            return await self._failed(url, 'fetch', str(e), links_added)

        except SearchIndexError as e:
            log.error(f"Worker[{worker_id}] could not index {url}: {e}")
            return await self._failed(url, 'index', str(e), links_added)

        except StorageError as e:
            log.error(f"Worker[{worker_id}] could not mark {url} as crawled: {e}")
            return await self._failed(url, 'storage', str(e), links_added)

        except Exception as e:
            log.error(f"Worker[{worker_id}] threw an error: {e}", exc_info=True)
            return await self._failed(url, 'unexpected', str(e), links_added)

        finally:
            log.debug(f"Worker[{worker_id}] finished.")

    async def _enqueue_links(self, page_url: str, links: List[str], log) -> int:
        """Offer allowed outbound links to the frontier."""
        added = 0
        for link in links:
            candidate = normalize_url(resolve_link(page_url, link))
            if not self.domain_filter.allows(candidate):
                continue

            try:
                if await self.frontier.add_url(candidate):
                    added += 1
            except StorageError as e:
                # the link is dropped, the page itself is still indexed
                log.warning(f"Could not add {candidate} to frontier: {e}")
                self.monitor.record_error('storage')

        if added:
            log.debug(f"Queued {added} new URLs from {page_url}")
        self.monitor.record_links_added(added)
        return added

    async def _failed(self, url: str, error_type: str, message: str,
                      links_added: int) -> CrawlOutcome:
        self.monitor.record_error(error_type)

        failures = 0
        try:
            failures = await self.frontier.record_failure(url)
        except StorageError as e:
            self.logger.error(f"Could not record failure for {url}: {e}")

        return CrawlOutcome(url=url, success=False, links_added=links_added,
                            error=message, failures=failures)

    def _log_final_stats(self):
        """Log final crawl statistics."""
        self.logger.info("=== CRAWL STOPPED ===")
        stat_log = get_worker_logger(__name__)
        for stat_name in ('cycles', 'urls_crawled', 'pages_indexed', 'links_added', 'errors'):
            stat_log.stat(stat_name, getattr(self.stats, stat_name))
        self.logger.info(f"Average rate: {self.stats.pages_per_minute:.1f} pages/min")

    def get_stats(self) -> Dict:
        """Get current crawl statistics."""
        return {
            'state': self.state.value,
            'cycles': self.stats.cycles,
            'urls_crawled': self.stats.urls_crawled,
            'pages_indexed': self.stats.pages_indexed,
            'errors': self.stats.errors,
            'links_added': self.stats.links_added,
            'active_urls': len(self._active),
            'elapsed_time': self.stats.elapsed_time,
            'pages_per_minute': self.stats.pages_per_minute,
            'is_running': self.is_running
        }
