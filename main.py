#!/usr/bin/env python3
"""
Main entry point for the web search engine.
"""

import asyncio
import argparse
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from aiohttp import web

from websearch import __version__
from websearch.crawler.fetcher import WebFetcher
from websearch.crawler.scheduler import CrawlScheduler
from websearch.crawler.url_frontier import FrontierStore, create_frontier_store
from websearch.search.api import create_app
from websearch.search.service import SearchService
from websearch.storage.search_index import SearchIndex
from websearch.utils.config import load_config, Config
from websearch.utils.logger import setup_logging, log_system_info
from websearch.utils.monitoring import CrawlerMonitor

# Seconds a stopping crawl may take to finish its cycle before it is cancelled
SHUTDOWN_GRACE_PERIOD = 30


class WebSearchApp:
    """Main application class: crawler, index and search endpoint."""

    def __init__(self):
        self.frontier: Optional[FrontierStore] = None
        self.index: Optional[SearchIndex] = None
        self.fetcher: Optional[WebFetcher] = None
        self.scheduler: Optional[CrawlScheduler] = None
        self.monitor: Optional[CrawlerMonitor] = None
        self.api_runner: Optional[web.AppRunner] = None
        self.logger = logging.getLogger(__name__)
        self._shutdown_event = asyncio.Event()

    def setup_logging(self, config: Config):
        """Setup logging configuration."""
        setup_logging(config.logging)
        log_system_info(config.index.directory)

    def setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown."""
        def signal_handler(signum, frame):
            self.logger.info(f"Received signal {signum}, initiating shutdown...")
            self._shutdown_event.set()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    async def open_stores(self, config: Config):
        """Open the frontier and the index."""
        self.frontier = create_frontier_store(config.frontier)
        await self.frontier.initialize()

        self.index = SearchIndex(
            directory=config.index.directory,
            language=config.index.language,
            candidate_limit=config.index.candidate_limit
        )
        await self.index.initialize()

    async def run(self, config_path: str, max_cycles: Optional[int] = None,
                  max_duration: Optional[int] = None, dry_run: bool = False,
                  list_frontier: bool = False, query: Optional[str] = None) -> int:
        """Run the crawler and the search endpoint."""
        try:
            config = load_config(config_path)
            self.setup_logging(config)
            self.setup_signal_handlers()

            self.logger.info("=== WEB SEARCH ENGINE STARTING ===")
            self.logger.info(f"Configuration loaded from: {config_path}")
            self.logger.info(f"Root URL: {config.crawler.root_url}")
            self.logger.info(f"Allowed domains: {config.crawler.allowed_domains}")
            self.logger.info(f"Workers: {config.crawler.worker_count}")
            self.logger.info(f"Cycle delay: {config.crawler.cycle_delay}s")
            self.logger.info(f"Frontier type: {config.frontier.type}")

            if dry_run:
                self.logger.info("DRY RUN MODE: No actual crawling will be performed")
                await self._dry_run(config)
                return 0

            await self.open_stores(config)

            if list_frontier:
                await self._list_frontier()
                return 0

            self.monitor = CrawlerMonitor(
                enable_prometheus=config.monitoring.metrics_enabled,
                prometheus_port=config.monitoring.prometheus_port
            )
            service = SearchService(self.index, self.monitor)

            if query is not None:
                results = await service.search(query)
                print(json.dumps([result.to_dict() for result in results], indent=2, ensure_ascii=False))
                return 0

            self.monitor.start_server()

            if config.api.enabled:
                await self._start_api(config, service)

            self.fetcher = WebFetcher(
                user_agent=config.crawler.user_agent,
                request_timeout=config.crawler.request_timeout,
                max_concurrent_requests=config.crawler.worker_count,
                max_content_size=config.crawler.max_content_size
            )
            await self.fetcher.start()

            self.scheduler = CrawlScheduler(
                config.crawler, self.frontier, self.index, self.fetcher, self.monitor
            )

            crawl_task = asyncio.create_task(
                self.scheduler.run(self._shutdown_event, max_cycles, max_duration)
            )
            shutdown_task = asyncio.create_task(self._shutdown_event.wait())

            done, pending = await asyncio.wait(
                [crawl_task, shutdown_task],
                return_when=asyncio.FIRST_COMPLETED
            )

            if shutdown_task in done:
                self.logger.info("Shutdown requested, stopping crawler...")
                self.scheduler.stop()
                try:
                    await asyncio.wait_for(crawl_task, timeout=SHUTDOWN_GRACE_PERIOD)
                except asyncio.TimeoutError:
                    self.logger.warning("Crawler did not stop in time, cancelled")
            else:
                shutdown_task.cancel()
                try:
                    await shutdown_task
                except asyncio.CancelledError:
                    pass

            self.logger.info(f"Final crawl stats: {self.scheduler.get_stats()}")
            self.logger.info(f"Final fetch stats: {self.fetcher.get_stats()}")
            self.logger.info(f"Monitoring summary: {self.monitor.get_summary()}")

        except Exception as e:
            self.logger.error(f"Fatal error: {e}", exc_info=True)
            return 1

        finally:
            await self.close()
            self.logger.info("=== WEB SEARCH ENGINE FINISHED ===")

        return 0

    async def _start_api(self, config: Config, service: SearchService):
        """Serve search queries while the crawler runs."""
        self.api_runner = web.AppRunner(create_app(service, self.frontier))
        await self.api_runner.setup()
        site = web.TCPSite(self.api_runner, config.api.host, config.api.port)
        await site.start()
        self.logger.info(f"Search API listening on http://{config.api.host}:{config.api.port}")

    async def _list_frontier(self):
        """Print every known URL and its status."""
        for entry in await self.frontier.all_entries():
            status = "crawled" if entry.crawled else "pending"
            print(f"{entry.id}\t{status}\t{entry.failures}\t{entry.url}")

        stats = await self.frontier.get_stats()
        print(f"{stats['total']} URLs, {stats['crawled']} crawled, {stats['uncrawled']} pending")

    async def close(self):
        """Close all components."""
        if self.api_runner:
            await self.api_runner.cleanup()
            self.api_runner = None
        if self.fetcher:
            await self.fetcher.close()
            self.fetcher = None
        if self.index:
            await self.index.close()
            self.index = None
        if self.frontier:
            await self.frontier.close()
            self.frontier = None

    async def _dry_run(self, config: Config):
        """Perform a dry run to test configuration and connections."""
        self.logger.info("Testing frontier store...")
        try:
            frontier = create_frontier_store(config.frontier)
            await frontier.initialize()
            stats = await frontier.get_stats()
            await frontier.close()
            self.logger.info(f"✓ Frontier store available ({stats['total']} URLs)")
        except Exception as e:
            self.logger.error(f"✗ Frontier store failed: {e}")

        self.logger.info("Testing search index...")
        try:
            index = SearchIndex(config.index.directory, config.index.language,
                                config.index.candidate_limit)
            await index.initialize()
            count = await index.document_count()
            await index.close()
            self.logger.info(f"✓ Search index available ({count} documents)")
        except Exception as e:
            self.logger.error(f"✗ Search index failed: {e}")

        self.logger.info("Testing fetcher configuration...")
        try:
            async with WebFetcher(
                user_agent=config.crawler.user_agent,
                request_timeout=config.crawler.request_timeout,
                max_concurrent_requests=1,
                max_content_size=config.crawler.max_content_size
            ) as fetcher:
                document = await fetcher.fetch(config.crawler.root_url)
                self.logger.info(f"✓ Test fetch successful: {document.title!r}, "
                                 f"{len(document.outbound_links)} links")
        except Exception as e:
            self.logger.error(f"✗ Fetcher test failed: {e}")

        self.logger.info("Dry run completed")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Web Search Engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                           # Crawl and serve with config.yaml
  python main.py --config my_config.yaml  # Run with custom config
  python main.py --max-cycles 10          # Stop after 10 crawl cycles
  python main.py --max-duration 3600      # Run for 1 hour max
  python main.py --dry-run                # Test configuration only
  python main.py --list-frontier          # Show known URLs and exit
  python main.py --query "python asyncio" # Search the index and exit
        """
    )

    parser.add_argument(
        '--config',
        default='config.yaml',
        help='Path to configuration file (default: config.yaml)'
    )

    parser.add_argument(
        '--max-cycles',
        type=int,
        help='Maximum number of crawl cycles'
    )

    parser.add_argument(
        '--max-duration',
        type=int,
        help='Maximum crawl duration in seconds'
    )

    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Test configuration without actually crawling'
    )

    parser.add_argument(
        '--list-frontier',
        action='store_true',
        help='Print the URL frontier and exit'
    )

    parser.add_argument(
        '--query',
        help='Run one search against the index and exit'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'Web Search Engine {__version__}'
    )

    args = parser.parse_args()

    if not Path(args.config).exists():
        print(f"Error: Configuration file '{args.config}' not found.")
        print("Please create a config.yaml file or specify a different path with --config")
        return 1

    app = WebSearchApp()
    try:
        return asyncio.run(app.run(
            config_path=args.config,
            max_cycles=args.max_cycles,
            max_duration=args.max_duration,
            dry_run=args.dry_run,
            list_frontier=args.list_frontier,
            query=args.query
        ))
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 1
    except Exception as e:
        print(f"Fatal error: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
