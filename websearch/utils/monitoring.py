"""
Monitoring and metrics collection for the crawler and the search endpoint.
"""

import time
import logging
from typing import Dict, Optional, Any

from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry
from prometheus_client import start_http_server


class CrawlerMonitor:
    """
    Prometheus metrics for crawl cycles, indexing and queries.

    Each monitor owns its registry so several instances (one per test, for
    instance) never collide on metric names.
    """

    def __init__(self, enable_prometheus: bool = False, prometheus_port: int = 8000):
        self.logger = logging.getLogger(__name__)
        self.enable_prometheus = enable_prometheus
        self.prometheus_port = prometheus_port
        self.start_time = time.time()

        self.registry = CollectorRegistry()

        self.pages_indexed = Counter(
            'websearch_pages_indexed_total',
            'Total number of pages written to the index',
            registry=self.registry
        )
        self.errors = Counter(
            'websearch_errors_total',
            'Total number of crawl errors',
            ['error_type'],
            registry=self.registry
        )
        self.links_added = Counter(
            'websearch_links_added_total',
            'Total number of links offered to the frontier',
            registry=self.registry
        )
        self.search_requests = Counter(
            'websearch_search_requests_total',
            'Total number of search queries served',
            registry=self.registry
        )
        self.active_urls = Gauge(
            'websearch_active_urls',
            'Number of URLs in the scheduler active set',
            registry=self.registry
        )
        self.cycle_duration = Histogram(
            'websearch_cycle_duration_seconds',
            'Duration of one crawl cycle',
            registry=self.registry
        )

    def start_server(self):
        """Start Prometheus metrics HTTP server."""
        if not self.enable_prometheus:
            return

        try:
            start_http_server(self.prometheus_port, registry=self.registry)
            self.logger.info(f"Prometheus metrics server started on port {self.prometheus_port}")
        except OSError as e:
            self.logger.error(f"Failed to start Prometheus server: {e}")

    def record_page_indexed(self):
        """Record a successful upsert."""
        self.pages_indexed.inc()

    def record_error(self, error_type: str):
        """Record an error event."""
        self.errors.labels(error_type=error_type).inc()

    def record_links_added(self, count: int):
        """Record links that reached the frontier."""
        if count:
            self.links_added.inc(count)

    def record_search(self):
        self.search_requests.inc()

    def update_active_urls(self, count: int):
        """Update the active set size."""
        self.active_urls.set(count)

    def observe_cycle(self, seconds: float):
        self.cycle_duration.observe(seconds)

    def _value(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        return self.registry.get_sample_value(name, labels or {}) or 0.0

    def error_count(self, error_type: str) -> float:
        return self._value('websearch_errors_total', {'error_type': error_type})

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all metrics."""
        runtime = time.time() - self.start_time
        pages = self._value('websearch_pages_indexed_total')

        return {
            'runtime_seconds': runtime,
            'metrics': {
                'pages_indexed_total': pages,
                'links_added_total': self._value('websearch_links_added_total'),
                'search_requests_total': self._value('websearch_search_requests_total'),
                'active_urls': self._value('websearch_active_urls'),
                'cycles_total': self._value('websearch_cycle_duration_seconds_count'),
            },
            'rates': {
                'pages_per_minute': pages / (runtime / 60) if runtime > 0 else 0,
            }
        }
