"""
Web crawler core components.
"""

from .url_frontier import (
    FrontierStore, FrontierEntry, SqliteFrontierStore, RedisFrontierStore,
    StorageError, create_frontier_store, normalize_url
)
from .fetcher import WebFetcher, FetchError
from .parser import ContentParser, FetchedDocument
from .scheduler import CrawlScheduler, CrawlStats, DomainFilter, resolve_link

__all__ = [
    'FrontierStore', 'FrontierEntry', 'SqliteFrontierStore', 'RedisFrontierStore',
    'StorageError', 'create_frontier_store', 'normalize_url',
    'WebFetcher', 'FetchError',
    'ContentParser', 'FetchedDocument',
    'CrawlScheduler', 'CrawlStats', 'DomainFilter', 'resolve_link'
]
