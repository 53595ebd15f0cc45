"""
Query façade: turns a raw query string into a page of URLs with excerpts.
"""

import logging
from dataclasses import dataclass
from typing import Any, List, Optional

from ..storage.search_index import SearchIndex
from ..utils.monitoring import CrawlerMonitor

EXCERPT_LENGTH = 140
EXCERPT_LEAD = 69

DEFAULT_PAGE = 0
DEFAULT_AMOUNT = 10


@dataclass
class SearchResult:
    """One search result as served to clients."""
    url: str
    excerpt: str

    def to_dict(self):
        return {'url': self.url, 'excerpt': self.excerpt}


def make_excerpt(content: str, query: str) -> str:
    """
    Cut a window of the content around the first occurrence of the query.

    Short content is returned whole. When the query does not occur
    verbatim the window starts at the beginning of the content.
    """
    if len(content) <= EXCERPT_LENGTH:
        return content

    location = content.find(query)
    start = max(0, location - EXCERPT_LEAD) if location >= 0 else 0
    end = min(len(content), start + EXCERPT_LENGTH)
    return content[start:end]


def _coerce(value: Any, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


class SearchService:
    """
    Paginated search over the index.

    Args:
        index: Index to query
        monitor: Optional monitor counting served queries
    """

    def __init__(self, index: SearchIndex, monitor: Optional[CrawlerMonitor] = None):
        self.index = index
        self.monitor = monitor
        self.logger = logging.getLogger(__name__)

    async def search(self, query: Optional[str], page: Any = DEFAULT_PAGE,
                     amount: Any = DEFAULT_AMOUNT) -> List[SearchResult]:
        """
        Search for query and return one page of results.

        Args:
            query: Raw query string, split on whitespace into terms
            page: Zero-based page number; negatives are treated as 0
            amount: Page size; values below 1 are treated as 1

        Returns:
            Results best first, or an empty list when the query is empty
            or the search fails
        """
        if not query or not query.strip():
            return []

        page = max(0, _coerce(page, DEFAULT_PAGE))
        amount = max(1, _coerce(amount, DEFAULT_AMOUNT))

        if self.monitor:
            self.monitor.record_search()

        try:
            documents = await self.index.search(query.split(), page, amount)
        except Exception as e:
            self.logger.error(f"Search for {query!r} failed: {e}")
            return []

        self.logger.debug(f"Query {query!r} page {page} returned {len(documents)} results")
        return [
            SearchResult(url=document.url, excerpt=make_excerpt(document.content, query))
            for document in documents
        ]
