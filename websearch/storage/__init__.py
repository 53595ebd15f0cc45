"""
Storage layer: the full-text index of crawled pages.
"""

from .search_index import SearchIndex, SearchIndexError, IndexedDocument, SearchHit

__all__ = ['SearchIndex', 'SearchIndexError', 'IndexedDocument', 'SearchHit']
