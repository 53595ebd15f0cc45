"""
Query façade and HTTP search endpoint.
"""

from .service import SearchService, SearchResult, make_excerpt
from .api import create_app

__all__ = ['SearchService', 'SearchResult', 'make_excerpt', 'create_app']
