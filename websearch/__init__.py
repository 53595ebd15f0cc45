"""
Web Search Engine

A small search engine: an allow-listed crawler feeding a full-text index.
"""

__version__ = "1.0.0"
__description__ = "A web crawler with a full-text index and a paginated search endpoint"
