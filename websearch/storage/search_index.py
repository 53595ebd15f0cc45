"""
Full-text index for crawled pages.

Backed by a Whoosh inverted index keyed by page URL. Blocking Whoosh calls run
in worker threads; a single lock serializes writers so only one upsert holds
the index writer at a time.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence

from whoosh import index as whoosh_index
from whoosh.analysis import LanguageAnalyzer
from whoosh.fields import Schema, ID, TEXT, STORED
from whoosh.filedb.filestore import RamStorage
from whoosh.query import Or, Term, Phrase

# Fallback description length when a page has none
DESCRIPTION_LENGTH = 140

SEARCH_FIELDS = ('title', 'description', 'content')


class SearchIndexError(Exception):
    """Raised when the index cannot be written or queried."""
    pass


@dataclass
class IndexedDocument:
    """A page as stored in the index."""
    url: str
    title: str = ""
    description: str = ""
    content: str = ""
    last_crawl: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class SearchHit:
    """A ranked search result."""
    score: float
    document: IndexedDocument


def fallback_description(description: str, content: str) -> str:
    """Use the start of the content when a page has no description."""
    if description:
        return description
    return content[:DESCRIPTION_LENGTH]


def build_schema(language: str = "en") -> Schema:
    analyzer = LanguageAnalyzer(language)
    return Schema(
        url=ID(stored=True, unique=True),
        title=TEXT(stored=True, analyzer=analyzer),
        description=TEXT(stored=True, analyzer=analyzer),
        content=TEXT(stored=True, analyzer=analyzer),
        last_crawl=STORED,
    )


class SearchIndex:
    """
    Inverted index over title, description and content.

    Args:
        directory: Index directory; ``None`` keeps the index in memory
        language: Language of the stemming/stop-word analyzer
        candidate_limit: Number of top ranked hits a query considers
    """

    def __init__(self, directory: Optional[str] = "data/index", language: str = "en",
                 candidate_limit: int = 1000):
        self.directory = directory
        self.language = language
        self.candidate_limit = candidate_limit
        self.schema = build_schema(language)
        self.logger = logging.getLogger(__name__)

        self._index = None
        self._write_lock = threading.Lock()

    async def initialize(self):
        """Open the index, creating it if needed."""
        try:
            await asyncio.to_thread(self._open_index)
        except Exception as e:
            raise SearchIndexError(f"Failed to open index: {e}") from e

    def _open_index(self):
        if self.directory is None:
            self._index = RamStorage().create_index(self.schema)
            self.logger.info("Starting in-memory index")
            return

        path = Path(self.directory)
        path.mkdir(parents=True, exist_ok=True)
        if whoosh_index.exists_in(str(path)):
            self._index = whoosh_index.open_dir(str(path))
        else:
            self._index = whoosh_index.create_in(str(path), self.schema)
        self.logger.info(f"Starting index at {path.resolve()}")

    def _require_index(self):
        if self._index is None:
            raise SearchIndexError("Index not initialized")
        return self._index

    async def upsert(self, document: IndexedDocument):
        """Insert the document, or replace the one stored for the same URL."""
        await asyncio.to_thread(self._upsert_sync, document)

    def _upsert_sync(self, document: IndexedDocument):
        ix = self._require_index()
        description = fallback_description(document.description, document.content)

        with self._write_lock:
            try:
                writer = ix.writer()
            except Exception as e:
                raise SearchIndexError(f"Error opening index writer: {e}") from e

            try:
                # delete-old and add-new become visible together at commit
                writer.update_document(
                    url=document.url,
                    title=document.title or "",
                    description=description,
                    content=document.content or "",
                    last_crawl=document.last_crawl,
                )
                writer.commit()
            except Exception as e:
                writer.cancel()
                self.logger.error(f"Error while trying to add/update {document.url}: {e}")
                raise SearchIndexError(f"Error indexing {document.url}: {e}") from e

        self.logger.info(f"Indexed document: {document.url}")

    async def search(self, terms: Sequence[str], page: int, amount: int) -> List[IndexedDocument]:
        """Return one page of documents matching any term in any field."""
        hits = await self.search_hits(terms, page, amount)
        return [hit.document for hit in hits]

    async def search_hits(self, terms: Sequence[str], page: int, amount: int) -> List[SearchHit]:
        """Return one page of scored hits, best first."""
        if page < 0 or amount < 1:
            raise ValueError("page must be >= 0 and amount >= 1")
        return await asyncio.to_thread(self._search_sync, list(terms), page, amount)

    def build_query(self, terms: Sequence[str]) -> Optional[Or]:
        """
        OR together one clause per term per field.

        Terms go through the field analyzer, so a term that analyzes to
        several tokens becomes a phrase and a stop word contributes nothing.
        """
        clauses = []
        for term in terms:
            for field_name in SEARCH_FIELDS:
                tokens = list(self.schema[field_name].process_text(term, mode="query"))
                if len(tokens) == 1:
                    clauses.append(Term(field_name, tokens[0]))
                elif len(tokens) > 1:
                    clauses.append(Phrase(field_name, tokens))

        if not clauses:
            return None
        return Or(clauses)

    def _search_sync(self, terms: List[str], page: int, amount: int) -> List[SearchHit]:
        ix = self._require_index()
        query = self.build_query(terms)
        if query is None:
            return []

        start = page * amount
        if start >= self.candidate_limit:
            return []

        try:
            with ix.searcher() as searcher:
                results = searcher.search(query, limit=self.candidate_limit)
                return [
                    SearchHit(score=hit.score, document=self._to_document(hit.fields()))
                    for hit in results[start:start + amount]
                ]
        except Exception as e:
            raise SearchIndexError(f"Error searching index: {e}") from e

    @staticmethod
    def _to_document(stored: dict) -> IndexedDocument:
        last_crawl = stored.get('last_crawl')
        if not isinstance(last_crawl, datetime):
            last_crawl = datetime.fromtimestamp(0, tz=timezone.utc)

        return IndexedDocument(
            url=stored['url'],
            title=stored.get('title', ''),
            description=stored.get('description', ''),
            content=stored.get('content', ''),
            last_crawl=last_crawl,
        )

    async def get_document(self, url: str) -> Optional[IndexedDocument]:
        """Get the stored document for a URL."""
        return await asyncio.to_thread(self._get_document_sync, url)

    def _get_document_sync(self, url: str) -> Optional[IndexedDocument]:
        ix = self._require_index()
        try:
            with ix.searcher() as searcher:
                stored = searcher.document(url=url)
        except Exception as e:
            raise SearchIndexError(f"Error reading {url}: {e}") from e
        return self._to_document(stored) if stored else None

    async def document_count(self) -> int:
        ix = self._require_index()
        return await asyncio.to_thread(ix.doc_count)

    async def close(self):
        if self._index is not None:
            self._index.close()
            self._index = None
            self.logger.info("Index closed")
