# File: tests/test_search_service.py
from collections.abc import AsyncIterator

import aiohttp
import pytest
import pytest_asyncio

from conftest import serve_app
from websearch.crawler.url_frontier import SqliteFrontierStore
from websearch.search.api import create_app
from websearch.search.service import EXCERPT_LENGTH, SearchService, make_excerpt
from websearch.storage.search_index import IndexedDocument, SearchIndexError


class BrokenIndex:
    async def search(self, terms, page, amount):
        raise SearchIndexError("index corrupted")


class RecordingIndex:
    """Records the arguments of every search."""

    def __init__(self):
        self.calls = []

    async def search(self, terms, page, amount):
        self.calls.append((list(terms), page, amount))
        return []


# --------------------------------------------------------------------------- #
#                                  Excerpts                                   #
# --------------------------------------------------------------------------- #
def test_short_content_is_returned_whole():
    assert make_excerpt("A short page.", "page") == "A short page."
    assert make_excerpt("x" * EXCERPT_LENGTH, "y") == "x" * EXCERPT_LENGTH


def test_excerpt_is_centred_on_first_match():
    content = "a" * 200 + "needle" + "b" * 200
    excerpt = make_excerpt(content, "needle")

    assert len(excerpt) == EXCERPT_LENGTH
    assert excerpt.index("needle") == 69
    assert excerpt == content[131:271]


def test_excerpt_near_start_is_clamped():
    content = "needle" + "c" * 300
    assert make_excerpt(content, "needle") == content[:EXCERPT_LENGTH]


def test_excerpt_near_end_is_clamped():
    content = "d" * 300 + "needle"
    excerpt = make_excerpt(content, "needle")
    assert excerpt == content[231:]
    assert excerpt.endswith("needle")


def test_excerpt_without_match_starts_at_beginning():
    content = "e" * 300
    assert make_excerpt(content, "missing") == content[:EXCERPT_LENGTH]


# --------------------------------------------------------------------------- #
#                                SearchService                                #
# --------------------------------------------------------------------------- #
@pytest.mark.asyncio()
async def test_search_returns_urls_with_excerpts(search_index):
    content = "Intro text. " * 20 + "Pelicans eat fish." + " More text." * 20
    await search_index.upsert(IndexedDocument(url="http://example.com/birds", content=content))

    results = await SearchService(search_index).search("Pelicans", 0, 10)

    assert len(results) == 1
    assert results[0].url == "http://example.com/birds"
    assert "Pelicans eat fish." in results[0].excerpt
    assert results[0].to_dict() == {'url': results[0].url, 'excerpt': results[0].excerpt}


@pytest.mark.asyncio()
@pytest.mark.parametrize("query", [None, "", "   "])
async def test_empty_query_returns_nothing(query):
    index = RecordingIndex()
    assert await SearchService(index).search(query, 0, 10) == []
    assert index.calls == []


@pytest.mark.asyncio()
@pytest.mark.parametrize(
    "page, amount, expected",
    [
        (-3, 0, (0, 1)),
        ("2", "5", (2, 5)),
        (None, None, (0, 10)),
        ("abc", "", (0, 10)),
        (1, -7, (1, 1)),
    ],
)
async def test_page_and_amount_are_coerced_and_clamped(page, amount, expected):
    index = RecordingIndex()
    await SearchService(index).search("kiwi bird", page, amount)

    assert index.calls == [(["kiwi", "bird"], *expected)]


@pytest.mark.asyncio()
async def test_index_failure_collapses_to_empty_list(monitor):
    service = SearchService(BrokenIndex(), monitor)
    assert await service.search("anything", 0, 10) == []
    assert monitor.get_summary()['metrics']['search_requests_total'] == 1


# --------------------------------------------------------------------------- #
#                                  HTTP API                                   #
# --------------------------------------------------------------------------- #
@pytest_asyncio.fixture
async def api_url(search_index, sqlite_frontier, unused_tcp_port: int) -> AsyncIterator[str]:
    await search_index.upsert(IndexedDocument(
        url="http://example.com/heron", title="Herons", content="The grey heron hunts fish."
    ))
    await sqlite_frontier.add_url("http://example.com/heron")

    app = create_app(SearchService(search_index), sqlite_frontier)
    async for base_url in serve_app(app, unused_tcp_port):
        yield base_url


@pytest.mark.asyncio()
async def test_search_by_path(api_url):
    async with aiohttp.ClientSession() as session:
        async with session.get(f"{api_url}/search/0/10/heron") as resp:
            assert resp.status == 200
            body = await resp.json()

    assert body == [{'url': "http://example.com/heron", 'excerpt': "The grey heron hunts fish."}]


@pytest.mark.asyncio()
async def test_search_by_query_string(api_url):
    async with aiohttp.ClientSession() as session:
        async with session.get(f"{api_url}/search", params={'q': "grey fish", 'page': "-1"}) as resp:
            assert resp.status == 200
            body = await resp.json()
        async with session.get(f"{api_url}/search") as resp:
            empty = await resp.json()

    assert [item['url'] for item in body] == ["http://example.com/heron"]
    assert empty == []


@pytest.mark.asyncio()
async def test_search_with_bad_page_number(api_url):
    async with aiohttp.ClientSession() as session:
        async with session.get(f"{api_url}/search/first/ten/heron") as resp:
            assert resp.status == 200
            body = await resp.json()

    assert len(body) == 1


@pytest.mark.asyncio()
async def test_health(api_url):
    async with aiohttp.ClientSession() as session:
        async with session.get(f"{api_url}/health") as resp:
            assert resp.status == 200
            body = await resp.json()

    assert body['status'] == "ok"
    assert body['documents'] == 1
    assert body['frontier'] == {'total': 1, 'crawled': 0, 'uncrawled': 1}


@pytest.mark.asyncio()
async def test_health_without_frontier(search_index, unused_tcp_port: int):
    app = create_app(SearchService(search_index))
    async for base_url in serve_app(app, unused_tcp_port):
        async with aiohttp.ClientSession() as session:
            async with session.get(f"{base_url}/health") as resp:
                body = await resp.json()

    assert body == {'status': "ok", 'documents': 0}


@pytest.mark.asyncio()
async def test_health_reports_storage_errors(search_index, unused_tcp_port: int):
    frontier = SqliteFrontierStore(":memory:")  # never initialized
    app = create_app(SearchService(search_index), frontier)
    async for base_url in serve_app(app, unused_tcp_port):
        async with aiohttp.ClientSession() as session:
            async with session.get(f"{base_url}/health") as resp:
                assert resp.status == 503
                body = await resp.json()

    assert body['status'] == "error"
