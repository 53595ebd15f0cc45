# File: tests/test_search_index.py
from datetime import datetime, timezone

import pytest

from websearch.storage.search_index import (
    DESCRIPTION_LENGTH,
    IndexedDocument,
    SearchIndex,
    SearchIndexError,
    fallback_description,
)


def doc(url: str, title: str = "", content: str = "", description: str = "") -> IndexedDocument:
    return IndexedDocument(url=url, title=title, content=content, description=description)


def test_fallback_description():
    content = "x" * 500
    assert fallback_description("given", content) == "given"
    assert fallback_description("", content) == "x" * DESCRIPTION_LENGTH
    assert fallback_description("", "short") == "short"


@pytest.mark.asyncio()
async def test_upsert_then_search(search_index):
    await search_index.upsert(doc("http://example.com/a", title="Asyncio guide",
                                  content="Python coroutines and event loops"))

    results = await search_index.search(["coroutines"], 0, 10)
    assert [d.url for d in results] == ["http://example.com/a"]
    assert results[0].title == "Asyncio guide"


@pytest.mark.asyncio()
async def test_upsert_is_idempotent_per_url(search_index):
    url = "http://example.com/a"
    await search_index.upsert(doc(url, content="first version about pelicans"))
    await search_index.upsert(doc(url, content="second version about flamingos"))
    await search_index.upsert(doc(url, content="second version about flamingos"))

    assert await search_index.document_count() == 1
    assert await search_index.search(["pelicans"], 0, 10) == []

    stored = await search_index.get_document(url)
    assert stored.content == "second version about flamingos"


@pytest.mark.asyncio()
async def test_missing_description_falls_back_to_content(search_index):
    content = "word " * 100
    await search_index.upsert(doc("http://example.com/a", content=content))
    await search_index.upsert(doc("http://example.com/b", content=content, description="Own text"))

    a = await search_index.get_document("http://example.com/a")
    b = await search_index.get_document("http://example.com/b")
    assert a.description == content[:DESCRIPTION_LENGTH]
    assert b.description == "Own text"


@pytest.mark.asyncio()
async def test_terms_are_ored_across_fields(search_index):
    await search_index.upsert(doc("http://example.com/title", title="Kangaroo"))
    await search_index.upsert(doc("http://example.com/desc", description="A wombat burrow"))
    await search_index.upsert(doc("http://example.com/body", content="Platypus facts"))
    await search_index.upsert(doc("http://example.com/none", content="Nothing relevant"))

    results = await search_index.search(["kangaroo", "wombat", "platypus"], 0, 10)
    assert {d.url for d in results} == {
        "http://example.com/title", "http://example.com/desc", "http://example.com/body"
    }


@pytest.mark.asyncio()
async def test_more_matching_terms_rank_higher(search_index):
    await search_index.upsert(doc("http://example.com/one", content="kangaroo alone in the text"))
    await search_index.upsert(doc("http://example.com/both", content="kangaroo and wombat together"))

    hits = await search_index.search_hits(["kangaroo", "wombat"], 0, 10)
    assert hits[0].document.url == "http://example.com/both"
    assert hits[0].score >= hits[1].score


@pytest.mark.asyncio()
async def test_pagination_concatenates_to_larger_page(search_index):
    for i in range(12):
        await search_index.upsert(doc(f"http://example.com/{i}", content="shared " * (i + 1)))

    first = await search_index.search(["shared"], 0, 4)
    second = await search_index.search(["shared"], 1, 4)
    both = await search_index.search(["shared"], 0, 8)

    assert len(first) == len(second) == 4
    assert [d.url for d in first + second] == [d.url for d in both]


@pytest.mark.asyncio()
async def test_page_past_the_end_is_empty(search_index):
    await search_index.upsert(doc("http://example.com/a", content="lonely"))
    assert await search_index.search(["lonely"], 5, 10) == []


@pytest.mark.asyncio()
async def test_results_are_capped_by_candidate_limit():
    index = SearchIndex(directory=None, candidate_limit=5)
    await index.initialize()
    try:
        for i in range(8):
            await index.upsert(doc(f"http://example.com/{i}", content="capped"))

        assert len(await index.search(["capped"], 0, 10)) == 5
        assert await index.search(["capped"], 1, 5) == []
    finally:
        await index.close()


@pytest.mark.asyncio()
async def test_empty_terms_return_nothing(search_index):
    await search_index.upsert(doc("http://example.com/a", content="anything"))

    assert await search_index.search([], 0, 10) == []
    assert await search_index.search(["the"], 0, 10) == []


@pytest.mark.asyncio()
async def test_invalid_paging_is_rejected(search_index):
    with pytest.raises(ValueError):
        await search_index.search(["x"], -1, 10)
    with pytest.raises(ValueError):
        await search_index.search(["x"], 0, 0)


@pytest.mark.asyncio()
async def test_last_crawl_is_stored(search_index):
    crawled_at = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    await search_index.upsert(IndexedDocument(url="http://example.com/a", content="dated",
                                              last_crawl=crawled_at))

    stored = await search_index.get_document("http://example.com/a")
    assert stored.last_crawl == crawled_at
    assert await search_index.get_document("http://example.com/missing") is None


@pytest.mark.asyncio()
async def test_index_survives_reopen(tmp_path):
    directory = str(tmp_path / "index")

    index = SearchIndex(directory=directory)
    await index.initialize()
    await index.upsert(doc("http://example.com/a", content="persistent heron"))
    await index.close()

    reopened = SearchIndex(directory=directory)
    await reopened.initialize()
    try:
        assert await reopened.document_count() == 1
        results = await reopened.search(["heron"], 0, 10)
        assert [d.url for d in results] == ["http://example.com/a"]
    finally:
        await reopened.close()


@pytest.mark.asyncio()
async def test_uninitialized_index_raises():
    index = SearchIndex(directory=None)
    with pytest.raises(SearchIndexError):
        await index.upsert(doc("http://example.com/a"))
