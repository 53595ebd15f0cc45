# File: tests/test_parser.py
import pytest

from websearch.crawler.parser import ContentParser


@pytest.fixture()
def parser() -> ContentParser:
    return ContentParser()


def test_extracts_title_description_and_text(parser):
    html = """
    <html><head>
      <title>  Birds   of the
      Coast </title>
      <meta name="description" content="Coastal birds guide">
      <style>body { color: red; }</style>
    </head>
    <body>
      <h1>Herons</h1>
      <script>var tracking = true;</script>
      <!-- hidden note -->
      <p>Herons   wade in
      shallow water.</p>
    </body></html>
    """
    document = parser.parse("http://example.com/birds", html)

    assert document.url == "http://example.com/birds"
    assert document.title == "Birds of the Coast"
    assert document.description == "Coastal birds guide"
    assert document.content == "Herons Herons wade in shallow water."
    assert "tracking" not in document.content
    assert "hidden note" not in document.content
    assert "color" not in document.content


def test_og_description_is_used_as_fallback(parser):
    html = '<html><head><meta property="og:description" content="From OG"></head><body></body></html>'
    assert parser.parse("http://example.com/", html).description == "From OG"


def test_missing_fields_are_empty(parser):
    document = parser.parse("http://example.com/", "<html><body></body></html>")
    assert document.title == ""
    assert document.description == ""
    assert document.content == ""
    assert document.outbound_links == []


def test_links_are_deduplicated_and_filtered(parser):
    html = """
    <body>
      <a href="/a">A</a>
      <a href=" /b ">B</a>
      <a href="/a">A again</a>
      <a href="#top">Top</a>
      <a href="?page=2">Next</a>
      <a href="JavaScript:void(0)">JS</a>
      <a href="mailto:me@example.com">Mail</a>
      <a href="tel:123">Call</a>
      <a href="">Empty</a>
      <a>No href</a>
      <a href="https://other.org/x">Other</a>
    </body>
    """
    document = parser.parse("http://example.com/", html)
    assert document.outbound_links == ["/a", "/b", "https://other.org/x"]
