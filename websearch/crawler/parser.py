"""
HTML parser producing the title, text, description and links of a page.
"""

import re
import logging
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import List
from bs4 import BeautifulSoup, Comment


# Links that never lead to a crawlable page
IGNORED_LINK_PREFIXES = ('#', '?', 'javascript', 'mailto:', 'tel:')


@dataclass
class FetchedDocument:
    """A downloaded page, consumed once by the scheduler."""
    url: str
    title: str = ""
    content: str = ""
    description: str = ""
    last_crawl: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    outbound_links: List[str] = field(default_factory=list)


class ContentParser:
    """
    Parses HTML content into a FetchedDocument.

    Links are returned as written in the page (trimmed); resolving and
    filtering them against the allow-list is left to the scheduler.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self.whitespace_pattern = re.compile(r'\s+')

    def parse(self, url: str, html_content: str) -> FetchedDocument:
        """
        Parse HTML content and extract the indexed fields.

        Args:
            url: The URL of the page
            html_content: Raw HTML content

        Returns:
            FetchedDocument with title, content, description and links
        """
        soup = BeautifulSoup(html_content, 'lxml')

        for script in soup(["script", "style", "noscript"]):
            script.decompose()

        for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
            comment.extract()

        document = FetchedDocument(
            url=url,
            title=self._extract_title(soup),
            description=self._extract_description(soup),
            content=self._extract_content(soup),
            outbound_links=self._extract_links(soup),
        )

        self.logger.debug(f"Parsed content from {url}: {len(document.content)} chars, "
                          f"{len(document.outbound_links)} links")
        return document

    def _extract_title(self, soup: BeautifulSoup) -> str:
        """Extract page title."""
        title_tag = soup.find('title')
        if title_tag:
            return self._clean_text(title_tag.get_text())
        return ""

    def _extract_description(self, soup: BeautifulSoup) -> str:
        """Extract the description meta tag."""
        meta_desc = soup.find('meta', attrs={'name': 'description'}) or \
            soup.find('meta', attrs={'property': 'og:description'})
        if meta_desc:
            return self._clean_text(meta_desc.get('content', ''))
        return ""

    def _extract_content(self, soup: BeautifulSoup) -> str:
        """Extract the visible body text."""
        content_element = soup.find('body') or soup
        return self._clean_text(content_element.get_text(separator=' ', strip=True))

    def _extract_links(self, soup: BeautifulSoup) -> List[str]:
        links = {}

        for link in soup.find_all('a', href=True):
            href = link['href'].strip()
            if not href or href.lower().startswith(IGNORED_LINK_PREFIXES):
                continue
            links.setdefault(href, None)

        return list(links)

    def _clean_text(self, text: str) -> str:
        """Collapse whitespace."""
        if not text:
            return ""
        return self.whitespace_pattern.sub(' ', text.strip())
