"""Documentation source: discovery of pages and text extraction.

HelpContentsSource reads a WebHelp-style table of contents page, where every
leaf topic is a ``div`` holding a single ``nobr`` with a link to
``topics/*.html`` and a ``span[id^=l]`` title, then downloads and flattens
topic pages to plain text.
"""
import logging
from dataclasses import dataclass
from typing import List, Protocol
from urllib.parse import urljoin

import requests
from bs4 import BeautifulSoup

from docsrag.errors import TransientProviderError

logger = logging.getLogger(__name__)

HEADERS = {
    "User-Agent": "docs-rag-ingestor/1.0",
}

TEXT_TAGS = ["h1", "h2", "p", "table", "code", "li", "span"]


@dataclass(frozen=True)
class SourceDocument:
    """A discovered page: display title and href relative to the docs base URL."""
    title: str
    href: str


class DocumentSource(Protocol):
    """What the ingestion orchestrator needs from a documentation source."""

    def discover(self) -> List[SourceDocument]:
        ...

    def link_for(self, href: str) -> str:
        ...

    def fetch_text(self, href: str) -> str:
        ...


def parse_contents(html: str) -> List[SourceDocument]:
    """Extract leaf topics from a table of contents page.

    Args:
        html: Contents page HTML.

    Returns:
        List[SourceDocument]: Titled topics in page order.
    """
    soup = BeautifulSoup(html, "lxml")
    docs: List[SourceDocument] = []
    for div in soup.find_all("div"):
        children = div.find_all(recursive=False)
        if len(children) != 1 or children[0].name != "nobr":
            continue
        anchor = div.find("a", href=True)
        if anchor is None:
            continue
        href = anchor["href"]
        if href == "#" or not href.startswith("topics/") or not href.endswith(".html"):
            continue
        span = div.select_one('span[id^="l"]')
        title = span.get_text(strip=True) if span else ""
        if title:
            docs.append(SourceDocument(title=title, href=href))
    return docs


def html_to_text(html: str) -> str:
    """Flatten a topic page to text, one element per line, scripts removed."""
    soup = BeautifulSoup(html, "lxml")
    for tag in soup(["script"]):
        tag.decompose()
    if soup.body is None:
        return ""
    lines = [el.get_text().strip() for el in soup.find_all(TEXT_TAGS)]
    return "\n".join(lines).strip()


class HelpContentsSource:
    """Documentation site described by a WebHelp contents page.

    Args:
        base_url: URL topic hrefs are relative to.
        contents_url: URL of the contents page.
        timeout: Seconds per HTTP request.
    """

    def __init__(self, base_url: str, contents_url: str, timeout: float = 20.0) -> None:
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.contents_url = contents_url
        self.timeout = timeout

    def _get(self, url: str) -> str:
        try:
            resp = requests.get(url, headers=HEADERS, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise TransientProviderError(f"Failed to fetch {url}: {exc}") from exc
        logger.debug("HTTP %d from %s (bytes=%d)", resp.status_code, url, len(resp.content or b""))
        return resp.text

    def discover(self) -> List[SourceDocument]:
        docs = parse_contents(self._get(self.contents_url))
        logger.info("Discovered %d documents in %s", len(docs), self.contents_url)
        return docs

    def link_for(self, href: str) -> str:
        return urljoin(self.base_url, href)

    def fetch_text(self, href: str) -> str:
        return html_to_text(self._get(self.link_for(href)))
