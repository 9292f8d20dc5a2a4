"""Same-host breadth-first website crawler.

Every page goes through clirag.ingest.web.fetch_page(), so the SSRF guard,
size cap and Content-Type checks apply per page. Pages that fail to fetch
are logged and skipped; the crawl continues.
"""

from __future__ import annotations

import logging
import time
import urllib.parse
from collections import deque
from collections.abc import Callable

from bs4 import BeautifulSoup

from clirag.ingest.chunker import Document
from clirag.ingest.web import Page, fetch_page

logger = logging.getLogger(__name__)

# Links to files that are never HTML pages.
_SKIP_EXTENSIONS = (
    ".pdf", ".zip", ".gz", ".tar", ".png", ".jpg", ".jpeg", ".gif", ".svg",
    ".webp", ".ico", ".css", ".js", ".mp3", ".mp4", ".woff", ".woff2",
)


def normalize_url(url: str) -> str:
    """Drop the fragment and the trailing slash; keep the query string."""
    parsed = urllib.parse.urlparse(url)
    normalized = f"{parsed.scheme}://{parsed.netloc.lower()}{parsed.path.rstrip('/')}"
    if parsed.query:
        normalized += f"?{parsed.query}"
    return normalized


def site_root(url: str) -> str:
    """``scheme://host`` of *url*: the key under which a crawl is recorded."""
    parsed = urllib.parse.urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc.lower()}"


class WebCrawler:
    """Crawl pages on the host of *start_url*, up to *max_pages* visits.

    Args:
        start_url: First page; its host bounds the crawl.
        max_pages: Maximum number of pages visited (fetched or failed).
        delay: Seconds to sleep between requests.
        fetcher: Page fetcher (injectable for tests).
    """

    def __init__(
        self,
        start_url: str,
        max_pages: int = 50,
        delay: float = 0.5,
        fetcher: Callable[[str], Page] = fetch_page,
    ) -> None:
        self.start_url = normalize_url(start_url)
        self.host = urllib.parse.urlparse(start_url).netloc.lower()
        self.max_pages = max_pages
        self.delay = delay
        self._fetch = fetcher

    def crawl(self, on_page: Callable[[str], None] | None = None) -> list[Document]:
        """Return the documents of all successfully fetched pages, in visit order."""
        queue: deque[str] = deque([self.start_url])
        seen: set[str] = {self.start_url}
        visited = 0
        documents: list[Document] = []

        while queue and visited < self.max_pages:
            url = queue.popleft()
            visited += 1
            if on_page is not None:
                on_page(url)

            try:
                page = self._fetch(url)
            except (ValueError, RuntimeError) as exc:
                logger.warning("Skipping %s: %s", url, exc)
                continue

            documents.append(page.document)
            for link in self.extract_links(url, page.html):
                if link not in seen:
                    seen.add(link)
                    queue.append(link)

            if self.delay and queue and visited < self.max_pages:
                time.sleep(self.delay)

        logger.info("Crawled %d pages from %s", len(documents), self.host)
        return documents

    def extract_links(self, page_url: str, html: str) -> list[str]:
        """Absolute, normalized, same-host links found in *html*, deduplicated."""
        if not html:
            return []
        soup = BeautifulSoup(html, "html.parser")
        links: list[str] = []
        for anchor in soup.find_all("a", href=True):
            href = anchor["href"].strip()
            if not href or href.startswith(("mailto:", "javascript:", "tel:")):
                continue
            absolute = urllib.parse.urljoin(page_url, href.split("#", 1)[0])
            parsed = urllib.parse.urlparse(absolute)
            if parsed.scheme not in ("http", "https") or parsed.netloc.lower() != self.host:
                continue
            if parsed.path.lower().endswith(_SKIP_EXTENSIONS):
                continue
            normalized = normalize_url(absolute)
            if normalized not in links:
                links.append(normalized)
        return links
