"""
URL sources for a generation job.

A source is restartable: every call to ``open()`` returns a fresh cursor that
walks the URLs from the beginning. Cursors expose an explicit
``next() -> (url, done)`` and ``close()`` so callers can stop early without
leaving fetches half-done.
"""

import logging
from collections import deque
from typing import Deque, Iterable, List, Optional, Protocol, Set, Tuple
from urllib.robotparser import RobotFileParser

import httpx
from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

MAX_SITEMAPS = 50


class UrlCursor(Protocol):
    async def next(self) -> Tuple[Optional[str], bool]: ...

    async def close(self) -> None: ...


class UrlSource(Protocol):
    def open(self) -> UrlCursor: ...


def base_url(hostname: str) -> str:
    """Turn ``example.com`` or ``https://example.com/`` into ``https://example.com``."""
    if not hostname.startswith(("http://", "https://")):
        hostname = f"https://{hostname}"
    return hostname.rstrip("/")


async def count_urls(source: UrlSource) -> int:
    """Walk a fresh cursor to the end and return how many URLs it yields."""
    cursor = source.open()
    total = 0
    try:
        while True:
            _, done = await cursor.next()
            if done:
                return total
            total += 1
    finally:
        await cursor.close()


class ListUrlCursor:
    def __init__(self, urls: List[str]):
        self._urls = urls
        self._index = 0
        self._closed = False

    async def next(self) -> Tuple[Optional[str], bool]:
        if self._closed or self._index >= len(self._urls):
            return None, True
        url = self._urls[self._index]
        self._index += 1
        return url, False

    async def close(self) -> None:
        self._closed = True


class ListUrlSource:
    """A fixed, deduplicated list of URLs."""

    def __init__(self, urls: Iterable[str]):
        self._urls = list(dict.fromkeys(urls))

    def open(self) -> ListUrlCursor:
        return ListUrlCursor(self._urls)


class SitemapUrlCursor:
    """
    Lazily walk every sitemap advertised by a host.

    Sitemaps are discovered from robots.txt, falling back to /sitemap.xml.
    Sitemap indexes are expanded one level at a time, so only one sitemap
    document is held in memory at once.
    """

    def __init__(self, base: str, client: httpx.AsyncClient, max_sitemaps: int = MAX_SITEMAPS):
        self._base = base
        self._client = client
        self._max_sitemaps = max_sitemaps
        self._pending: Deque[str] = deque()
        self._buffer: Deque[str] = deque()
        self._seen: Set[str] = set()
        self._visited: Set[str] = set()
        self._started = False
        self._closed = False

    async def next(self) -> Tuple[Optional[str], bool]:
        if self._closed:
            return None, True
        if not self._started:
            self._started = True
            self._pending.extend(await self._discover_sitemaps())

        while True:
            while self._buffer:
                url = self._buffer.popleft()
                if url not in self._seen:
                    self._seen.add(url)
                    return url, False
            if not self._pending or self._closed:
                return None, True
            sitemap = self._pending.popleft()
            if sitemap in self._visited or len(self._visited) >= self._max_sitemaps:
                continue
            self._visited.add(sitemap)
            await self._load_sitemap(sitemap)

    async def close(self) -> None:
        self._closed = True
        self._pending.clear()
        self._buffer.clear()

    async def _discover_sitemaps(self) -> List[str]:
        robots_url = f"{self._base}/robots.txt"
        try:
            response = await self._client.get(robots_url)
            if response.status_code == 200:
                parser = RobotFileParser(robots_url)
                parser.parse(response.text.splitlines())
                sitemaps = parser.site_maps()
                if sitemaps:
                    return list(dict.fromkeys(sitemaps))
        except httpx.HTTPError as e:
            logger.warning(f"Could not read {robots_url}: {e}")
        return [f"{self._base}/sitemap.xml"]

    async def _load_sitemap(self, sitemap_url: str) -> None:
        try:
            response = await self._client.get(sitemap_url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Skipping sitemap {sitemap_url}: {e}")
            return

        soup = BeautifulSoup(response.content, "xml")
        if soup.find("sitemapindex"):
            for entry in soup.find_all("sitemap"):
                loc = entry.find("loc")
                if loc:
                    self._pending.append(loc.get_text(strip=True))
        else:
            for entry in soup.find_all("url"):
                loc = entry.find("loc")
                url = loc.get_text(strip=True) if loc else ""
                if url:
                    self._buffer.append(url)


class SitemapUrlSource:
    def __init__(self, hostname: str, client: httpx.AsyncClient, max_sitemaps: int = MAX_SITEMAPS):
        self.base = base_url(hostname)
        self._client = client
        self._max_sitemaps = max_sitemaps

    def open(self) -> SitemapUrlCursor:
        return SitemapUrlCursor(self.base, self._client, self._max_sitemaps)
