"""
Content extraction utilities for web pages.

A page is fetched with httpx and reduced to a title plus plain text. The text
is normalized (whitespace collapsed, truncated to MAX_WORDS) so its SHA-256
is stable and can key the content-addressed store.
"""

import asyncio
import hashlib
import re
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import httpx
from bs4 import BeautifulSoup
from markdownify import markdownify

from llmstxt_pipeline.errors import ExtractionError

USER_AGENT = "LLMs.txt Generator Bot/1.0"
FETCH_TIMEOUT = 15.0
MAX_WORDS = 3000
DEFAULT_TITLE = "Untitled"

NON_CONTENT_TAGS = ["script", "style", "nav", "header", "footer", "aside", "form", "noscript", "iframe", "svg"]


@dataclass(frozen=True)
class ExtractedPage:
    title: str
    text: str

    @property
    def content_hash(self) -> str:
        return content_hash(self.text)


def normalize_text(text: str, max_words: int = MAX_WORDS) -> str:
    """Collapse whitespace and keep at most ``max_words`` words."""
    words = re.sub(r"\s+", " ", text).strip().split(" ")
    if len(words) > max_words:
        words = words[:max_words]
    return " ".join(w for w in words if w)


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _main_content(soup: BeautifulSoup):
    for tag in soup(NON_CONTENT_TAGS):
        tag.decompose()
    return soup.find("article") or soup.find("main") or soup.body or soup


def _title(soup: BeautifulSoup) -> str:
    if soup.title and soup.title.string:
        return soup.title.string.strip() or DEFAULT_TITLE
    heading = soup.find("h1")
    if heading:
        return heading.get_text(strip=True) or DEFAULT_TITLE
    return DEFAULT_TITLE


def text_extractor(html: str) -> ExtractedPage:
    """
    Extract the title and readable text from HTML using BeautifulSoup.

    Args:
        html: The HTML content to extract from

    Returns:
        ExtractedPage with normalized text
    """
    soup = BeautifulSoup(html, "lxml")
    title = _title(soup)
    content = _main_content(soup)
    return ExtractedPage(title=title, text=normalize_text(content.get_text(" ")))


def markdown_extractor(html: str) -> ExtractedPage:
    """
    Extract the main content and convert it to markdown.

    Falls back to plain text extraction if markdownify hits a recursion
    limit on deeply nested HTML.
    """
    soup = BeautifulSoup(html, "lxml")
    title = _title(soup)
    content = _main_content(soup)
    try:
        text = str(markdownify(str(content)))
    except RecursionError:
        return text_extractor(html)
    return ExtractedPage(title=title, text=normalize_text(text))


EXTRACTORS: Dict[str, Callable[[str], ExtractedPage]] = {
    "text": text_extractor,
    "markdown": markdown_extractor,
}


class ContentExtractor:
    """Fetch pages and turn them into ExtractedPage values."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        extractor_name: str = "text",
        timeout: float = FETCH_TIMEOUT,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            headers={"User-Agent": USER_AGENT},
            timeout=timeout,
            follow_redirects=True,
        )
        self._extract = EXTRACTORS.get(extractor_name, text_extractor)

    async def extract(self, url: str) -> ExtractedPage:
        try:
            response = await self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ExtractionError(url, f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ExtractionError(url, str(e) or type(e).__name__) from e

        # CPU-bound
        page = await asyncio.to_thread(self._extract, response.text)
        if not page.text:
            raise ExtractionError(url, "no readable content")
        return page

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
