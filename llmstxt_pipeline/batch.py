"""
Batched URL processing.

URLs are pulled from a cursor one at a time into a buffer of ``batch_size``.
Each full (or final partial) buffer goes through the summary cache. Misses
are extracted concurrently and summarized in one LLM call. Batches run
strictly one after another, so at most ``batch_size`` fetches or summaries
are in flight and memory stays proportional to one batch.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from llmstxt_pipeline.errors import ExtractionError
from llmstxt_pipeline.extractor import ContentExtractor
from llmstxt_pipeline.llm.providers import LlmService
from llmstxt_pipeline.models import ProgressEvent, UrlSummary
from llmstxt_pipeline.sources import UrlCursor
from llmstxt_pipeline.storage.content_store import SnapshotStore
from llmstxt_pipeline.storage.summary_cache import DEFAULT_TTL, CachedSummary, SummaryCache

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent, List[UrlSummary]], Awaitable[None]]


class UrlSummaryBatch:
    """Fill a batch of UrlSummary items from the cache, the extractor and the LLM."""

    def __init__(
        self,
        cache: SummaryCache,
        extractor: ContentExtractor,
        llm: LlmService,
        snapshots: Optional[SnapshotStore] = None,
        subject_id: Optional[int] = None,
    ):
        self.cache = cache
        self.extractor = extractor
        self.llm = llm
        self.snapshots = snapshots
        self.subject_id = subject_id

    async def load_summaries(
        self,
        items: List[UrlSummary],
        cache_key: str,
        ttl: float = DEFAULT_TTL,
    ) -> List[UrlSummary]:
        cached = await self.cache.get_many(cache_key, [item.url for item in items])

        misses: List[UrlSummary] = []
        for item in items:
            hit = cached.get(item.url)
            if hit is not None:
                item.title = hit.title
                item.summary = hit.summary
            else:
                misses.append(item)

        if not misses:
            logger.debug(f"All {len(items)} URLs served from cache")
            return items

        await asyncio.gather(*(self._extract(item) for item in misses))

        extracted = [item for item in misses if item.error is None]
        if extracted:
            try:
                await self.llm.generate_page_summaries(extracted)
            except Exception as e:
                logger.error(f"Summary generation failed for {len(extracted)} pages: {e}")
                for item in extracted:
                    item.set_error(f"Summary generation failed: {e}")

        fresh = {item.url: CachedSummary(title=item.title, summary=item.summary) for item in misses if item.is_valid}
        await self.cache.set_many(cache_key, fresh, ttl)

        logger.info(
            f"Batch of {len(items)}: {len(items) - len(misses)} cached, "
            f"{len(fresh)} generated, {len(misses) - len(fresh)} failed"
        )
        return items

    async def _extract(self, item: UrlSummary) -> None:
        try:
            page = await self.extractor.extract(item.url)
        except ExtractionError as e:
            logger.warning(f"Failed to extract {item.url}: {e.reason}")
            item.set_error(str(e))
            return

        item.title = page.title
        item.text = page.text
        item.content_hash = page.content_hash
        if self.snapshots is not None and self.subject_id is not None:
            await self.snapshots.record(self.subject_id, item.url, page.title, page.text, item.content_hash)


class BatchProcessor:
    def __init__(self, loader: UrlSummaryBatch, batch_size: int):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.loader = loader
        self.batch_size = batch_size

    async def process(
        self,
        cursor: UrlCursor,
        cache_key: str,
        total_units: int,
        ttl: float = DEFAULT_TTL,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[UrlSummary]:
        """
        Drain ``cursor`` batch by batch.

        Progress is reported after every batch, in order, with a
        monotonically increasing ``processed_units`` and the batch's items.
        Page text is dropped once a batch is summarized; it lives on in the
        content store. The cursor is closed when processing ends, even on error.
        """
        results: List[UrlSummary] = []
        buffer: List[UrlSummary] = []
        batch_number = 0

        try:
            while True:
                url, done = await cursor.next()
                if not done:
                    buffer.append(UrlSummary(url=url))

                if buffer and (len(buffer) >= self.batch_size or done):
                    batch_number += 1
                    logger.debug(f"Processing batch {batch_number} ({len(buffer)} URLs)")
                    await self.loader.load_summaries(buffer, cache_key, ttl)
                    for item in buffer:
                        item.text = ""
                    results.extend(buffer)
                    batch, buffer = buffer, []
                    if on_progress is not None:
                        await on_progress(ProgressEvent(len(results), max(total_units, len(results))), batch)

                if done:
                    break
        finally:
            await cursor.close()

        return results
