#!/usr/bin/env python3
"""
Tests for batch loading and sequential batch processing.

Verifies that:
- A fully cached batch makes no LLM call and leaves cache rows untouched
- Only freshly generated summaries are written to the cache
- Extraction and generation failures mark items but are never cached
- Extracted pages are recorded in the subject's snapshot
- 12 URLs with batch size 5 report progress (5,12), (10,12), (12,12)
  together with each batch's items, and keep no page text afterwards
- An empty URL stream produces no batches and no progress
"""

import asyncio
import sys

from sqlalchemy import select
from support import FakeChatModel, FakeExtractor, temp_database

from llmstxt_pipeline.batch import BatchProcessor, UrlSummaryBatch
from llmstxt_pipeline.config import ProviderConfig
from llmstxt_pipeline.llm.providers import build_llm_service
from llmstxt_pipeline.models import UrlSummary
from llmstxt_pipeline.sources import ListUrlSource
from llmstxt_pipeline.storage.content_store import ContentStore, SnapshotStore
from llmstxt_pipeline.storage.models import SummaryCacheEntry
from llmstxt_pipeline.storage.summary_cache import CachedSummary, SummaryCache, build_cache_key

KEY = build_cache_key("gemini", "docs.example.com")
PROVIDER = ProviderConfig(id="gemini", model_name="test", queue_name="gemini-generation", batch_size=5)


def _service(model):
    return build_llm_service(PROVIDER, breaker=None, chat_model=model)


def _cache_rows(session_factory):
    with session_factory() as session:
        rows = session.execute(
            select(SummaryCacheEntry.field, SummaryCacheEntry.summary, SummaryCacheEntry.expires_at).order_by(
                SummaryCacheEntry.field
            )
        ).all()
    return [tuple(row) for row in rows]


def _urls(*names):
    return [f"https://docs.example.com/{name}" for name in names]


def test_cache_hit_skips_llm():
    with temp_database() as session_factory:
        cache = SummaryCache(session_factory)
        model = FakeChatModel()
        extractor = FakeExtractor()
        loader = UrlSummaryBatch(cache, extractor, _service(model))
        urls = _urls("a", "b")

        async def scenario():
            await cache.set_many(KEY, {url: CachedSummary(f"T {url}", f"S {url}") for url in urls})
            before = _cache_rows(session_factory)
            items = await loader.load_summaries([UrlSummary(url=url) for url in urls], KEY)
            return before, items

        before, items = asyncio.run(scenario())

        assert model.calls == 0
        assert extractor.requested == []
        assert [item.summary for item in items] == [f"S {url}" for url in urls]
        assert all(item.is_valid for item in items)
        assert _cache_rows(session_factory) == before
    print("  Cache hit test passed!")


def test_only_new_valid_items_are_cached():
    with temp_database() as session_factory:
        cache = SummaryCache(session_factory)
        snapshots = SnapshotStore(session_factory)
        model = FakeChatModel()
        cached_url, new_a, new_b, missing = _urls("cached", "new-a", "new-b", "missing")
        extractor = FakeExtractor(failing={missing: "HTTP 404"})
        loader = UrlSummaryBatch(cache, extractor, _service(model), snapshots, subject_id=7)

        async def scenario():
            await cache.set_many(KEY, {cached_url: CachedSummary("Cached", "From cache.")})
            items = [UrlSummary(url=url) for url in (cached_url, new_a, new_b, missing)]
            await loader.load_summaries(items, KEY)
            stored = await cache.get_many(KEY, [cached_url, new_a, new_b, missing])
            hashes = {item.url: item.content_hash for item in items}
            refs = await ContentStore(session_factory).ref_count(hashes[new_a])
            return items, stored, refs

        items, stored, refs = asyncio.run(scenario())

        assert model.calls == 1
        assert model.prompts[0].count("\nURL: ") == 2
        assert sorted(extractor.requested) == sorted([new_a, new_b, missing])
        assert set(stored) == {cached_url, new_a, new_b}
        assert stored[cached_url].summary == "From cache."

        failed = items[3]
        assert not failed.is_valid
        assert failed.error == "Content extraction failed: HTTP 404"
        assert failed.summary == "Error: Content extraction failed: HTTP 404"
        assert refs == 1
    print("  New items cached test passed!")


def test_generation_failure_is_not_cached():
    with temp_database() as session_factory:
        cache = SummaryCache(session_factory)
        model = FakeChatModel([ValueError("quota exceeded")])
        loader = UrlSummaryBatch(cache, FakeExtractor(), _service(model))
        urls = _urls("a", "b", "c")

        async def scenario():
            items = await loader.load_summaries([UrlSummary(url=url) for url in urls], KEY)
            return items, await cache.get_many(KEY, urls)

        items, stored = asyncio.run(scenario())

        assert stored == {}
        assert all(not item.is_valid for item in items)
        assert items[0].error == "Summary generation failed: quota exceeded"
        assert items[0].title == "Error"
    print("  Generation failure test passed!")


def test_progress_per_batch():
    with temp_database() as session_factory:
        model = FakeChatModel()
        loader = UrlSummaryBatch(SummaryCache(session_factory), FakeExtractor(), _service(model))
        processor = BatchProcessor(loader, batch_size=5)
        source = ListUrlSource(_urls(*(f"page-{i}" for i in range(12))))
        events = []

        async def on_progress(event, batch):
            events.append((event.processed_units, event.total_units, len(batch)))

        results = asyncio.run(processor.process(source.open(), KEY, 12, on_progress=on_progress))

        assert events == [(5, 12, 5), (10, 12, 5), (12, 12, 2)]
        assert len(results) == 12
        assert all(item.is_valid for item in results)
        # page text is not held past its batch
        assert all(item.text == "" for item in results)
        assert model.calls == 3
    print("  Progress per batch test passed!")


def test_empty_stream():
    with temp_database() as session_factory:
        model = FakeChatModel()
        loader = UrlSummaryBatch(SummaryCache(session_factory), FakeExtractor(), _service(model))
        processor = BatchProcessor(loader, batch_size=5)
        events = []

        async def on_progress(event, batch):
            events.append(event)

        results = asyncio.run(processor.process(ListUrlSource([]).open(), KEY, 0, on_progress=on_progress))

        assert results == []
        assert events == []
        assert model.calls == 0
    print("  Empty stream test passed!")


def run_tests():
    print("\nBatch tests:")
    test_cache_hit_skips_llm()
    test_only_new_valid_items_are_cached()
    test_generation_failure_is_not_cached()
    test_progress_per_batch()
    test_empty_stream()
    return True


def main():
    """Main test function."""
    success = run_tests()
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
