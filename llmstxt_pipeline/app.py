"""
Runtime composition for the pipeline.

``create_pipeline`` wires settings, storage, the HTTP client, extractors,
LLM services and the queue registry into one ``Pipeline`` object that the
CLI and the worker process share. Everything built here is released by
``Pipeline.close()``.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
from sqlalchemy.engine import Engine

from llmstxt_pipeline.config import Settings
from llmstxt_pipeline.extractor import FETCH_TIMEOUT, USER_AGENT, ContentExtractor
from llmstxt_pipeline.handler import GenerationJobHandler, UrlSourceFactory
from llmstxt_pipeline.jobs.base import JobWorker
from llmstxt_pipeline.jobs.bridge import Notifier, SubjectEventBridge, log_notifier
from llmstxt_pipeline.jobs.local import LocalJobQueue
from llmstxt_pipeline.jobs.registry import QueueFactory, QueueRegistry
from llmstxt_pipeline.llm.providers import LlmServices
from llmstxt_pipeline.service import GenerationService
from llmstxt_pipeline.sources import SitemapUrlSource
from llmstxt_pipeline.storage.content_store import ContentStore, SnapshotStore
from llmstxt_pipeline.storage.database import create_db_engine, create_session_factory, init_schema
from llmstxt_pipeline.storage.subjects import SqlSubjectRepository
from llmstxt_pipeline.storage.summary_cache import SummaryCache

logger = logging.getLogger(__name__)


async def build_queue_factory(settings: Settings) -> QueueFactory:
    """Return the queue constructor for the configured orchestrator."""
    if settings.orchestrator == "temporal":
        from llmstxt_pipeline.temporal.client import TemporalJobQueue
        from llmstxt_pipeline.temporal.worker import connect

        client = await connect(settings.temporal_address, settings.temporal_namespace)
        return lambda config: TemporalJobQueue(client, config)
    return LocalJobQueue


@dataclass
class Pipeline:
    settings: Settings
    engine: Engine
    subjects: SqlSubjectRepository
    content_store: ContentStore
    snapshots: SnapshotStore
    cache: SummaryCache
    http_client: httpx.AsyncClient
    extractor: ContentExtractor
    llm_services: LlmServices
    registry: QueueRegistry
    handler: GenerationJobHandler
    service: GenerationService
    bridge: SubjectEventBridge
    workers: List[JobWorker] = field(default_factory=list)

    async def start_workers(self, queue_names: Optional[List[str]] = None) -> List[JobWorker]:
        """Attach the event bridge and start one worker per queue."""
        for name in queue_names or self.registry.queue_names:
            self.bridge.attach(self.registry.get(name).events)
            self.workers.append(await self.registry.create_worker(name, self.handler))
        return self.workers

    async def close(self, timeout: float = 10.0) -> None:
        await self.registry.shutdown(timeout)
        await self.http_client.aclose()
        self.engine.dispose()
        logger.info("Pipeline closed")


async def create_pipeline(
    settings: Settings,
    queue_factory: Optional[QueueFactory] = None,
    chat_models: Optional[Dict[str, Any]] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    url_source_factory: Optional[UrlSourceFactory] = None,
    notifier: Notifier = log_notifier,
) -> Pipeline:
    """
    Build a ready-to-use pipeline.

    Args:
        settings: Loaded settings
        queue_factory: Queue constructor; defaults to the configured orchestrator
        chat_models: Pre-built chat models keyed by provider id
        http_client: Shared client for sitemap discovery and page fetches
        url_source_factory: hostname -> UrlSource; defaults to sitemap discovery
        notifier: Receiver of subject progress/completion updates
    """
    engine = create_db_engine(settings.database_url)
    init_schema(engine)
    session_factory = create_session_factory(engine)

    if http_client is None:
        http_client = httpx.AsyncClient(
            headers={"User-Agent": USER_AGENT}, timeout=FETCH_TIMEOUT, follow_redirects=True
        )
    if url_source_factory is None:
        def url_source_factory(hostname: str) -> SitemapUrlSource:
            return SitemapUrlSource(hostname, http_client)

    subjects = SqlSubjectRepository(session_factory)
    snapshots = SnapshotStore(session_factory)
    cache = SummaryCache(session_factory)
    extractor = ContentExtractor(client=http_client, extractor_name=settings.extractor)
    llm_services = LlmServices(
        settings.providers,
        settings.resilience,
        settings.circuit_breaker,
        chat_models=chat_models,
    )

    registry = QueueRegistry(settings, queue_factory or await build_queue_factory(settings))
    await registry.init()

    handler = GenerationJobHandler(
        settings,
        subjects,
        cache,
        snapshots,
        extractor,
        llm_services,
        url_source_factory,
    )
    return Pipeline(
        settings=settings,
        engine=engine,
        subjects=subjects,
        content_store=ContentStore(session_factory),
        snapshots=snapshots,
        cache=cache,
        http_client=http_client,
        extractor=extractor,
        llm_services=llm_services,
        registry=registry,
        handler=handler,
        service=GenerationService(registry, subjects, snapshots, settings.job_id_prefix),
        bridge=SubjectEventBridge(subjects, notifier),
    )
