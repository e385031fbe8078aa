"""
Generation job handler: what a worker runs for each dequeued job.

Flow:
    load subject → PROCESSING → count URLs → batches (progress per batch) →
    failure check → site description → format → COMPLETED

Pages that fail are recorded on the subject after their batch. Job errors are
recorded too. Fatal errors, and errors on the last
attempt, also move it to FAILED. Every error is re-raised so the queue
decides whether another attempt follows.
"""

import logging
from dataclasses import dataclass
from typing import Callable, List

from llmstxt_pipeline.aggregator import FailureReport, format_llms_txt, site_name
from llmstxt_pipeline.batch import BatchProcessor, UrlSummaryBatch
from llmstxt_pipeline.config import ProviderConfig, Settings
from llmstxt_pipeline.errors import (
    CriticalFailureError,
    FatalJobError,
    InvalidStatusTransitionError,
    SubjectNotFoundError,
    UnknownProviderError,
)
from llmstxt_pipeline.extractor import ContentExtractor
from llmstxt_pipeline.jobs.base import JobContext
from llmstxt_pipeline.llm.providers import LlmService, LlmServices
from llmstxt_pipeline.models import ProgressEvent, UrlSummary
from llmstxt_pipeline.sources import UrlSource, count_urls
from llmstxt_pipeline.status import OrderStatus, can_transition
from llmstxt_pipeline.storage.content_store import SnapshotStore
from llmstxt_pipeline.storage.database import utcnow
from llmstxt_pipeline.storage.subjects import SubjectRepository, transition
from llmstxt_pipeline.storage.summary_cache import SummaryCache, build_cache_key

logger = logging.getLogger(__name__)

UrlSourceFactory = Callable[[str], UrlSource]


@dataclass(frozen=True)
class JobRun:
    """Per-execution parameters, built once at the top of a job."""

    ctx: JobContext
    subject_id: int
    hostname: str
    provider: ProviderConfig
    llm: LlmService
    cache_key: str


class GenerationJobHandler:
    def __init__(
        self,
        settings: Settings,
        subjects: SubjectRepository,
        cache: SummaryCache,
        snapshots: SnapshotStore,
        extractor: ContentExtractor,
        llm_services: LlmServices,
        url_source_factory: UrlSourceFactory,
    ):
        self.settings = settings
        self.subjects = subjects
        self.cache = cache
        self.snapshots = snapshots
        self.extractor = extractor
        self.llm_services = llm_services
        self.url_source_factory = url_source_factory

    async def __call__(self, ctx: JobContext) -> int:
        try:
            run = await self._start(ctx)
            return await self._generate(run)
        except (InvalidStatusTransitionError, SubjectNotFoundError) as e:
            logger.error(f"Job {ctx.job_id} rejected: {e}")
            raise
        except Exception as e:
            await self._record_failure(ctx, e)
            raise

    async def _start(self, ctx: JobContext) -> JobRun:
        subject_id = ctx.message.subject_id
        subject = await self.subjects.get(subject_id)
        if subject is None:
            raise SubjectNotFoundError(subject_id)

        if subject.status == OrderStatus.PROCESSING and ctx.attempt > 1:
            logger.info(f"Resuming subject {subject_id} on attempt {ctx.attempt}/{ctx.max_attempts}")
        else:
            await transition(self.subjects, subject_id, OrderStatus.PROCESSING, started_at=utcnow())
            await self.subjects.clear_errors(subject_id)

        provider = self.settings.provider(ctx.message.provider)
        llm = self.llm_services.get(provider.id)
        if llm is None:
            raise UnknownProviderError(provider.id)

        return JobRun(
            ctx=ctx,
            subject_id=subject_id,
            hostname=ctx.message.hostname,
            provider=provider,
            llm=llm,
            cache_key=build_cache_key(provider.id, ctx.message.hostname),
        )

    async def _generate(self, run: JobRun) -> int:
        source = self.url_source_factory(run.hostname)
        total = await count_urls(source)
        await self.subjects.update_progress(run.subject_id, 0, total)
        logger.info(f"Job {run.ctx.job_id}: {total} URLs for {run.hostname}, batch size {run.provider.batch_size}")

        async def on_progress(event: ProgressEvent, batch: List[UrlSummary]) -> None:
            for item in batch:
                if not item.is_valid:
                    await self.subjects.add_error(run.subject_id, f"Failed to process {item.url}: {item.error}")
            await self.subjects.update_progress(run.subject_id, event.processed_units, event.total_units)
            await run.ctx.report_progress(event)

        loader = UrlSummaryBatch(self.cache, self.extractor, run.llm, self.snapshots, run.subject_id)
        processor = BatchProcessor(loader, run.provider.batch_size)
        summaries = await processor.process(
            source.open(),
            run.cache_key,
            total,
            ttl=self.settings.summary_cache_ttl,
            on_progress=on_progress,
        )
        if not summaries:
            raise CriticalFailureError(f"No URLs found for {run.hostname}")

        report = FailureReport.from_summaries(summaries)
        logger.info(
            f"Job {run.ctx.job_id}: {len(report.valid)}/{report.total} pages summarized "
            f"(failure rate {report.failure_rate:.0%})"
        )
        report.raise_if_critical()

        description = await self._description(run, report.valid)
        output = format_llms_txt(run.hostname, description, report.valid)
        await transition(
            self.subjects,
            run.subject_id,
            OrderStatus.COMPLETED,
            output=output,
            entry_count=len(report.valid),
            completed_at=utcnow(),
        )
        return len(report.valid)

    async def _description(self, run: JobRun, valid: List[UrlSummary]) -> str:
        cached = await self.cache.get_description(run.cache_key)
        if cached:
            return cached
        try:
            description = await run.llm.generate_website_description(valid)
        except Exception as e:
            logger.warning(f"Site description for {run.hostname} failed, using a generic one: {e}")
            return f"Documentation index for {site_name(run.hostname)}."
        await self.cache.set_description(run.cache_key, description, self.settings.summary_cache_ttl)
        return description

    async def _record_failure(self, ctx: JobContext, error: Exception) -> None:
        subject_id = ctx.message.subject_id
        message = str(error) or type(error).__name__
        final = isinstance(error, FatalJobError) or ctx.is_last_attempt
        try:
            await self.subjects.add_error(subject_id, message)
            if not final:
                logger.warning(
                    f"Job {ctx.job_id} attempt {ctx.attempt}/{ctx.max_attempts} failed: {message}. "
                    f"Will retry ({ctx.attempts_remaining} attempt(s) remaining)"
                )
                return
            status = await self.subjects.get_status(subject_id)
            if status is not None and can_transition(status, OrderStatus.FAILED):
                await transition(self.subjects, subject_id, OrderStatus.FAILED, completed_at=utcnow())
            logger.error(f"Job {ctx.job_id} failed permanently: {message}")
        except Exception:
            logger.exception(f"Could not record failure of job {ctx.job_id} on subject {subject_id}")
