"""
In-process job queue on asyncio.

Same semantics as the Temporal backend, without durability: used for local
runs and tests. Jobs move through waiting → active → completed/failed, and
through delayed between retry attempts.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Dict, Iterable, Optional, Set

from llmstxt_pipeline.config import QueueConfig
from llmstxt_pipeline.errors import FatalJobError
from llmstxt_pipeline.jobs.base import (
    JobContext,
    JobEvent,
    JobHandler,
    JobQueue,
    JobState,
    JobWorker,
    TERMINAL_STATES,
    is_removable,
)
from llmstxt_pipeline.models import JobMessage, ProgressEvent

logger = logging.getLogger(__name__)


@dataclass
class LocalJob:
    job_id: str
    message: JobMessage
    state: JobState = JobState.WAITING
    attempts_started: int = 0
    failed_reason: Optional[str] = None
    progress: Optional[ProgressEvent] = None
    retry_task: Optional[asyncio.Task] = None
    finished: asyncio.Future = field(default_factory=lambda: asyncio.get_running_loop().create_future())

    def finish(self, state: JobState) -> None:
        self.state = state
        if not self.finished.done():
            self.finished.set_result(state)


class LocalJobQueue(JobQueue):
    def __init__(self, config: QueueConfig, sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        super().__init__(config)
        self._sleep = sleep
        self._jobs: Dict[str, LocalJob] = {}
        self._waiting: Deque[str] = deque()
        self._available = asyncio.Condition()

    async def enqueue(self, message: JobMessage, job_id: str) -> bool:
        existing = self._jobs.get(job_id)
        if existing is not None and existing.state not in TERMINAL_STATES:
            logger.info(f"Job {job_id} is already {existing.state.value}; enqueue ignored")
            return False

        self._jobs[job_id] = LocalJob(job_id=job_id, message=message)
        await self._push(job_id)
        logger.info(f"Enqueued job {job_id} on {self.name}")
        return True

    async def remove(self, job_id: str, allowed_states: Iterable[JobState] = ()) -> bool:
        job = self._jobs.get(job_id)
        if job is None or not is_removable(job.state, allowed_states):
            return False

        if job.state == JobState.WAITING:
            async with self._available:
                if job_id in self._waiting:
                    self._waiting.remove(job_id)
        elif job.state == JobState.DELAYED and job.retry_task is not None:
            job.retry_task.cancel()

        del self._jobs[job_id]
        if not job.finished.done():
            job.finished.set_result(JobState.UNKNOWN)
        logger.info(f"Removed job {job_id} ({job.state.value}) from {self.name}")
        return True

    async def get_state(self, job_id: str) -> JobState:
        job = self._jobs.get(job_id)
        return job.state if job is not None else JobState.UNKNOWN

    async def position(self, job_id: str) -> Optional[int]:
        job = self._jobs.get(job_id)
        if job is None or job.state != JobState.WAITING:
            return None
        try:
            return self._waiting.index(job_id) + 1
        except ValueError:
            return None

    async def wait_for(self, job_id: str) -> JobState:
        """Wait until the job completes, fails for good, or is removed."""
        job = self._jobs.get(job_id)
        if job is None:
            return JobState.UNKNOWN
        return await asyncio.shield(job.finished)

    def create_worker(self, handler: JobHandler) -> "LocalJobWorker":
        return LocalJobWorker(self, handler)

    async def close(self) -> None:
        for job in self._jobs.values():
            if job.retry_task is not None:
                job.retry_task.cancel()

    async def _push(self, job_id: str) -> None:
        async with self._available:
            self._waiting.append(job_id)
            self._available.notify()

    async def _next(self) -> LocalJob:
        async with self._available:
            await self._available.wait_for(lambda: bool(self._waiting))
            job = self._jobs[self._waiting.popleft()]
            job.state = JobState.ACTIVE
            job.attempts_started += 1
            return job

    async def _run(self, job: LocalJob, handler: JobHandler) -> None:
        async def report_progress(event: ProgressEvent) -> None:
            job.progress = event
            await self.events.emit(
                JobEvent(
                    "progress",
                    job.job_id,
                    self.name,
                    job.attempts_started,
                    self.config.max_attempts,
                    progress=event,
                )
            )

        ctx = JobContext(
            job_id=job.job_id,
            message=job.message,
            attempt=job.attempts_started,
            max_attempts=self.config.max_attempts,
            report_progress=report_progress,
        )
        await self.events.emit(JobEvent("active", job.job_id, self.name, ctx.attempt, ctx.max_attempts))

        try:
            await handler(ctx)
        except Exception as e:
            job.failed_reason = str(e) or type(e).__name__
            final = isinstance(e, FatalJobError) or ctx.is_last_attempt
            await self.events.emit(
                JobEvent(
                    "failed",
                    job.job_id,
                    self.name,
                    ctx.attempt,
                    ctx.max_attempts,
                    error=job.failed_reason,
                    final=final,
                )
            )
            if final:
                logger.error(f"Job {job.job_id} failed after {ctx.attempt} attempt(s): {job.failed_reason}")
                job.finish(JobState.FAILED)
                if self.config.remove_on_fail:
                    self._forget(job)
            else:
                delay = self.config.backoff.delay_for(ctx.attempt)
                logger.warning(f"Job {job.job_id} attempt {ctx.attempt} failed, retrying in {delay:g}s")
                job.state = JobState.DELAYED
                job.retry_task = asyncio.create_task(self._retry_after(job, delay))
            return

        await self.events.emit(JobEvent("completed", job.job_id, self.name, ctx.attempt, ctx.max_attempts, final=True))
        job.finish(JobState.COMPLETED)
        if self.config.remove_on_complete:
            self._forget(job)

    async def _retry_after(self, job: LocalJob, delay: float) -> None:
        await self._sleep(delay)
        if self._jobs.get(job.job_id) is not job or job.state != JobState.DELAYED:
            return
        job.state = JobState.WAITING
        job.retry_task = None
        await self._push(job.job_id)

    def _forget(self, job: LocalJob) -> None:
        if self._jobs.get(job.job_id) is job:
            del self._jobs[job.job_id]


class LocalJobWorker(JobWorker):
    """Pulls jobs from a LocalJobQueue, running at most ``concurrency`` at once."""

    def __init__(self, queue: LocalJobQueue, handler: JobHandler):
        self.queue = queue
        self.handler = handler
        self._slots = asyncio.Semaphore(queue.config.concurrency)
        self._running: Set[asyncio.Task] = set()
        self._dispatcher: Optional[asyncio.Task] = None

    async def start(self) -> None:
        if self._dispatcher is None:
            self._dispatcher = asyncio.create_task(self._dispatch())
            logger.info(f"Worker started on {self.queue.name} (concurrency={self.queue.config.concurrency})")

    async def _dispatch(self) -> None:
        while True:
            await self._slots.acquire()
            try:
                job = await self.queue._next()
            except BaseException:
                self._slots.release()
                raise
            task = asyncio.create_task(self.queue._run(job, self.handler))
            self._running.add(task)
            task.add_done_callback(self._finished)

    def _finished(self, task: asyncio.Task) -> None:
        self._running.discard(task)
        self._slots.release()

    @property
    def running(self) -> int:
        return len(self._running)

    async def close(self, timeout: float = 10.0) -> None:
        if self._dispatcher is not None:
            self._dispatcher.cancel()
            await asyncio.gather(self._dispatcher, return_exceptions=True)
            self._dispatcher = None
        if self._running:
            _, pending = await asyncio.wait(set(self._running), timeout=timeout)
            for task in pending:
                task.cancel()
            if pending:
                logger.warning(f"Cancelled {len(pending)} job(s) still running on {self.queue.name} at shutdown")
                await asyncio.gather(*pending, return_exceptions=True)
        logger.info(f"Worker on {self.queue.name} stopped")
