"""
Temporal worker hosting the job workflow and activity for one task queue.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Optional

from temporalio.client import Client
from temporalio.worker import Worker

from llmstxt_pipeline.jobs.base import JobHandler, JobWorker
from llmstxt_pipeline.temporal.activities import JobActivities
from llmstxt_pipeline.temporal.workflows import GenerationJobWorkflow

logger = logging.getLogger(__name__)


async def connect(temporal_address: str = "localhost:7233", namespace: str = "default") -> Client:
    """Connect to the Temporal frontend."""
    logger.info(f"Connecting to Temporal at {temporal_address} (namespace {namespace})")
    return await Client.connect(temporal_address, namespace=namespace)


class TemporalJobWorker(JobWorker):
    def __init__(self, queue, handler: JobHandler):
        self.queue = queue
        self.activities = JobActivities(handler, queue.events)
        self._worker: Optional[Worker] = None
        self._task: Optional[asyncio.Task] = None

    async def start(self, graceful_shutdown: float = 10.0) -> None:
        config = self.queue.config
        self._worker = Worker(
            self.queue.client,
            task_queue=config.name,
            workflows=[GenerationJobWorkflow],
            activities=[self.activities.run_job],
            max_concurrent_activities=config.concurrency,
            max_heartbeat_throttle_interval=timedelta(seconds=config.stalled_interval),
            graceful_shutdown_timeout=timedelta(seconds=graceful_shutdown),
        )
        self._task = asyncio.create_task(self._worker.run())
        logger.info(f"Worker started on task queue {config.name} (concurrency={config.concurrency})")

    async def close(self, timeout: float = 10.0) -> None:
        if self._worker is None:
            return
        try:
            await asyncio.wait_for(self._worker.shutdown(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Worker on {self.queue.name} did not stop within {timeout:g}s")
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)
        self._worker = None
        logger.info(f"Worker on {self.queue.name} stopped")
