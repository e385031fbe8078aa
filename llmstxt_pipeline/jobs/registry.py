"""
QueueRegistry: the process-wide owner of queues and workers.

Built once by the process root with ``init()`` and torn down with
``shutdown()``. Consumers receive the registry explicitly; there is no
module-level queue state.
"""

import asyncio
import logging
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from llmstxt_pipeline.config import QueueConfig, Settings
from llmstxt_pipeline.errors import QueueNotFoundError
from llmstxt_pipeline.jobs.base import JobHandler, JobQueue, JobState, JobWorker
from llmstxt_pipeline.models import JobMessage

logger = logging.getLogger(__name__)

QueueFactory = Callable[[QueueConfig], JobQueue]


class QueueRegistry:
    def __init__(self, settings: Settings, queue_factory: QueueFactory):
        self._settings = settings
        self._queue_factory = queue_factory
        self._queues: Dict[str, JobQueue] = {}
        self._workers: List[JobWorker] = []

    async def init(self) -> None:
        """Create one queue per distinct configured queue name."""
        if self._queues:
            return
        for name, config in self._settings.queue_configs().items():
            self._queues[name] = self._queue_factory(config)
            logger.info(
                f"Queue {name}: concurrency={config.concurrency}, attempts={config.max_attempts}, "
                f"backoff={config.backoff.type}/{config.backoff.delay:g}s"
            )

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Close every worker (waiting up to ``timeout`` for running jobs), then every queue."""
        if self._workers:
            await asyncio.gather(*(worker.close(timeout) for worker in self._workers))
        for queue in self._queues.values():
            await queue.close()
        self._workers.clear()
        self._queues.clear()

    @property
    def queue_names(self) -> List[str]:
        return list(self._queues)

    def get(self, queue_name: str) -> JobQueue:
        try:
            return self._queues[queue_name]
        except KeyError:
            raise QueueNotFoundError(queue_name) from None

    def queue_name_for(self, provider_id: str) -> str:
        return self._settings.provider(provider_id).queue_name

    async def enqueue(self, queue_name: str, message: JobMessage, job_id: str) -> bool:
        return await self.get(queue_name).enqueue(message, job_id)

    async def find(self, job_id: str) -> Tuple[Optional[str], JobState]:
        """Locate a job in any queue. Returns (queue name, state), or (None, UNKNOWN)."""
        for name, queue in self._queues.items():
            state = await queue.get_state(job_id)
            if state != JobState.UNKNOWN:
                return name, state
        return None, JobState.UNKNOWN

    async def remove(self, job_id: str, allowed_states: Iterable[JobState] = ()) -> bool:
        queue_name, _ = await self.find(job_id)
        if queue_name is None:
            return False
        return await self._queues[queue_name].remove(job_id, allowed_states)

    async def position(self, queue_name: str, job_id: str) -> Optional[int]:
        return await self.get(queue_name).position(job_id)

    async def create_worker(self, queue_name: str, handler: JobHandler) -> JobWorker:
        worker = self.get(queue_name).create_worker(handler)
        await worker.start()
        self._workers.append(worker)
        return worker
