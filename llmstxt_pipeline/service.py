"""
Caller-side operations on generation orders: submit, cancel, refund and
queue position.
"""

import logging
from typing import Optional

from llmstxt_pipeline.errors import JobNotRemovableError, SubjectNotFoundError
from llmstxt_pipeline.jobs.base import JobState
from llmstxt_pipeline.jobs.registry import QueueRegistry
from llmstxt_pipeline.models import JobMessage, SubjectRecord, make_job_id
from llmstxt_pipeline.status import OrderStatus
from llmstxt_pipeline.storage.content_store import SnapshotStore
from llmstxt_pipeline.storage.database import utcnow
from llmstxt_pipeline.storage.subjects import SubjectRepository, transition

logger = logging.getLogger(__name__)


class GenerationService:
    def __init__(
        self,
        registry: QueueRegistry,
        subjects: SubjectRepository,
        snapshots: SnapshotStore,
        job_id_prefix: str = "order",
    ):
        self.registry = registry
        self.subjects = subjects
        self.snapshots = snapshots
        self.job_id_prefix = job_id_prefix

    def job_id(self, subject_id: int) -> str:
        return make_job_id(subject_id, self.job_id_prefix)

    async def _subject(self, subject_id: int) -> SubjectRecord:
        subject = await self.subjects.get(subject_id)
        if subject is None:
            raise SubjectNotFoundError(subject_id)
        return subject

    async def submit(self, subject_id: int, request_id: int = 0) -> str:
        """
        Queue a generation for the subject.

        Submitting an already queued subject re-issues the enqueue, which the
        queue absorbs if the job is still pending.

        Returns:
            The job id
        """
        subject = await self._subject(subject_id)
        if subject.status != OrderStatus.QUEUED:
            await transition(self.subjects, subject_id, OrderStatus.QUEUED)

        job_id = self.job_id(subject_id)
        message = JobMessage(
            subject_id=subject_id,
            request_id=request_id,
            hostname=subject.hostname,
            provider=subject.provider,
        )
        await self.registry.enqueue(self.registry.queue_name_for(subject.provider), message, job_id)
        return job_id

    async def cancel(self, subject_id: int) -> None:
        """
        Cancel a subject whose job has not started yet.

        Raises:
            JobNotRemovableError: the job is already running
        """
        job_id = self.job_id(subject_id)
        _, state = await self.registry.find(job_id)
        if state == JobState.ACTIVE:
            raise JobNotRemovableError(job_id, state.value)
        if state != JobState.UNKNOWN:
            removed = await self.registry.remove(job_id, (JobState.WAITING, JobState.DELAYED))
            if not removed:
                raise JobNotRemovableError(job_id, state.value)

        await transition(self.subjects, subject_id, OrderStatus.CANCELLED, completed_at=utcnow())
        await self.snapshots.teardown(subject_id)

    async def refund(self, subject_id: int) -> None:
        """Mark a failed subject refunded and drop what its job left behind."""
        await transition(self.subjects, subject_id, OrderStatus.REFUNDED)
        await self.registry.remove(self.job_id(subject_id), (JobState.COMPLETED, JobState.FAILED))
        await self.snapshots.teardown(subject_id)

    async def queue_position(self, subject_id: int) -> Optional[int]:
        subject = await self._subject(subject_id)
        return await self.registry.position(self.registry.queue_name_for(subject.provider), self.job_id(subject_id))
