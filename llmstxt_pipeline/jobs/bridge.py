"""
Bridge from queue lifecycle events to subject records and user notifications.

Progress and completion are forwarded to a notifier (the push layer lives
outside this package; the default notifier just logs). A final failure also
moves the subject to FAILED if the handler did not get to do it.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from llmstxt_pipeline.jobs.base import JobEvent, QueueEvents
from llmstxt_pipeline.models import parse_job_id
from llmstxt_pipeline.status import OrderStatus, can_transition
from llmstxt_pipeline.storage.database import utcnow
from llmstxt_pipeline.storage.subjects import SubjectRepository, transition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubjectUpdate:
    subject_id: int
    event: str
    processed_units: Optional[int] = None
    total_units: Optional[int] = None
    error: Optional[str] = None
    attempts_remaining: Optional[int] = None


Notifier = Callable[[SubjectUpdate], Awaitable[None]]


async def log_notifier(update: SubjectUpdate) -> None:
    logger.info(f"Subject {update.subject_id}: {update.event} {update}")


class SubjectEventBridge:
    def __init__(self, subjects: SubjectRepository, notifier: Notifier = log_notifier):
        self.subjects = subjects
        self.notifier = notifier

    def attach(self, events: QueueEvents) -> None:
        events.on("progress", self._on_progress)
        events.on("completed", self._on_completed)
        events.on("failed", self._on_failed)

    def _subject_id(self, event: JobEvent) -> Optional[int]:
        subject_id = parse_job_id(event.job_id)
        if subject_id is None:
            logger.warning(f"Ignoring {event.name} event for unrecognized job id {event.job_id!r}")
        return subject_id

    async def _on_progress(self, event: JobEvent) -> None:
        subject_id = self._subject_id(event)
        if subject_id is None or event.progress is None:
            return
        await self.notifier(
            SubjectUpdate(
                subject_id,
                "progress",
                processed_units=event.progress.processed_units,
                total_units=event.progress.total_units,
            )
        )

    async def _on_completed(self, event: JobEvent) -> None:
        subject_id = self._subject_id(event)
        if subject_id is not None:
            await self.notifier(SubjectUpdate(subject_id, "completed"))

    async def _on_failed(self, event: JobEvent) -> None:
        subject_id = self._subject_id(event)
        if subject_id is None:
            return
        if not event.final:
            await self.notifier(
                SubjectUpdate(
                    subject_id,
                    "retrying",
                    error=event.error,
                    attempts_remaining=event.max_attempts - event.attempt,
                )
            )
            return

        status = await self.subjects.get_status(subject_id)
        if status is not None and can_transition(status, OrderStatus.FAILED):
            await transition(self.subjects, subject_id, OrderStatus.FAILED, completed_at=utcnow())
        await self.notifier(SubjectUpdate(subject_id, "failed", error=event.error))
