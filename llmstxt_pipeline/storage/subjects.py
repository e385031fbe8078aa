"""
Subject (order) persistence.

The pipeline never keeps a subject object alive across awaits. It reads a
snapshot with ``get`` and writes through narrow single-purpose updates.
Status writes are compare-and-set on the previous status, and ``transition``
layers the state machine on top of them.
"""

import asyncio
import logging
from typing import Any, Optional, Protocol

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session, sessionmaker

from llmstxt_pipeline.errors import StatusContentionError, SubjectNotFoundError
from llmstxt_pipeline.models import SubjectRecord
from llmstxt_pipeline.status import OrderStatus, validate_transition
from llmstxt_pipeline.storage.models import Subject, SubjectError

logger = logging.getLogger(__name__)

STATUS_FIELDS = ("started_at", "completed_at", "output", "entry_count")
MAX_TRANSITION_RETRIES = 3


class SubjectRepository(Protocol):
    async def get(self, subject_id: int) -> Optional[SubjectRecord]: ...

    async def get_status(self, subject_id: int) -> Optional[OrderStatus]: ...

    async def update_status(
        self,
        subject_id: int,
        status: OrderStatus,
        expected: Optional[OrderStatus] = None,
        **fields: Any,
    ) -> bool: ...

    async def update_progress(
        self, subject_id: int, processed_units: int, total_units: Optional[int] = None
    ) -> None: ...

    async def add_error(self, subject_id: int, message: str) -> None: ...

    async def clear_errors(self, subject_id: int) -> None: ...


async def transition(repo: SubjectRepository, subject_id: int, to_status: OrderStatus, **fields: Any) -> OrderStatus:
    """
    Move a subject to ``to_status`` after validating the edge.

    The write is conditional on the status that was validated. If another
    worker changed it in between, the new status is re-read and re-validated.

    Returns:
        The status the subject was in before the transition
    """
    for _ in range(MAX_TRANSITION_RETRIES):
        current = await repo.get_status(subject_id)
        if current is None:
            raise SubjectNotFoundError(subject_id)
        validate_transition(current, to_status)
        if await repo.update_status(subject_id, to_status, expected=current, **fields):
            logger.info(f"Subject {subject_id}: {current.value} → {to_status.value}")
            return current
    raise StatusContentionError(subject_id, to_status.value)


def _to_record(subject: Subject, errors: list) -> SubjectRecord:
    return SubjectRecord(
        id=subject.id,
        hostname=subject.hostname,
        provider=subject.provider,
        status=OrderStatus(subject.status),
        total_units=subject.total_units,
        processed_units=subject.processed_units,
        output=subject.output,
        entry_count=subject.entry_count,
        errors=errors,
        created_at=subject.created_at,
        started_at=subject.started_at,
        completed_at=subject.completed_at,
    )


class SqlSubjectRepository:
    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    async def create(self, hostname: str, provider: str, status: OrderStatus = OrderStatus.CREATED) -> int:
        return await asyncio.to_thread(self._create, hostname, provider, status)

    def _create(self, hostname: str, provider: str, status: OrderStatus) -> int:
        with self._session_factory.begin() as session:
            subject = Subject(hostname=hostname, provider=provider, status=status.value)
            session.add(subject)
            session.flush()
            return subject.id

    async def get(self, subject_id: int) -> Optional[SubjectRecord]:
        return await asyncio.to_thread(self._get, subject_id)

    def _get(self, subject_id: int) -> Optional[SubjectRecord]:
        with self._session_factory() as session:
            subject = session.get(Subject, subject_id)
            if subject is None:
                return None
            errors = session.scalars(
                select(SubjectError.message).where(SubjectError.subject_id == subject_id).order_by(SubjectError.id)
            ).all()
            return _to_record(subject, list(errors))

    async def get_status(self, subject_id: int) -> Optional[OrderStatus]:
        return await asyncio.to_thread(self._get_status, subject_id)

    def _get_status(self, subject_id: int) -> Optional[OrderStatus]:
        with self._session_factory() as session:
            status = session.scalar(select(Subject.status).where(Subject.id == subject_id))
            return OrderStatus(status) if status is not None else None

    async def update_status(
        self,
        subject_id: int,
        status: OrderStatus,
        expected: Optional[OrderStatus] = None,
        **fields: Any,
    ) -> bool:
        unknown = set(fields) - set(STATUS_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update subject fields: {', '.join(sorted(unknown))}")
        return await asyncio.to_thread(self._update_status, subject_id, status, expected, fields)

    def _update_status(
        self, subject_id: int, status: OrderStatus, expected: Optional[OrderStatus], fields: dict
    ) -> bool:
        stmt = update(Subject).where(Subject.id == subject_id)
        if expected is not None:
            stmt = stmt.where(Subject.status == expected.value)
        with self._session_factory.begin() as session:
            result = session.execute(stmt.values(status=status.value, **fields))
            return result.rowcount == 1

    async def update_progress(self, subject_id: int, processed_units: int, total_units: Optional[int] = None) -> None:
        values = {"processed_units": processed_units}
        if total_units is not None:
            values["total_units"] = total_units
        await asyncio.to_thread(self._update_values, subject_id, values)

    def _update_values(self, subject_id: int, values: dict) -> None:
        with self._session_factory.begin() as session:
            session.execute(update(Subject).where(Subject.id == subject_id).values(**values))

    async def add_error(self, subject_id: int, message: str) -> None:
        await asyncio.to_thread(self._add_error, subject_id, message)

    def _add_error(self, subject_id: int, message: str) -> None:
        with self._session_factory.begin() as session:
            session.add(SubjectError(subject_id=subject_id, message=message))

    async def clear_errors(self, subject_id: int) -> None:
        await asyncio.to_thread(self._clear_errors, subject_id)

    def _clear_errors(self, subject_id: int) -> None:
        with self._session_factory.begin() as session:
            session.execute(delete(SubjectError).where(SubjectError.subject_id == subject_id))
