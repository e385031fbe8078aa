"""
Content-addressed store for extracted page text.

Rows are keyed by the SHA-256 of the normalized text and carry a reference
count. Every counter change is a single UPDATE so concurrent workers never
lose increments, and the count is floored at zero on release. Rows are only
deleted by ``sweep`` once they have been unreferenced for the retention
window.

Snapshots link a subject to the pages it used. Recording a page stores its
content; tearing a snapshot down releases every hash it held.
"""

import asyncio
import logging
import time
from collections import Counter
from datetime import timedelta
from typing import Iterable, Optional

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from llmstxt_pipeline.storage.database import utcnow
from llmstxt_pipeline.storage.models import ContentStoreEntry, SnapshotUrl

logger = logging.getLogger(__name__)

DEFAULT_RETENTION = timedelta(days=30)


def _increment(session: Session, content_hash: str, content: str) -> None:
    result = session.execute(
        update(ContentStoreEntry)
        .where(ContentStoreEntry.content_hash == content_hash)
        .values(ref_count=ContentStoreEntry.ref_count + 1, last_accessed_at=utcnow())
    )
    if result.rowcount == 0:
        session.add(ContentStoreEntry(content_hash=content_hash, raw_content=content, ref_count=1))


def _release(session: Session, hashes: Iterable[str]) -> int:
    released = 0
    for content_hash, count in Counter(hashes).items():
        result = session.execute(
            update(ContentStoreEntry)
            .where(ContentStoreEntry.content_hash == content_hash)
            .values(
                ref_count=case(
                    (ContentStoreEntry.ref_count > count, ContentStoreEntry.ref_count - count),
                    else_=0,
                ),
                last_accessed_at=utcnow(),
            )
        )
        released += result.rowcount
    return released


class ContentStore:
    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    async def store(self, content_hash: str, content: str) -> None:
        """Insert ``content`` with ref_count=1, or bump the count of an existing row."""
        await asyncio.to_thread(self._store, content_hash, content)

    def _store(self, content_hash: str, content: str) -> None:
        try:
            with self._session_factory.begin() as session:
                _increment(session, content_hash, content)
        except IntegrityError:
            # Lost an insert race; the row exists now
            with self._session_factory.begin() as session:
                _increment(session, content_hash, content)

    async def get(self, content_hash: str) -> Optional[str]:
        return await asyncio.to_thread(self._get, content_hash)

    def _get(self, content_hash: str) -> Optional[str]:
        with self._session_factory.begin() as session:
            entry = session.get(ContentStoreEntry, content_hash)
            if entry is None:
                return None
            entry.last_accessed_at = utcnow()
            return entry.raw_content

    async def ref_count(self, content_hash: str) -> Optional[int]:
        return await asyncio.to_thread(self._ref_count, content_hash)

    def _ref_count(self, content_hash: str) -> Optional[int]:
        with self._session_factory() as session:
            return session.scalar(
                select(ContentStoreEntry.ref_count).where(ContentStoreEntry.content_hash == content_hash)
            )

    async def release(self, hashes: Iterable[str]) -> int:
        """Decrement the count once per occurrence of each hash, never below zero."""
        hashes = list(hashes)
        if not hashes:
            return 0
        return await asyncio.to_thread(self._release, hashes)

    def _release(self, hashes: list) -> int:
        with self._session_factory.begin() as session:
            return _release(session, hashes)

    async def unused_count(self) -> int:
        return await asyncio.to_thread(self._unused_count)

    def _unused_count(self) -> int:
        with self._session_factory() as session:
            return session.scalar(
                select(func.count()).select_from(ContentStoreEntry).where(ContentStoreEntry.ref_count == 0)
            )

    async def sweep(
        self,
        retention: timedelta = DEFAULT_RETENTION,
        time_budget: float = 30.0,
        chunk_size: int = 500,
    ) -> int:
        """
        Delete unreferenced rows not accessed within ``retention``.

        Works in chunks and stops once ``time_budget`` seconds have elapsed.

        Returns:
            Number of rows deleted
        """
        return await asyncio.to_thread(self._sweep, retention, time_budget, chunk_size)

    def _sweep(self, retention: timedelta, time_budget: float, chunk_size: int) -> int:
        deadline = time.monotonic() + time_budget
        cutoff = utcnow() - retention
        deleted = 0
        while time.monotonic() < deadline:
            with self._session_factory.begin() as session:
                hashes = session.scalars(
                    select(ContentStoreEntry.content_hash)
                    .where(ContentStoreEntry.ref_count == 0, ContentStoreEntry.last_accessed_at < cutoff)
                    .limit(chunk_size)
                ).all()
                if not hashes:
                    break
                result = session.execute(
                    delete(ContentStoreEntry).where(
                        ContentStoreEntry.content_hash.in_(hashes),
                        ContentStoreEntry.ref_count == 0,
                    )
                )
                deleted += result.rowcount
        logger.info(f"Content sweep removed {deleted} unreferenced entries")
        return deleted


class SnapshotStore:
    """Per-subject record of which pages (and which content) a generation used."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    async def record(self, subject_id: int, url: str, title: str, text: str, content_hash: str) -> bool:
        """
        Link ``url`` to the subject and store its content.

        Returns False if the subject already had this URL, in which case the
        reference count is left untouched.
        """
        return await asyncio.to_thread(self._record, subject_id, url, title, text, content_hash)

    def _record(self, subject_id: int, url: str, title: str, text: str, content_hash: str) -> bool:
        for attempt in (1, 2):
            try:
                with self._session_factory.begin() as session:
                    existing = session.scalar(
                        select(SnapshotUrl.id).where(SnapshotUrl.subject_id == subject_id, SnapshotUrl.url == url)
                    )
                    if existing is not None:
                        return False
                    session.add(
                        SnapshotUrl(subject_id=subject_id, url=url, title=title, content_hash=content_hash)
                    )
                    _increment(session, content_hash, text)
                return True
            except IntegrityError:
                if attempt == 2:
                    raise
        return False

    async def teardown(self, subject_id: int) -> int:
        """Delete the subject's snapshot and release its content. Returns links removed."""
        return await asyncio.to_thread(self._teardown, subject_id)

    def _teardown(self, subject_id: int) -> int:
        with self._session_factory.begin() as session:
            hashes = session.scalars(
                select(SnapshotUrl.content_hash).where(SnapshotUrl.subject_id == subject_id)
            ).all()
            if not hashes:
                return 0
            session.execute(delete(SnapshotUrl).where(SnapshotUrl.subject_id == subject_id))
            _release(session, hashes)
        logger.info(f"Released snapshot of subject {subject_id} ({len(hashes)} pages)")
        return len(hashes)
