"""
Summary cache keyed by (provider, hostname).

Each cache key holds one row per URL with the page title and summary, plus a
sentinel row for the site description. Reads for a whole batch are one
query. Writes are per-row upserts (last write wins), and callers only write
rows they just generated, so an existing row's TTL is never refreshed by a
reader.
"""

import asyncio
import re
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, Iterable, Mapping, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, sessionmaker

from llmstxt_pipeline.storage.database import utcnow
from llmstxt_pipeline.storage.models import SummaryCacheEntry

DESCRIPTION_FIELD = "__webDescription__"
DEFAULT_TTL = 24 * 60 * 60


@dataclass(frozen=True)
class CachedSummary:
    title: str
    summary: str


def normalize_hostname(hostname: str) -> str:
    """``https://Example.com/`` -> ``example.com``"""
    host = re.sub(r"^https?://", "", hostname.strip(), flags=re.IGNORECASE)
    return host.rstrip("/").lower()


def build_cache_key(provider: str, hostname: str) -> str:
    return f"summary:{provider}:{normalize_hostname(hostname)}"


class SummaryCache:
    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    async def get_many(self, cache_key: str, fields: Iterable[str]) -> Dict[str, CachedSummary]:
        """Return the unexpired entries among ``fields``; missing fields are absent."""
        fields = list(dict.fromkeys(fields))
        if not fields:
            return {}
        return await asyncio.to_thread(self._get_many, cache_key, fields)

    def _get_many(self, cache_key: str, fields: list) -> Dict[str, CachedSummary]:
        with self._session_factory() as session:
            rows = session.execute(
                select(SummaryCacheEntry.field, SummaryCacheEntry.title, SummaryCacheEntry.summary).where(
                    SummaryCacheEntry.cache_key == cache_key,
                    SummaryCacheEntry.field.in_(fields),
                    SummaryCacheEntry.expires_at > utcnow(),
                )
            ).all()
        return {row.field: CachedSummary(title=row.title, summary=row.summary) for row in rows}

    async def set_many(
        self,
        cache_key: str,
        entries: Mapping[str, CachedSummary],
        ttl: float = DEFAULT_TTL,
    ) -> None:
        if not entries:
            return
        await asyncio.to_thread(self._set_many, cache_key, dict(entries), ttl)

    def _set_many(self, cache_key: str, entries: Dict[str, CachedSummary], ttl: float) -> None:
        expires_at = utcnow() + timedelta(seconds=ttl)
        with self._session_factory.begin() as session:
            for field, entry in entries.items():
                session.merge(
                    SummaryCacheEntry(
                        cache_key=cache_key,
                        field=field,
                        title=entry.title,
                        summary=entry.summary,
                        expires_at=expires_at,
                    )
                )

    async def get_description(self, cache_key: str) -> Optional[str]:
        found = await self.get_many(cache_key, [DESCRIPTION_FIELD])
        entry = found.get(DESCRIPTION_FIELD)
        return entry.summary if entry else None

    async def set_description(self, cache_key: str, description: str, ttl: float = DEFAULT_TTL) -> None:
        await self.set_many(cache_key, {DESCRIPTION_FIELD: CachedSummary(title="", summary=description)}, ttl)

    async def purge_expired(self) -> int:
        return await asyncio.to_thread(self._purge_expired)

    def _purge_expired(self) -> int:
        with self._session_factory.begin() as session:
            result = session.execute(delete(SummaryCacheEntry).where(SummaryCacheEntry.expires_at <= utcnow()))
            return result.rowcount
