"""
Plain data carried through the pipeline.

These are simple dataclasses so they serialize cleanly across the Temporal
boundary and between asyncio tasks.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from llmstxt_pipeline.status import OrderStatus

JOB_ID_PREFIXES = ("order", "gen")
_JOB_ID_RE = re.compile(r"^(?:(?:order|gen)-)?(\d+)$")


def make_job_id(subject_id: int, prefix: str = "order") -> str:
    """Deterministic job id for a subject, e.g. ``order-42``."""
    if prefix not in JOB_ID_PREFIXES:
        raise ValueError(f"Unknown job id prefix: {prefix}")
    return f"{prefix}-{subject_id}"


def parse_job_id(job_id: str) -> Optional[int]:
    """Return the subject id encoded in ``job_id``, or None if it is malformed."""
    match = _JOB_ID_RE.match(job_id or "")
    if not match:
        return None
    return int(match.group(1))


@dataclass(frozen=True)
class JobMessage:
    """Payload enqueued once per generation."""

    subject_id: int
    request_id: int
    hostname: str
    provider: str


@dataclass(frozen=True)
class ProgressEvent:
    processed_units: int
    total_units: int


@dataclass
class UrlSummary:
    """One page inside a batch. Mutated in place by extraction and summarization."""

    url: str
    title: str = ""
    text: str = ""
    summary: str = ""
    error: Optional[str] = None
    content_hash: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.error is None and len(self.summary) > 0

    def set_error(self, message: str) -> None:
        self.error = message
        self.summary = f"Error: {message}"
        self.title = "Error"


@dataclass
class SubjectRecord:
    """Read-only view of a persisted generation order."""

    id: int
    hostname: str
    provider: str
    status: OrderStatus
    total_units: int = 0
    processed_units: int = 0
    output: Optional[str] = None
    entry_count: int = 0
    errors: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
