"""
Job queue interface shared by the local and Temporal backends.
"""

import inspect
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from llmstxt_pipeline.config import QueueConfig
from llmstxt_pipeline.models import JobMessage, ProgressEvent

logger = logging.getLogger(__name__)

EVENT_NAMES = ("active", "progress", "completed", "failed")


class JobState(str, Enum):
    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    UNKNOWN = "unknown"


TERMINAL_STATES = (JobState.COMPLETED, JobState.FAILED)


def is_removable(state: JobState, allowed_states: Iterable[JobState] = ()) -> bool:
    """
    A job can be removed if its state is allowed. An empty ``allowed_states``
    allows everything except an unknown state. Running jobs are never removable.
    """
    if state in (JobState.ACTIVE, JobState.UNKNOWN):
        return False
    allowed = tuple(allowed_states)
    return not allowed or state in allowed


@dataclass(frozen=True)
class JobContext:
    """Everything a handler needs about the current execution, passed explicitly."""

    job_id: str
    message: JobMessage
    attempt: int
    max_attempts: int
    report_progress: Callable[[ProgressEvent], Awaitable[None]]

    @property
    def is_last_attempt(self) -> bool:
        return self.attempt >= self.max_attempts

    @property
    def attempts_remaining(self) -> int:
        return max(self.max_attempts - self.attempt, 0)


JobHandler = Callable[[JobContext], Awaitable[Any]]


@dataclass(frozen=True)
class JobEvent:
    name: str
    job_id: str
    queue_name: str
    attempt: int = 0
    max_attempts: int = 0
    progress: Optional[ProgressEvent] = None
    error: Optional[str] = None
    final: bool = False


JobListener = Callable[[JobEvent], Any]


class QueueEvents:
    """In-process lifecycle event channel for one queue."""

    def __init__(self):
        self._listeners: Dict[str, List[JobListener]] = defaultdict(list)

    def on(self, name: str, listener: JobListener) -> None:
        if name not in EVENT_NAMES:
            raise ValueError(f"Unknown queue event: {name}")
        self._listeners[name].append(listener)

    async def emit(self, event: JobEvent) -> None:
        for listener in list(self._listeners[event.name]):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Listener for '{event.name}' on job {event.job_id} failed")


class JobWorker(ABC):
    @abstractmethod
    async def start(self) -> None: ...

    @abstractmethod
    async def close(self, timeout: float = 10.0) -> None:
        """Stop taking jobs and wait up to ``timeout`` seconds for running ones."""


class JobQueue(ABC):
    """A named, durable queue of JobMessages with deterministic job ids."""

    def __init__(self, config: QueueConfig):
        self.config = config
        self.events = QueueEvents()

    @property
    def name(self) -> str:
        return self.config.name

    @abstractmethod
    async def enqueue(self, message: JobMessage, job_id: str) -> bool:
        """Add a job. Returns False (and does nothing) if ``job_id`` is already pending or running."""

    @abstractmethod
    async def remove(self, job_id: str, allowed_states: Iterable[JobState] = ()) -> bool: ...

    @abstractmethod
    async def get_state(self, job_id: str) -> JobState: ...

    @abstractmethod
    async def position(self, job_id: str) -> Optional[int]:
        """1-indexed position among waiting jobs, or None if the job is not waiting."""

    @abstractmethod
    def create_worker(self, handler: JobHandler) -> JobWorker: ...

    async def close(self) -> None:
        pass
