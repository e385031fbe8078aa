"""
Exception hierarchy for the generation pipeline.

Errors fall into a few families that the queue and job handler treat
differently:

- FatalJobError: never retried by the queue (illegal status transitions,
  missing subjects).
- CriticalFailureError: the job failed as a whole; the queue may retry it.
- LlmValidationError: the model answered but the answer had the wrong shape;
  retried with an augmented prompt by the resilience wrapper.
- LlmTimeoutError / CircuitOpenError: call-level failures surfaced per URL.
"""

from typing import Iterable, Optional


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class ConfigError(PipelineError):
    """Raised when settings cannot be loaded or are inconsistent."""


class FatalJobError(PipelineError):
    """A job error that must not be retried by the queue."""


class SubjectNotFoundError(FatalJobError):
    def __init__(self, subject_id: int):
        self.subject_id = subject_id
        super().__init__(f"Subject {subject_id} not found")


class InvalidStatusTransitionError(FatalJobError):
    """Raised when a status change is not an edge of the status graph."""

    def __init__(self, from_status: str, to_status: str, allowed: Iterable[str]):
        self.from_status = from_status
        self.to_status = to_status
        self.allowed = tuple(allowed)
        allowed_text = ", ".join(self.allowed) if self.allowed else "none (terminal status)"
        super().__init__(
            f"Invalid status transition: {from_status} → {to_status}. "
            f"Allowed transitions from {from_status}: {allowed_text}"
        )


class StatusContentionError(PipelineError):
    """The subject's status kept changing under a compare-and-set write."""

    def __init__(self, subject_id: int, to_status: str):
        self.subject_id = subject_id
        self.to_status = to_status
        super().__init__(f"Subject {subject_id} status kept changing during transition to {to_status}")


class CriticalFailureError(PipelineError):
    """Too many pages failed for the job to produce a useful document."""


class ExtractionError(PipelineError):
    """Fetching or parsing a page failed."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Content extraction failed: {reason}")


class UnknownProviderError(FatalJobError):
    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"Unknown LLM provider: {provider}")


class LlmError(PipelineError):
    """Base class for errors raised around LLM calls."""


class LlmValidationError(LlmError):
    """The model response did not match the expected structure."""

    def __init__(self, message: str, attempt: int = 1, retry_hint: Optional[str] = None):
        self.attempt = attempt
        self.retry_hint = retry_hint
        super().__init__(message)


class LlmJsonValidationError(LlmValidationError):
    def __init__(self, message: str, invalid_response: str = "", attempt: int = 1):
        self.invalid_response = invalid_response
        super().__init__(message, attempt=attempt)


class LlmResponseCountMismatchError(LlmValidationError):
    def __init__(self, expected: int, actual: int, attempt: int = 1):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Expected {expected} items in response, got {actual}",
            attempt=attempt,
            retry_hint=f"IMPORTANT: You MUST return exactly {expected} items in the array, "
            f"one per page, in the same order.",
        )


class LlmInvalidSummaryFieldError(LlmValidationError):
    def __init__(self, summary_index: int, attempt: int = 1):
        self.summary_index = summary_index
        super().__init__(
            f"Item at index {summary_index} is missing a non-empty 'summary' field",
            attempt=attempt,
            retry_hint='IMPORTANT: Each item in the array MUST have a "summary" field with a '
            f"string value. Invalid item at index {summary_index} in previous attempt.",
        )


class LlmInvalidDescriptionError(LlmValidationError):
    def __init__(self, attempt: int = 1):
        super().__init__(
            "Response is missing a non-empty 'description' field",
            attempt=attempt,
            retry_hint='IMPORTANT: The response MUST be an object with a "description" field '
            "holding a string value.",
        )


class LlmTimeoutError(LlmError):
    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"LLM call timed out after {timeout:g}s")


class CircuitOpenError(LlmError):
    """The provider circuit is open; calls are rejected without being attempted."""


class QueueError(PipelineError):
    """Base class for job queue errors."""


class QueueNotFoundError(QueueError):
    def __init__(self, queue_name: str):
        self.queue_name = queue_name
        super().__init__(f"Queue '{queue_name}' is not registered")


class JobNotRemovableError(QueueError):
    def __init__(self, job_id: str, state: str):
        self.job_id = job_id
        self.state = state
        super().__init__(f"Job {job_id} cannot be removed in state '{state}'")
