"""
Retry, timeout and validation around a single logical LLM call.

Each attempt races the provider call against a timeout, parses the answer as
JSON and validates its shape. Validation failures retry with a prompt that
restates the format and quotes the previous error. Timeouts and transport
errors retry with the same prompt. Retries run on tenacity; the delay after
failed attempt ``n`` is ``min(initial_delay * backoff_multiplier ** (n - 1), max_delay)``.
Any other error propagates immediately.

An optional circuit breaker short-circuits calls to a provider that keeps
failing. Validation failures do not count against it, since the provider
did answer.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_exponential

from llmstxt_pipeline.config import CircuitBreakerConfig, ResilienceConfig
from llmstxt_pipeline.errors import CircuitOpenError, LlmTimeoutError, LlmValidationError
from llmstxt_pipeline.llm.prompts import build_retry_prompt
from llmstxt_pipeline.llm.validators import ValidationSpec, parse_json_response

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[Any]]
ProviderCall = Callable[[str], Awaitable[str]]


def is_transient_error(exc: BaseException) -> bool:
    """Timeouts, connection problems and provider 429/5xx answers."""
    if isinstance(exc, (LlmTimeoutError, httpx.TransportError, ConnectionError, TimeoutError)):
        return True
    status = getattr(exc, "status_code", None)
    if status is None:
        status = getattr(getattr(exc, "response", None), "status_code", None)
    return isinstance(status, int) and (status == 429 or status >= 500)


def is_retryable_error(exc: BaseException) -> bool:
    return isinstance(exc, LlmValidationError) or is_transient_error(exc)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    def __init__(
        self,
        config: CircuitBreakerConfig = CircuitBreakerConfig(),
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._successes = 0
        self._opened_at = 0.0

    @property
    def state(self) -> CircuitState:
        if self._state == CircuitState.OPEN and self._clock() - self._opened_at >= self.config.half_open_after:
            self._state = CircuitState.HALF_OPEN
            self._successes = 0
        return self._state

    def before_call(self) -> None:
        if self.state == CircuitState.OPEN:
            raise CircuitOpenError("Circuit breaker is open; provider calls are suspended")

    def record_success(self) -> None:
        if self.state == CircuitState.HALF_OPEN:
            self._successes += 1
            if self._successes >= self.config.success_threshold:
                self._state = CircuitState.CLOSED
                self._failures = 0
        else:
            self._failures = 0

    def record_failure(self, exc: BaseException) -> None:
        if isinstance(exc, LlmValidationError):
            return
        if self.state == CircuitState.HALF_OPEN:
            self._trip()
            return
        self._failures += 1
        if self._failures >= self.config.failure_threshold:
            self._trip()

    def _trip(self) -> None:
        logger.warning("Circuit breaker opened")
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._failures = 0


@dataclass
class ResilientResult:
    value: Any
    attempts: int


class ResilientCaller:
    """Run provider calls under a ResilienceConfig."""

    def __init__(
        self,
        config: ResilienceConfig = ResilienceConfig(),
        breaker: Optional[CircuitBreaker] = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.config = config
        self.breaker = breaker
        self._sleep = sleep

    async def call(
        self,
        provider_call: ProviderCall,
        prompt: str,
        spec: ValidationSpec,
        operation: str = "llm call",
    ) -> ResilientResult:
        current_prompt = prompt
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.config.max_attempts),
            wait=wait_exponential(
                multiplier=self.config.initial_delay,
                exp_base=self.config.backoff_multiplier,
                max=self.config.max_delay,
            ),
            retry=retry_if_exception(is_retryable_error),
            sleep=self._sleep,
            before_sleep=self._log_retry(operation),
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    number = attempt.retry_state.attempt_number
                    raw = await self._invoke(provider_call, current_prompt)
                    try:
                        parsed = parse_json_response(raw, number)
                        spec.validate(parsed, number)
                    except LlmValidationError as e:
                        current_prompt = build_retry_prompt(prompt, e, number + 1, e.retry_hint or "")
                        raise
                    return ResilientResult(value=parsed, attempts=number)
        except Exception as e:
            if is_retryable_error(e):
                logger.error(f"{operation} failed after {self.config.max_attempts} attempts: {e}")
            raise

    async def _invoke(self, provider_call: ProviderCall, prompt: str) -> str:
        if self.breaker:
            self.breaker.before_call()
        try:
            raw = await asyncio.wait_for(provider_call(prompt), timeout=self.config.timeout)
        except asyncio.TimeoutError:
            error = LlmTimeoutError(self.config.timeout)
            self._record_failure(error)
            raise error from None
        except Exception as e:
            self._record_failure(e)
            raise
        if self.breaker:
            self.breaker.record_success()
        return raw

    def _log_retry(self, operation: str) -> Callable[[RetryCallState], None]:
        def log(retry_state: RetryCallState) -> None:
            logger.warning(
                f"{operation} attempt {retry_state.attempt_number}/{self.config.max_attempts} failed: "
                f"{retry_state.outcome.exception()}. Retrying in {retry_state.next_action.sleep:g}s"
            )

        return log

    def _record_failure(self, exc: BaseException) -> None:
        if self.breaker:
            self.breaker.record_failure(exc)
