"""
Process configuration.

Everything is read once at startup from the environment (after loading an
optional .env file) into frozen dataclasses. Nothing here changes for the
lifetime of the process.

Environment variables:

    LLMSTXT_DATABASE_URL      SQLAlchemy URL (default: sqlite:///llmstxt_pipeline.db)
    LLMSTXT_ORCHESTRATOR      "local" or "temporal" (default: local)
    TEMPORAL_ADDRESS          Temporal frontend (default: localhost:7233)
    TEMPORAL_NAMESPACE        Temporal namespace (default: default)
    LLMSTXT_JOB_PREFIX        job id prefix, "order" or "gen" (default: order)
    LLMSTXT_EXTRACTOR         "text" or "markdown" (default: text)
    SUMMARY_CACHE_TTL         seconds (default: 86400)
    CONTENT_RETENTION_DAYS    days before unreferenced content is swept (default: 30)
    QUEUE_RETRY_LIMIT         retries after the first attempt (default: 2)
    QUEUE_RETRY_DELAY         seconds between attempts (default: 10)
    QUEUE_BACKOFF_TYPE        "fixed" or "exponential" (default: fixed)
    QUEUE_REMOVE_ON_COMPLETE  drop finished job records (default: true)
    QUEUE_REMOVE_ON_FAIL      drop failed job records (default: true)
    QUEUE_LOCK_DURATION       seconds (default: 30)
    QUEUE_STALLED_INTERVAL    seconds (default: 30)
    LLM_MAX_ATTEMPTS, LLM_INITIAL_DELAY, LLM_MAX_DELAY,
    LLM_BACKOFF_MULTIPLIER, LLM_TIMEOUT
    LLMSTXT_PROVIDERS         JSON list of provider definitions
"""

import json
import os
from dataclasses import dataclass, field, replace
from typing import Dict, Mapping, Optional, Tuple

from dotenv import load_dotenv

from llmstxt_pipeline.errors import ConfigError, UnknownProviderError

BACKOFF_TYPES = ("fixed", "exponential")
ORCHESTRATORS = ("local", "temporal")
EXTRACTORS = ("text", "markdown")


@dataclass(frozen=True)
class BackoffConfig:
    type: str = "fixed"
    delay: float = 10.0

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-indexed)."""
        if self.type == "exponential":
            return self.delay * (2 ** (attempt - 1))
        return self.delay


@dataclass(frozen=True)
class QueueConfig:
    name: str
    concurrency: int = 1
    lock_duration: float = 30.0
    stalled_interval: float = 30.0
    backoff: BackoffConfig = field(default_factory=BackoffConfig)
    retry_limit: int = 2
    remove_on_complete: bool = True
    remove_on_fail: bool = True

    @property
    def max_attempts(self) -> int:
        return self.retry_limit + 1


@dataclass(frozen=True)
class ProviderConfig:
    id: str
    model_name: str
    queue_name: str
    batch_size: int = 10
    concurrency: int = 1
    enabled: bool = True
    temperature: float = 0.3
    max_tokens: Optional[int] = None
    base_url: Optional[str] = None


@dataclass(frozen=True)
class ResilienceConfig:
    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 8.0
    backoff_multiplier: float = 2.0
    timeout: float = 60.0

    def delay_for(self, attempt: int) -> float:
        return min(self.initial_delay * self.backoff_multiplier ** (attempt - 1), self.max_delay)


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    success_threshold: int = 2
    half_open_after: float = 30.0


DEFAULT_PROVIDERS: Tuple[ProviderConfig, ...] = (
    ProviderConfig(
        id="gemini",
        model_name="gemini-2.0-flash",
        queue_name="gemini-generation",
        batch_size=20,
        concurrency=5,
    ),
    ProviderConfig(
        id="ollama",
        model_name="llama3.1",
        queue_name="ollama-generation",
        batch_size=5,
        concurrency=1,
        base_url="http://localhost:11434",
    ),
)


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///llmstxt_pipeline.db"
    orchestrator: str = "local"
    temporal_address: str = "localhost:7233"
    temporal_namespace: str = "default"
    job_id_prefix: str = "order"
    extractor: str = "text"
    summary_cache_ttl: float = 24 * 60 * 60
    content_retention_days: int = 30
    providers: Tuple[ProviderConfig, ...] = DEFAULT_PROVIDERS
    queue_defaults: QueueConfig = field(default_factory=lambda: QueueConfig(name="default"))
    resilience: ResilienceConfig = field(default_factory=ResilienceConfig)
    circuit_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)

    def provider(self, provider_id: str) -> ProviderConfig:
        for provider in self.providers:
            if provider.id == provider_id and provider.enabled:
                return provider
        raise UnknownProviderError(provider_id)

    def queue_configs(self) -> Dict[str, QueueConfig]:
        """One QueueConfig per distinct queue name among enabled providers."""
        queues: Dict[str, QueueConfig] = {}
        for provider in self.providers:
            if not provider.enabled:
                continue
            existing = queues.get(provider.queue_name)
            concurrency = max(provider.concurrency, existing.concurrency if existing else 0)
            queues[provider.queue_name] = replace(
                self.queue_defaults, name=provider.queue_name, concurrency=concurrency
            )
        return queues


def _get_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _get_number(env: Mapping[str, str], key: str, default, cast=float):
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = cast(raw)
    except ValueError as e:
        raise ConfigError(f"{key} must be a number, got {raw!r}") from e
    if value < 0:
        raise ConfigError(f"{key} must not be negative")
    return value


def _get_choice(env: Mapping[str, str], key: str, default: str, choices: Tuple[str, ...]) -> str:
    value = env.get(key) or default
    if value not in choices:
        raise ConfigError(f"{key} must be one of {', '.join(choices)}, got {value!r}")
    return value


def _parse_providers(raw: str) -> Tuple[ProviderConfig, ...]:
    try:
        items = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigError(f"LLMSTXT_PROVIDERS is not valid JSON: {e}") from e
    if not isinstance(items, list) or not items:
        raise ConfigError("LLMSTXT_PROVIDERS must be a non-empty JSON list")

    providers = []
    for item in items:
        try:
            providers.append(ProviderConfig(**item))
        except TypeError as e:
            raise ConfigError(f"Invalid provider definition {item!r}: {e}") from e
    for provider in providers:
        if provider.batch_size < 1 or provider.concurrency < 1:
            raise ConfigError(f"Provider {provider.id}: batch_size and concurrency must be >= 1")
    return tuple(providers)


def load_settings(env: Optional[Mapping[str, str]] = None, dotenv_path: Optional[str] = None) -> Settings:
    """
    Build Settings from environment variables.

    Args:
        env: Mapping to read from. Defaults to os.environ after loading .env.
        dotenv_path: Explicit .env file to load when ``env`` is not given.

    Returns:
        Immutable Settings instance
    """
    if env is None:
        load_dotenv(dotenv_path)
        env = os.environ

    queue_defaults = QueueConfig(
        name="default",
        lock_duration=_get_number(env, "QUEUE_LOCK_DURATION", 30.0),
        stalled_interval=_get_number(env, "QUEUE_STALLED_INTERVAL", 30.0),
        backoff=BackoffConfig(
            type=_get_choice(env, "QUEUE_BACKOFF_TYPE", "fixed", BACKOFF_TYPES),
            delay=_get_number(env, "QUEUE_RETRY_DELAY", 10.0),
        ),
        retry_limit=_get_number(env, "QUEUE_RETRY_LIMIT", 2, int),
        remove_on_complete=_get_bool(env, "QUEUE_REMOVE_ON_COMPLETE", True),
        remove_on_fail=_get_bool(env, "QUEUE_REMOVE_ON_FAIL", True),
    )

    resilience = ResilienceConfig(
        max_attempts=_get_number(env, "LLM_MAX_ATTEMPTS", 3, int),
        initial_delay=_get_number(env, "LLM_INITIAL_DELAY", 1.0),
        max_delay=_get_number(env, "LLM_MAX_DELAY", 8.0),
        backoff_multiplier=_get_number(env, "LLM_BACKOFF_MULTIPLIER", 2.0),
        timeout=_get_number(env, "LLM_TIMEOUT", 60.0),
    )
    if resilience.max_attempts < 1:
        raise ConfigError("LLM_MAX_ATTEMPTS must be at least 1")

    providers_raw = env.get("LLMSTXT_PROVIDERS")
    providers = _parse_providers(providers_raw) if providers_raw else DEFAULT_PROVIDERS

    prefix = env.get("LLMSTXT_JOB_PREFIX") or "order"
    if prefix not in ("order", "gen"):
        raise ConfigError(f"LLMSTXT_JOB_PREFIX must be 'order' or 'gen', got {prefix!r}")

    return Settings(
        database_url=env.get("LLMSTXT_DATABASE_URL") or Settings.database_url,
        orchestrator=_get_choice(env, "LLMSTXT_ORCHESTRATOR", "local", ORCHESTRATORS),
        temporal_address=env.get("TEMPORAL_ADDRESS") or Settings.temporal_address,
        temporal_namespace=env.get("TEMPORAL_NAMESPACE") or Settings.temporal_namespace,
        job_id_prefix=prefix,
        extractor=_get_choice(env, "LLMSTXT_EXTRACTOR", "text", EXTRACTORS),
        summary_cache_ttl=_get_number(env, "SUMMARY_CACHE_TTL", 24 * 60 * 60.0),
        content_retention_days=_get_number(env, "CONTENT_RETENTION_DAYS", 30, int),
        providers=providers,
        queue_defaults=queue_defaults,
        resilience=resilience,
    )
