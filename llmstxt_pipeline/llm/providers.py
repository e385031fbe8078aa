"""
Static provider registry and the LLM service used by the pipeline.

Every provider id maps to a factory that builds a langchain chat model via
``init_chat_model``. Adding a provider means adding an enum member and a
registry entry; nothing is resolved from strings at runtime beyond the enum
lookup.
"""

import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from llmstxt_pipeline.config import CircuitBreakerConfig, ProviderConfig, ResilienceConfig
from llmstxt_pipeline.errors import UnknownProviderError
from llmstxt_pipeline.llm.prompts import SYSTEM_PROMPT, build_batch_summary_prompt, build_description_prompt
from llmstxt_pipeline.llm.resilience import CircuitBreaker, ResilientCaller
from llmstxt_pipeline.llm.validators import ValidationSpec
from llmstxt_pipeline.models import UrlSummary

logger = logging.getLogger(__name__)


class Provider(str, Enum):
    GEMINI = "gemini"
    OLLAMA = "ollama"
    ANTHROPIC = "anthropic"
    OPENAI = "openai"


ChatModelFactory = Callable[[ProviderConfig], Any]


def _chat_model_factory(model_provider: str) -> ChatModelFactory:
    def factory(config: ProviderConfig) -> Any:
        from langchain.chat_models import init_chat_model

        kwargs: Dict[str, Any] = {"temperature": config.temperature}
        if config.max_tokens:
            kwargs["max_tokens"] = config.max_tokens
        if config.base_url:
            kwargs["base_url"] = config.base_url
        return init_chat_model(model=config.model_name, model_provider=model_provider, **kwargs)

    return factory


PROVIDER_REGISTRY: Dict[Provider, ChatModelFactory] = {
    Provider.GEMINI: _chat_model_factory("google_genai"),
    Provider.OLLAMA: _chat_model_factory("ollama"),
    Provider.ANTHROPIC: _chat_model_factory("anthropic"),
    Provider.OPENAI: _chat_model_factory("openai"),
}


def resolve_provider(provider_id: str) -> Provider:
    try:
        return Provider(provider_id)
    except ValueError:
        raise UnknownProviderError(provider_id) from None


def response_text(content: Any) -> str:
    """Flatten a chat model message content (str or list of parts) to text."""
    if isinstance(content, str):
        return content
    parts = []
    for part in content or []:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(part.get("text", ""))
    return "".join(parts)


class LlmService:
    """Batch page summaries and site descriptions for one provider."""

    def __init__(self, provider_id: str, chat_model: Any, caller: ResilientCaller):
        self.provider_id = provider_id
        self.chat_model = chat_model
        self.caller = caller

    async def _invoke(self, prompt: str) -> str:
        response = await self.chat_model.ainvoke(
            [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "human", "content": prompt},
            ]
        )
        return response_text(response.content)

    async def generate_page_summaries(self, items: List[UrlSummary]) -> int:
        """
        Summarize ``items`` in one call and store the summaries on them.

        Returns:
            Number of attempts the call needed
        """
        if not items:
            return 0
        result = await self.caller.call(
            self._invoke,
            build_batch_summary_prompt(items),
            ValidationSpec(expected_count=len(items), require_summary=True),
            operation=f"{self.provider_id} batch summary",
        )
        for item, entry in zip(items, result.value):
            item.summary = " ".join(entry["summary"].split())
        logger.debug(f"Generated {len(items)} summaries in {result.attempts} attempt(s)")
        return result.attempts

    async def generate_website_description(self, items: Sequence[UrlSummary]) -> str:
        result = await self.caller.call(
            self._invoke,
            build_description_prompt(items),
            ValidationSpec(require_description=True),
            operation=f"{self.provider_id} site description",
        )
        description = " ".join(result.value["description"].split())
        logger.info(f"Generated website description from {len(items)} page summaries")
        return description


def build_llm_service(
    config: ProviderConfig,
    resilience: ResilienceConfig = ResilienceConfig(),
    breaker: Optional[CircuitBreakerConfig] = CircuitBreakerConfig(),
    chat_model: Any = None,
) -> LlmService:
    """
    Build the LlmService for a configured provider.

    Args:
        config: Provider definition
        resilience: Retry/timeout settings
        breaker: Circuit breaker settings, or None to disable it
        chat_model: Pre-built chat model (skips the registry factory)
    """
    provider = resolve_provider(config.id)
    if chat_model is None:
        chat_model = PROVIDER_REGISTRY[provider](config)
    caller = ResilientCaller(resilience, CircuitBreaker(breaker) if breaker else None)
    return LlmService(provider.value, chat_model, caller)


class LlmServices:
    """Lazily built LlmService per enabled provider."""

    def __init__(
        self,
        providers: Sequence[ProviderConfig],
        resilience: ResilienceConfig = ResilienceConfig(),
        breaker: Optional[CircuitBreakerConfig] = CircuitBreakerConfig(),
        chat_models: Optional[Dict[str, Any]] = None,
    ):
        self._providers = {p.id: p for p in providers if p.enabled}
        self._resilience = resilience
        self._breaker = breaker
        self._chat_models = dict(chat_models or {})
        self._services: Dict[str, LlmService] = {}

    def get(self, provider_id: str) -> Optional[LlmService]:
        if provider_id not in self._providers:
            return None
        if provider_id not in self._services:
            self._services[provider_id] = build_llm_service(
                self._providers[provider_id],
                self._resilience,
                self._breaker,
                chat_model=self._chat_models.get(provider_id),
            )
        return self._services[provider_id]
