"""Registry of answer-generating LLM providers."""

import logging
from typing import Callable

from knowledge_search.config import settings
from knowledge_search.rag.exceptions import LLMProviderNotConfiguredError

logger = logging.getLogger(__name__)

LLMFactory = Callable[[], "BaseLLM"]

_PROVIDER_REGISTRY: dict[str, LLMFactory] = {}


def register_provider(name: str) -> Callable[[LLMFactory], LLMFactory]:
    """Register a zero-argument factory under ``name`` (case-insensitive)."""

    def decorator(factory: LLMFactory) -> LLMFactory:
        _PROVIDER_REGISTRY[name.lower()] = factory
        logger.debug(f"Registered LLM provider: {name}")
        return factory

    return decorator


def get_available_providers() -> list[str]:
    return list(_PROVIDER_REGISTRY)


def get_provider(name: str) -> "BaseLLM":
    """Instantiate a registered provider.

    Raises:
        LLMProviderNotConfiguredError: If nothing is registered under ``name``
    """
    factory = _PROVIDER_REGISTRY.get(name.lower())
    if factory is None:
        raise LLMProviderNotConfiguredError(
            f"Unknown provider '{name}'. Available: {', '.join(_PROVIDER_REGISTRY)}",
            provider=name,
        )
    return factory()


def _candidate_order(preferred: str | None) -> list[str]:
    names = get_available_providers()
    if not preferred:
        return names
    preferred = preferred.lower()
    return [preferred] + [name for name in names if name != preferred]


async def get_llm(provider: str | None = None) -> "BaseLLM":
    """Return the first usable LLM.

    Candidates are tried in order: ``provider``, then ``LLM_PROVIDER``, then
    every other registered provider.

    Raises:
        LLMProviderNotConfiguredError: If no candidate has credentials
    """
    preferred = provider or settings.LLM_PROVIDER
    for name in _candidate_order(preferred):
        llm = get_provider(name)
        if await llm.is_available():
            logger.info(f"Using LLM provider: {llm.provider_name}")
            return llm
        if preferred and name == preferred.lower():
            logger.warning(f"Configured provider '{preferred}' not available")

    raise LLMProviderNotConfiguredError(
        "No LLM provider is configured or available. Set OPENAI_API_KEY.",
        provider="none",
    )


from knowledge_search.rag.llm import BaseLLM  # noqa: E402


@register_provider("openai")
def _create_openai() -> BaseLLM:
    from knowledge_search.rag.providers.openai import OpenAILLM

    return OpenAILLM()
