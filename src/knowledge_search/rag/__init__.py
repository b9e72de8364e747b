"""Answer generation over knowledge entries."""

from knowledge_search.rag.exceptions import (
    LLMAuthenticationError,
    LLMConnectionError,
    LLMError,
    LLMProviderNotConfiguredError,
    LLMRateLimitError,
    LLMResponseError,
)
from knowledge_search.rag.factory import (
    get_available_providers,
    get_llm,
    get_provider,
    register_provider,
)
from knowledge_search.rag.llm import BaseLLM, ChatMessage

__all__ = [
    "BaseLLM",
    "ChatMessage",
    "get_llm",
    "get_provider",
    "get_available_providers",
    "register_provider",
    "LLMError",
    "LLMConnectionError",
    "LLMAuthenticationError",
    "LLMRateLimitError",
    "LLMResponseError",
    "LLMProviderNotConfiguredError",
]
