"""OpenAI chat completions client using raw httpx."""

import logging
from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from knowledge_search.config import settings
from knowledge_search.rag.exceptions import (
    LLMAuthenticationError,
    LLMConnectionError,
    LLMRateLimitError,
    LLMResponseError,
)
from knowledge_search.rag.llm import BaseLLM, ChatMessage

logger = logging.getLogger(__name__)


class OpenAILLM(BaseLLM):
    """Chat client for the OpenAI API (no SDK dependency)."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        timeout: float = 30.0,
    ):
        """Initialize the OpenAI client.

        Args:
            api_key: OpenAI API key (defaults to settings.OPENAI_API_KEY)
            model: Chat model (defaults to settings.OPENAI_CHAT_MODEL)
            base_url: API root (defaults to settings.OPENAI_BASE_URL)
            timeout: Request timeout in seconds
        """
        self.api_key = api_key or settings.OPENAI_API_KEY
        self.model = model or settings.OPENAI_CHAT_MODEL
        self.base_url = (base_url or settings.OPENAI_BASE_URL).rstrip("/")
        self.timeout = timeout

        if not self.api_key:
            logger.warning("OpenAI API key not configured")

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "openai"

    async def is_available(self) -> bool:
        """Check if OpenAI is configured (API key exists)."""
        return bool(self.api_key)

    def _get_headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        retry=retry_if_exception_type((LLMConnectionError, LLMRateLimitError)),
        reraise=True,
    )
    async def chat(self, messages: list[ChatMessage], **kwargs: Any) -> str:
        """Run a chat completion.

        Args:
            messages: Conversation to send
            **kwargs: temperature, max_tokens

        Returns:
            Content of the first choice

        Raises:
            LLMAuthenticationError: If API key is missing or invalid
            LLMRateLimitError: If rate limit is exceeded
            LLMConnectionError: If connection fails
            LLMResponseError: On any other error status or empty choices
        """
        if not self.api_key:
            raise LLMAuthenticationError(
                "API key not configured", provider=self.provider_name
            )

        payload = {
            "model": self.model,
            "messages": [m.to_dict() for m in messages],
            "temperature": kwargs.get("temperature", settings.SEARCH_ANSWER_TEMPERATURE),
            "max_tokens": kwargs.get("max_tokens", settings.SEARCH_ANSWER_MAX_TOKENS),
        }

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    headers=self._get_headers(),
                    json=payload,
                )
            except httpx.ConnectError as e:
                raise LLMConnectionError(
                    f"Failed to connect: {e}", provider=self.provider_name
                ) from e
            except httpx.TimeoutException as e:
                raise LLMConnectionError(
                    f"Request timed out: {e}", provider=self.provider_name
                ) from e

        if response.status_code == 401:
            raise LLMAuthenticationError("Invalid API key", provider=self.provider_name)
        elif response.status_code == 429:
            retry_after = response.headers.get("retry-after")
            raise LLMRateLimitError(
                "Rate limit exceeded",
                provider=self.provider_name,
                retry_after=float(retry_after) if retry_after else None,
            )
        elif response.status_code >= 400:
            raise LLMResponseError(
                f"HTTP {response.status_code}",
                provider=self.provider_name,
                status_code=response.status_code,
            )

        data = response.json()
        choices = data.get("choices") or []
        if not choices:
            raise LLMResponseError("Response had no choices", provider=self.provider_name)
        return choices[0].get("message", {}).get("content") or ""

    async def check_health(self) -> bool:
        """Check if the OpenAI API is reachable with the configured key."""
        if not self.api_key:
            logger.warning("OpenAI health check: No API key configured")
            return False

        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                response = await client.get(
                    f"{self.base_url}/models", headers=self._get_headers()
                )
                return response.status_code == 200
        except httpx.HTTPError as e:
            logger.error(f"OpenAI health check failed: {type(e).__name__}: {e}")
            return False
