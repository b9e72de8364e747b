"""DALL-E adapter for the OpenAI images API."""

import logging
import re

import httpx

from knowledge_search.config import settings
from knowledge_search.images.base import (
    ImageGenerationService,
    ServiceLimits,
    read_error_body,
)
from knowledge_search.images.exceptions import GenerationError, GenerationErrorType

logger = logging.getLogger(__name__)

DEFAULT_RATE_LIMIT_RETRY = 60.0
SERVER_ERROR_RETRY = 30.0
_RETRY_HINT = re.compile(r"try again in (\d+(?:\.\d+)?)s", re.IGNORECASE)


def parse_retry_after(message: str) -> float:
    """Read the wait hint from messages like 'Rate limit reached. Try again in 20s'."""
    match = _RETRY_HINT.search(message or "")
    if match:
        return float(match.group(1))
    return DEFAULT_RATE_LIMIT_RETRY


class DalleAdapter(ImageGenerationService):
    """Single-request generation: POST /images/generations returns a hosted URL."""

    timeout_retry_after = 5.0

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 60.0,
        **kwargs,
    ):
        self.api_key = api_key or settings.dalle_api_key
        if not self.api_key:
            raise ValueError("DALL-E API key is required")
        self.model = model or settings.DALLE_MODEL
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        super().__init__(**kwargs)

    @property
    def service_name(self) -> str:
        return "dalle"

    @property
    def limits(self) -> ServiceLimits:
        return ServiceLimits(
            max_prompt_length=4000,
            rate_limit_per_minute=5,
            rate_limit_per_hour=200,
            max_retries=3,
            timeout=self.timeout,
            supported_formats=("png",),
            max_image_size=10 * 1024 * 1024,
        )

    def _get_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def _generate(self, prompt: str) -> str:
        body = {
            "model": self.model,
            "prompt": prompt,
            "n": 1,
            "size": "1024x1024",
            "quality": "hd",
            "style": "vivid",
        }
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                f"{self.base_url}/images/generations",
                headers=self._get_headers(),
                json=body,
            )

        if response.status_code >= 400:
            raise self._map_error(response)

        data = response.json().get("data") or []
        if not data or not data[0].get("url"):
            raise self._error(
                GenerationErrorType.UNKNOWN_ERROR,
                "No image data returned from DALL-E",
                retryable=True,
            )
        revised = data[0].get("revised_prompt")
        if revised:
            logger.debug(f"DALL-E revised prompt: {revised[:200]}")
        return data[0]["url"]

    def _map_error(self, response: httpx.Response) -> GenerationError:
        status = response.status_code
        error = read_error_body(response).get("error") or {}
        message = error.get("message") or f"HTTP {status} error"

        if status == 400:
            if error.get("code") == "content_policy_violation":
                return self._error(GenerationErrorType.CONTENT_POLICY_VIOLATION, message)
            return self._error(GenerationErrorType.INVALID_PROMPT, message)
        if status == 401:
            return self._error(GenerationErrorType.AUTHENTICATION_ERROR, "Invalid API key")
        if status == 429:
            return self._error(
                GenerationErrorType.RATE_LIMITED,
                message,
                retryable=True,
                retry_after=parse_retry_after(message),
            )
        if status >= 500:
            return self._error(
                GenerationErrorType.SERVICE_UNAVAILABLE,
                "DALL-E service temporarily unavailable",
                retryable=True,
                retry_after=SERVER_ERROR_RETRY,
            )
        return self._error(GenerationErrorType.UNKNOWN_ERROR, message, retryable=True)

    async def _check_health(self) -> bool:
        async with httpx.AsyncClient(timeout=self.health_timeout) as client:
            response = await client.get(
                f"{self.base_url}/models",
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        return response.status_code < 400
