"""Stable Diffusion adapter for the Stability AI REST API."""

import logging

import httpx

from knowledge_search.config import settings
from knowledge_search.images.base import (
    ImageGenerationService,
    ServiceLimits,
    read_error_body,
)
from knowledge_search.images.exceptions import GenerationError, GenerationErrorType
from knowledge_search.images.prompts.fitting import (
    fit_prompt,
    fit_terms,
    join_negative,
    split_negative,
)

logger = logging.getLogger(__name__)

RATE_LIMIT_RETRY = 60.0
SERVER_ERROR_RETRY = 30.0


class StableDiffusionAdapter(ImageGenerationService):
    """Synchronous text-to-image; the image comes back inline as base64."""

    timeout_retry_after = 10.0

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        engine_id: str | None = None,
        timeout: float = 120.0,
        **kwargs,
    ):
        self.api_key = api_key or settings.STABILITY_API_KEY
        if not self.api_key:
            raise ValueError("Stable Diffusion API key is required")
        self.base_url = (base_url or settings.STABILITY_BASE_URL).rstrip("/")
        self.engine_id = engine_id or settings.STABILITY_ENGINE_ID
        self.timeout = timeout
        super().__init__(**kwargs)

    @property
    def service_name(self) -> str:
        return "stable-diffusion"

    @property
    def limits(self) -> ServiceLimits:
        return ServiceLimits(
            max_prompt_length=2000,
            rate_limit_per_minute=10,
            rate_limit_per_hour=500,
            max_retries=3,
            timeout=self.timeout,
            supported_formats=("png", "jpg"),
            max_image_size=15 * 1024 * 1024,
        )

    def _get_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def render_prompt(self, prompt: str) -> str:
        """Fit positive text and negative terms separately.

        Each becomes its own weighted text prompt, and the length limit
        applies to each one.
        """
        positive, negative = split_negative(prompt)
        max_length = self.limits.max_prompt_length
        return join_negative(fit_prompt(positive, max_length), fit_terms(negative, max_length))

    def _prompt_length(self, prompt: str) -> int:
        return max(len(part) for part in split_negative(prompt))

    async def _generate(self, prompt: str) -> str:
        positive, negative = split_negative(prompt)
        text_prompts = [{"text": positive, "weight": 1}]
        if negative:
            text_prompts.append({"text": negative, "weight": -1})
        body = {
            "text_prompts": text_prompts,
            "cfg_scale": 7,
            "height": 1024,
            "width": 1024,
            "samples": 1,
            "steps": 30,
            "style_preset": "photographic",
        }
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                f"{self.base_url}/generation/{self.engine_id}/text-to-image",
                headers=self._get_headers(),
                json=body,
            )

        if response.status_code >= 400:
            raise self._map_error(response)

        artifacts = response.json().get("artifacts") or []
        if not artifacts:
            raise self._error(
                GenerationErrorType.UNKNOWN_ERROR,
                "No image data returned from Stable Diffusion",
                retryable=True,
            )

        artifact = artifacts[0]
        finish_reason = artifact.get("finishReason")
        if finish_reason != "SUCCESS":
            raise self._error(
                GenerationErrorType.CONTENT_POLICY_VIOLATION,
                f"Generation failed: {finish_reason}",
                details={"finish_reason": finish_reason},
            )
        return f"data:image/png;base64,{artifact['base64']}"

    def _map_error(self, response: httpx.Response) -> GenerationError:
        status = response.status_code
        message = read_error_body(response).get("message") or f"HTTP {status} error"

        if status == 400:
            if "content" in message.lower():
                return self._error(GenerationErrorType.CONTENT_POLICY_VIOLATION, message)
            return self._error(GenerationErrorType.INVALID_PROMPT, message)
        if status == 401:
            return self._error(GenerationErrorType.AUTHENTICATION_ERROR, "Invalid API key")
        if status == 402:
            return self._error(GenerationErrorType.QUOTA_EXCEEDED, "Insufficient credits")
        if status == 429:
            return self._error(
                GenerationErrorType.RATE_LIMITED,
                message,
                retryable=True,
                retry_after=RATE_LIMIT_RETRY,
            )
        if status >= 500:
            return self._error(
                GenerationErrorType.SERVICE_UNAVAILABLE,
                "Stable Diffusion service temporarily unavailable",
                retryable=True,
                retry_after=SERVER_ERROR_RETRY,
            )
        return self._error(GenerationErrorType.UNKNOWN_ERROR, message, retryable=True)

    async def _check_health(self) -> bool:
        async with httpx.AsyncClient(timeout=self.health_timeout) as client:
            response = await client.get(
                f"{self.base_url}/engines/list",
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        return response.status_code < 400

    async def list_engines(self) -> list[str]:
        """List engine ids available to this key, or the configured one on failure."""
        try:
            async with httpx.AsyncClient(timeout=self.health_timeout) as client:
                response = await client.get(
                    f"{self.base_url}/engines/list",
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
                response.raise_for_status()
                return [engine["id"] for engine in response.json()]
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as e:
            logger.error(f"Failed to list Stable Diffusion engines: {e}")
            return [self.engine_id]
