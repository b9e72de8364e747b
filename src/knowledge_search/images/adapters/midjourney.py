"""Midjourney adapter: submit a job, then poll until it finishes."""

import asyncio
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
    positive_budget,
    split_negative,
)

logger = logging.getLogger(__name__)

DEFAULT_RATE_LIMIT_RETRY = 120.0
SERVER_ERROR_RETRY = 60.0
POLL_TIMEOUT_RETRY = 60.0

PENDING_STATES = ("pending", "processing")
NO_PARAMETER = " --no "


class MidjourneyAdapter(ImageGenerationService):
    """Asynchronous job API.

    POST /imagine returns a job id; GET /jobs/{id} is polled every
    `poll_interval` seconds for at most `max_poll_attempts` rounds.
    """

    timeout_retry_after = POLL_TIMEOUT_RETRY

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = 300.0,
        poll_interval: float = 5.0,
        max_poll_attempts: int = 60,
        submit_timeout: float = 30.0,
        poll_request_timeout: float = 10.0,
        **kwargs,
    ):
        self.api_key = api_key or settings.MIDJOURNEY_API_KEY
        if not self.api_key:
            raise ValueError("Midjourney API key is required")
        self.base_url = (base_url or settings.MIDJOURNEY_BASE_URL).rstrip("/")
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts
        self.submit_timeout = submit_timeout
        self.poll_request_timeout = poll_request_timeout
        super().__init__(**kwargs)

    @property
    def service_name(self) -> str:
        return "midjourney"

    @property
    def limits(self) -> ServiceLimits:
        return ServiceLimits(
            max_prompt_length=2000,
            rate_limit_per_minute=3,
            rate_limit_per_hour=100,
            max_retries=2,
            timeout=self.timeout,
            supported_formats=("png", "jpg"),
            max_image_size=20 * 1024 * 1024,
        )

    def _get_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def render_prompt(self, prompt: str) -> str:
        """Render a single-line prompt with negative terms as a --no parameter."""
        positive, negative = split_negative(prompt)
        max_length = self.limits.max_prompt_length
        positive = fit_prompt(positive, positive_budget(max_length, negative))
        positive = " ".join(positive.split())
        excluded = fit_terms(negative, max_length - len(positive) - len(NO_PARAMETER))
        return f"{positive}{NO_PARAMETER}{excluded}" if excluded else positive

    async def _generate(self, prompt: str) -> str:
        job_id = await self._submit_job(prompt)
        return await self._poll_for_completion(job_id)

    async def _submit_job(self, prompt: str) -> str:
        body = {
            "prompt": prompt,
            "aspect_ratio": "1:1",
            "quality": "high",
            "style": "raw",
        }
        async with httpx.AsyncClient(timeout=self.submit_timeout) as client:
            response = await client.post(
                f"{self.base_url}/imagine", headers=self._get_headers(), json=body
            )

        if response.status_code >= 400:
            raise self._map_error(response)

        job_id = response.json().get("id")
        if not job_id:
            raise self._error(
                GenerationErrorType.UNKNOWN_ERROR,
                "No job ID returned from Midjourney",
                retryable=True,
            )
        logger.info(f"Midjourney: submitted job {job_id}")
        return job_id

    async def _poll_for_completion(self, job_id: str) -> str:
        attempts = 0
        async with httpx.AsyncClient(timeout=self.poll_request_timeout) as client:
            while attempts < self.max_poll_attempts:
                attempts += 1
                try:
                    response = await client.get(
                        f"{self.base_url}/jobs/{job_id}", headers=self._get_headers()
                    )
                except httpx.TransportError as e:
                    # A dropped poll does not fail the job
                    logger.warning(f"Midjourney: poll {attempts} for {job_id} failed: {e}")
                    if attempts < self.max_poll_attempts:
                        await asyncio.sleep(self.poll_interval)
                    continue

                if response.status_code >= 400:
                    raise self._map_error(response)

                job = response.json()
                status = job.get("status")
                logger.debug(
                    f"Midjourney: job {job_id} status={status} progress={job.get('progress', 0)}%"
                )

                if status == "completed":
                    image_url = job.get("imageUrl")
                    if not image_url:
                        raise self._error(
                            GenerationErrorType.UNKNOWN_ERROR,
                            "Job completed but no image URL provided",
                            retryable=True,
                        )
                    return image_url
                if status == "failed":
                    raise self._error(
                        GenerationErrorType.UNKNOWN_ERROR,
                        job.get("error") or "Generation failed",
                        retryable=True,
                        details={"job_id": job_id},
                    )
                if status not in PENDING_STATES:
                    raise self._error(
                        GenerationErrorType.UNKNOWN_ERROR,
                        f"Unknown job status: {status}",
                        retryable=True,
                        details={"job_id": job_id},
                    )

                if attempts < self.max_poll_attempts:
                    await asyncio.sleep(self.poll_interval)

        raise self._error(
            GenerationErrorType.TIMEOUT,
            "Maximum polling attempts exceeded",
            retryable=True,
            retry_after=POLL_TIMEOUT_RETRY,
            details={"job_id": job_id, "attempts": attempts},
        )

    def _map_error(self, response: httpx.Response) -> GenerationError:
        status = response.status_code
        body = read_error_body(response)
        nested = body.get("error")
        message = (
            (nested.get("message") if isinstance(nested, dict) else None)
            or body.get("message")
            or f"HTTP {status} error"
        )

        if status == 400:
            return self._error(GenerationErrorType.INVALID_PROMPT, message)
        if status == 401:
            return self._error(GenerationErrorType.AUTHENTICATION_ERROR, "Invalid API key")
        if status == 429:
            retry_after = body.get("retryAfter")
            return self._error(
                GenerationErrorType.RATE_LIMITED,
                message,
                retryable=True,
                retry_after=float(retry_after) if retry_after else DEFAULT_RATE_LIMIT_RETRY,
            )
        if status >= 500:
            return self._error(
                GenerationErrorType.SERVICE_UNAVAILABLE,
                "Midjourney service temporarily unavailable",
                retryable=True,
                retry_after=SERVER_ERROR_RETRY,
            )
        return self._error(GenerationErrorType.UNKNOWN_ERROR, message, retryable=True)

    async def _check_health(self) -> bool:
        async with httpx.AsyncClient(timeout=self.health_timeout) as client:
            response = await client.get(
                f"{self.base_url}/health",
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        return response.status_code < 400
