"""Common interface for image generation providers."""

import logging
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

import httpx

from knowledge_search.images.exceptions import GenerationError, GenerationErrorType
from knowledge_search.images.prompts.fitting import (
    NEGATIVE_MARKER,
    fit_prompt,
    fit_terms,
    join_negative,
    positive_budget,
    split_negative,
)

logger = logging.getLogger(__name__)

MINUTE = 60.0
HOUR = 3600.0


@dataclass(frozen=True)
class ServiceLimits:
    """Static limits a provider documents for its API."""

    max_prompt_length: int
    rate_limit_per_minute: int
    rate_limit_per_hour: int
    max_retries: int
    timeout: float  # seconds
    supported_formats: tuple[str, ...] = ("png",)
    max_image_size: int = 10 * 1024 * 1024  # bytes


@dataclass
class GenerationResult:
    """Outcome of a single generation call."""

    success: bool
    image_url: str | None = None
    error: str | None = None
    retry_after: float | None = None


@dataclass
class ServiceStatus:
    """Point-in-time health snapshot of a provider."""

    available: bool
    last_checked: str
    response_time: float | None = None  # seconds
    error_rate: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class _RequestWindow:
    """Sliding window of request timestamps."""

    span: float
    limit: int
    stamps: deque = field(default_factory=deque)

    def prune(self, now: float) -> None:
        while self.stamps and now - self.stamps[0] >= self.span:
            self.stamps.popleft()

    def wait_time(self, now: float) -> float:
        """Seconds until a slot frees up, or 0 when one is free now."""
        self.prune(now)
        if len(self.stamps) < self.limit:
            return 0.0
        return max(self.span - (now - self.stamps[0]), 0.0)


class ImageGenerationService(ABC):
    """Base class for provider adapters.

    Subclasses implement the vendor call in `_generate` and the health check in
    `_check_health`. This class enforces prompt length and request windows,
    converts transport failures into GenerationError, and keeps the success
    and failure counts behind `error_rate`.
    """

    # Retry hint attached to transport timeouts
    timeout_retry_after: float | None = 5.0
    health_timeout: float = 5.0

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        limits = self.limits
        self._minute_window = _RequestWindow(MINUTE, limits.rate_limit_per_minute)
        self._hour_window = _RequestWindow(HOUR, limits.rate_limit_per_hour)
        self._success_count = 0
        self._failure_count = 0

    @property
    @abstractmethod
    def service_name(self) -> str:
        """Registry name of the provider."""

    @property
    @abstractmethod
    def limits(self) -> ServiceLimits:
        """Documented limits of the provider."""

    @abstractmethod
    async def _generate(self, prompt: str) -> str:
        """Call the vendor API and return the image URL."""

    @abstractmethod
    async def _check_health(self) -> bool:
        """Make a cheap authenticated request and report whether it succeeded."""

    @property
    def error_rate(self) -> float:
        total = self._success_count + self._failure_count
        return self._failure_count / total if total else 0.0

    def _error(
        self,
        error_type: GenerationErrorType,
        message: str,
        retryable: bool = False,
        retry_after: float | None = None,
        details: dict[str, Any] | None = None,
    ) -> GenerationError:
        return GenerationError(
            error_type,
            message,
            retryable=retryable,
            retry_after=retry_after,
            details=details,
            service=self.service_name,
        )

    def render_prompt(self, prompt: str) -> str:
        """Fit a built prompt into this provider's prompt limit.

        Negative terms stay inline after the positive text, as many as fit.
        """
        positive, negative = split_negative(prompt)
        max_length = self.limits.max_prompt_length
        positive = fit_prompt(positive, positive_budget(max_length, negative))
        room = max_length - len(positive) - len(NEGATIVE_MARKER)
        return join_negative(positive, fit_terms(negative, room))

    def _prompt_length(self, prompt: str) -> int:
        return len(prompt)

    def _check_prompt(self, prompt: str) -> None:
        max_length = self.limits.max_prompt_length
        if self._prompt_length(prompt) > max_length:
            raise self._error(
                GenerationErrorType.INVALID_PROMPT,
                f"Prompt too long. Maximum length is {max_length} characters",
            )

    def _check_rate_limit(self) -> None:
        now = self._clock()
        wait = max(
            self._minute_window.wait_time(now),
            self._hour_window.wait_time(now),
        )
        if wait > 0:
            raise self._error(
                GenerationErrorType.RATE_LIMITED,
                f"Rate limit exceeded. Try again in {int(wait) + 1} seconds",
                retryable=True,
                retry_after=wait,
            )
        self._minute_window.stamps.append(now)
        self._hour_window.stamps.append(now)

    async def generate_image(self, prompt: str) -> GenerationResult:
        """Generate an image for a prompt.

        Returns:
            Successful GenerationResult carrying the image URL

        Raises:
            GenerationError: On any failure, classified by error type
        """
        self._check_prompt(prompt)
        self._check_rate_limit()
        logger.info(f"{self.service_name}: generating image, prompt length {len(prompt)}")

        try:
            image_url = await self._generate(prompt)
        except GenerationError as e:
            self._failure_count += 1
            logger.warning(f"{self.service_name}: generation failed: {e}")
            raise
        except httpx.TimeoutException as e:
            self._failure_count += 1
            raise self._error(
                GenerationErrorType.TIMEOUT,
                f"Request timed out after {self.limits.timeout}s",
                retryable=True,
                retry_after=self.timeout_retry_after,
            ) from e
        except httpx.TransportError as e:
            self._failure_count += 1
            raise self._error(
                GenerationErrorType.SERVICE_UNAVAILABLE,
                f"Connection failed: {type(e).__name__}",
                retryable=True,
            ) from e
        except Exception as e:
            self._failure_count += 1
            logger.error(f"{self.service_name}: unexpected error: {e}", exc_info=True)
            raise self._error(
                GenerationErrorType.UNKNOWN_ERROR, str(e) or type(e).__name__, retryable=True
            ) from e

        self._success_count += 1
        logger.info(f"{self.service_name}: image generated")
        return GenerationResult(success=True, image_url=image_url)

    async def get_service_status(self) -> ServiceStatus:
        """Check the provider and report availability with timing."""
        started = time.perf_counter()
        checked_at = datetime.now(timezone.utc).isoformat()
        try:
            available = await self._check_health()
        except httpx.HTTPError as e:
            logger.error(f"{self.service_name} health check failed: {type(e).__name__}: {e}")
            return ServiceStatus(
                available=False, last_checked=checked_at, error_rate=self.error_rate
            )
        return ServiceStatus(
            available=available,
            last_checked=checked_at,
            response_time=time.perf_counter() - started,
            error_rate=self.error_rate,
        )

    async def is_available(self) -> bool:
        status = await self.get_service_status()
        return status.available


def read_error_body(response: httpx.Response) -> dict[str, Any]:
    """Decode a JSON error body, tolerating empty or non-JSON responses."""
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
