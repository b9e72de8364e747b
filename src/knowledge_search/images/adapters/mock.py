"""Offline adapter for development and tests."""

import asyncio
import base64
import logging
import random

from knowledge_search.images.base import ImageGenerationService, ServiceLimits
from knowledge_search.images.exceptions import GenerationErrorType

logger = logging.getLogger(__name__)

# 1x1 transparent PNG
PLACEHOLDER_PNG = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)

SIMULATED_ERRORS = (
    GenerationErrorType.SERVICE_UNAVAILABLE,
    GenerationErrorType.RATE_LIMITED,
    GenerationErrorType.TIMEOUT,
    GenerationErrorType.UNKNOWN_ERROR,
)


class MockAdapter(ImageGenerationService):
    """Returns a placeholder PNG as a data URL, with optional failure injection."""

    def __init__(
        self,
        name: str = "mock",
        should_fail: bool = False,
        failure_rate: float = 0.0,
        response_delay: float = 0.0,
        healthy: bool = True,
        seed: int | None = None,
        **kwargs,
    ):
        self._name = name
        self.should_fail = should_fail
        self.failure_rate = max(0.0, min(1.0, failure_rate))
        self.response_delay = max(0.0, response_delay)
        self.healthy = healthy
        self.request_count = 0
        self._random = random.Random(seed)
        super().__init__(**kwargs)

    @property
    def service_name(self) -> str:
        return self._name

    @property
    def limits(self) -> ServiceLimits:
        return ServiceLimits(
            max_prompt_length=5000,
            rate_limit_per_minute=60,
            rate_limit_per_hour=1000,
            max_retries=3,
            timeout=30.0,
            supported_formats=("png",),
            max_image_size=50 * 1024 * 1024,
        )

    async def _generate(self, prompt: str) -> str:
        self.request_count += 1
        if self.response_delay:
            await asyncio.sleep(self.response_delay)

        if self.should_fail or (
            self.failure_rate > 0 and self._random.random() < self.failure_rate
        ):
            raise self._error(
                self._random.choice(SIMULATED_ERRORS),
                f"Mock {self._name} simulated failure",
                retryable=True,
                retry_after=5.0,
            )

        encoded = base64.b64encode(PLACEHOLDER_PNG).decode("ascii")
        return f"data:image/png;base64,{encoded}"

    async def _check_health(self) -> bool:
        return self.healthy
