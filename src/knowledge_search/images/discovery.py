"""Provider registry with priorities, health tracking and failover."""

import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from knowledge_search.images.base import GenerationResult, ImageGenerationService
from knowledge_search.images.exceptions import (
    CLIENT_ERROR_TYPES,
    GenerationError,
    GenerationErrorType,
)

logger = logging.getLogger(__name__)

# Consecutive failures before a provider is taken out of rotation
AUTO_DISABLE_THRESHOLD = 5


@dataclass
class ServiceStats:
    service_name: str
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    average_response_time: float = 0.0  # seconds
    last_successful_request: datetime | None = None
    last_failed_request: datetime | None = None
    is_healthy: bool = True
    consecutive_failures: int = 0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for key in ("last_successful_request", "last_failed_request"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


@dataclass
class _ServiceEntry:
    service: ImageGenerationService
    priority: int
    stats: ServiceStats
    enabled: bool = True
    # Set when taken out of rotation by failures rather than by an operator
    auto_disabled: bool = False


# Wraps a single provider call, e.g. with a circuit breaker
CallWrapper = Callable[
    [ImageGenerationService, Callable[[], Awaitable[GenerationResult]]],
    Awaitable[GenerationResult],
]


async def _direct_call(
    service: ImageGenerationService, call: Callable[[], Awaitable[GenerationResult]]
) -> GenerationResult:
    return await call()


class ServiceRegistry:
    """Keeps providers in priority order (lower number first)."""

    def __init__(self) -> None:
        self._services: dict[str, _ServiceEntry] = {}

    def register(self, service: ImageGenerationService, priority: int = 1) -> None:
        name = service.service_name
        self._services[name] = _ServiceEntry(
            service=service, priority=priority, stats=ServiceStats(service_name=name)
        )
        logger.info(f"Registered image service: {name} with priority {priority}")

    def unregister(self, name: str) -> bool:
        removed = self._services.pop(name, None) is not None
        if removed:
            logger.info(f"Unregistered image service: {name}")
        return removed

    def get(self, name: str) -> ImageGenerationService | None:
        entry = self._services.get(name)
        return entry.service if entry else None

    def names(self) -> list[str]:
        return list(self._services)

    def ordered_services(self) -> list[ImageGenerationService]:
        """Enabled services by priority, without checking their health."""
        entries = sorted(
            (e for e in self._services.values() if e.enabled), key=lambda e: e.priority
        )
        return [e.service for e in entries]

    async def available_services(self) -> list[ImageGenerationService]:
        """Enabled services that pass a live availability check, by priority."""
        healthy = []
        for entry in sorted(self._services.values(), key=lambda e: e.priority):
            if not entry.enabled:
                continue
            name = entry.service.service_name
            try:
                available = await entry.service.is_available()
            except Exception as e:
                logger.error(f"Availability check failed for {name}: {e}")
                available = False
            self.update_health(name, available)
            if available:
                healthy.append(entry.service)
        return healthy

    async def primary_service(self) -> ImageGenerationService | None:
        services = await self.available_services()
        return services[0] if services else None

    def update_health(self, name: str, healthy: bool) -> None:
        entry = self._services.get(name)
        if entry is None:
            return
        stats = entry.stats
        stats.is_healthy = healthy
        now = datetime.now(timezone.utc)
        if healthy:
            stats.consecutive_failures = 0
            stats.last_successful_request = now
            if entry.auto_disabled:
                entry.enabled = True
                entry.auto_disabled = False
                logger.info(f"Image service {name} re-enabled after passing a health check")
            return
        stats.consecutive_failures += 1
        stats.last_failed_request = now
        if stats.consecutive_failures >= AUTO_DISABLE_THRESHOLD and entry.enabled:
            entry.enabled = False
            entry.auto_disabled = True
            logger.warning(f"Image service {name} disabled after consecutive failures")

    def record_success(self, name: str, response_time: float) -> None:
        entry = self._services.get(name)
        if entry is None:
            return
        stats = entry.stats
        stats.total_requests += 1
        stats.successful_requests += 1
        stats.average_response_time += (
            response_time - stats.average_response_time
        ) / stats.total_requests
        self.update_health(name, True)

    def record_failure(self, name: str) -> None:
        entry = self._services.get(name)
        if entry is None:
            return
        entry.stats.total_requests += 1
        entry.stats.failed_requests += 1
        self.update_health(name, False)

    def stats(self, name: str) -> ServiceStats | None:
        entry = self._services.get(name)
        return entry.stats if entry else None

    def describe(self) -> list[dict[str, Any]]:
        return [
            {
                "name": name,
                "priority": entry.priority,
                "enabled": entry.enabled,
                "auto_disabled": entry.auto_disabled,
                "stats": entry.stats.to_dict(),
            }
            for name, entry in sorted(self._services.items(), key=lambda i: i[1].priority)
        ]

    def set_enabled(self, name: str, enabled: bool) -> bool:
        """Enable or disable a service by hand.

        A manual disable is not undone by later health checks.
        """
        entry = self._services.get(name)
        if entry is None:
            return False
        entry.enabled = enabled
        entry.auto_disabled = False
        if enabled:
            entry.stats.consecutive_failures = 0
        logger.info(f"Image service {name} {'enabled' if enabled else 'disabled'}")
        return True

    async def generate_with_failover(
        self, prompt: str, call_wrapper: CallWrapper = _direct_call
    ) -> tuple[GenerationResult, str]:
        """Try services in priority order until one succeeds.

        Each service receives the prompt rendered for its own limits.
        Stops at the first non-retryable error, since another provider would
        reject the same prompt for the same reason.

        Raises:
            GenerationError: The last failure, or SERVICE_UNAVAILABLE when no
                service is enabled
        """
        services = self.ordered_services()
        if not services:
            raise GenerationError(
                GenerationErrorType.SERVICE_UNAVAILABLE,
                "No image generation services are currently available",
            )

        last_error: GenerationError | None = None
        for service in services:
            name = service.service_name
            started = time.perf_counter()
            try:
                result = await call_wrapper(
                    service, lambda s=service: s.generate_image(s.render_prompt(prompt))
                )
            except GenerationError as e:
                # Open-circuit rejections and prompt problems are not provider failures
                if not e.details.get("circuit_open") and e.error_type not in CLIENT_ERROR_TYPES:
                    self.record_failure(name)
                logger.warning(f"Image service {name} failed: {e}")
                last_error = e
                if not e.retryable:
                    break
                continue

            self.record_success(name, time.perf_counter() - started)
            return result, name

        raise last_error or GenerationError(
            GenerationErrorType.SERVICE_UNAVAILABLE, "All image generation services failed"
        )
