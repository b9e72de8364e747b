"""Coordinates providers, circuit breakers, monitoring and retries."""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from knowledge_search.images.base import GenerationResult, ImageGenerationService
from knowledge_search.images.discovery import ServiceRegistry
from knowledge_search.images.monitoring import (
    AlertConfig,
    AlertHandler,
    ServiceMonitor,
    log_alert_handler,
)
from knowledge_search.images.retry import (
    CircuitBreaker,
    CircuitBreakerConfig,
    RetryConfig,
    RetryManager,
)

logger = logging.getLogger(__name__)


@dataclass
class ManagedGeneration:
    result: GenerationResult
    service_name: str
    attempts: int
    total_time: float  # seconds


class ImageGenerationManager:
    """Generates images with failover across providers.

    Each attempt walks the enabled providers in priority order. Every provider
    call goes through that provider's circuit breaker and is recorded by the
    monitor. The whole walk is retried under the retry policy.
    """

    def __init__(
        self,
        retry_config: RetryConfig | None = None,
        breaker_config: CircuitBreakerConfig | None = None,
        alert_config: AlertConfig | None = None,
        health_check_interval: float = 60.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.registry = ServiceRegistry()
        self.retry = RetryManager(retry_config or RetryConfig.from_settings(), sleep=sleep)
        self.breaker_config = breaker_config or CircuitBreakerConfig.from_settings()
        self.monitor = ServiceMonitor(alert_config)
        self.monitor.add_alert_handler(log_alert_handler)
        self.breakers: dict[str, CircuitBreaker] = {}
        self.health_check_interval = health_check_interval
        self._health_task: asyncio.Task | None = None

    def register_service(self, service: ImageGenerationService, priority: int = 1) -> None:
        name = service.service_name
        self.registry.register(service, priority)
        self.breakers[name] = CircuitBreaker(name, self.breaker_config)
        self.monitor.register(service)

    def unregister_service(self, name: str) -> None:
        self.registry.unregister(name)
        self.breakers.pop(name, None)
        self.monitor.unregister(name)

    @property
    def has_services(self) -> bool:
        return bool(self.registry.names())

    async def _guarded_call(
        self,
        service: ImageGenerationService,
        call: Callable[[], Awaitable[GenerationResult]],
    ) -> GenerationResult:
        name = service.service_name
        breaker = self.breakers[name]

        async def monitored() -> GenerationResult:
            started = time.perf_counter()
            try:
                result = await call()
            except Exception:
                self.monitor.record_request(name, False, time.perf_counter() - started)
                raise
            self.monitor.record_request(name, True, time.perf_counter() - started)
            return result

        return await breaker.execute(monitored)

    async def generate_image(self, prompt: str) -> ManagedGeneration:
        """Generate an image, retrying and failing over as configured.

        Raises:
            GenerationError: The final error once retries are exhausted or a
                non-retryable error occurs
        """
        started = time.perf_counter()
        outcome = await self.retry.execute(
            lambda: self.registry.generate_with_failover(prompt, self._guarded_call),
            operation_name="image-generation",
        )
        total_time = time.perf_counter() - started

        if not outcome.success:
            error = outcome.error
            logger.error(
                f"Image generation failed after {len(outcome.attempts)} attempt(s): {error}"
            )
            error.details.setdefault("attempts", len(outcome.attempts))
            error.details.setdefault("total_time", total_time)
            raise error

        result, service_name = outcome.result
        return ManagedGeneration(
            result=result,
            service_name=service_name,
            attempts=len(outcome.attempts),
            total_time=total_time,
        )

    async def health(self) -> dict[str, Any]:
        return {
            "summary": self.monitor.summary(),
            "services": [m.to_dict() for m in self.monitor.all_metrics()],
            "alerts": [a.to_dict() for a in self.monitor.active_alerts()],
        }

    async def check_services(self) -> dict[str, bool]:
        """Check every provider without recording health, stats or alerts."""
        results = {}
        for name in self.registry.names():
            try:
                results[name] = await self.registry.get(name).is_available()
            except Exception as e:
                logger.warning(f"Availability check for {name} failed: {e}")
                results[name] = False
        return results

    async def perform_health_check(self) -> list[dict[str, Any]]:
        """Check every provider and record the results.

        A passing check brings an auto-disabled provider back into rotation.
        """
        results = await self.monitor.check_all()
        for result in results:
            self.registry.update_health(result.service_name, result.is_healthy)
        return [r.to_dict() for r in results]

    def metrics(self, name: str | None = None) -> Any:
        if name:
            metrics = self.monitor.metrics(name)
            return metrics.to_dict() if metrics else None
        return [m.to_dict() for m in self.monitor.all_metrics()]

    def circuit_breaker_status(self) -> dict[str, dict[str, Any]]:
        return {name: breaker.status() for name, breaker in self.breakers.items()}

    def reset_circuit_breaker(self, name: str) -> bool:
        breaker = self.breakers.get(name)
        if breaker is None:
            return False
        breaker.reset()
        return True

    def set_service_enabled(self, name: str, enabled: bool) -> bool:
        return self.registry.set_enabled(name, enabled)

    def registered_services(self) -> list[dict[str, Any]]:
        return self.registry.describe()

    def add_alert_handler(self, handler: AlertHandler) -> None:
        self.monitor.add_alert_handler(handler)

    async def _health_loop(self) -> None:
        while True:
            await asyncio.sleep(self.health_check_interval)
            try:
                await self.perform_health_check()
                self.monitor.cleanup()
            except Exception as e:
                logger.error(f"Periodic image health check failed: {e}", exc_info=True)

    def start(self) -> None:
        """Start periodic health checks on the running event loop."""
        if self._health_task is None or self._health_task.done():
            self._health_task = asyncio.create_task(self._health_loop())
            logger.info("Image service monitoring started")

    async def shutdown(self) -> None:
        if self._health_task is not None:
            self._health_task.cancel()
            try:
                await self._health_task
            except asyncio.CancelledError:
                pass
            self._health_task = None
            logger.info("Image service monitoring stopped")


def build_manager() -> ImageGenerationManager:
    """Create a manager with every configured provider registered."""
    from knowledge_search.images.factory import build_configured_services

    manager = ImageGenerationManager()
    for service, priority in build_configured_services():
        manager.register_service(service, priority)
    if not manager.has_services:
        logger.warning("Image generation manager has no providers registered")
    return manager


_manager: ImageGenerationManager | None = None


def get_manager() -> ImageGenerationManager:
    """Get or create the process-wide manager."""
    global _manager
    if _manager is None:
        _manager = build_manager()
    return _manager


def reset_manager() -> None:
    global _manager
    _manager = None
