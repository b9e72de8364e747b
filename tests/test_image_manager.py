"""Tests for provider discovery, monitoring and the generation manager."""

from unittest.mock import AsyncMock

import pytest

from knowledge_search.config import settings
from knowledge_search.images.adapters.mock import MockAdapter
from knowledge_search.images.discovery import AUTO_DISABLE_THRESHOLD, ServiceRegistry
from knowledge_search.images.exceptions import GenerationError, GenerationErrorType
from knowledge_search.images.factory import (
    build_configured_services,
    get_available_providers,
    get_provider,
)
from knowledge_search.images.manager import ImageGenerationManager
from knowledge_search.images.monitoring import AlertConfig, AlertType, ServiceMonitor, percentile
from knowledge_search.images.retry import CircuitBreakerConfig, RetryConfig


class PromptRejectingAdapter(MockAdapter):
    async def _generate(self, prompt: str) -> str:
        self.request_count += 1
        raise self._error(GenerationErrorType.CONTENT_POLICY_VIOLATION, "rejected")


def make_manager(*services, max_attempts=1, failure_threshold=5) -> ImageGenerationManager:
    manager = ImageGenerationManager(
        retry_config=RetryConfig(max_attempts=max_attempts, base_delay=0.0, jitter_factor=0.0),
        breaker_config=CircuitBreakerConfig(failure_threshold=failure_threshold),
        sleep=AsyncMock(),
    )
    for priority, service in enumerate(services, start=1):
        manager.register_service(service, priority)
    return manager


class TestServiceRegistry:
    """Tests for ServiceRegistry ordering and failover."""

    def test_ordered_by_priority(self):
        registry = ServiceRegistry()
        registry.register(MockAdapter(name="b"), priority=2)
        registry.register(MockAdapter(name="a"), priority=1)
        registry.register(MockAdapter(name="c"), priority=3)
        assert [s.service_name for s in registry.ordered_services()] == ["a", "b", "c"]

    def test_disabled_services_are_skipped(self):
        registry = ServiceRegistry()
        registry.register(MockAdapter(name="a"), priority=1)
        registry.register(MockAdapter(name="b"), priority=2)
        assert registry.set_enabled("a", False) is True
        assert [s.service_name for s in registry.ordered_services()] == ["b"]
        assert registry.set_enabled("missing", False) is False

    @pytest.mark.asyncio
    async def test_available_services_checks_health(self):
        registry = ServiceRegistry()
        registry.register(MockAdapter(name="down", healthy=False), priority=1)
        registry.register(MockAdapter(name="up"), priority=2)

        services = await registry.available_services()

        assert [s.service_name for s in services] == ["up"]
        assert registry.stats("down").is_healthy is False
        assert (await registry.primary_service()).service_name == "up"

    @pytest.mark.asyncio
    async def test_failover_to_next_service(self):
        registry = ServiceRegistry()
        primary = MockAdapter(name="primary", should_fail=True, seed=1)
        backup = MockAdapter(name="backup")
        registry.register(primary, priority=1)
        registry.register(backup, priority=2)

        result, name = await registry.generate_with_failover("prompt")

        assert name == "backup"
        assert result.success is True
        assert registry.stats("primary").failed_requests == 1
        assert registry.stats("backup").successful_requests == 1

    @pytest.mark.asyncio
    async def test_non_retryable_error_stops_failover(self):
        registry = ServiceRegistry()
        registry.register(PromptRejectingAdapter(name="strict"), priority=1)
        backup = MockAdapter(name="backup")
        registry.register(backup, priority=2)

        with pytest.raises(GenerationError) as exc_info:
            await registry.generate_with_failover("prompt")

        assert exc_info.value.error_type == GenerationErrorType.CONTENT_POLICY_VIOLATION
        assert backup.request_count == 0
        # Prompt problems are not held against the provider
        assert registry.stats("strict").failed_requests == 0

    @pytest.mark.asyncio
    async def test_no_services(self):
        with pytest.raises(GenerationError) as exc_info:
            await ServiceRegistry().generate_with_failover("prompt")
        assert exc_info.value.error_type == GenerationErrorType.SERVICE_UNAVAILABLE

    def test_auto_disable_after_consecutive_failures(self):
        registry = ServiceRegistry()
        registry.register(MockAdapter(name="flaky"), priority=1)
        for _ in range(AUTO_DISABLE_THRESHOLD):
            registry.record_failure("flaky")
        assert registry.ordered_services() == []
        assert registry.describe()[0]["enabled"] is False
        assert registry.describe()[0]["auto_disabled"] is True

    def test_passing_health_check_re_enables_auto_disabled(self):
        registry = ServiceRegistry()
        registry.register(MockAdapter(name="flaky"), priority=1)
        for _ in range(AUTO_DISABLE_THRESHOLD):
            registry.record_failure("flaky")

        registry.update_health("flaky", True)

        assert [s.service_name for s in registry.ordered_services()] == ["flaky"]
        assert registry.describe()[0]["auto_disabled"] is False

    def test_manual_disable_survives_health_check(self):
        registry = ServiceRegistry()
        registry.register(MockAdapter(name="a"), priority=1)
        registry.set_enabled("a", False)

        registry.update_health("a", True)

        assert registry.ordered_services() == []
        assert registry.set_enabled("a", True) is True
        assert len(registry.ordered_services()) == 1


class TestServiceMonitor:
    """Tests for ServiceMonitor metrics and alerts."""

    def test_percentile(self):
        assert percentile([], 0.95) == 0.0
        assert percentile([3.0, 1.0, 2.0], 0.5) == 2.0
        assert percentile([float(i) for i in range(1, 101)], 0.95) == 96.0

    def test_record_request_updates_metrics(self):
        monitor = ServiceMonitor()
        monitor.register(MockAdapter(name="svc"))
        monitor.record_request("svc", True, 1.0)
        monitor.record_request("svc", False, 3.0)

        metrics = monitor.metrics("svc")
        assert metrics.total_requests == 2
        assert metrics.failed_requests == 1
        assert metrics.error_rate == 0.5
        assert metrics.average_response_time == 2.0

    @pytest.mark.asyncio
    async def test_unhealthy_service_raises_alerts_once(self):
        monitor = ServiceMonitor(AlertConfig(consecutive_failures_threshold=2))
        received = []
        monitor.add_alert_handler(received.append)
        monitor.register(MockAdapter(name="svc", healthy=False))

        await monitor.check_health("svc")
        await monitor.check_health("svc")

        types = {alert.type for alert in monitor.active_alerts()}
        assert AlertType.SERVICE_DOWN in types
        assert AlertType.LOW_UPTIME in types
        assert AlertType.CONSECUTIVE_FAILURES in types
        # Repeated conditions refresh the existing alert instead of adding one
        assert len([a for a in received if a.type == AlertType.SERVICE_DOWN]) == 1

    @pytest.mark.asyncio
    async def test_healthy_check_updates_uptime(self):
        monitor = ServiceMonitor()
        monitor.register(MockAdapter(name="svc"))
        result = await monitor.check_health("svc")
        assert result.is_healthy is True
        assert monitor.metrics("svc").uptime == 1.0
        assert monitor.active_alerts() == []

    @pytest.mark.asyncio
    async def test_resolve_alert(self):
        monitor = ServiceMonitor()
        monitor.register(MockAdapter(name="svc", healthy=False))
        await monitor.check_health("svc")
        alert = monitor.active_alerts()[0]

        assert monitor.resolve_alert(alert.id) is True
        assert monitor.resolve_alert(alert.id) is False
        assert alert.id not in {a.id for a in monitor.active_alerts()}

    def test_summary(self):
        monitor = ServiceMonitor()
        monitor.register(MockAdapter(name="a"))
        monitor.register(MockAdapter(name="b"))
        monitor.record_request("a", True, 2.0)
        monitor.record_request("b", False, 4.0)

        summary = monitor.summary()
        assert summary["total_services"] == 2
        assert summary["total_requests"] == 2
        assert summary["overall_error_rate"] == 0.5
        assert summary["average_response_time"] == 3.0


class TestImageGenerationManager:
    """Tests for ImageGenerationManager."""

    @pytest.mark.asyncio
    async def test_generate_image(self):
        manager = make_manager(MockAdapter(name="mock"))
        generation = await manager.generate_image("prompt")

        assert generation.service_name == "mock"
        assert generation.attempts == 1
        assert generation.result.image_url.startswith("data:image/png")
        assert manager.metrics("mock")["successful_requests"] == 1

    @pytest.mark.asyncio
    async def test_failover_within_attempt(self):
        manager = make_manager(
            MockAdapter(name="primary", should_fail=True, seed=3), MockAdapter(name="backup")
        )
        generation = await manager.generate_image("prompt")

        assert generation.service_name == "backup"
        assert manager.metrics("primary")["failed_requests"] == 1

    @pytest.mark.asyncio
    async def test_retries_exhausted_raise_last_error(self):
        failing = MockAdapter(name="only", should_fail=True, seed=5)
        manager = make_manager(failing, max_attempts=3)

        with pytest.raises(GenerationError) as exc_info:
            await manager.generate_image("prompt")

        assert failing.request_count == 3
        assert exc_info.value.details["attempts"] == 3
        assert "total_time" in exc_info.value.details

    @pytest.mark.asyncio
    async def test_open_circuit_skips_provider(self):
        primary = MockAdapter(name="primary", should_fail=True, seed=7)
        backup = MockAdapter(name="backup")
        manager = make_manager(primary, backup, failure_threshold=1)

        await manager.generate_image("prompt")
        await manager.generate_image("prompt")

        assert manager.circuit_breaker_status()["primary"]["state"] == "OPEN"
        assert primary.request_count == 1
        assert backup.request_count == 2

    @pytest.mark.asyncio
    async def test_reset_circuit_breaker(self):
        manager = make_manager(MockAdapter(name="svc"), failure_threshold=1)
        manager.breakers["svc"].record_failure()

        assert manager.reset_circuit_breaker("svc") is True
        assert manager.circuit_breaker_status()["svc"]["state"] == "CLOSED"
        assert manager.reset_circuit_breaker("missing") is False

    @pytest.mark.asyncio
    async def test_health_check_updates_registry(self):
        manager = make_manager(MockAdapter(name="up"), MockAdapter(name="down", healthy=False))

        results = await manager.perform_health_check()
        health = await manager.health()

        assert {r["service_name"]: r["is_healthy"] for r in results} == {
            "up": True,
            "down": False,
        }
        assert health["summary"]["healthy_services"] == 1
        described = {s["name"]: s for s in manager.registered_services()}
        assert described["down"]["stats"]["is_healthy"] is False

    @pytest.mark.asyncio
    async def test_auto_disabled_service_recovers_after_health_check(self):
        only = MockAdapter(name="only", should_fail=True, seed=11)
        manager = make_manager(only, max_attempts=3, failure_threshold=100)
        for _ in range(2):
            with pytest.raises(GenerationError):
                await manager.generate_image("prompt")

        with pytest.raises(GenerationError) as exc_info:
            await manager.generate_image("prompt")
        assert exc_info.value.error_type == GenerationErrorType.SERVICE_UNAVAILABLE
        assert "currently available" in str(exc_info.value)

        only.should_fail = False
        await manager.perform_health_check()
        generation = await manager.generate_image("prompt")

        assert generation.service_name == "only"

    @pytest.mark.asyncio
    async def test_check_services_records_nothing(self):
        manager = make_manager(MockAdapter(name="up"), MockAdapter(name="down", healthy=False))

        assert await manager.check_services() == {"up": True, "down": False}
        described = {s["name"]: s for s in manager.registered_services()}
        assert described["down"]["stats"]["consecutive_failures"] == 0
        assert len(manager.monitor.metrics("down").health_history) == 0

    @pytest.mark.asyncio
    async def test_start_and_shutdown(self):
        manager = make_manager(MockAdapter(name="svc"))
        manager.start()
        assert manager._health_task is not None
        await manager.shutdown()
        assert manager._health_task is None

    def test_unregister(self):
        manager = make_manager(MockAdapter(name="svc"))
        manager.unregister_service("svc")
        assert manager.has_services is False
        assert manager.circuit_breaker_status() == {}


class TestProviderFactory:
    """Tests for configured provider discovery."""

    def clear_keys(self, monkeypatch):
        for key in ("DALLE_API_KEY", "OPENAI_API_KEY", "MIDJOURNEY_API_KEY", "STABILITY_API_KEY"):
            monkeypatch.setattr(settings, key, "")
        monkeypatch.setattr(settings, "IMAGE_MOCK_PROVIDER", False)

    def test_only_configured_providers(self, monkeypatch):
        self.clear_keys(monkeypatch)
        monkeypatch.setattr(settings, "STABILITY_API_KEY", "sd-key")
        monkeypatch.setattr(settings, "OPENAI_API_KEY", "sk-shared")
        monkeypatch.setattr(settings, "IMAGE_PROVIDER_PRIORITY", "stable-diffusion,dalle")

        services = build_configured_services()

        by_name = {service.service_name: priority for service, priority in services}
        assert set(by_name) == {"dalle", "stable-diffusion"}
        assert by_name["stable-diffusion"] < by_name["dalle"]

    def test_unlisted_providers_come_last(self, monkeypatch):
        self.clear_keys(monkeypatch)
        monkeypatch.setattr(settings, "MIDJOURNEY_API_KEY", "mj-key")
        monkeypatch.setattr(settings, "IMAGE_MOCK_PROVIDER", True)
        monkeypatch.setattr(settings, "IMAGE_PROVIDER_PRIORITY", "mock")

        by_name = {s.service_name: p for s, p in build_configured_services()}

        assert by_name["mock"] == 0
        assert by_name["midjourney"] > 0

    def test_get_provider_errors(self, monkeypatch):
        self.clear_keys(monkeypatch)
        with pytest.raises(GenerationError) as exc_info:
            get_provider("dalle")
        assert exc_info.value.error_type == GenerationErrorType.AUTHENTICATION_ERROR
        with pytest.raises(GenerationError):
            get_provider("unknown")
        assert set(get_available_providers()) >= {"dalle", "midjourney", "stable-diffusion", "mock"}
