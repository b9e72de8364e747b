"""Per-provider metrics, health history and alerting."""

import logging
import time
import uuid
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable

from knowledge_search.images.base import ImageGenerationService

logger = logging.getLogger(__name__)

HEALTH_HISTORY_SIZE = 20
RESPONSE_SAMPLE_SIZE = 100
HISTORY_RETENTION = timedelta(hours=24)


class AlertType(str, Enum):
    HIGH_ERROR_RATE = "HIGH_ERROR_RATE"
    SLOW_RESPONSE = "SLOW_RESPONSE"
    LOW_UPTIME = "LOW_UPTIME"
    SERVICE_DOWN = "SERVICE_DOWN"
    CONSECUTIVE_FAILURES = "CONSECUTIVE_FAILURES"


@dataclass
class AlertConfig:
    error_rate_threshold: float = 0.1
    response_time_threshold: float = 10.0  # seconds
    uptime_threshold: float = 0.95
    consecutive_failures_threshold: int = 3
    enabled: bool = True


@dataclass
class Alert:
    id: str
    type: AlertType
    service_name: str
    message: str
    severity: str  # low, medium, high, critical
    timestamp: datetime
    resolved: bool = False
    resolved_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        data["timestamp"] = self.timestamp.isoformat()
        data["resolved_at"] = self.resolved_at.isoformat() if self.resolved_at else None
        return data


@dataclass
class HealthCheckResult:
    service_name: str
    is_healthy: bool
    response_time: float
    timestamp: datetime
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


@dataclass
class ServiceMetrics:
    service_name: str
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    average_response_time: float = 0.0
    p95_response_time: float = 0.0
    p99_response_time: float = 0.0
    error_rate: float = 0.0
    uptime: float = 1.0
    last_health_check: datetime | None = None
    health_history: deque = field(default_factory=lambda: deque(maxlen=HEALTH_HISTORY_SIZE))
    response_samples: deque = field(default_factory=lambda: deque(maxlen=RESPONSE_SAMPLE_SIZE))

    def to_dict(self) -> dict[str, Any]:
        return {
            "service_name": self.service_name,
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "average_response_time": self.average_response_time,
            "p95_response_time": self.p95_response_time,
            "p99_response_time": self.p99_response_time,
            "error_rate": self.error_rate,
            "uptime": self.uptime,
            "last_health_check": (
                self.last_health_check.isoformat() if self.last_health_check else None
            ),
            "health_history": [check.to_dict() for check in self.health_history],
        }


def percentile(samples: list[float], fraction: float) -> float:
    """Nearest-rank percentile of unsorted samples, 0.0 when empty."""
    if not samples:
        return 0.0
    ordered = sorted(samples)
    index = min(int(len(ordered) * fraction), len(ordered) - 1)
    return ordered[index]


AlertHandler = Callable[[Alert], Any]


def log_alert_handler(alert: Alert) -> None:
    logger.warning(
        f"ALERT [{alert.severity}] {alert.type.value} for {alert.service_name}: {alert.message}"
    )


class ServiceMonitor:
    """Collects request metrics and health checks, raising alerts on thresholds."""

    def __init__(self, config: AlertConfig | None = None):
        self.config = config or AlertConfig()
        self._services: dict[str, ImageGenerationService] = {}
        self._metrics: dict[str, ServiceMetrics] = {}
        self._alerts: dict[str, Alert] = {}
        self._handlers: list[AlertHandler] = []

    def register(self, service: ImageGenerationService) -> None:
        name = service.service_name
        self._services[name] = service
        self._metrics[name] = ServiceMetrics(service_name=name)

    def unregister(self, name: str) -> None:
        self._services.pop(name, None)
        self._metrics.pop(name, None)

    def add_alert_handler(self, handler: AlertHandler) -> None:
        self._handlers.append(handler)

    def remove_alert_handler(self, handler: AlertHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def record_request(self, name: str, success: bool, response_time: float) -> None:
        metrics = self._metrics.get(name)
        if metrics is None:
            logger.warning(f"No metrics registered for image service: {name}")
            return

        metrics.total_requests += 1
        if success:
            metrics.successful_requests += 1
        else:
            metrics.failed_requests += 1
        metrics.average_response_time += (
            response_time - metrics.average_response_time
        ) / metrics.total_requests
        metrics.error_rate = metrics.failed_requests / metrics.total_requests
        metrics.response_samples.append(response_time)
        samples = list(metrics.response_samples)
        metrics.p95_response_time = percentile(samples, 0.95)
        metrics.p99_response_time = percentile(samples, 0.99)

    async def check_health(self, name: str) -> HealthCheckResult:
        service = self._services.get(name)
        if service is None:
            raise KeyError(f"Image service not registered: {name}")

        started = time.perf_counter()
        try:
            status = await service.get_service_status()
            result = HealthCheckResult(
                service_name=name,
                is_healthy=status.available,
                response_time=time.perf_counter() - started,
                timestamp=datetime.now(timezone.utc),
                details={"last_checked": status.last_checked, "error_rate": status.error_rate},
            )
        except Exception as e:
            result = HealthCheckResult(
                service_name=name,
                is_healthy=False,
                response_time=time.perf_counter() - started,
                timestamp=datetime.now(timezone.utc),
                error=str(e) or "Health check failed",
            )

        metrics = self._metrics[name]
        metrics.health_history.append(result)
        metrics.last_health_check = result.timestamp
        history = list(metrics.health_history)
        metrics.uptime = sum(1 for c in history if c.is_healthy) / len(history)

        if self.config.enabled:
            self._evaluate_alerts(name, result)
        return result

    async def check_all(self) -> list[HealthCheckResult]:
        return [await self.check_health(name) for name in list(self._services)]

    def _evaluate_alerts(self, name: str, result: HealthCheckResult) -> None:
        metrics = self._metrics[name]
        cfg = self.config

        if not result.is_healthy:
            self._raise_alert(
                AlertType.SERVICE_DOWN,
                name,
                f"Service {name} is not responding",
                "critical",
                {"error": result.error, "response_time": result.response_time},
            )
        if metrics.error_rate > cfg.error_rate_threshold:
            self._raise_alert(
                AlertType.HIGH_ERROR_RATE,
                name,
                f"High error rate: {metrics.error_rate * 100:.1f}%",
                "high",
                {"error_rate": metrics.error_rate, "threshold": cfg.error_rate_threshold},
            )
        if result.response_time > cfg.response_time_threshold:
            self._raise_alert(
                AlertType.SLOW_RESPONSE,
                name,
                f"Slow response time: {result.response_time:.2f}s",
                "medium",
                {"response_time": result.response_time},
            )
        if metrics.uptime < cfg.uptime_threshold:
            self._raise_alert(
                AlertType.LOW_UPTIME,
                name,
                f"Low uptime: {metrics.uptime * 100:.1f}%",
                "high",
                {"uptime": metrics.uptime, "threshold": cfg.uptime_threshold},
            )

        threshold = cfg.consecutive_failures_threshold
        recent = list(metrics.health_history)[-threshold:]
        if len(recent) >= threshold and not any(c.is_healthy for c in recent):
            self._raise_alert(
                AlertType.CONSECUTIVE_FAILURES,
                name,
                f"{threshold} consecutive failed health checks",
                "critical",
                {"consecutive_failures": threshold},
            )

    def _raise_alert(
        self,
        alert_type: AlertType,
        name: str,
        message: str,
        severity: str,
        metadata: dict[str, Any],
    ) -> None:
        for alert in self._alerts.values():
            if alert.type == alert_type and alert.service_name == name and not alert.resolved:
                alert.timestamp = datetime.now(timezone.utc)
                alert.metadata.update(metadata)
                return

        alert = Alert(
            id=uuid.uuid4().hex,
            type=alert_type,
            service_name=name,
            message=message,
            severity=severity,
            timestamp=datetime.now(timezone.utc),
            metadata=dict(metadata),
        )
        self._alerts[alert.id] = alert
        for handler in self._handlers:
            try:
                handler(alert)
            except Exception as e:
                logger.error(f"Alert handler failed: {e}", exc_info=True)

    def active_alerts(self) -> list[Alert]:
        return [a for a in self._alerts.values() if not a.resolved]

    def all_alerts(self) -> list[Alert]:
        return list(self._alerts.values())

    def resolve_alert(self, alert_id: str) -> bool:
        alert = self._alerts.get(alert_id)
        if alert is None or alert.resolved:
            return False
        alert.resolved = True
        alert.resolved_at = datetime.now(timezone.utc)
        return True

    def cleanup(self) -> None:
        """Drop resolved alerts older than the retention period."""
        cutoff = datetime.now(timezone.utc) - HISTORY_RETENTION
        stale = [
            alert_id
            for alert_id, alert in self._alerts.items()
            if alert.resolved and alert.resolved_at and alert.resolved_at < cutoff
        ]
        for alert_id in stale:
            del self._alerts[alert_id]

    def metrics(self, name: str) -> ServiceMetrics | None:
        return self._metrics.get(name)

    def all_metrics(self) -> list[ServiceMetrics]:
        return list(self._metrics.values())

    def summary(self) -> dict[str, Any]:
        all_metrics = self.all_metrics()
        healthy = sum(
            1 for m in all_metrics if m.health_history and m.health_history[-1].is_healthy
        )
        total_requests = sum(m.total_requests for m in all_metrics)
        total_failures = sum(m.failed_requests for m in all_metrics)
        weighted_time = sum(m.average_response_time * m.total_requests for m in all_metrics)
        return {
            "total_services": len(all_metrics),
            "healthy_services": healthy,
            "unhealthy_services": len(all_metrics) - healthy,
            "average_response_time": weighted_time / total_requests if total_requests else 0.0,
            "total_requests": total_requests,
            "overall_error_rate": total_failures / total_requests if total_requests else 0.0,
        }
