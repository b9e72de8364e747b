"""Retry policy and circuit breaker for provider calls.

Retries are driven by tenacity. The wait strategy honours a provider's
`retry_after` hint when present and falls back to exponential backoff with
jitter otherwise.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from knowledge_search.config import settings
from knowledge_search.images.exceptions import (
    CLIENT_ERROR_TYPES,
    RETRYABLE_ERROR_TYPES,
    GenerationError,
    GenerationErrorType,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Backoff settings, all times in seconds."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    jitter_factor: float = 0.1
    retryable_errors: frozenset[GenerationErrorType] = RETRYABLE_ERROR_TYPES
    timeout: float | None = None  # Per-attempt limit

    @classmethod
    def from_settings(cls) -> "RetryConfig":
        return cls(
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
            base_delay=settings.RETRY_BASE_DELAY,
            max_delay=settings.RETRY_MAX_DELAY,
            backoff_multiplier=settings.RETRY_BACKOFF_MULTIPLIER,
            jitter_factor=settings.RETRY_JITTER,
        )


@dataclass
class RetryAttempt:
    attempt_number: int
    started_at: datetime
    delay: float = 0.0  # Wait scheduled after this attempt
    error: GenerationError | None = None


@dataclass
class RetryOutcome(Generic[T]):
    success: bool
    result: T | None = None
    error: GenerationError | None = None
    attempts: list[RetryAttempt] = field(default_factory=list)
    total_time: float = 0.0


def normalize_error(error: BaseException) -> GenerationError:
    """Wrap anything that is not a GenerationError as a retryable unknown error."""
    if isinstance(error, GenerationError):
        return error
    return GenerationError(
        GenerationErrorType.UNKNOWN_ERROR,
        str(error) or type(error).__name__,
        retryable=True,
    )


class RetryManager:
    """Run an async operation under the configured retry policy."""

    def __init__(
        self,
        config: RetryConfig | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config or RetryConfig()
        self._sleep = sleep

    def should_retry(self, error: BaseException) -> bool:
        if not isinstance(error, GenerationError):
            return False
        if error.retryable is False:
            return False
        return error.error_type in self.config.retryable_errors

    def compute_delay(self, attempt_number: int, error: GenerationError | None) -> float:
        """Delay before the attempt following `attempt_number`."""
        cfg = self.config
        if error is not None and error.retry_after and error.retry_after > 0:
            return min(error.retry_after, cfg.max_delay)
        delay = cfg.base_delay * cfg.backoff_multiplier ** (attempt_number - 1)
        delay += random.uniform(0, delay * cfg.jitter_factor)
        return min(delay, cfg.max_delay)

    def _wait(self, retry_state: RetryCallState) -> float:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        return self.compute_delay(
            retry_state.attempt_number,
            error if isinstance(error, GenerationError) else None,
        )

    async def _run_once(self, operation: Callable[[], Awaitable[T]]) -> T:
        try:
            if self.config.timeout:
                return await asyncio.wait_for(operation(), self.config.timeout)
            return await operation()
        except asyncio.TimeoutError as e:
            raise GenerationError(
                GenerationErrorType.TIMEOUT,
                f"Operation timed out after {self.config.timeout}s",
                retryable=True,
            ) from e
        except GenerationError:
            raise
        except Exception as e:
            raise normalize_error(e) from e

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str = "operation",
    ) -> RetryOutcome[T]:
        """Run `operation` until it succeeds, fails permanently or attempts run out.

        Never raises GenerationError; failures are reported in the outcome.
        """
        attempts: list[RetryAttempt] = []
        started = time.perf_counter()

        def before_sleep(retry_state: RetryCallState) -> None:
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            attempts[-1].delay = delay
            logger.info(
                f"{operation_name}: attempt {retry_state.attempt_number} failed, "
                f"retrying in {delay:.1f}s"
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.config.max_attempts),
            wait=self._wait,
            retry=retry_if_exception(self.should_retry),
            before_sleep=before_sleep,
            sleep=self._sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    record = RetryAttempt(
                        attempt_number=attempt.retry_state.attempt_number,
                        started_at=datetime.now(timezone.utc),
                    )
                    attempts.append(record)
                    try:
                        result = await self._run_once(operation)
                    except GenerationError as e:
                        record.error = e
                        logger.warning(
                            f"{operation_name}: attempt {record.attempt_number}/"
                            f"{self.config.max_attempts} failed: {e}"
                        )
                        raise
        except GenerationError as e:
            return RetryOutcome(
                success=False,
                error=e,
                attempts=attempts,
                total_time=time.perf_counter() - started,
            )

        return RetryOutcome(
            success=True,
            result=result,
            attempts=attempts,
            total_time=time.perf_counter() - started,
        )


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass
class CircuitBreakerConfig:
    """Thresholds, times in seconds."""

    failure_threshold: int = 5
    recovery_timeout: float = 30.0
    success_threshold: int = 2
    monitoring_window: float = 60.0

    @classmethod
    def from_settings(cls) -> "CircuitBreakerConfig":
        return cls(
            failure_threshold=settings.CIRCUIT_FAILURE_THRESHOLD,
            recovery_timeout=settings.CIRCUIT_RECOVERY_TIMEOUT,
            success_threshold=settings.CIRCUIT_SUCCESS_THRESHOLD,
            monitoring_window=settings.CIRCUIT_MONITORING_WINDOW,
        )


class CircuitBreaker:
    """Stops calling a provider after repeated failures.

    CLOSED counts failures inside `monitoring_window`; reaching
    `failure_threshold` opens the circuit. OPEN rejects calls until
    `recovery_timeout` has passed since the last failure, then lets calls
    through as HALF_OPEN. In HALF_OPEN, `success_threshold` successes close the
    circuit and any failure opens it again.
    """

    def __init__(
        self,
        service_name: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.service_name = service_name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self.state = CircuitState.CLOSED
        self._failures: list[float] = []
        self._successes = 0
        self._last_failure: float | None = None
        self._last_failure_at: datetime | None = None

    def _remaining_recovery(self) -> float:
        if self._last_failure is None:
            return 0.0
        elapsed = self._clock() - self._last_failure
        return max(0.0, self.config.recovery_timeout - elapsed)

    def _prune(self) -> None:
        cutoff = self._clock() - self.config.monitoring_window
        self._failures = [t for t in self._failures if t > cutoff]

    def _transition(self, state: CircuitState) -> None:
        if state != self.state:
            logger.info(f"Circuit breaker for {self.service_name}: {self.state.value} -> {state.value}")
            self.state = state

    def before_call(self) -> None:
        """Raise if the circuit is open; move to HALF_OPEN once recovery time passed."""
        if self.state != CircuitState.OPEN:
            return
        remaining = self._remaining_recovery()
        if remaining > 0:
            raise GenerationError(
                GenerationErrorType.SERVICE_UNAVAILABLE,
                f"Circuit breaker is OPEN for service {self.service_name}",
                retryable=True,
                retry_after=remaining,
                details={"circuit_open": True},
                service=self.service_name,
            )
        self._successes = 0
        self._transition(CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        if self.state == CircuitState.HALF_OPEN:
            self._successes += 1
            if self._successes >= self.config.success_threshold:
                self._failures = []
                self._successes = 0
                self._transition(CircuitState.CLOSED)
        else:
            self._prune()

    def record_failure(self) -> None:
        now = self._clock()
        self._failures.append(now)
        self._last_failure = now
        self._last_failure_at = datetime.now(timezone.utc)

        if self.state == CircuitState.HALF_OPEN:
            self._successes = 0
            self._transition(CircuitState.OPEN)
        elif self.state == CircuitState.CLOSED:
            self._prune()
            if len(self._failures) >= self.config.failure_threshold:
                self._transition(CircuitState.OPEN)

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run an operation through the breaker.

        Client errors (invalid prompt, content policy) pass through without
        counting against the provider.
        """
        self.before_call()
        try:
            result = await operation()
        except GenerationError as e:
            if e.error_type not in CLIENT_ERROR_TYPES:
                self.record_failure()
            raise
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def status(self) -> dict[str, Any]:
        next_retry = None
        if self._last_failure_at is not None:
            next_retry = self._last_failure_at + timedelta(seconds=self.config.recovery_timeout)
        self._prune()
        return {
            "state": self.state.value,
            "failures": len(self._failures),
            "successes": self._successes,
            "last_failure_time": self._last_failure_at.isoformat() if self._last_failure_at else None,
            "next_retry_time": next_retry.isoformat() if next_retry else None,
        }

    def reset(self) -> None:
        self.state = CircuitState.CLOSED
        self._failures = []
        self._successes = 0
        self._last_failure = None
        self._last_failure_at = None
        logger.info(f"Circuit breaker for {self.service_name}: manually reset to CLOSED")
