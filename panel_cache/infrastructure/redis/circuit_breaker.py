"""
Redis Circuit Breaker Implementation

Guards RedisCacheStore calls so a Redis outage turns into fast store
failures (and therefore cache misses) instead of piling up slow requests.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from .exceptions import RedisCircuitBreakerOpenException

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # calls flow to Redis
    OPEN = "open"  # calls rejected without touching Redis
    HALF_OPEN = "half_open"  # trial calls decide whether Redis is back


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""

    failure_threshold: int = 5  # consecutive failures that open the circuit
    recovery_timeout: float = 60.0  # seconds before a trial call is allowed
    success_threshold: int = 1  # trial successes that close the circuit
    operation_timeout: Optional[float] = 10.0  # None leaves timing to the caller
    failure_exceptions: tuple = (
        ConnectionError,
        TimeoutError,
        asyncio.TimeoutError,
        OSError,
    )


@dataclass
class CircuitBreakerMetrics:
    """Call counters since the breaker was created."""

    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    rejected_calls: int = 0
    timeout_calls: int = 0
    circuit_opens: int = 0

    @property
    def failure_rate(self) -> float:
        return self.failed_calls / self.total_calls if self.total_calls else 0.0


class RedisCircuitBreaker:
    """
    Circuit breaker for Redis cache store operations.

    Exceptions listed in ``failure_exceptions``, timeouts and calls cancelled
    mid-flight (an outer ``asyncio.wait_for`` giving up) count as failures;
    anything else (bad payloads, programming errors) passes through without
    affecting the state. The clock is injectable for tests.
    """

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or CircuitBreakerConfig()
        self.metrics = CircuitBreakerMetrics()
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self._clock = clock

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """
        Run an async Redis call if the circuit admits it.

        Raises:
            RedisCircuitBreakerOpenException: While the circuit is open
            Exception: Whatever the call itself raised
        """
        self.metrics.total_calls += 1
        self._admit()

        try:
            if self.config.operation_timeout is None:
                result = await func(*args, **kwargs)
            else:
                result = await asyncio.wait_for(
                    func(*args, **kwargs), timeout=self.config.operation_timeout
                )
        except asyncio.TimeoutError as e:
            self.metrics.timeout_calls += 1
            logger.warning(
                "Redis call timed out",
                extra={"timeout": self.config.operation_timeout, "state": self.state.value},
            )
            self._on_failure(e)
            raise
        except asyncio.CancelledError as e:
            self._on_failure(e)
            raise
        except self.config.failure_exceptions as e:
            self._on_failure(e)
            raise

        self._on_success()
        return result

    def _admit(self) -> None:
        if self.state != CircuitState.OPEN:
            return

        retry_after = self._retry_after()
        if retry_after is not None and retry_after > 0:
            self.metrics.rejected_calls += 1
            raise RedisCircuitBreakerOpenException(retry_after=retry_after)

        self._move_to(CircuitState.HALF_OPEN)

    def _on_success(self) -> None:
        self.metrics.successful_calls += 1

        if self.state == CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.config.success_threshold:
                self._move_to(CircuitState.CLOSED)
            return

        self.failure_count = 0

    def _on_failure(self, error: BaseException) -> None:
        self.metrics.failed_calls += 1
        self.last_failure_time = self._clock()

        if self.state == CircuitState.HALF_OPEN:
            logger.warning(
                f"Redis still failing after recovery timeout: {type(error).__name__}"
            )
            self._move_to(CircuitState.OPEN)
            return

        self.failure_count += 1
        if self.failure_count >= self.config.failure_threshold:
            logger.warning(
                f"Opening Redis circuit after {self.failure_count} consecutive failures",
                extra={
                    "threshold": self.config.failure_threshold,
                    "failure_type": type(error).__name__,
                },
            )
            self._move_to(CircuitState.OPEN)

    def _move_to(self, state: CircuitState) -> None:
        if state == CircuitState.OPEN:
            self.metrics.circuit_opens += 1
            self.success_count = 0
        elif state == CircuitState.CLOSED:
            self.failure_count = 0
            self.success_count = 0

        logger.info(f"Redis circuit {self.state.value} -> {state.value}")
        self.state = state

    def _retry_after(self) -> Optional[float]:
        """Seconds left before a trial call is allowed (None when unknown)."""
        if self.last_failure_time is None:
            return None
        elapsed = self._clock() - self.last_failure_time
        return self.config.recovery_timeout - elapsed

    def get_status(self) -> Dict[str, Any]:
        """Get current circuit breaker status for health reporting."""
        return {
            "state": self.state.value,
            "failure_count": self.failure_count,
            "last_failure_time": self.last_failure_time,
            "metrics": {
                "total_calls": self.metrics.total_calls,
                "successful_calls": self.metrics.successful_calls,
                "failed_calls": self.metrics.failed_calls,
                "rejected_calls": self.metrics.rejected_calls,
                "timeout_calls": self.metrics.timeout_calls,
                "failure_rate": self.metrics.failure_rate,
                "circuit_opens": self.metrics.circuit_opens,
            },
        }

    def reset(self) -> None:
        """Manually close the circuit."""
        self.last_failure_time = None
        self._move_to(CircuitState.CLOSED)
