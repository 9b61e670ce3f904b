"""
Redis Connection Factory

Connection management for the Redis cache store.
Builds a pooled redis.asyncio client from settings and owns the circuit
breaker that guards every store call.
"""

import logging
import time
from typing import Dict, Any, Optional
from urllib.parse import urlparse

from redis.asyncio import Redis
from redis.exceptions import (
    ConnectionError as RedisConnectionError,
    TimeoutError as RedisTimeoutError,
)

from opentelemetry import trace
from opentelemetry.instrumentation.redis import RedisInstrumentor

from ...core.config import Settings, get_settings
from .circuit_breaker import RedisCircuitBreaker, CircuitBreakerConfig
from .exceptions import RedisConfigurationException, RedisConnectionException

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

_SUPPORTED_SCHEMES = ("redis", "rediss", "unix")


class RedisConnectionFactory:
    """
    Factory for the Redis client used by the cache store.

    The client is created lazily on first use and shared afterwards; the
    underlying connection pool handles concurrency.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._client: Optional[Redis] = None
        self._circuit_breaker = RedisCircuitBreaker(
            CircuitBreakerConfig(
                failure_threshold=self.settings.CIRCUIT_BREAKER_FAILURE_THRESHOLD,
                recovery_timeout=float(self.settings.CIRCUIT_BREAKER_RECOVERY_TIMEOUT),
                success_threshold=1,
                operation_timeout=self.settings.REDIS_OPERATION_TIMEOUT,
                failure_exceptions=(
                    RedisConnectionError,
                    RedisTimeoutError,
                    ConnectionError,
                    TimeoutError,
                    OSError,
                ),
            )
        )

        # Initialize OpenTelemetry instrumentation
        try:
            RedisInstrumentor().instrument()
        except Exception as e:
            logger.warning(f"Failed to enable Redis OpenTelemetry instrumentation: {e}")

    @property
    def circuit_breaker(self) -> RedisCircuitBreaker:
        return self._circuit_breaker

    def get_client(self) -> Redis:
        """
        Get the shared Redis client, creating it on first use.

        Raises:
            RedisConfigurationException: If REDIS_URL is not a Redis URL
        """
        if self._client is None:
            redis_url = self.settings.REDIS_URL
            parsed_url = urlparse(redis_url)
            if parsed_url.scheme not in _SUPPORTED_SCHEMES:
                raise RedisConfigurationException(
                    f"Unsupported Redis URL scheme: {parsed_url.scheme or 'none'}",
                    config_key="REDIS_URL",
                )

            self._client = Redis.from_url(
                redis_url,
                encoding="utf-8",
                decode_responses=True,
                max_connections=self.settings.REDIS_MAX_CONNECTIONS,
                socket_connect_timeout=self.settings.REDIS_CONNECTION_TIMEOUT,
                socket_timeout=self.settings.REDIS_OPERATION_TIMEOUT,
                retry_on_timeout=False,
            )
            logger.info(
                "Redis cache client created",
                extra={"host": parsed_url.hostname, "port": parsed_url.port},
            )

        return self._client

    async def health_check(self) -> Dict[str, Any]:
        """Ping Redis and report latency plus circuit breaker state."""
        with tracer.start_as_current_span("redis.health_check") as span:
            start_time = time.time()
            try:
                await self.get_client().ping()
                latency_ms = (time.time() - start_time) * 1000

                return {
                    "status": "healthy",
                    "latency_ms": round(latency_ms, 2),
                    "circuit_breaker": self._circuit_breaker.get_status(),
                }

            except Exception as e:
                logger.error(f"Redis health check failed: {e}")
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))

                return {
                    "status": "unhealthy",
                    "error": str(e),
                    "circuit_breaker": self._circuit_breaker.get_status(),
                }

    async def close(self) -> None:
        """Close the Redis client and its pool."""
        if self._client is None:
            return

        try:
            await self._client.aclose()
            logger.info("Redis cache client closed")
        except Exception as e:
            raise RedisConnectionException(
                message=f"Failed to close Redis client: {e}", original_error=e
            )
        finally:
            self._client = None
