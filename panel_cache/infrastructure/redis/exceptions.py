"""
Redis Infrastructure Exceptions

Errors raised by the Redis plumbing behind RedisCacheStore. They share the
cache exception shape (message, error_code, details) and are translated into
store read/write errors before reaching the cache core.
"""

from typing import Optional

from ...domain.cache.exceptions import CacheException


class RedisException(CacheException):
    """Base exception for the Redis cache store plumbing."""


class RedisConnectionException(RedisException):
    """Raised when the Redis client cannot be reached or released."""

    def __init__(
        self,
        message: str = "Redis connection failed",
        original_error: Optional[Exception] = None,
    ):
        details = {}
        if original_error:
            details["original_error"] = str(original_error)
            details["original_error_type"] = type(original_error).__name__

        super().__init__(
            message=message, error_code="REDIS_CONNECTION_ERROR", details=details
        )
        if original_error:
            self.__cause__ = original_error


class RedisCircuitBreakerOpenException(RedisException):
    """Raised instead of calling Redis while the circuit is open."""

    def __init__(self, retry_after: Optional[float] = None):
        details = {"store_status": "unavailable"}
        if retry_after is not None:
            details["retry_after_seconds"] = round(max(retry_after, 0.0), 3)

        super().__init__(
            message="Redis circuit breaker is open, cache store calls are rejected",
            error_code="REDIS_CIRCUIT_BREAKER_OPEN",
            details=details,
        )
        self.retry_after = retry_after


class RedisConfigurationException(RedisException):
    """Raised when the Redis settings cannot produce a client."""

    def __init__(self, message: str, config_key: Optional[str] = None):
        super().__init__(
            message=message,
            error_code="REDIS_CONFIGURATION_ERROR",
            details={"config_key": config_key} if config_key else {},
        )
