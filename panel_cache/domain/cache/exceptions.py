"""
Cache Domain Exceptions

Exceptions raised by cache stores and handled by the cache core.
Computation errors raised by callers are never wrapped in these types.
"""

from typing import Optional, Any, Dict


class CacheException(Exception):
    """Base exception for cache-layer errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class CacheStoreException(CacheException):
    """Raised when the backing store fails an operation."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        key: Optional[str] = None,
        original_error: Optional[Exception] = None,
        error_code: str = "CACHE_STORE_ERROR",
    ):
        details: Dict[str, Any] = {}
        if operation:
            details["operation"] = operation
        if key:
            details["key"] = key
        if original_error:
            details["original_error"] = str(original_error)
            details["original_error_type"] = type(original_error).__name__

        super().__init__(message=message, error_code=error_code, details=details)
        # Preserve exception context for debugging (exception chaining)
        if original_error:
            self.__cause__ = original_error


class StoreReadError(CacheStoreException):
    """Raised when reading from the backing store fails."""

    def __init__(
        self,
        key: Optional[str] = None,
        original_error: Optional[Exception] = None,
        operation: str = "get",
    ):
        super().__init__(
            message=f"Cache store read failed ({operation})",
            operation=operation,
            key=key,
            original_error=original_error,
            error_code="CACHE_STORE_READ_ERROR",
        )


class StoreWriteError(CacheStoreException):
    """Raised when writing to or deleting from the backing store fails."""

    def __init__(
        self,
        key: Optional[str] = None,
        original_error: Optional[Exception] = None,
        operation: str = "put",
    ):
        super().__init__(
            message=f"Cache store write failed ({operation})",
            operation=operation,
            key=key,
            original_error=original_error,
            error_code="CACHE_STORE_WRITE_ERROR",
        )


class StoreTimeoutError(CacheStoreException):
    """Raised when a store call exceeds its time budget."""

    def __init__(self, operation: str, timeout_seconds: float, key: Optional[str] = None):
        super().__init__(
            message=f"Cache store operation '{operation}' timed out after {timeout_seconds}s",
            operation=operation,
            key=key,
            error_code="CACHE_STORE_TIMEOUT",
        )
        self.details["timeout_seconds"] = timeout_seconds


class UnsupportedStoreOperation(CacheStoreException):
    """Raised by a store that lacks a capability (pattern scan, tags, enumeration)."""

    def __init__(self, operation: str, store: str):
        super().__init__(
            message=f"Cache store '{store}' does not support '{operation}'",
            operation=operation,
            error_code="CACHE_STORE_UNSUPPORTED",
        )
        self.details["store"] = store


class InvalidPatternError(CacheException):
    """Raised when an invalidation pattern is malformed."""

    def __init__(self, pattern: Any, reason: str):
        super().__init__(
            message=f"Invalid cache key pattern: {reason}",
            error_code="CACHE_INVALID_PATTERN",
            details={"pattern": str(pattern), "reason": reason},
        )
