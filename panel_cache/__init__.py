"""
Admin panel computed-result cache.
"""

from .constants import APP_NAME, APP_VERSION
from .domain.cache.entities import CacheKeySpec, RememberResult, WarmRequest, WarmResult
from .domain.cache.value_objects import (
    CacheNamespace,
    CacheOutcome,
    FOREVER,
    NO_CACHE,
    AbsoluteInstant,
    OpaqueHandle,
    RelativeDuration,
    Seconds,
)
from .services.cache import CacheWarmer, ComputedResultCache, get_cache_manager

__version__ = APP_VERSION

__all__ = [
    "APP_NAME",
    "ComputedResultCache",
    "get_cache_manager",
    "CacheWarmer",
    "CacheKeySpec",
    "RememberResult",
    "WarmRequest",
    "WarmResult",
    "CacheNamespace",
    "CacheOutcome",
    "FOREVER",
    "NO_CACHE",
    "AbsoluteInstant",
    "OpaqueHandle",
    "RelativeDuration",
    "Seconds",
]
