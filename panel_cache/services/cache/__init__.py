"""
Cache Services

Computed-result cache for admin panel metrics, menu badges and menu
authorization checks. Provides memoization, invalidation and warming.
"""

from .cache_manager import ComputedResultCache, get_cache_manager
from .warmer import CacheWarmer

__all__ = [
    "ComputedResultCache",
    "get_cache_manager",
    "CacheWarmer",
]
