"""
Cache store implementations and the driver selector.
"""

from typing import Optional

from ...core.config import Settings, get_settings
from ...domain.cache.repository_interfaces import CacheStore
from ..redis.connection_factory import RedisConnectionFactory
from .cache_repository import RedisCacheStore
from .memory_repository import InMemoryCacheStore


def create_cache_store(settings: Optional[Settings] = None) -> CacheStore:
    """Build the store selected by settings.CACHE_STORE."""
    settings = settings or get_settings()

    if settings.CACHE_STORE == "redis":
        return RedisCacheStore(
            RedisConnectionFactory(settings), prefix=settings.CACHE_KEY_PREFIX
        )
    return InMemoryCacheStore(max_entries=settings.CACHE_MEMORY_MAX_ENTRIES)


__all__ = ["create_cache_store", "InMemoryCacheStore", "RedisCacheStore"]
