"""
Cache Repository Interfaces

Abstract store interface following DDD Repository pattern.
Defines the contract the cache core needs from a pluggable backing store.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Dict, Any

from .entities import CacheEntry
from .exceptions import UnsupportedStoreOperation


@dataclass(frozen=True)
class StoreCapabilities:
    """Optional features a backing store may provide."""

    pattern_scan: bool = False  # native glob matching over keys
    tags: bool = False  # flush by tag
    enumerate: bool = False  # list keys matching a pattern
    memory_usage: bool = False  # per-key memory reporting


class CacheStore(ABC):
    """
    Abstract key/value backing store.

    ``get``, ``put`` and ``forget`` are mandatory. Pattern, tag, enumeration
    and memory operations are optional: stores that lack them keep the
    default implementations below, which raise UnsupportedStoreOperation,
    and advertise so through ``capabilities``.

    Implementations raise StoreReadError / StoreWriteError on backend failure.
    """

    name: str = "store"
    capabilities: StoreCapabilities = StoreCapabilities()

    @abstractmethod
    async def get(self, key: str) -> Optional[CacheEntry]:
        """Return the live entry for key, or None when absent or expired."""
        pass

    @abstractmethod
    async def put(self, entry: CacheEntry) -> None:
        """Store entry, replacing any previous value under the same key."""
        pass

    @abstractmethod
    async def forget(self, key: str) -> bool:
        """Remove key. Returns True when an entry was actually removed."""
        pass

    async def flush_pattern(self, pattern: str) -> int:
        """Remove every key matching a glob pattern. Returns removed count."""
        raise UnsupportedStoreOperation("flush_pattern", self.name)

    async def flush_tag(self, tag: str) -> int:
        """Remove every key carrying tag. Returns removed count."""
        raise UnsupportedStoreOperation("flush_tag", self.name)

    async def keys(self, pattern: str = "*") -> List[str]:
        """List keys matching a glob pattern."""
        raise UnsupportedStoreOperation("keys", self.name)

    async def memory_usage(self, key: str) -> Optional[int]:
        """Bytes used by key, or None when the key does not exist."""
        raise UnsupportedStoreOperation("memory_usage", self.name)

    async def health_check(self) -> Dict[str, Any]:
        """Report store health."""
        return {"status": "unknown", "store": self.name}

    async def close(self) -> None:
        """Release store resources."""
        return None
