"""
In-Memory Cache Repository Implementation

Dict-backed cache store for single-process deployments and tests.
Expired entries are evicted when touched and on every write; the store is
bounded and drops its oldest writes once full.
"""

import fnmatch
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, Any

from ...constants import get_current_timestamp
from ...domain.cache.entities import CacheEntry
from ...domain.cache.repository_interfaces import CacheStore, StoreCapabilities

logger = logging.getLogger(__name__)


class InMemoryCacheStore(CacheStore):
    """In-process implementation of the cache store."""

    name = "memory"
    capabilities = StoreCapabilities(
        pattern_scan=True, tags=True, enumerate=True, memory_usage=True
    )

    def __init__(
        self,
        clock: Callable[[], datetime] = get_current_timestamp,
        max_entries: int = 10000,
    ):
        self._entries: Dict[str, CacheEntry] = {}
        self._clock = clock
        self.max_entries = max(1, max_entries)

    async def get(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            return None
        return entry

    async def put(self, entry: CacheEntry) -> None:
        self._purge_expired()
        # Re-insert so dict order stays oldest write first
        self._entries.pop(entry.key, None)
        while len(self._entries) >= self.max_entries:
            self._evict_oldest()
        self._entries[entry.key] = entry

    async def forget(self, key: str) -> bool:
        self._purge_expired()
        return self._entries.pop(key, None) is not None

    async def flush_pattern(self, pattern: str) -> int:
        matched = await self.keys(pattern)
        for key in matched:
            del self._entries[key]
        return len(matched)

    async def flush_tag(self, tag: str) -> int:
        self._purge_expired()
        matched = [key for key, entry in self._entries.items() if tag in entry.tags]
        for key in matched:
            del self._entries[key]
        return len(matched)

    async def keys(self, pattern: str = "*") -> List[str]:
        self._purge_expired()
        return sorted(key for key in self._entries if fnmatch.fnmatchcase(key, pattern))

    async def memory_usage(self, key: str) -> Optional[int]:
        entry = await self.get(key)
        return entry.estimate_size() if entry is not None else None

    async def health_check(self) -> Dict[str, Any]:
        self._purge_expired()
        return {"status": "healthy", "store": self.name, "keys": len(self._entries)}

    async def close(self) -> None:
        self._entries.clear()

    def _purge_expired(self) -> None:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(f"Evicted {len(expired)} expired in-memory cache entries")

    def _evict_oldest(self) -> None:
        oldest_key = next(iter(self._entries))
        del self._entries[oldest_key]
        logger.debug(f"In-memory cache full, evicted {oldest_key}")

    def __len__(self) -> int:
        return len(self._entries)
