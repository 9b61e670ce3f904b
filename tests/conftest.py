"""
Main pytest configuration for panel cache tests.

Fake clock, in-memory and deliberately limited stores, and a wired cache.
"""

import os
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import pytest

# Set test environment variables before importing package modules
os.environ["ENVIRONMENT"] = "test"
os.environ["CACHE_STORE"] = "memory"
os.environ["LOG_LEVEL"] = "DEBUG"
os.environ["LOG_JSON"] = "false"

from panel_cache.core.config import Settings
from panel_cache.domain.cache.domain_services import StatsCollector
from panel_cache.domain.cache.entities import CacheEntry
from panel_cache.domain.cache.exceptions import StoreReadError, StoreWriteError
from panel_cache.domain.cache.repository_interfaces import CacheStore
from panel_cache.infrastructure.repositories.memory_repository import InMemoryCacheStore
from panel_cache.services.cache.cache_manager import ComputedResultCache


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)

    def __call__(self) -> datetime:
        return self.now


class KeyValueOnlyStore(CacheStore):
    """Store with get/put/forget only: no scanning, tags or enumeration."""

    name = "key_value_only"

    def __init__(self):
        self.entries: Dict[str, CacheEntry] = {}

    async def get(self, key: str) -> Optional[CacheEntry]:
        return self.entries.get(key)

    async def put(self, entry: CacheEntry) -> None:
        self.entries[entry.key] = entry

    async def forget(self, key: str) -> bool:
        return self.entries.pop(key, None) is not None


class FailingStore(CacheStore):
    """Store whose reads and/or writes fail."""

    name = "failing"

    def __init__(self, fail_reads: bool = True, fail_writes: bool = True):
        self.fail_reads = fail_reads
        self.fail_writes = fail_writes
        self.entries: Dict[str, CacheEntry] = {}

    async def get(self, key: str) -> Optional[CacheEntry]:
        if self.fail_reads:
            raise StoreReadError(key=key, original_error=ConnectionError("store down"))
        return self.entries.get(key)

    async def put(self, entry: CacheEntry) -> None:
        if self.fail_writes:
            raise StoreWriteError(
                key=entry.key, original_error=ConnectionError("store down")
            )
        self.entries[entry.key] = entry

    async def forget(self, key: str) -> bool:
        if self.fail_writes:
            raise StoreWriteError(
                key=key, original_error=ConnectionError("store down"), operation="forget"
            )
        return self.entries.pop(key, None) is not None


@pytest.fixture
def clock():
    """Provide a controllable clock."""
    return FakeClock()


@pytest.fixture
def test_settings():
    """Provide isolated cache settings."""
    return Settings(
        ENVIRONMENT="test",
        CACHE_STORE="memory",
        CACHE_KEY_PREFIX="admin_panel",
        CACHE_STORE_TIMEOUT=0.5,
        CACHE_WARM_CONCURRENCY=2,
        CACHE_WARM_TIMEZONES="UTC",
        CACHE_KEY_INDEX_MAX_KEYS=1000,
    )


@pytest.fixture
def store(clock):
    """Provide an in-memory store sharing the fake clock."""
    return InMemoryCacheStore(clock=clock)


@pytest.fixture
def stats():
    """Provide fresh statistics."""
    return StatsCollector()


@pytest.fixture
def cache(store, stats, test_settings, clock):
    """Provide a cache wired to the in-memory store."""
    return ComputedResultCache(
        store=store, stats=stats, settings=test_settings, clock=clock
    )


@pytest.fixture
def make_cache(stats, test_settings, clock):
    """Build a cache around an arbitrary store."""

    def _make(store: CacheStore) -> ComputedResultCache:
        return ComputedResultCache(
            store=store, stats=stats, settings=test_settings, clock=clock
        )

    return _make
