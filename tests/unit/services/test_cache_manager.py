"""
Unit tests for Cache Manager Service.

Tests memoization, TTL handling, fail-open behaviour, invalidation,
freshness checks and reporting of the computed-result cache.
"""

import asyncio
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from panel_cache.domain.cache.domain_services import KeyIndex, StatsCollector
from panel_cache.domain.cache.entities import CacheEntry, CacheKeySpec
from panel_cache.domain.cache.repository_interfaces import CacheStore
from panel_cache.domain.cache.value_objects import (
    AbsoluteInstant,
    CacheNamespace,
    CacheOutcome,
    CacheTag,
    RelativeDuration,
    Seconds,
)
from panel_cache.infrastructure.repositories.memory_repository import InMemoryCacheStore
from panel_cache.services.cache.cache_manager import ComputedResultCache, get_cache_manager

from tests.conftest import FailingStore, KeyValueOnlyStore


class SlowStore(CacheStore):
    """Store whose reads never finish in time."""

    name = "slow"

    async def get(self, key):
        await asyncio.sleep(10)

    async def put(self, entry: CacheEntry) -> None:
        return None

    async def forget(self, key: str) -> bool:
        return False


def counting(value):
    """Computation returning value and counting its calls."""
    return MagicMock(return_value=value)


class TestRemember:
    """Test memoization through remember()."""

    @pytest.mark.asyncio
    async def test_revenue_metric_lifecycle(self, cache):
        """Test compute once, serve cached, forget, recompute."""
        spec = CacheKeySpec.metric("App\\Metrics\\Revenue", range=30, timezone="UTC")

        first = await cache.remember(spec, Seconds(300), lambda: 125000)
        second = await cache.remember(spec, Seconds(300), lambda: 999)

        assert first == 125000
        assert second == 125000

        stats = cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["writes"] == 1
        assert stats["hit_ratio"] == 0.5

        assert await cache.forget(spec) is True
        assert await cache.remember(spec, Seconds(300), lambda: 999) == 999

    @pytest.mark.asyncio
    async def test_async_compute(self, cache):
        """Test awaitable computations are awaited."""

        async def compute():
            return {"total": 42}

        spec = CacheKeySpec.metric("orders")
        assert await cache.remember(spec, 60, compute) == {"total": 42}
        assert await cache.remember(spec, 60, compute) == {"total": 42}
        assert cache.get_stats()["hits"] == 1

    @pytest.mark.asyncio
    async def test_different_parameters_compute_separately(self, cache):
        compute = counting(1)

        await cache.remember(CacheKeySpec.metric("revenue", range=30), 60, compute)
        await cache.remember(CacheKeySpec.metric("revenue", range=60), 60, compute)

        assert compute.call_count == 2

    @pytest.mark.asyncio
    async def test_expired_entry_recomputed(self, cache, clock):
        spec = CacheKeySpec.metric("revenue")

        await cache.remember(spec, Seconds(300), lambda: 1)
        clock.advance(299)
        assert await cache.remember(spec, Seconds(300), lambda: 2) == 1

        clock.advance(1)
        assert await cache.remember(spec, Seconds(300), lambda: 3) == 3

    @pytest.mark.asyncio
    async def test_relative_and_absolute_ttl(self, cache, clock):
        relative = await cache.remember_with_metadata(
            CacheKeySpec.metric("a"), RelativeDuration(timedelta(minutes=5)), lambda: 1
        )
        absolute = await cache.remember_with_metadata(
            CacheKeySpec.metric("b"), AbsoluteInstant(clock.now + timedelta(hours=1)), lambda: 1
        )

        assert relative.expires_at == clock.now + timedelta(minutes=5)
        assert absolute.expires_at == clock.now + timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_namespace_default_ttl(self, cache, clock, test_settings):
        """Test a missing TTL falls back to the namespace default."""
        result = await cache.remember_with_metadata(CacheKeySpec.badge("Orders"), None, lambda: 5)

        assert result.outcome is CacheOutcome.MISS
        assert result.expires_at == clock.now + timedelta(seconds=test_settings.BADGE_CACHE_TTL)

    @pytest.mark.asyncio
    async def test_remember_forever(self, cache, clock):
        spec = CacheKeySpec.metric("lifetime_value")

        await cache.remember_forever(spec, lambda: 10)
        clock.advance(10 * 365 * 86400)

        assert await cache.remember_forever(spec, lambda: 20) == 10

    @pytest.mark.asyncio
    @pytest.mark.parametrize("ttl", [Seconds(0), Seconds(-5), 0, -30])
    async def test_non_positive_ttl_bypasses_cache(self, cache, store, ttl):
        """Test caching disabled: compute every call, no store traffic."""
        compute = counting(7)
        spec = CacheKeySpec.metric("revenue")

        first = await cache.remember_with_metadata(spec, ttl, compute)
        second = await cache.remember_with_metadata(spec, ttl, compute)

        assert first.value == second.value == 7
        assert first.outcome is CacheOutcome.BYPASS
        assert compute.call_count == 2
        assert len(store) == 0
        assert cache.get_stats()["total_operations"] == 0

    @pytest.mark.asyncio
    async def test_malformed_ttl_bypasses_cache(self, cache, store):
        result = await cache.remember_with_metadata(
            CacheKeySpec.metric("revenue"), "five minutes", lambda: 1
        )

        assert result.outcome is CacheOutcome.BYPASS
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_compute_error_propagates_and_is_not_cached(self, cache, store):
        spec = CacheKeySpec.metric("revenue")

        def broken():
            raise RuntimeError("database unavailable")

        with pytest.raises(RuntimeError, match="database unavailable"):
            await cache.remember(spec, 60, broken)

        assert len(store) == 0
        assert await cache.remember(spec, 60, lambda: 3) == 3
        assert cache.get_stats()["misses"] == 2

    @pytest.mark.asyncio
    async def test_cached_none_is_a_hit(self, cache):
        compute = counting(None)
        spec = CacheKeySpec.badge("Orders")

        assert await cache.remember(spec, 60, compute) is None
        assert await cache.remember(spec, 60, compute) is None
        assert compute.call_count == 1

    @pytest.mark.asyncio
    async def test_metadata(self, cache):
        spec = CacheKeySpec.metric("revenue")

        miss = await cache.remember_with_metadata(spec, 60, lambda: 1)
        hit = await cache.remember_with_metadata(spec, 60, lambda: 2)

        assert miss.outcome is CacheOutcome.MISS
        assert miss.stored is True
        assert hit.is_hit
        assert hit.key == miss.key == cache.key_deriver.derive(spec)


class TestFailOpen:
    """Test store failures degrade to computing."""

    @pytest.mark.asyncio
    async def test_read_failure_is_degraded_miss(self, make_cache):
        cache = make_cache(FailingStore(fail_reads=True, fail_writes=False))

        result = await cache.remember_with_metadata(CacheKeySpec.metric("revenue"), 60, lambda: 5)

        assert result.value == 5
        assert result.is_degraded
        assert "StoreReadError" in result.reason

        stats = cache.get_stats()
        assert stats["misses"] == 1
        assert stats["degraded_misses"] == 1

    @pytest.mark.asyncio
    async def test_write_failure_returns_value(self, make_cache):
        cache = make_cache(FailingStore(fail_reads=False, fail_writes=True))
        compute = counting(5)
        spec = CacheKeySpec.metric("revenue")

        first = await cache.remember_with_metadata(spec, 60, compute)
        second = await cache.remember_with_metadata(spec, 60, compute)

        assert first.value == second.value == 5
        assert first.stored is False
        assert compute.call_count == 2

        stats = cache.get_stats()
        assert stats["writes"] == 0
        assert stats["write_failures"] == 2

    @pytest.mark.asyncio
    async def test_store_timeout_is_degraded_miss(self, test_settings, stats, clock):
        settings = test_settings.model_copy(update={"CACHE_STORE_TIMEOUT": 0.05})
        cache = ComputedResultCache(store=SlowStore(), stats=stats, settings=settings, clock=clock)

        result = await cache.remember_with_metadata(CacheKeySpec.metric("revenue"), 60, lambda: 9)

        assert result.value == 9
        assert result.outcome is CacheOutcome.DEGRADED_MISS
        assert "StoreTimeoutError" in result.reason

    @pytest.mark.asyncio
    async def test_forget_failure_reports_nothing_removed(self, make_cache):
        cache = make_cache(FailingStore())
        assert await cache.forget(CacheKeySpec.metric("revenue")) is False
        assert cache.get_stats()["deletes"] == 0


class TestInvalidation:
    """Test invalidation strategies."""

    @pytest.mark.asyncio
    async def test_forget_is_idempotent(self, cache):
        spec = CacheKeySpec.metric("revenue")
        await cache.remember(spec, 60, lambda: 1)

        assert await cache.forget(spec) is True
        assert await cache.forget(spec) is False
        assert cache.get_stats()["deletes"] == 1

    @pytest.mark.asyncio
    async def test_forget_identity(self, cache):
        await cache.remember(CacheKeySpec.metric("revenue", range=30), 60, lambda: 1)
        await cache.remember(CacheKeySpec.metric("revenue", range=60), 60, lambda: 1)
        await cache.remember(CacheKeySpec.metric("orders", range=30), 60, lambda: 1)

        assert await cache.forget_identity("revenue") == 2
        assert await cache.get_keys("revenue") == []
        assert len(await cache.get_keys("orders")) == 1

    @pytest.mark.asyncio
    async def test_forget_identity_covers_identities_sharing_a_slug(self, cache):
        """Test over-invalidation: identities with the same slug go together."""
        await cache.remember(CacheKeySpec.metric("Revenue Metric"), 60, lambda: 1)
        await cache.remember(CacheKeySpec.metric("revenue_metric"), 60, lambda: 2)

        assert await cache.forget_identity("Revenue Metric") == 2

    @pytest.mark.asyncio
    async def test_forget_all_namespace(self, cache):
        await cache.remember(CacheKeySpec.badge("Orders"), 60, lambda: 3)
        await cache.remember(CacheKeySpec.badge("Users"), 60, lambda: 4)
        await cache.remember(CacheKeySpec.metric("revenue"), 60, lambda: 1)

        assert await cache.forget_all(CacheNamespace.BADGE) == 2
        assert await cache.remember(CacheKeySpec.metric("revenue"), 60, lambda: 2) == 1

    @pytest.mark.asyncio
    async def test_forget_pattern_without_scanning_store(self, make_cache):
        """Test the key index backs pattern invalidation."""
        store = KeyValueOnlyStore()
        cache = make_cache(store)

        await cache.remember(CacheKeySpec.metric("revenue", range=30), 60, lambda: 1)
        await cache.remember(CacheKeySpec.metric("revenue", range=60), 60, lambda: 1)
        await cache.remember(CacheKeySpec.metric("orders"), 60, lambda: 1)

        assert await cache.forget_identity("revenue") == 2
        assert len(store.entries) == 1
        assert cache.get_stats()["deletes"] == 2

    @pytest.mark.asyncio
    async def test_forget_pattern_matching_nothing(self, cache):
        assert await cache.forget_pattern("admin_panel:metric:nothing:*") == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("pattern", ["", "bad pattern", "admin_panel:[metric"])
    async def test_invalid_pattern_removes_nothing(self, cache, pattern):
        await cache.remember(CacheKeySpec.metric("revenue"), 60, lambda: 1)

        assert await cache.forget_pattern(pattern) == 0
        assert len(await cache.get_keys("revenue")) == 1

    @pytest.mark.asyncio
    async def test_forget_tag(self, cache):
        await cache.remember(CacheKeySpec.metric("revenue"), 60, lambda: 1, tags=["orders"])
        await cache.remember(CacheKeySpec.badge("Orders"), 60, lambda: 2, tags=[CacheTag("orders")])
        await cache.remember(
            CacheKeySpec.metric("users"), 60, lambda: 3, tags=[CacheTag.namespace(CacheNamespace.METRIC)]
        )

        assert await cache.forget_tag("orders") == 2
        assert await cache.forget_tag(CacheTag.namespace(CacheNamespace.METRIC)) == 1

    @pytest.mark.asyncio
    async def test_entries_carry_only_caller_tags(self, cache, store):
        """Test no implicit tags, so untagged entries add no tag index members."""
        plain = await cache.remember_with_metadata(CacheKeySpec.metric("revenue"), 60, lambda: 1)
        tagged = await cache.remember_with_metadata(
            CacheKeySpec.metric("orders"), 60, lambda: 2, tags=["orders"]
        )

        assert (await store.get(plain.key)).tags == frozenset()
        assert (await store.get(tagged.key)).tags == frozenset({"orders"})

    @pytest.mark.asyncio
    async def test_forget_tag_without_tag_support(self, make_cache):
        cache = make_cache(KeyValueOnlyStore())
        await cache.remember(CacheKeySpec.metric("revenue"), 60, lambda: 1, tags=["orders"])

        assert await cache.forget_tag("orders") == 0


class TestDirectAccess:
    """Test get, put and freshness checks."""

    @pytest.mark.asyncio
    async def test_put_and_get(self, cache):
        spec = CacheKeySpec.badge("Orders")

        assert await cache.get(spec, default="none") == "none"
        assert await cache.put(spec, 12, Seconds(60)) is True
        assert await cache.get(spec) == 12

    @pytest.mark.asyncio
    async def test_put_with_disabled_ttl(self, cache, store):
        assert await cache.put(CacheKeySpec.badge("Orders"), 12, Seconds(0)) is False
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_cache_freshness(self, cache, clock):
        spec = CacheKeySpec.metric("revenue")
        data_changed_at = clock.now

        assert await cache.is_cache_fresh(spec) is True
        assert await cache.is_cache_fresh(spec, data_changed_at) is False

        clock.advance(5)
        assert await cache.cache_with_timestamp(spec, 100, Seconds(300)) == 100

        assert await cache.is_cache_fresh(spec, data_changed_at) is True
        assert await cache.is_cache_fresh(spec, clock.now + timedelta(seconds=1)) is False

    @pytest.mark.asyncio
    async def test_freshness_on_store_failure(self, make_cache, clock):
        cache = make_cache(FailingStore())
        assert await cache.is_cache_fresh(CacheKeySpec.metric("revenue"), clock.now) is False


class TestReporting:
    """Test statistics, memory usage and health reporting."""

    @pytest.mark.asyncio
    async def test_memory_usage_grouped_by_identity(self, cache):
        await cache.remember(CacheKeySpec.metric("revenue", range=30), 60, lambda: 125000)
        await cache.remember(CacheKeySpec.metric("revenue", range=60), 60, lambda: 250000)
        await cache.remember(CacheKeySpec.badge("Orders"), 60, lambda: 3)

        usage = await cache.get_memory_usage()

        assert usage.available is True
        assert usage.total_keys == 3
        assert usage.by_identity["metric:revenue"]["keys"] == 2
        assert usage.by_identity["badge:orders"]["keys"] == 1
        assert usage.total_memory > 0

    @pytest.mark.asyncio
    async def test_memory_usage_for_namespace(self, cache):
        await cache.remember(CacheKeySpec.metric("revenue"), 60, lambda: 1)
        await cache.remember(CacheKeySpec.badge("Orders"), 60, lambda: 3)

        usage = await cache.get_memory_usage(CacheNamespace.BADGE)

        assert usage.namespace == "badge"
        assert list(usage.by_identity) == ["badge:orders"]

    @pytest.mark.asyncio
    async def test_memory_usage_unavailable(self, make_cache):
        usage = await make_cache(KeyValueOnlyStore()).get_memory_usage()

        assert usage.available is False
        assert "cannot enumerate" in usage.reason

    @pytest.mark.asyncio
    async def test_get_keys_from_index(self, make_cache):
        cache = make_cache(KeyValueOnlyStore())
        await cache.remember(CacheKeySpec.metric("revenue"), 60, lambda: 1)

        keys = await cache.get_keys("revenue")
        assert keys == [cache.key_deriver.derive(CacheKeySpec.metric("revenue"))]

    @pytest.mark.asyncio
    async def test_analyze_performance(self, cache):
        spec = CacheKeySpec.metric("revenue")
        await cache.remember(spec, 60, lambda: 1)
        await cache.remember(CacheKeySpec.metric("orders"), 60, lambda: 1)
        await cache.remember(spec, 60, lambda: 1)

        analysis = await cache.analyze_performance()

        assert analysis["stats"]["hit_ratio"] == pytest.approx(0.3333)
        assert any("Low cache hit ratio" in r for r in analysis["recommendations"])
        assert analysis["memory_usage"]["total_keys"] == 2

    @pytest.mark.asyncio
    async def test_reset_stats(self, cache):
        await cache.remember(CacheKeySpec.metric("revenue"), 60, lambda: 1)
        cache.reset_stats()

        assert cache.get_stats()["misses"] == 0

    @pytest.mark.asyncio
    async def test_health_check(self, cache):
        await cache.remember(CacheKeySpec.metric("revenue"), 60, lambda: 1)

        health = await cache.health_check()

        assert health["status"] == "healthy"
        assert health["store"]["keys"] == 1
        assert health["indexed_keys"] == 1


class TestDefaultWiring:
    """Test get_cache_manager()."""

    def test_shared_instance_built_from_settings(self):
        manager = get_cache_manager()

        assert manager is get_cache_manager()
        assert isinstance(manager.store, InMemoryCacheStore)
        assert manager.key_deriver.prefix == "admin_panel"

    @pytest.mark.asyncio
    async def test_empty_injected_collaborators_are_kept(self, test_settings, clock):
        """Test empty stores and indexes are used as given, not replaced."""
        store = InMemoryCacheStore(clock=clock)
        stats = StatsCollector()
        key_index = KeyIndex(10)

        cache = ComputedResultCache(
            store=store, stats=stats, key_index=key_index, settings=test_settings, clock=clock
        )

        assert cache.store is store
        assert cache.stats is stats
        assert cache.key_index is key_index
        assert cache.invalidation_service.store is store

        spec = CacheKeySpec.metric("revenue", range=30, timezone="UTC")
        await cache.remember(spec, Seconds(300), lambda: 125000)

        assert len(store) == 1
        assert await cache.remember(spec, Seconds(300), lambda: 999) == 125000
