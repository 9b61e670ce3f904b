"""
Cache Manager Service

High-level computed-result cache that orchestrates key derivation, TTL
normalization, the backing store, statistics, invalidation and warming.

Callers (dashboard metrics, menu badges, menu authorization checks) hand
over a CacheKeySpec, a TTL and a computation; the cache returns the value.
Caching is strictly an optimization: store failures degrade to recomputing,
computation failures propagate unchanged and are never cached.
"""

import inspect
import logging
from datetime import datetime
from functools import lru_cache
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

from opentelemetry import trace

from ...constants import get_current_timestamp
from ...core.config import Settings, get_settings
from ...domain.cache.domain_services import (
    CacheInvalidationService,
    KeyDeriver,
    KeyIndex,
    StatsCollector,
    TTLNormalizer,
    bounded,
)
from ...domain.cache.entities import (
    CacheEntry,
    CacheKeySpec,
    MemoryUsage,
    RememberResult,
    WarmRequest,
    WarmResult,
)
from ...domain.cache.repository_interfaces import CacheStore
from ...domain.cache.value_objects import (
    CacheNamespace,
    CacheOutcome,
    CacheTag,
    FOREVER,
    NO_CACHE,
    TTLSpec,
)
from ...infrastructure.repositories import create_cache_store
from .warmer import CacheWarmer

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

Compute = Callable[[], Union[Any, Awaitable[Any]]]
TagList = Optional[Iterable[Union[str, CacheTag]]]


async def resolve(compute: Callable[..., Any], *args: Any) -> Any:
    """Call a sync or async computation and return its value."""
    result = compute(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class ComputedResultCache:
    """
    Memoizing cache for expensive computed results.

    Collaborators are injected; anything omitted is built from settings.
    Concurrent misses on the same key may compute twice (last write wins):
    there is no lock around the computation.
    """

    def __init__(
        self,
        store: Optional[CacheStore] = None,
        stats: Optional[StatsCollector] = None,
        key_deriver: Optional[KeyDeriver] = None,
        ttl_normalizer: Optional[TTLNormalizer] = None,
        key_index: Optional[KeyIndex] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = get_current_timestamp,
    ):
        self.settings = settings or get_settings()
        self.store = store if store is not None else create_cache_store(self.settings)
        self.stats = stats if stats is not None else StatsCollector()
        self.key_deriver = (
            key_deriver if key_deriver is not None else KeyDeriver(self.settings.CACHE_KEY_PREFIX)
        )
        self.ttl_normalizer = ttl_normalizer if ttl_normalizer is not None else TTLNormalizer()
        self.key_index = (
            key_index
            if key_index is not None
            else KeyIndex(self.settings.CACHE_KEY_INDEX_MAX_KEYS)
        )
        self.timeout = self.settings.CACHE_STORE_TIMEOUT
        self._clock = clock

        self.invalidation_service = CacheInvalidationService(
            self.store, self.stats, self.key_deriver, self.key_index, self.timeout
        )
        self.warmer = CacheWarmer(
            self, concurrency=self.settings.CACHE_WARM_CONCURRENCY, settings=self.settings
        )

    # Memoization

    async def remember(
        self,
        spec: CacheKeySpec,
        ttl: Optional[TTLSpec],
        compute: Compute,
        tags: TagList = None,
    ) -> Any:
        """
        Return the cached value for spec, computing and storing it on a miss.

        Args:
            spec: Identity and parameters of the result
            ttl: Seconds, duration, instant, FOREVER, or None for the
                namespace default. Non-positive or past values disable
                caching for this call.
            compute: Zero-argument callable returning the value or an awaitable
            tags: Extra tags attached to a newly written entry

        Returns:
            The cached or freshly computed value
        """
        result = await self.remember_with_metadata(spec, ttl, compute, tags)
        return result.value

    async def remember_forever(
        self, spec: CacheKeySpec, compute: Compute, tags: TagList = None
    ) -> Any:
        """Remember a value without expiry."""
        return await self.remember(spec, FOREVER, compute, tags)

    async def remember_with_metadata(
        self,
        spec: CacheKeySpec,
        ttl: Optional[TTLSpec],
        compute: Compute,
        tags: TagList = None,
    ) -> RememberResult:
        """Same as remember() but reports how the value was served."""
        key = self.key_deriver.derive(spec)
        entry_tags = self._entry_tags(tags)
        now = self._clock()
        expires_at = self.ttl_normalizer.normalize(self._resolve_ttl(spec, ttl), now)

        with tracer.start_as_current_span("cache.remember") as span:
            span.set_attribute("cache.key", key)
            span.set_attribute("cache.namespace", spec.namespace.value)

            if expires_at is NO_CACHE:
                span.set_attribute("cache.outcome", CacheOutcome.BYPASS.value)
                value = await resolve(compute)
                return RememberResult(value=value, outcome=CacheOutcome.BYPASS, key=key)

            reason = None
            try:
                entry = await bounded(self.store.get(key), "get", self.timeout, key)
            except Exception as e:
                entry = None
                reason = f"{type(e).__name__}: {e}"
                logger.warning(
                    f"Cache read failed for {key}, computing fresh value: {e}",
                    extra={"key": key, "store": self.store.name},
                )

            if entry is not None and not entry.is_expired(now):
                self.stats.record_hit()
                span.set_attribute("cache.outcome", CacheOutcome.HIT.value)
                return RememberResult(
                    value=entry.value,
                    outcome=CacheOutcome.HIT,
                    key=key,
                    expires_at=entry.expires_at,
                    stored=True,
                )

            outcome = CacheOutcome.DEGRADED_MISS if reason else CacheOutcome.MISS
            self.stats.record_miss(degraded=reason is not None)
            span.set_attribute("cache.outcome", outcome.value)

            value = await resolve(compute)

            entry = CacheEntry(
                key=key,
                value=value,
                expires_at=None if expires_at is FOREVER else expires_at,
                tags=entry_tags,
                cached_at=self._clock(),
            )
            stored = await self._write(entry)
            span.set_attribute("cache.stored", stored)

            return RememberResult(
                value=value,
                outcome=outcome,
                key=key,
                expires_at=entry.expires_at,
                stored=stored,
                reason=reason,
            )

    async def get(self, spec: CacheKeySpec, default: Any = None) -> Any:
        """Get a cached value without computing, counting the hit or miss."""
        key = self.key_deriver.derive(spec)
        try:
            entry = await bounded(self.store.get(key), "get", self.timeout, key)
        except Exception as e:
            logger.warning(f"Cache read failed for {key}: {e}")
            self.stats.record_miss(degraded=True)
            return default

        if entry is None or entry.is_expired(self._clock()):
            self.stats.record_miss()
            return default

        self.stats.record_hit()
        return entry.value

    async def put(
        self,
        spec: CacheKeySpec,
        value: Any,
        ttl: Optional[TTLSpec] = None,
        tags: TagList = None,
    ) -> bool:
        """
        Store a value directly.

        Returns:
            True if the value was written (False when caching is disabled
            by the TTL or the store failed)
        """
        key = self.key_deriver.derive(spec)
        now = self._clock()
        expires_at = self.ttl_normalizer.normalize(self._resolve_ttl(spec, ttl), now)
        if expires_at is NO_CACHE:
            return False

        return await self._write(
            CacheEntry(
                key=key,
                value=value,
                expires_at=None if expires_at is FOREVER else expires_at,
                tags=self._entry_tags(tags),
                cached_at=now,
            )
        )

    async def cache_with_timestamp(
        self,
        spec: CacheKeySpec,
        value: Any,
        ttl: Optional[TTLSpec] = None,
        tags: TagList = None,
    ) -> Any:
        """Cache a result together with the instant it was cached."""
        await self.put(spec, value, ttl, tags)
        return value

    async def is_cache_fresh(
        self, spec: CacheKeySpec, reference_timestamp: Optional[datetime] = None
    ) -> bool:
        """
        Check a cached result against the age of its underlying data.

        Returns:
            True when no reference is given or the entry was cached at or
            after reference_timestamp; False when there is no usable entry
        """
        if reference_timestamp is None:
            return True

        key = self.key_deriver.derive(spec)
        try:
            entry = await bounded(self.store.get(key), "get", self.timeout, key)
        except Exception as e:
            logger.warning(f"Cache freshness check failed for {key}: {e}")
            return False

        if entry is None or entry.is_expired(self._clock()):
            return False

        if reference_timestamp.tzinfo is None:
            reference_timestamp = reference_timestamp.replace(
                tzinfo=entry.cached_at.tzinfo
            )
        return entry.is_fresh_since(reference_timestamp)

    # Invalidation

    async def forget(self, spec: CacheKeySpec) -> bool:
        """Remove the entry of one spec."""
        return await self.invalidation_service.forget(spec)

    async def forget_key(self, key: str) -> bool:
        """Remove one entry by derived key."""
        return await self.invalidation_service.forget_key(key)

    async def forget_pattern(self, pattern: str) -> int:
        """Remove every entry whose key matches a glob pattern."""
        return await self.invalidation_service.forget_pattern(pattern)

    async def forget_identity(
        self, identity: str, namespace: CacheNamespace = CacheNamespace.METRIC
    ) -> int:
        """Remove every entry of one identity."""
        return await self.invalidation_service.forget_identity(identity, namespace)

    async def forget_all(self, namespace: CacheNamespace) -> int:
        """Remove every entry of a feature namespace."""
        return await self.invalidation_service.forget_all(namespace)

    async def forget_tag(self, tag: Union[str, CacheTag]) -> int:
        """Remove every entry carrying a tag."""
        return await self.invalidation_service.forget_tag(tag)

    # Warming

    async def warm(
        self,
        identity: str,
        parameter_sets: Iterable[Dict[str, Any]],
        ttl: Optional[TTLSpec],
        compute: Callable[[Dict[str, Any]], Any],
        namespace: CacheNamespace = CacheNamespace.METRIC,
        tags: TagList = None,
    ) -> List[WarmResult]:
        """Pre-populate the cache for every parameter set of an identity."""
        return await self.warmer.warm(
            identity, parameter_sets, ttl, compute, namespace=namespace, tags=tags
        )

    async def warm_many(self, requests: Iterable[WarmRequest]) -> Dict[str, List[WarmResult]]:
        """Warm several identities."""
        return await self.warmer.warm_many(requests)

    # Statistics

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        return self.stats.snapshot().model_dump()

    def reset_stats(self) -> None:
        """Reset cache statistics."""
        self.stats.reset()

    async def get_keys(
        self, identity: str, namespace: CacheNamespace = CacheNamespace.METRIC
    ) -> List[str]:
        """
        Get cache keys of one identity.

        Uses store enumeration when available, otherwise the keys this
        process wrote.
        """
        pattern = self.key_deriver.identity_pattern(identity, namespace)
        if not self.store.capabilities.enumerate:
            return sorted(self.key_index.match(pattern))

        try:
            return await bounded(self.store.keys(pattern), "keys", self.timeout)
        except Exception as e:
            logger.error(f"Failed to list cache keys for {identity}: {e}")
            return []

    async def get_memory_usage(
        self, namespace: Optional[CacheNamespace] = None
    ) -> MemoryUsage:
        """
        Get key count and memory usage grouped by owning identity.

        Reported as unavailable when the store cannot enumerate its keys.
        """
        namespace_value = CacheNamespace(namespace).value if namespace else None

        if not self.store.capabilities.enumerate:
            return MemoryUsage(
                available=False,
                namespace=namespace_value,
                reason=f"Store '{self.store.name}' cannot enumerate its keys",
            )

        pattern = (
            self.key_deriver.namespace_pattern(namespace)
            if namespace
            else f"{self.key_deriver.prefix}:*"
        )

        with tracer.start_as_current_span("cache.memory_usage") as span:
            try:
                keys = await bounded(self.store.keys(pattern), "keys", self.timeout)
            except Exception as e:
                logger.error(f"Failed to enumerate cache keys: {e}")
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                return MemoryUsage(
                    available=False, namespace=namespace_value, reason=str(e)
                )

            total_keys = 0
            total_memory = 0
            by_identity: Dict[str, Dict[str, int]] = {}

            for key in keys:
                parsed = self.key_deriver.parse(key)
                if parsed is None:
                    continue

                memory = await self._memory_of(key)
                total_keys += 1
                total_memory += memory

                bucket = by_identity.setdefault(
                    ":".join(parsed), {"keys": 0, "memory": 0}
                )
                bucket["keys"] += 1
                bucket["memory"] += memory

            span.set_attribute("cache.total_keys", total_keys)

            return MemoryUsage(
                available=True,
                total_keys=total_keys,
                total_memory=total_memory,
                by_identity=by_identity,
                namespace=namespace_value,
            )

    async def analyze_performance(self) -> Dict[str, Any]:
        """
        Analyze cache performance.

        Returns:
            Stats, memory usage and tuning recommendations
        """
        stats = self.get_stats()
        memory_usage = await self.get_memory_usage()
        recommendations = []

        lookups = stats["hits"] + stats["misses"]
        if lookups > 0 and stats["hit_ratio"] < self.settings.CACHE_HIT_RATIO_WARNING:
            recommendations.append(
                "Low cache hit ratio. Consider increasing cache TTL or warming "
                "cache more frequently."
            )

        if stats["degraded_misses"] > 0 or stats["write_failures"] > 0:
            recommendations.append(
                "Cache store failures were masked as misses. Check store health."
            )

        if memory_usage.total_memory > self.settings.CACHE_MEMORY_WARNING_BYTES:
            recommendations.append(
                "High memory usage. Consider reducing cache TTL or implementing "
                "cache size limits."
            )

        return {
            "stats": stats,
            "memory_usage": memory_usage.model_dump(),
            "recommendations": recommendations,
        }

    async def health_check(self) -> Dict[str, Any]:
        """Perform cache health check."""
        with tracer.start_as_current_span("cache.health_check") as span:
            try:
                store_health = await bounded(
                    self.store.health_check(), "health_check", self.timeout
                )
            except Exception as e:
                logger.error(f"Cache store health check failed: {e}")
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                store_health = {"status": "unhealthy", "store": self.store.name, "error": str(e)}

            return {
                "status": store_health.get("status", "unknown"),
                "timestamp": self._clock().isoformat(),
                "store": store_health,
                "stats": self.get_stats(),
                "indexed_keys": len(self.key_index),
            }

    async def close(self) -> None:
        """Close the backing store."""
        try:
            await self.store.close()
            logger.info("Cache manager closed successfully")

        except Exception as e:
            logger.error(f"Failed to close cache manager: {e}")

    # Internals

    def _resolve_ttl(self, spec: CacheKeySpec, ttl: Optional[TTLSpec]) -> TTLSpec:
        return self.settings.ttl_for(spec.namespace) if ttl is None else ttl

    @staticmethod
    def _entry_tags(tags: TagList) -> frozenset:
        return frozenset(CacheTag.of(tag).value for tag in tags or ())

    async def _write(self, entry: CacheEntry) -> bool:
        try:
            await bounded(self.store.put(entry), "put", self.timeout, entry.key)
        except Exception as e:
            self.stats.record_write_failure()
            logger.warning(
                f"Cache write failed for {entry.key}, returning uncached value: {e}",
                extra={"key": entry.key, "store": self.store.name},
            )
            return False

        self.stats.record_write()
        self.key_index.add(entry.key)
        return True

    async def _memory_of(self, key: str) -> int:
        if not self.store.capabilities.memory_usage:
            return 0
        try:
            memory = await bounded(
                self.store.memory_usage(key), "memory_usage", self.timeout, key
            )
        except Exception as e:
            logger.debug(f"Memory usage unavailable for {key}: {e}")
            return 0
        return memory or 0


@lru_cache()
def get_cache_manager() -> ComputedResultCache:
    """Get the process-wide cache manager built from settings."""
    return ComputedResultCache()
