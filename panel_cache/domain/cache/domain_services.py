"""
Cache Domain Services

Business logic services for the computed-result cache.
Key derivation, TTL normalization, statistics and invalidation strategies.
"""

import asyncio
import fnmatch
import hashlib
import json
import logging
import math
import re
import threading
from collections import OrderedDict
from datetime import date, datetime, time as dt_time, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Dict, List, Mapping, Optional, Tuple, TypeVar, Union
from uuid import UUID

from opentelemetry import trace

from ...constants import (
    DIGEST_LENGTH,
    IDENTITY_SLUG_MAX_LENGTH,
    KEY_SEPARATOR,
    MAX_PATTERN_LENGTH,
    get_current_timestamp,
)
from ...core.config import get_settings
from .entities import CacheKeySpec, CacheStats
from .exceptions import InvalidPatternError, StoreTimeoutError, UnsupportedStoreOperation
from .repository_interfaces import CacheStore
from .value_objects import (
    AbsoluteInstant,
    CacheKey,
    CacheNamespace,
    CacheTag,
    FOREVER,
    NO_CACHE,
    OpaqueHandle,
    RelativeDuration,
    Seconds,
    TTLSentinel,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

T = TypeVar("T")

_SLUG_PATTERN = re.compile(r"[^a-z0-9_.-]")


async def bounded(
    awaitable: Awaitable[T], operation: str, timeout: float, key: Optional[str] = None
) -> T:
    """Await a store call, converting a timeout into StoreTimeoutError."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise StoreTimeoutError(operation, timeout, key) from e


def validate_pattern(pattern: Any) -> str:
    """
    Validate a glob invalidation pattern.

    Raises:
        InvalidPatternError: If the pattern is empty, too long, contains
            whitespace or has an unterminated character class
    """
    if not isinstance(pattern, str) or not pattern:
        raise InvalidPatternError(pattern, "pattern must be a non-empty string")
    if len(pattern) > MAX_PATTERN_LENGTH:
        raise InvalidPatternError(
            pattern, f"pattern too long (max {MAX_PATTERN_LENGTH} characters)"
        )
    if any(char.isspace() for char in pattern):
        raise InvalidPatternError(pattern, "pattern cannot contain whitespace")

    depth = 0
    escaped = False
    for char in pattern:
        if escaped:
            escaped = False
        elif char == "\\":
            escaped = True
        elif char == "[":
            depth += 1
        elif char == "]" and depth:
            depth -= 1
    if depth:
        raise InvalidPatternError(pattern, "unterminated character class")
    return pattern


class KeyDeriver:
    """
    Turns (identity, parameters) into a short deterministic cache key.

    Key layout: ``<prefix>:<namespace>:<identity-slug>:<digest>``. The digest
    covers the namespace, the full identity and the sorted, canonically
    encoded parameters, so parameter insertion order never matters.

    Non-serializable values (closures, bound methods, arbitrary objects) are
    keyed by runtime object identity. Two separately constructed but
    logically identical callables do not collide; pass an OpaqueHandle for
    keys that must be stable across objects and processes.
    """

    def __init__(self, prefix: Optional[str] = None):
        self.prefix = prefix or get_settings().CACHE_KEY_PREFIX

    def derive(self, spec: CacheKeySpec) -> str:
        """Derive the key of a spec."""
        return self.derive_from(spec.identity, spec.parameters, spec.namespace)

    def derive_from(
        self,
        identity: str,
        parameters: Optional[Mapping[str, Any]] = None,
        namespace: CacheNamespace = CacheNamespace.METRIC,
    ) -> str:
        """Derive a key from its parts."""
        if not identity:
            raise ValueError("Cache identity cannot be empty")

        namespace = CacheNamespace(namespace)
        pairs = sorted(
            (
                [str(name), self.canonicalize(value)]
                for name, value in (parameters or {}).items()
            ),
            key=lambda pair: (pair[0], json.dumps(pair[1], sort_keys=True)),
        )
        payload = json.dumps(
            [namespace.value, identity, pairs],
            separators=(",", ":"),
            ensure_ascii=False,
            sort_keys=True,
        )
        digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()[:DIGEST_LENGTH]

        key = CacheKey(
            KEY_SEPARATOR.join(
                [self.prefix, namespace.value, self.slug(identity), digest]
            )
        )
        return key.value

    def canonicalize(self, value: Any) -> Any:
        """Canonical JSON-compatible representation of a parameter value."""
        if isinstance(value, OpaqueHandle):
            return str(value)
        if isinstance(value, bool):
            return "1" if value else "0"
        if isinstance(value, Enum):
            return self.canonicalize(value.value)
        if isinstance(value, str):
            return value
        if isinstance(value, int):
            return str(value)
        if isinstance(value, float):
            if math.isfinite(value) and value.is_integer():
                return str(int(value))
            return repr(value)
        if isinstance(value, Decimal):
            if value.is_finite() and value == value.to_integral_value():
                return str(int(value))
            return str(value.normalize()) if value.is_finite() else str(value)
        if value is None:
            return "null"
        if isinstance(value, (datetime, date, dt_time)):
            return value.isoformat()
        if isinstance(value, UUID):
            return str(value)
        if isinstance(value, Mapping):
            return sorted(
                ([str(k), self.canonicalize(v)] for k, v in value.items()),
                key=lambda pair: (pair[0], json.dumps(pair[1], sort_keys=True)),
            )
        if isinstance(value, (set, frozenset)):
            return sorted(
                (self.canonicalize(item) for item in value),
                key=lambda item: json.dumps(item, sort_keys=True),
            )
        if isinstance(value, (list, tuple)):
            return [self.canonicalize(item) for item in value]
        if callable(value):
            return self.object_token(value)
        return str(value)

    @staticmethod
    def object_token(value: Any) -> str:
        """Per-object token based on runtime identity."""
        return f"ref:{type(value).__qualname__}:{id(value):x}"

    @staticmethod
    def slug(identity: str) -> str:
        """Key-safe, glob-safe rendition of an identity."""
        return _SLUG_PATTERN.sub("_", identity.lower())[:IDENTITY_SLUG_MAX_LENGTH]

    def namespace_pattern(self, namespace: CacheNamespace) -> str:
        """Glob matching every key of a namespace."""
        return KEY_SEPARATOR.join(
            [self.prefix, CacheNamespace(namespace).value, "*"]
        )

    def identity_pattern(
        self, identity: str, namespace: CacheNamespace = CacheNamespace.METRIC
    ) -> str:
        """
        Glob matching every key of one identity.

        Matches on the slug, so identities that slug alike share a pattern:
        "Revenue Metric" and "revenue_metric" are forgotten together.
        """
        return KEY_SEPARATOR.join(
            [self.prefix, CacheNamespace(namespace).value, self.slug(identity), "*"]
        )

    def parse(self, key: str) -> Optional[Tuple[str, str]]:
        """Return (namespace, identity slug) of a derived key, or None."""
        parts = key.rsplit(KEY_SEPARATOR, 3)
        if len(parts) != 4 or parts[0] != self.prefix:
            return None
        return parts[1], parts[2]


class TTLNormalizer:
    """
    Normalizes TTL specifications to an absolute expiry instant.

    Never raises: a malformed or non-positive TTL yields NO_CACHE so a
    misconfigured duration always recomputes instead of breaking the caller.
    """

    def normalize(
        self, ttl: Any, now: Optional[datetime] = None
    ) -> Union[datetime, TTLSentinel]:
        """Normalize ttl relative to now."""
        now = now or get_current_timestamp()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)

        if isinstance(ttl, TTLSentinel):
            return ttl

        try:
            if isinstance(ttl, Seconds):
                return self._from_seconds(ttl.seconds, now)
            if isinstance(ttl, (int, float)) and not isinstance(ttl, bool):
                return self._from_seconds(ttl, now)
            if isinstance(ttl, RelativeDuration):
                return self._from_instant(now + ttl.duration, now)
            if isinstance(ttl, timedelta):
                return self._from_instant(now + ttl, now)
            if isinstance(ttl, AbsoluteInstant):
                return self._from_instant(ttl.aware_instant, now)
            if isinstance(ttl, datetime):
                return self._from_instant(AbsoluteInstant(ttl).aware_instant, now)
        except (OverflowError, ValueError, TypeError) as e:
            logger.warning(
                f"Malformed cache TTL {ttl!r}, caching disabled for this call: {e}"
            )
            return NO_CACHE

        logger.warning(
            f"Unsupported cache TTL {ttl!r}, caching disabled for this call"
        )
        return NO_CACHE

    @staticmethod
    def _from_seconds(seconds: Any, now: datetime) -> Union[datetime, TTLSentinel]:
        seconds = float(seconds)
        if math.isnan(seconds) or seconds <= 0:
            return NO_CACHE
        return now + timedelta(seconds=seconds)

    @staticmethod
    def _from_instant(instant: datetime, now: datetime) -> Union[datetime, TTLSentinel]:
        return NO_CACHE if instant <= now else instant


class StatsCollector:
    """
    Process-local cache counters.

    Counters live only as long as the process; multi-process deployments
    must sum snapshots externally.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._counters: Dict[str, int] = {}
        self.reset()

    def reset(self) -> None:
        """Reset cache statistics."""
        with self._lock:
            self._counters = {
                "hits": 0,
                "misses": 0,
                "writes": 0,
                "deletes": 0,
                "degraded_misses": 0,
                "write_failures": 0,
            }

    def record_hit(self) -> None:
        self._increment("hits")

    def record_miss(self, degraded: bool = False) -> None:
        with self._lock:
            self._counters["misses"] += 1
            if degraded:
                self._counters["degraded_misses"] += 1

    def record_write(self) -> None:
        self._increment("writes")

    def record_write_failure(self) -> None:
        self._increment("write_failures")

    def record_delete(self, count: int = 1) -> None:
        if count > 0:
            self._increment("deletes", count)

    def _increment(self, name: str, amount: int = 1) -> None:
        with self._lock:
            self._counters[name] += amount

    @property
    def hit_ratio(self) -> float:
        """Get cache hit ratio."""
        with self._lock:
            return self._ratio(self._counters)

    @staticmethod
    def _ratio(counters: Dict[str, int]) -> float:
        total = counters["hits"] + counters["misses"]
        return counters["hits"] / total if total > 0 else 0.0

    def snapshot(self) -> CacheStats:
        """Get cache statistics."""
        with self._lock:
            counters = dict(self._counters)

        return CacheStats(
            **counters,
            hit_ratio=self._ratio(counters),
            total_operations=counters["hits"]
            + counters["misses"]
            + counters["writes"]
            + counters["deletes"],
        )


class KeyIndex:
    """
    Secondary index of keys written by this process.

    Backs pattern invalidation on stores that cannot scan their own keys.
    Keys written by other processes are invisible to it. Bounded: once full,
    the oldest keys are dropped first.
    """

    def __init__(self, max_keys: Optional[int] = None):
        self.max_keys = max_keys or get_settings().CACHE_KEY_INDEX_MAX_KEYS
        self._keys: "OrderedDict[str, None]" = OrderedDict()
        self._lock = threading.Lock()

    def add(self, key: str) -> None:
        with self._lock:
            self._keys[key] = None
            self._keys.move_to_end(key)
            while len(self._keys) > self.max_keys:
                self._keys.popitem(last=False)

    def discard(self, key: str) -> None:
        with self._lock:
            self._keys.pop(key, None)

    def match(self, pattern: str) -> List[str]:
        """Indexed keys matching a glob pattern."""
        with self._lock:
            keys = list(self._keys)
        return [key for key in keys if fnmatch.fnmatchcase(key, pattern)]

    def discard_matching(self, pattern: str) -> None:
        for key in self.match(pattern):
            self.discard(key)

    def __contains__(self, key: str) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)


class CacheInvalidationService:
    """
    Domain service for cache invalidation strategies.

    Forgets single keys, glob patterns, whole identities, whole namespaces
    and tags. Every operation is idempotent and never raises on store
    failure: it logs and reports what was actually removed.
    """

    def __init__(
        self,
        store: CacheStore,
        stats: StatsCollector,
        key_deriver: KeyDeriver,
        key_index: KeyIndex,
        timeout: Optional[float] = None,
    ):
        self.store = store
        self.stats = stats
        self.key_deriver = key_deriver
        self.key_index = key_index
        self.timeout = timeout or get_settings().CACHE_STORE_TIMEOUT

    async def forget(self, spec: CacheKeySpec) -> bool:
        """
        Remove exactly the key derived from spec.

        Returns:
            True if an entry was removed
        """
        return await self.forget_key(self.key_deriver.derive(spec))

    async def forget_key(self, key: str) -> bool:
        """Remove one key by its derived name."""
        with tracer.start_as_current_span("cache.forget") as span:
            span.set_attribute("cache.key", key)

            removed = await self._forget_one(key)
            if removed:
                self.stats.record_delete()

            span.set_attribute("cache.removed", removed)
            return removed

    async def forget_pattern(self, pattern: str) -> int:
        """
        Remove every key matching a glob pattern.

        Uses native store scanning when available, otherwise the key index.

        Returns:
            Number of entries removed
        """
        with tracer.start_as_current_span("cache.forget_pattern") as span:
            span.set_attribute("cache.pattern", str(pattern))

            try:
                pattern = validate_pattern(pattern)
            except InvalidPatternError as e:
                logger.warning(
                    f"Ignoring invalid invalidation pattern {pattern!r}: {e.message}",
                    extra=e.details,
                )
                return 0

            if self.store.capabilities.pattern_scan:
                try:
                    removed = await bounded(
                        self.store.flush_pattern(pattern), "flush_pattern", self.timeout
                    )
                    self.key_index.discard_matching(pattern)
                except UnsupportedStoreOperation:
                    removed = await self._forget_indexed(pattern)
                except Exception as e:
                    logger.error(f"Failed to invalidate cache pattern {pattern}: {e}")
                    span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                    return 0
            else:
                removed = await self._forget_indexed(pattern)

            self.stats.record_delete(removed)
            span.set_attribute("cache.removed", removed)

            logger.info(
                f"Invalidated {removed} cache entries matching {pattern}",
                extra={"pattern": pattern, "count": removed},
            )
            return removed

    async def forget_identity(
        self, identity: str, namespace: CacheNamespace = CacheNamespace.METRIC
    ) -> int:
        """Remove every key of one identity."""
        return await self.forget_pattern(
            self.key_deriver.identity_pattern(identity, namespace)
        )

    async def forget_all(self, namespace: CacheNamespace) -> int:
        """Remove every key of one feature namespace."""
        return await self.forget_pattern(self.key_deriver.namespace_pattern(namespace))

    async def forget_tag(self, tag: Union[str, CacheTag]) -> int:
        """
        Remove every key carrying a tag.

        Returns:
            Number of entries removed (0 when the store has no tag support)
        """
        tag = CacheTag.of(tag)

        with tracer.start_as_current_span("cache.forget_tag") as span:
            span.set_attribute("cache.tag", tag.value)

            if not self.store.capabilities.tags:
                logger.debug(
                    f"Store {self.store.name} has no tag support, skipping tag {tag}"
                )
                return 0

            try:
                removed = await bounded(
                    self.store.flush_tag(tag.value), "flush_tag", self.timeout
                )
            except UnsupportedStoreOperation:
                return 0
            except Exception as e:
                logger.error(f"Failed to invalidate cache tag {tag}: {e}")
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                return 0

            self.stats.record_delete(removed)
            span.set_attribute("cache.removed", removed)
            return removed

    async def _forget_indexed(self, pattern: str) -> int:
        removed = 0
        for key in self.key_index.match(pattern):
            if await self._forget_one(key):
                removed += 1
        return removed

    async def _forget_one(self, key: str) -> bool:
        try:
            removed = await bounded(self.store.forget(key), "forget", self.timeout, key)
        except Exception as e:
            logger.error(f"Failed to forget cache key {key}: {e}")
            return False

        self.key_index.discard(key)
        return bool(removed)
