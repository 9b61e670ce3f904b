"""
Redis Cache Repository Implementation

Infrastructure implementation of the cache store interface using Redis.
Entries are JSON payloads with native Redis expiry; tags are Redis sets of
member keys. A tag set expires no earlier than its longest-lived member and
loses members when they are forgotten or flushed by pattern.
"""

import asyncio
import json
import logging
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

from redis.asyncio import Redis
from redis.exceptions import RedisError

from opentelemetry import trace

from ...constants import KEY_SEPARATOR, TAG_INDEX_SEGMENT
from ...core.config import get_settings
from ...domain.cache.entities import CacheEntry
from ...domain.cache.exceptions import (
    CacheStoreException,
    StoreReadError,
    StoreWriteError,
)
from ...domain.cache.repository_interfaces import CacheStore, StoreCapabilities
from ..redis.connection_factory import RedisConnectionFactory
from ..redis.exceptions import RedisException

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class RedisCacheStore(CacheStore):
    """
    Redis implementation of the cache store.

    Values are serialized with ``json.dumps(default=str)``: anything that is
    not JSON-native comes back as its string form.
    """

    name = "redis"
    capabilities = StoreCapabilities(
        pattern_scan=True, tags=True, enumerate=True, memory_usage=True
    )

    def __init__(
        self,
        connection_factory: Optional[RedisConnectionFactory] = None,
        prefix: Optional[str] = None,
        scan_count: int = 100,
    ):
        self.connection_factory = connection_factory or RedisConnectionFactory()
        self.tag_prefix = KEY_SEPARATOR.join(
            [prefix or get_settings().CACHE_KEY_PREFIX, TAG_INDEX_SEGMENT, ""]
        )
        self.scan_count = scan_count

    async def get(self, key: str) -> Optional[CacheEntry]:
        raw = await self._execute("get", key, StoreReadError, lambda client: client.get(key))
        if raw is None:
            return None

        try:
            return self._deserialize_entry(key, raw)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Corrupted cache payload for {key}: {e}")
            raise StoreReadError(key=key, original_error=e, operation="decode") from e

    async def put(self, entry: CacheEntry) -> None:
        start_time = time.time()

        try:
            payload = self._serialize_entry(entry)
        except (ValueError, TypeError) as e:
            raise StoreWriteError(key=entry.key, original_error=e, operation="encode") from e

        ttl_seconds = entry.ttl_seconds()
        tag_keys = [self._tag_key(tag) for tag in sorted(entry.tags)]

        async def _write(client: Redis) -> None:
            if ttl_seconds is None:
                await client.set(entry.key, payload)
            else:
                await client.set(entry.key, payload, ex=ttl_seconds)
            for tag_key in tag_keys:
                await self._index_tag(client, tag_key, entry.key, ttl_seconds)

        await self._execute("put", entry.key, StoreWriteError, _write)

        logger.debug(
            f"Saved cache entry: {entry.key}",
            extra={
                "ttl": ttl_seconds,
                "tags": tag_keys,
                "execution_time_ms": (time.time() - start_time) * 1000,
            },
        )

    async def forget(self, key: str) -> bool:
        async def _forget(client: Redis) -> int:
            payload = await client.get(key)
            removed = await client.unlink(key)
            await self._unindex(client, [key], [payload])
            return removed

        removed = await self._execute("forget", key, StoreWriteError, _forget)
        return removed > 0

    async def flush_pattern(self, pattern: str) -> int:
        with tracer.start_as_current_span("redis_cache.flush_pattern") as span:
            span.set_attribute("cache.pattern", pattern)

            async def _flush(client: Redis) -> int:
                keys_to_delete = await self._scan(client, pattern)
                # Use UNLINK for non-blocking deletion
                if not keys_to_delete:
                    return 0
                payloads = await client.mget(keys_to_delete)
                removed = await client.unlink(*keys_to_delete)
                await self._unindex(client, keys_to_delete, payloads)
                return removed

            count = await self._execute("flush_pattern", None, StoreWriteError, _flush)
            span.set_attribute("cache.removed", count)
            return count

    async def flush_tag(self, tag: str) -> int:
        tag_key = self._tag_key(tag)

        async def _flush(client: Redis) -> int:
            members = await client.smembers(tag_key)
            count = await client.unlink(*members) if members else 0
            await client.unlink(tag_key)
            return count

        return await self._execute("flush_tag", tag_key, StoreWriteError, _flush)

    async def keys(self, pattern: str = "*") -> List[str]:
        async def _keys(client: Redis) -> List[str]:
            return sorted(await self._scan(client, pattern))

        return await self._execute("keys", None, StoreReadError, _keys)

    async def memory_usage(self, key: str) -> Optional[int]:
        return await self._execute(
            "memory_usage", key, StoreReadError, lambda client: client.memory_usage(key)
        )

    async def health_check(self) -> Dict[str, Any]:
        health_status = await self.connection_factory.health_check()
        health_status["store"] = self.name
        return health_status

    async def close(self) -> None:
        await self.connection_factory.close()

    async def _scan(self, client: Redis, pattern: str) -> List[str]:
        """Cursor-based SCAN that skips the tag index keys."""
        found: List[str] = []
        cursor = 0
        while True:
            cursor, keys = await client.scan(cursor, match=pattern, count=self.scan_count)
            found.extend(key for key in keys if not key.startswith(self.tag_prefix))
            if cursor == 0:
                break
        return found

    async def _execute(
        self,
        operation: str,
        key: Optional[str],
        error_class: Type[CacheStoreException],
        call: Callable[[Redis], Awaitable[Any]],
    ) -> Any:
        """Run a Redis call behind the circuit breaker, translating errors."""
        try:
            client = self.connection_factory.get_client()
            return await self.connection_factory.circuit_breaker.call(call, client)
        except (RedisError, RedisException, OSError, asyncio.TimeoutError) as e:
            logger.error(f"Redis cache {operation} failed for {key or '-'}: {e}")
            raise error_class(key=key, original_error=e, operation=operation) from e

    @staticmethod
    async def _index_tag(
        client: Redis, tag_key: str, key: str, ttl_seconds: Optional[int]
    ) -> None:
        """Add key to a tag set, keeping the set alive as long as its members."""
        remaining = await client.ttl(tag_key)  # -2 missing, -1 persistent
        await client.sadd(tag_key, key)

        if ttl_seconds is None:
            if remaining >= 0:
                await client.persist(tag_key)
        elif remaining == -2 or 0 <= remaining < ttl_seconds:
            await client.expire(tag_key, ttl_seconds)

    async def _unindex(
        self, client: Redis, keys: List[str], payloads: List[Optional[str]]
    ) -> None:
        """Remove deleted keys from the tag sets named in their payloads."""
        members_by_tag: Dict[str, List[str]] = {}
        for key, payload in zip(keys, payloads):
            for tag in self._payload_tags(payload):
                members_by_tag.setdefault(self._tag_key(tag), []).append(key)

        for tag_key, members in members_by_tag.items():
            await client.srem(tag_key, *members)

    @staticmethod
    def _payload_tags(payload: Optional[str]) -> List[str]:
        if payload is None:
            return []
        try:
            return list(json.loads(payload).get("tags") or [])
        except (ValueError, AttributeError):
            return []

    def _tag_key(self, tag: str) -> str:
        return f"{self.tag_prefix}{tag}"

    @staticmethod
    def _serialize_entry(entry: CacheEntry) -> str:
        return json.dumps(
            {
                "value": entry.value,
                "cached_at": entry.cached_at.isoformat(),
                "expires_at": entry.expires_at.isoformat() if entry.expires_at else None,
                "tags": sorted(entry.tags),
            },
            default=str,
        )

    @staticmethod
    def _deserialize_entry(key: str, raw: str) -> CacheEntry:
        data = json.loads(raw)
        expires_at = data.get("expires_at")
        return CacheEntry(
            key=key,
            value=data["value"],
            expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
            tags=frozenset(data.get("tags") or []),
            cached_at=datetime.fromisoformat(data["cached_at"]),
        )
