"""
Cache Value Objects

Immutable value objects for the computed-result cache.
Provides type safety for keys, tags, namespaces and TTL specifications.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Union


class CacheNamespace(str, Enum):
    """Feature namespaces that own cache keys."""

    METRIC = "metric"
    BADGE = "badge"
    MENU_AUTH = "menu_auth"


class CacheOutcome(str, Enum):
    """How a remember call was served."""

    HIT = "hit"
    MISS = "miss"
    DEGRADED_MISS = "degraded_miss"  # store outage masked as a miss
    BYPASS = "bypass"  # caching disabled for this call


class TTLSentinel(str, Enum):
    """Special expiry values produced by TTL normalization."""

    NO_CACHE = "no_cache"
    FOREVER = "forever"


NO_CACHE = TTLSentinel.NO_CACHE
FOREVER = TTLSentinel.FOREVER


@dataclass(frozen=True)
class CacheKey:
    """
    Immutable cache key value object.

    Enforces key naming conventions and provides validation.
    """

    value: str

    def __post_init__(self) -> None:
        """Validate cache key format."""
        if not self.value:
            raise ValueError("Cache key cannot be empty")

        if len(self.value) > 250:
            raise ValueError("Cache key too long (max 250 characters)")

        # Validate no whitespace in key
        if any(char.isspace() for char in self.value):
            raise ValueError("Cache key cannot contain whitespace")

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class CacheTag:
    """
    Cache tag value object for cache invalidation groups.

    Allows invalidating multiple cache entries by tag.
    """

    value: str

    def __post_init__(self) -> None:
        """Validate tag value."""
        if not self.value:
            raise ValueError("Cache tag cannot be empty")
        if len(self.value) > 100:
            raise ValueError("Cache tag too long (max 100 characters)")
        if any(char.isspace() for char in self.value):
            raise ValueError("Cache tag cannot contain whitespace")

    @classmethod
    def namespace(cls, namespace: CacheNamespace) -> "CacheTag":
        """Create namespace-wide cache tag."""
        return CacheTag(f"namespace:{CacheNamespace(namespace).value}")

    @classmethod
    def of(cls, tag: Union[str, "CacheTag"]) -> "CacheTag":
        """Coerce a string or tag into a tag."""
        return tag if isinstance(tag, CacheTag) else CacheTag(str(tag))

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class OpaqueHandle:
    """
    Stable caller-chosen identifier for a non-serializable computation.

    Pass one of these in a parameter bag instead of a closure to get keys
    that do not depend on runtime object identity.
    """

    tag: str

    def __post_init__(self) -> None:
        if not self.tag:
            raise ValueError("Opaque handle tag cannot be empty")

    def __str__(self) -> str:
        return f"handle:{self.tag}"


@dataclass(frozen=True)
class Seconds:
    """TTL given as a number of seconds."""

    seconds: float

    @classmethod
    def minutes(cls, minutes: float) -> "Seconds":
        """Create TTL from minutes."""
        return cls(minutes * 60)

    @classmethod
    def hours(cls, hours: float) -> "Seconds":
        """Create TTL from hours."""
        return cls(hours * 3600)

    @classmethod
    def days(cls, days: float) -> "Seconds":
        """Create TTL from days."""
        return cls(days * 86400)

    def __str__(self) -> str:
        return f"{self.seconds}s"


@dataclass(frozen=True)
class RelativeDuration:
    """TTL given as a duration relative to now."""

    duration: timedelta

    def __str__(self) -> str:
        return f"+{self.duration}"


@dataclass(frozen=True)
class AbsoluteInstant:
    """TTL given as an absolute expiry instant."""

    instant: datetime

    @property
    def aware_instant(self) -> datetime:
        """Instant with naive values interpreted as UTC."""
        if self.instant.tzinfo is None:
            return self.instant.replace(tzinfo=timezone.utc)
        return self.instant

    def __str__(self) -> str:
        return f"@{self.aware_instant.isoformat()}"


TTLSpec = Union[Seconds, RelativeDuration, AbsoluteInstant, TTLSentinel, int, float, timedelta, datetime]
