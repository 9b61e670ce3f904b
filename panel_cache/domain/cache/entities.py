"""
Cache Domain Entities

Core domain entities for the computed-result cache.
Encapsulates key specifications, stored entries and per-call outcomes.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any, List, Mapping, Callable, FrozenSet

from pydantic import BaseModel, Field, field_validator

from ...constants import (
    get_current_timestamp,
    WARM_STATUS_ALREADY_CACHED,
    WARM_STATUS_WARMED,
    WARM_STATUS_NOT_CACHED,
)
from .value_objects import CacheNamespace, CacheOutcome, TTLSpec


@dataclass(frozen=True)
class CacheKeySpec:
    """
    Identity plus parameter bag of one cacheable result.

    Parameter order is insignificant: two specs with the same identity,
    namespace and parameters derive the same key.
    """

    identity: str
    parameters: Mapping[str, Any] = field(default_factory=dict)
    namespace: CacheNamespace = CacheNamespace.METRIC

    def __post_init__(self) -> None:
        if not isinstance(self.identity, str) or not self.identity.strip():
            raise ValueError("Cache identity cannot be empty")
        object.__setattr__(self, "namespace", CacheNamespace(self.namespace))
        object.__setattr__(self, "parameters", dict(self.parameters or {}))

    @classmethod
    def metric(
        cls,
        identity: str,
        range: Any = "default",
        timezone: str = "UTC",
        user_id: Any = None,
        **extra: Any,
    ) -> "CacheKeySpec":
        """Create a dashboard metric spec, optionally scoped to one user."""
        parameters: Dict[str, Any] = {"range": range, "timezone": timezone}
        parameters.update(extra)
        if user_id is not None:
            parameters["user"] = user_id
        return cls(identity, parameters, CacheNamespace.METRIC)

    @classmethod
    def badge(
        cls, name: str, path: Optional[str] = None, with_request: bool = False
    ) -> "CacheKeySpec":
        """Create a menu badge spec."""
        return cls(
            name,
            {"path": path or "section", "with_request": with_request},
            CacheNamespace.BADGE,
        )

    @classmethod
    def menu_authorization(
        cls, name: str, path: Optional[str] = None, handle: Any = None
    ) -> "CacheKeySpec":
        """
        Create a menu-section authorization spec.

        ``handle`` identifies the authorization callback. Prefer an
        OpaqueHandle; a raw callable is keyed by object identity.
        """
        return cls(
            name,
            {"path": path or "", "callback": handle if handle is not None else "none"},
            CacheNamespace.MENU_AUTH,
        )

    def with_parameters(self, **parameters: Any) -> "CacheKeySpec":
        """Copy of this spec with extra or replaced parameters."""
        merged = dict(self.parameters)
        merged.update(parameters)
        return CacheKeySpec(self.identity, merged, self.namespace)


@dataclass
class CacheEntry:
    """
    Stored cache entry.

    Owned by the backing store; the cache core only builds entries to hand
    them over and reads them back within a single call.
    """

    key: str
    value: Any
    expires_at: Optional[datetime] = None  # None means never
    tags: FrozenSet[str] = field(default_factory=frozenset)
    cached_at: datetime = field(default_factory=get_current_timestamp)

    def __post_init__(self) -> None:
        self.tags = frozenset(str(tag) for tag in self.tags)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Check if cache entry is expired."""
        if self.expires_at is None:
            return False
        return (now or get_current_timestamp()) >= self.expires_at

    def ttl_seconds(self, now: Optional[datetime] = None) -> Optional[int]:
        """Remaining lifetime in whole seconds (None when it never expires)."""
        if self.expires_at is None:
            return None
        remaining = (self.expires_at - (now or get_current_timestamp())).total_seconds()
        return max(1, int(remaining + 0.999))

    def is_fresh_since(self, reference: datetime) -> bool:
        """Check whether the entry was cached at or after reference."""
        return self.cached_at >= reference

    def estimate_size(self) -> int:
        """Rough size of the cached value in bytes."""
        return len(json.dumps(self.value, default=str))


@dataclass
class RememberResult:
    """Value returned by a remember call plus how it was served."""

    value: Any
    outcome: CacheOutcome
    key: str
    expires_at: Optional[datetime] = None
    stored: bool = False
    reason: Optional[str] = None

    @property
    def is_hit(self) -> bool:
        return self.outcome == CacheOutcome.HIT

    @property
    def is_degraded(self) -> bool:
        return self.outcome == CacheOutcome.DEGRADED_MISS


@dataclass
class WarmRequest:
    """One identity to warm across a finite list of parameter sets."""

    identity: str
    parameter_sets: List[Mapping[str, Any]]
    compute: Callable[[Dict[str, Any]], Any]
    namespace: CacheNamespace = CacheNamespace.METRIC
    ttl: Optional[TTLSpec] = None
    tags: List[str] = field(default_factory=list)


@dataclass
class WarmResult:
    """Outcome of warming one parameter set."""

    parameters: Dict[str, Any]
    status: str
    key: Optional[str] = None
    value: Any = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status in (
            WARM_STATUS_WARMED,
            WARM_STATUS_ALREADY_CACHED,
            WARM_STATUS_NOT_CACHED,
        )


class CacheStats(BaseModel):
    """Snapshot of process-local cache counters."""

    hits: int = Field(0, ge=0, description="Lookups served from the store")
    misses: int = Field(0, ge=0, description="Lookups that had to compute")
    writes: int = Field(0, ge=0, description="Entries written to the store")
    deletes: int = Field(0, ge=0, description="Entries actually removed")
    degraded_misses: int = Field(
        0, ge=0, description="Misses caused by a failing store read"
    )
    write_failures: int = Field(0, ge=0, description="Store writes that failed")
    hit_ratio: float = Field(0.0, ge=0, le=1, description="hits / (hits + misses)")
    total_operations: int = Field(
        0, ge=0, description="hits + misses + writes + deletes"
    )

    @field_validator("hit_ratio")
    @classmethod
    def round_hit_ratio(cls, v):
        return round(v, 4)


class MemoryUsage(BaseModel):
    """Key count and memory breakdown grouped by owning identity."""

    available: bool = Field(..., description="Whether the store could enumerate keys")
    total_keys: int = Field(0, ge=0)
    total_memory: int = Field(0, ge=0, description="Bytes reported by the store")
    by_identity: Dict[str, Dict[str, int]] = Field(default_factory=dict)
    namespace: Optional[str] = Field(None, description="Namespace filter, if any")
    reason: Optional[str] = Field(None, description="Why the breakdown is unavailable")
    generated_at: datetime = Field(default_factory=get_current_timestamp)
