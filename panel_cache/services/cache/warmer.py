"""
Cache Warming Service

Pre-populates computed results for a finite list of parameter sets so the
first request of a period does not pay for the computation.
"""

import asyncio
import itertools
from functools import partial
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional, Set

import structlog

from ...constants import (
    WARM_STATUS_ALREADY_CACHED,
    WARM_STATUS_ERROR,
    WARM_STATUS_NOT_CACHED,
    WARM_STATUS_WARMED,
)
from ...core.config import Settings, get_settings
from ...domain.cache.entities import CacheKeySpec, WarmRequest, WarmResult
from ...domain.cache.value_objects import CacheNamespace, CacheOutcome, TTLSpec

if TYPE_CHECKING:
    from .cache_manager import ComputedResultCache

logger = structlog.get_logger()

_STATUS_BY_OUTCOME = {
    CacheOutcome.HIT: WARM_STATUS_ALREADY_CACHED,
    CacheOutcome.MISS: WARM_STATUS_WARMED,
    CacheOutcome.DEGRADED_MISS: WARM_STATUS_WARMED,
    CacheOutcome.BYPASS: WARM_STATUS_NOT_CACHED,
}


class CacheWarmer:
    """
    Warms one identity across many parameter sets with bounded parallelism.

    Each parameter set is independent: a failing computation is reported in
    its own result and never aborts the rest. Cancelling a warm run stops
    parameter sets that have not started; calls already issued complete.
    """

    def __init__(
        self,
        cache: "ComputedResultCache",
        concurrency: Optional[int] = None,
        settings: Optional[Settings] = None,
    ):
        self.cache = cache
        self.settings = settings or get_settings()
        self.concurrency = max(1, concurrency or self.settings.CACHE_WARM_CONCURRENCY)
        # In-flight calls of cancelled warm runs, held until they finish
        self._abandoned: Set[asyncio.Task] = set()

    async def warm(
        self,
        identity: str,
        parameter_sets: Iterable[Dict[str, Any]],
        ttl: Optional[TTLSpec],
        compute: Callable[[Dict[str, Any]], Any],
        namespace: CacheNamespace = CacheNamespace.METRIC,
        tags: Optional[Iterable[str]] = None,
    ) -> List[WarmResult]:
        """
        Warm cache entries of one identity.

        Args:
            identity: Stable identity of the computation
            parameter_sets: Parameter bags to warm, one cache entry each
            ttl: Lifetime of the warmed entries (None for the namespace default)
            compute: Called with a copy of each parameter set
            namespace: Feature namespace of the entries
            tags: Extra tags attached to the warmed entries

        Returns:
            One result per parameter set, in input order
        """
        parameter_sets = [dict(parameters) for parameters in parameter_sets]
        tags = list(tags or [])
        semaphore = asyncio.Semaphore(self.concurrency)

        results = await asyncio.gather(
            *(
                self._warm_one(semaphore, identity, parameters, ttl, compute, namespace, tags)
                for parameters in parameter_sets
            )
        )

        logger.info(
            "Cache warming completed",
            identity=identity,
            namespace=CacheNamespace(namespace).value,
            total=len(results),
            warmed=sum(1 for r in results if r.status == WARM_STATUS_WARMED),
            already_cached=sum(1 for r in results if r.status == WARM_STATUS_ALREADY_CACHED),
            errors=sum(1 for r in results if r.status == WARM_STATUS_ERROR),
        )
        return list(results)

    async def warm_many(self, requests: Iterable[WarmRequest]) -> Dict[str, List[WarmResult]]:
        """Warm several identities one after another."""
        results: Dict[str, List[WarmResult]] = {}
        for request in requests:
            results[request.identity] = await self.warm(
                request.identity,
                request.parameter_sets,
                request.ttl,
                request.compute,
                namespace=request.namespace,
                tags=request.tags,
            )
        return results

    def default_parameter_sets(
        self, ranges: Iterable[Any], timezones: Optional[Iterable[str]] = None
    ) -> List[Dict[str, Any]]:
        """
        Cross product of metric ranges and timezones.

        Every set carries both ``range`` and ``timezone`` so warmed keys match
        the ones CacheKeySpec.metric derives at request time.
        """
        if timezones is None:
            timezones = self.settings.warm_timezones_list
        return [
            {"range": range_value, "timezone": tz}
            for range_value, tz in itertools.product(list(ranges), list(timezones))
        ]

    async def _warm_one(
        self,
        semaphore: asyncio.Semaphore,
        identity: str,
        parameters: Dict[str, Any],
        ttl: Optional[TTLSpec],
        compute: Callable[[Dict[str, Any]], Any],
        namespace: CacheNamespace,
        tags: List[str],
    ) -> WarmResult:
        async with semaphore:
            key = None
            try:
                spec = CacheKeySpec(identity, parameters, namespace)
                key = self.cache.key_deriver.derive(spec)
                call = asyncio.ensure_future(
                    self.cache.remember_with_metadata(
                        spec, ttl, partial(compute, dict(parameters)), tags
                    )
                )
                try:
                    result = await asyncio.shield(call)
                except asyncio.CancelledError:
                    self._abandon(call, identity, parameters)
                    raise
            except Exception as e:
                logger.warning(
                    "Cache warming failed",
                    identity=identity,
                    parameters=parameters,
                    error=str(e),
                )
                return WarmResult(
                    parameters=parameters,
                    status=WARM_STATUS_ERROR,
                    key=key,
                    error=f"{type(e).__name__}: {e}",
                )

            return WarmResult(
                parameters=parameters,
                status=_STATUS_BY_OUTCOME[result.outcome],
                key=result.key,
                value=result.value,
            )

    def _abandon(
        self, call: "asyncio.Future[Any]", identity: str, parameters: Dict[str, Any]
    ) -> None:
        """Let a shielded call finish after its warm run was cancelled."""
        self._abandoned.add(call)

        def _finished(task: "asyncio.Future[Any]") -> None:
            self._abandoned.discard(task)
            if task.cancelled():
                return
            error = task.exception()
            if error is not None:
                logger.warning(
                    "Cache warming failed after cancellation",
                    identity=identity,
                    parameters=parameters,
                    error=f"{type(error).__name__}: {error}",
                )

        call.add_done_callback(_finished)
