"""
Refresh coordination: check-then-maybe-fetch-then-cache per cache key.

Per key: IDLE -> CHECKING -> {SERVING_CACHE | FETCHING} -> IDLE.
At most one fetch chain runs per key; concurrent callers share its outcome.
"""
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from ..exceptions import CacheError, ExhaustionError, ProviderFailure
from ..providers.descriptor import ProviderDescriptor
from ..providers.fetcher import FallbackFetcher, ShapeCheck
from .coalescer import RequestCoalescer
from .core import CacheEntry, Provenance, Resource, SYNTHETIC_TIER, isoformat, utcnow
from .freshness import FreshnessVerdict, evaluate
from .store import CacheStore

logger = logging.getLogger("cache.coordinator")

SyntheticFactory = Callable[[Resource], Optional[Any]]


@dataclass
class RefreshResult:
    """One of: live data, stale cache, synthetic data. Hard failure raises instead."""
    payload: Any
    provenance: str
    created_at: datetime
    verdict: FreshnessVerdict
    warning: Optional[str] = None
    failures: List[ProviderFailure] = field(default_factory=list)

    @property
    def item_count(self) -> Optional[int]:
        return len(self.payload) if isinstance(self.payload, list) else None


class RefreshCoordinator:
    """
    Serves a resource from cache when fresh, otherwise refreshes it through
    the fallback fetcher, coalescing concurrent refreshes of the same key.
    """

    def __init__(
        self,
        store: CacheStore,
        fetcher: FallbackFetcher,
        coalesce_timeout: float = 60.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.fetcher = fetcher
        self._coalescer = RequestCoalescer(timeout=coalesce_timeout)
        self.clock = clock
        self._stats_lock = threading.Lock()
        self._stats = {
            "hits_fresh": 0,
            "live_fetches": 0,
            "stale_fallbacks": 0,
            "synthetic_fallbacks": 0,
            "failures": 0,
        }

    def get_or_refresh(
        self,
        resource: Resource,
        chain: Sequence[ProviderDescriptor],
        ttl: Union[timedelta, float],
        force_refresh: bool = False,
        shape_check: Optional[ShapeCheck] = None,
        synthetic: Optional[SyntheticFactory] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> RefreshResult:
        """
        Get current data for a resource.

        Args:
            resource: What to serve; its cache key is the coalescing key
            chain: Provider chain tried on refresh
            ttl: Maximum age served without refreshing
            force_refresh: Refresh even when the entry is fresh
            shape_check: Predicate a provider payload must satisfy
            synthetic: Factory for a synthetic payload, None when not permitted
            params: Request parameters for the providers (defaults to resource params)

        Returns:
            RefreshResult tagged with provenance

        Raises:
            ExhaustionError: every provider failed, no cache, no synthetic payload
            TimeoutError: waited too long on another caller's refresh
        """
        key = resource.cache_key

        # CHECKING
        entry = self.store.get(key)
        verdict = evaluate(entry, ttl, force_refresh, now=self.clock())

        if verdict.is_fresh:
            logger.debug(f"CACHE HIT (fresh): {key} [age={verdict.age_seconds:.1f}s]")
            self._bump("hits_fresh")
            return RefreshResult(
                payload=entry.payload,
                provenance=Provenance.CACHE.value,
                created_at=entry.created_at,
                verdict=verdict,
            )

        logger.info(f"CACHE {verdict.state.value.upper()}: {key} (force_refresh={force_refresh})")

        # FETCHING
        def refresh() -> RefreshResult:
            with self.store.pinned(key):
                return self._refresh(
                    resource, chain, ttl, force_refresh, shape_check, synthetic,
                    params if params is not None else resource.params_dict,
                )

        result = self._coalescer.run(key, refresh)
        if force_refresh and result.provenance == Provenance.CACHE.value:
            # joined a non-forced refresh that found the entry fresh
            logger.debug(f"Forced refresh re-run for {key}")
            result = self._coalescer.run(key, refresh)
        return result

    def _refresh(
        self,
        resource: Resource,
        chain: Sequence[ProviderDescriptor],
        ttl: Union[timedelta, float],
        force_refresh: bool,
        shape_check: Optional[ShapeCheck],
        synthetic: Optional[SyntheticFactory],
        params: Dict[str, Any],
    ) -> RefreshResult:
        key = resource.cache_key

        # Another caller may have finished a refresh between our check and now
        previous = self.store.get(key)
        verdict = evaluate(previous, ttl, force_refresh, now=self.clock())
        if verdict.is_fresh:
            self._bump("hits_fresh")
            return RefreshResult(previous.payload, Provenance.CACHE.value, previous.created_at, verdict)

        try:
            success = self.fetcher.fetch(chain, params, shape_check)
        except ExhaustionError as e:
            e.resource = str(resource)
            return self._recover(resource, previous, verdict, e, synthetic)

        entry = self._write(key, success.payload, success.tier)
        self._bump("live_fetches")
        logger.info(f"Refreshed {key} from {success.provider} [{success.tier}]")
        return RefreshResult(
            payload=entry.payload,
            provenance=success.tier,
            created_at=entry.created_at,
            verdict=verdict,
        )

    def _recover(
        self,
        resource: Resource,
        previous: Optional[CacheEntry],
        verdict: FreshnessVerdict,
        error: ExhaustionError,
        synthetic: Optional[SyntheticFactory],
    ) -> RefreshResult:
        """All providers failed: stale cache first, then synthetic, else raise."""
        key = resource.cache_key

        if previous is not None:
            self._bump("stale_fallbacks")
            logger.warning(f"Serving stale cache for {key} [age={verdict.age_seconds:.1f}s]: {error}")
            return RefreshResult(
                payload=previous.payload,
                provenance=Provenance.STALE_CACHE.value,
                created_at=previous.created_at,
                verdict=verdict,
                warning=f"Live refresh failed; serving cached data from {isoformat(previous.created_at)}",
                failures=error.failures,
            )

        payload = synthetic(resource) if synthetic is not None else None
        if payload is not None:
            entry = self._write(key, payload, SYNTHETIC_TIER)
            self._bump("synthetic_fallbacks")
            logger.warning(f"Serving synthetic data for {key}: {error}")
            return RefreshResult(
                payload=entry.payload,
                provenance=Provenance.SYNTHETIC.value,
                created_at=entry.created_at,
                verdict=verdict,
                warning="Live providers unavailable; serving generated data",
                failures=error.failures,
            )

        self._bump("failures")
        logger.error(f"No data available for {key}: {error}")
        raise error

    def _write(self, key: str, payload: Any, tier: str) -> CacheEntry:
        try:
            return self.store.set(key, payload, tier)
        except CacheError as e:
            logger.warning(f"Cache write degraded for {key}: {e}")
            if e.entry is not None:
                return e.entry
            return CacheEntry.create(key, payload, tier, created_at=self.clock())

    def _bump(self, name: str) -> None:
        with self._stats_lock:
            self._stats[name] += 1

    def get_stats(self) -> Dict[str, Any]:
        """Get coordinator statistics."""
        with self._stats_lock:
            stats = dict(self._stats)
        stats["coalescer"] = self._coalescer.get_stats()
        return stats
