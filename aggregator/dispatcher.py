"""
Aggregation dispatcher: maps (operation, sport, options) onto a resource,
TTL and provider chain, and shapes the response envelope.
"""
import logging
import math
from datetime import timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .cache.coordinator import RefreshCoordinator, RefreshResult
from .cache.core import Resource, ResourceKind, isoformat
from .cache.freshness import freshness_grade
from .cache.ttl_policies import allows_synthetic, get_ttl_for_kind
from .envelope import ResponseEnvelope
from .exceptions import ExhaustionError, InvalidOperationError, InvalidOptionError, InvalidSportError
from .providers.catalog import SHAPE_CHECKS, ProviderCatalog, normalize_sport
from .synthetic import SyntheticPropsFactory

logger = logging.getLogger("dispatcher")

DEFAULT_SPORT = "nfl"
TRUE_VALUES = {"true", "1", "yes"}

# Resource kinds refreshed by refreshAll, per declared sport
REFRESH_ALL_KINDS = (ResourceKind.ROSTER, ResourceKind.ODDS)


def parse_flag(value: Any) -> bool:
    """Interpret a request option as a boolean flag."""
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in TRUE_VALUES


class AggregationDispatcher:
    """
    Entry point of the aggregation core.

    Supported operations:
    - getOdds, getProps, getRosterStatus: serve through the freshness check
    - syncRoster: force a roster refresh
    - refreshAll: force-refresh every declared resource, isolating failures
    - cacheStatus: report cached keys with age and grade
    - purgeCache: drop entries older than the purge window
    """

    def __init__(
        self,
        coordinator: RefreshCoordinator,
        catalog: ProviderCatalog,
        settings: Any,
    ):
        self.coordinator = coordinator
        self.catalog = catalog
        self.settings = settings
        self._synthetic = SyntheticPropsFactory(coordinator.store)
        self._handlers: Dict[str, Callable[[Optional[str], Dict[str, Any]], ResponseEnvelope]] = {
            "getOdds": self._get_odds,
            "getProps": self._get_props,
            "getRosterStatus": self._get_roster_status,
            "syncRoster": self._sync_roster,
            "refreshAll": self._refresh_all,
            "cacheStatus": self._cache_status,
            "purgeCache": self._purge_cache,
        }
        self._lookup = {name.lower(): name for name in self._handlers}

    @property
    def supported_operations(self) -> List[str]:
        return list(self._handlers)

    def handle(
        self,
        operation: Optional[str],
        sport: Optional[str] = None,
        options: Optional[Mapping[str, Any]] = None,
    ) -> ResponseEnvelope:
        """
        Run one operation and return its envelope. Never raises for
        request-level failures; they come back as error envelopes.
        """
        options = dict(options or {})
        name = self._lookup.get((operation or "").strip().lower())

        try:
            if name is None:
                raise InvalidOperationError(operation or "", self.supported_operations)
            logger.info(f"[Dispatcher] Operation: {name} | Sport: {sport or '-'}")
            return self._handlers[name](sport, options)

        except InvalidOperationError as e:
            return ResponseEnvelope.failure(
                400, operation or "", "invalid_operation", str(e),
                sport=sport, supported_operations=e.supported,
            )
        except InvalidSportError as e:
            return ResponseEnvelope.failure(
                400, name, "invalid_sport", str(e),
                sport=sport, supported_sports=e.supported,
            )
        except InvalidOptionError as e:
            return ResponseEnvelope.failure(
                400, name, "invalid_option", str(e),
                sport=sport, option=e.option,
            )
        except ExhaustionError as e:
            logger.error(f"[Dispatcher] {name} failed for {sport}: {e}")
            return ResponseEnvelope.from_exhaustion(name, sport, e)
        except TimeoutError as e:
            return ResponseEnvelope.failure(504, name, "upstream_timeout", str(e), sport=sport)

    # ===== RESOURCE OPERATIONS =====

    def _get_odds(self, sport: Optional[str], options: Dict[str, Any]) -> ResponseEnvelope:
        return self._serve("getOdds", ResourceKind.ODDS, sport, options, parse_flag(options.get("forceRefresh")))

    def _get_props(self, sport: Optional[str], options: Dict[str, Any]) -> ResponseEnvelope:
        return self._serve("getProps", ResourceKind.PROPS, sport, options, parse_flag(options.get("forceRefresh")))

    def _get_roster_status(self, sport: Optional[str], options: Dict[str, Any]) -> ResponseEnvelope:
        return self._serve(
            "getRosterStatus", ResourceKind.ROSTER, sport, options, parse_flag(options.get("forceRefresh"))
        )

    def _sync_roster(self, sport: Optional[str], options: Dict[str, Any]) -> ResponseEnvelope:
        return self._serve("syncRoster", ResourceKind.ROSTER, sport, options, True)

    def refresh(
        self,
        kind: ResourceKind,
        sport: Optional[str],
        options: Optional[Mapping[str, Any]] = None,
        force_refresh: bool = False,
    ) -> Tuple[str, RefreshResult, timedelta]:
        """
        Resolve a resource and run it through the refresh coordinator.

        Returns:
            (sport key, result, ttl)

        Raises:
            InvalidSportError, ExhaustionError, TimeoutError
        """
        sport_key = self._resolve_sport(kind, sport)
        key_params, provider_params = self.catalog.request_params(kind, sport_key, options)
        resource = Resource.build(kind, sport_key, key_params)
        ttl = get_ttl_for_kind(kind, self.settings)

        result = self.coordinator.get_or_refresh(
            resource,
            self.catalog.chain(kind, sport_key),
            ttl,
            force_refresh=force_refresh,
            shape_check=SHAPE_CHECKS.get(kind),
            synthetic=self._synthetic if allows_synthetic(kind) else None,
            params=provider_params,
        )
        return sport_key, result, ttl

    def _serve(
        self,
        operation: str,
        kind: ResourceKind,
        sport: Optional[str],
        options: Dict[str, Any],
        force_refresh: bool,
    ) -> ResponseEnvelope:
        sport_key, result, ttl = self.refresh(kind, sport, options, force_refresh)
        age = (self.coordinator.clock() - result.created_at).total_seconds()
        ttl_seconds = ttl.total_seconds()

        return ResponseEnvelope(
            status=200,
            operation=operation,
            sport=sport_key,
            provenance=result.provenance,
            timestamp=isoformat(result.created_at),
            data=result.payload,
            count=result.item_count,
            warning=result.warning,
            freshness={
                "checked": result.verdict.state.value,
                "age_seconds": round(max(age, 0.0), 1),
                "ttl_seconds": ttl_seconds,
                "grade": freshness_grade(age, ttl_seconds),
            },
        )

    def _resolve_sport(self, kind: ResourceKind, sport: Optional[str]) -> str:
        supported = self.catalog.supported_sports(kind)
        sport_key = normalize_sport(sport or DEFAULT_SPORT)
        if sport_key is None or sport_key not in supported:
            raise InvalidSportError(sport or "", supported)
        return sport_key

    # ===== MAINTENANCE OPERATIONS =====

    def refresh_targets(self, sport: Optional[str] = None) -> List[Tuple[ResourceKind, str]]:
        """Declared (kind, sport) pairs refreshed by refreshAll."""
        sports = [sport] if sport else list(self.settings.refresh_sports)
        return [(kind, s) for s in sports for kind in REFRESH_ALL_KINDS]

    def _refresh_all(self, sport: Optional[str], options: Dict[str, Any]) -> ResponseEnvelope:
        results = []
        failed = 0

        for kind, target in self.refresh_targets(sport):
            outcome: Dict[str, Any] = {"resource": kind.value, "sport": target}
            try:
                sport_key, result, _ = self.refresh(kind, target, options, force_refresh=True)
                outcome.update({
                    "sport": sport_key,
                    "status": 200,
                    "provenance": result.provenance,
                    "timestamp": isoformat(result.created_at),
                    "count": result.item_count,
                })
                if result.warning:
                    outcome["warning"] = result.warning
            except InvalidSportError as e:
                failed += 1
                outcome.update({"status": 400, "error": str(e)})
            except ExhaustionError as e:
                failed += 1
                envelope = ResponseEnvelope.from_exhaustion("refreshAll", target, e)
                outcome.update({"status": envelope.status, "error": envelope.error})
            except TimeoutError as e:
                failed += 1
                outcome.update({"status": 504, "error": str(e)})
            if outcome["status"] != 200:
                logger.warning(f"[Dispatcher] refreshAll: {kind.value}/{target} failed ({outcome['status']})")
            results.append(outcome)

        return ResponseEnvelope(
            status=200,
            operation="refreshAll",
            sport=sport,
            provenance="summary",
            timestamp=isoformat(self.coordinator.clock()),
            data=results,
            count=len(results),
            warning=f"{failed} of {len(results)} resources failed to refresh" if failed else None,
        )

    def _cache_status(self, sport: Optional[str], options: Dict[str, Any]) -> ResponseEnvelope:
        sport_key = normalize_sport(sport) if sport else None
        if sport and sport_key is None:
            raise InvalidSportError(sport, sorted(self.catalog.supported_sports(ResourceKind.ROSTER)))

        store = self.coordinator.store
        now = self.coordinator.clock()
        rows = []
        for key in store.list_keys():
            kind_name, _, rest = key.partition(":")
            key_sport = rest.split("|", 1)[0]
            if sport_key and key_sport != sport_key:
                continue
            entry = store.get(key)
            if entry is None:
                continue
            try:
                ttl_seconds = get_ttl_for_kind(ResourceKind(kind_name), self.settings).total_seconds()
            except ValueError:
                ttl_seconds = 0.0
            age = entry.age_seconds(now)
            rows.append({
                "key": key,
                "resource": kind_name,
                "sport": key_sport,
                "last_updated": isoformat(entry.created_at),
                "age_seconds": round(age, 1),
                "source_tier": entry.source_tier,
                "count": entry.item_count,
                "grade": freshness_grade(age, ttl_seconds),
                "stale": age >= ttl_seconds,
            })

        return ResponseEnvelope(
            status=200,
            operation="cacheStatus",
            sport=sport_key,
            provenance="cache",
            timestamp=isoformat(now),
            data=rows,
            count=len(rows),
        )

    def _max_age(self, hours: Any) -> timedelta:
        """Purge window from the maxAgeHours option, or the configured default."""
        if hours is None or (isinstance(hours, str) and not hours.strip()):
            return timedelta(hours=self.settings.purge_max_age_hours)
        expected = "a positive number of hours"
        try:
            value = float(hours)
            if not math.isfinite(value) or value <= 0:
                raise InvalidOptionError("maxAgeHours", hours, expected)
            return timedelta(hours=value)
        except (ValueError, TypeError, OverflowError):
            raise InvalidOptionError("maxAgeHours", hours, expected)

    def _purge_cache(self, sport: Optional[str], options: Dict[str, Any]) -> ResponseEnvelope:
        max_age = self._max_age(options.get("maxAgeHours"))

        removed = self.coordinator.store.purge_expired(max_age)
        return ResponseEnvelope(
            status=200,
            operation="purgeCache",
            provenance="cache",
            timestamp=isoformat(self.coordinator.clock()),
            data={"removed": removed, "max_age_hours": max_age.total_seconds() / 3600},
        )
