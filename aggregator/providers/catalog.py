"""
Provider catalog: the concrete upstream chains for each resource kind and sport.

Chains are data, resolved once per (kind, sport) and reused for every request.
"""
import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..cache.core import ResourceKind
from .descriptor import ProviderDescriptor

logger = logging.getLogger("providers.catalog")

ODDS_API_BASE = "https://api.the-odds-api.com/v4"
SPORTSDATA_BASE = "https://api.sportsdata.io/v3"
ESPN_CORE_BASE = "https://sports.core.api.espn.com/v3/sports"

ODDS_PATH = "/sports/{odds_key}/odds"
# player markets are only served per event
EVENT_ODDS_PATH = "/sports/{odds_key}/events/{event_id}/odds"


@dataclass(frozen=True)
class SportConfig:
    """Per-sport identifiers used by the upstream providers."""
    key: str
    name: str
    odds_key: Optional[str] = None          # The Odds API sport key
    sportsdata_path: Optional[str] = None   # SportsDataIO players endpoint
    espn_path: Optional[str] = None         # ESPN core API sport/league path


SPORTS: Dict[str, SportConfig] = {
    "nfl": SportConfig("nfl", "NFL", "americanfootball_nfl", "nfl/scores/json/Players", "football/nfl"),
    "ncaaf": SportConfig("ncaaf", "NCAA Football", "americanfootball_ncaaf", "cfb/scores/json/Players", "football/college-football"),
    "nba": SportConfig("nba", "NBA", "basketball_nba", "nba/scores/json/Players", "basketball/nba"),
    "ncaab": SportConfig("ncaab", "NCAA Basketball", "basketball_ncaab", "cbb/scores/json/Players", "basketball/mens-college-basketball"),
    "nhl": SportConfig("nhl", "NHL", "icehockey_nhl", "nhl/scores/json/Players", "hockey/nhl"),
    "mlb": SportConfig("mlb", "MLB", "baseball_mlb", "mlb/scores/json/Players", "baseball/mlb"),
    "ufc": SportConfig("ufc", "UFC", "mma_mixed_martial_arts", "mma/scores/json/Fighters", "mma/ufc"),
    "pga": SportConfig("pga", "PGA Tour", None, "golf/scores/json/Players", "golf/pga"),
    "soccer": SportConfig("soccer", "MLS", "soccer_usa_mls", "soccer/scores/json/Players", "soccer/usa.1"),
}

# Odds API keys are accepted as sport names too ("americanfootball_nfl" -> "nfl")
_ALIASES = {cfg.odds_key: key for key, cfg in SPORTS.items() if cfg.odds_key}

# Query defaults for odds requests
ODDS_DEFAULTS: Dict[str, str] = {
    "regions": "us,us2",
    "markets": "h2h,spreads,totals",
    "bookmakers": "draftkings,fanduel",
    "oddsFormat": "american",
    "dateFormat": "iso",
}

PROPS_DEFAULTS: Dict[str, str] = {
    "regions": "us",
    "markets": "player_pass_yds,player_rush_yds,player_reception_yds,player_anytime_td",
    "bookmakers": "draftkings,fanduel",
    "oddsFormat": "american",
    "dateFormat": "iso",
}

ODDS_QUERY = tuple(ODDS_DEFAULTS)


def normalize_sport(value: Optional[str]) -> Optional[str]:
    """Map a sport name or Odds API key to a catalog key, None if unknown."""
    if not value:
        return None
    value = value.strip().lower()
    if value in SPORTS:
        return value
    return _ALIASES.get(value)


def is_list(payload: Any) -> bool:
    return isinstance(payload, list)


def is_non_empty_list(payload: Any) -> bool:
    return isinstance(payload, list) and len(payload) > 0


def is_event_odds(payload: Any) -> bool:
    """Single-event odds: an event object carrying a bookmakers list."""
    return isinstance(payload, dict) and isinstance(payload.get("bookmakers"), list)


SHAPE_CHECKS = {
    ResourceKind.ODDS: is_list,
    ResourceKind.PROPS: is_event_odds,
    ResourceKind.ROSTER: is_non_empty_list,
}


class ProviderCatalog:
    """
    Resolves provider chains from settings.

    Chains are built on first use and cached; settings are read once.
    """

    def __init__(self, settings: Any):
        self._settings = settings
        self._chains: Dict[Tuple[ResourceKind, str], Tuple[ProviderDescriptor, ...]] = {}

    def credentials(self) -> Dict[str, Optional[str]]:
        return {
            "odds_api_key": self._settings.odds_api_key,
            "roster_api_key": self._settings.roster_api_key,
        }

    def supported_sports(self, kind: ResourceKind) -> List[str]:
        return sorted(key for key in SPORTS if self._base_chain(kind, SPORTS[key]))

    def chain(self, kind: ResourceKind, sport: str) -> Tuple[ProviderDescriptor, ...]:
        """Ordered providers for a resource; empty when the sport is not covered."""
        cache_key = (kind, sport)
        if cache_key not in self._chains:
            config = SPORTS.get(sport)
            chain = self._base_chain(kind, config) if config else []
            self._chains[cache_key] = tuple(self._apply_policy(d) for d in chain)
            logger.debug(
                f"Resolved chain for {kind.value}/{sport}: "
                f"{[d.name for d in self._chains[cache_key]]}"
            )
        return self._chains[cache_key]

    def request_params(
        self,
        kind: ResourceKind,
        sport: str,
        options: Optional[Mapping[str, Any]] = None,
    ) -> Tuple[Dict[str, str], Dict[str, str]]:
        """
        Split request options into (cache-key params, provider params).

        Cache-key params are the options that change the upstream answer;
        provider params add the per-sport template fields.
        """
        options = options or {}
        config = SPORTS[sport]

        if kind is ResourceKind.ODDS:
            key_params = {name: str(options.get(name) or default) for name, default in ODDS_DEFAULTS.items()}
        elif kind is ResourceKind.PROPS:
            key_params = {name: str(options.get(name) or default) for name, default in PROPS_DEFAULTS.items()}
            event_id = str(options.get("eventId") or "").strip()
            if event_id:
                key_params["eventId"] = event_id
        else:
            key_params = {}

        provider_params = dict(key_params)
        provider_params.update({
            "sport": config.key,
            "odds_key": config.odds_key or "",
            "sportsdata_path": config.sportsdata_path or "",
            "espn_path": config.espn_path or "",
            "event_id": key_params.get("eventId", ""),
        })
        return key_params, provider_params

    def _apply_policy(self, descriptor: ProviderDescriptor) -> ProviderDescriptor:
        return replace(
            descriptor,
            timeout=self._settings.provider_timeout_seconds,
            max_attempts=self._settings.provider_max_attempts,
            backoff_seconds=self._settings.provider_backoff_seconds,
        )

    def _base_chain(self, kind: ResourceKind, config: SportConfig) -> List[ProviderDescriptor]:
        chain: List[ProviderDescriptor] = []

        if kind in (ResourceKind.ODDS, ResourceKind.PROPS):
            if not config.odds_key:
                return chain
            path = ODDS_PATH if kind is ResourceKind.ODDS else EVENT_ODDS_PATH
            chain.append(ProviderDescriptor(
                name="the-odds-api",
                url_template=ODDS_API_BASE + path,
                credential="odds_api_key",
                credential_param="apiKey",
                query_params=ODDS_QUERY,
            ))
            backup = self._settings.odds_backup_url
            if backup:
                chain.append(ProviderDescriptor(
                    name="odds-backup",
                    url_template=backup.rstrip("/") + path,
                    query_params=ODDS_QUERY,
                ))

        elif kind is ResourceKind.ROSTER:
            if config.sportsdata_path:
                chain.append(ProviderDescriptor(
                    name="sportsdataio",
                    url_template=SPORTSDATA_BASE + "/{sportsdata_path}",
                    credential="roster_api_key",
                    credential_header="Ocp-Apim-Subscription-Key",
                ))
            if config.espn_path:
                chain.append(ProviderDescriptor(
                    name="espn",
                    url_template=ESPN_CORE_BASE + "/{espn_path}/athletes",
                    default_query=(("limit", "20000"), ("active", "true")),
                    payload_key="items",
                ))

        return chain
