"""
Synthetic player props for display when no live or cached props exist.

Lines are static per-position templates. Players come from the cached roster
for the sport when there is one, otherwise one placeholder per position per
team.
"""
import logging
from typing import Any, Dict, List, Optional

from .cache.core import Resource, ResourceKind
from .cache.store import CacheStore

logger = logging.getLogger("synthetic")

NFL_TEAMS = [
    "ARI", "ATL", "BAL", "BUF", "CAR", "CHI", "CIN", "CLE", "DAL", "DEN", "DET", "GB",
    "HOU", "IND", "JAX", "KC", "LV", "LAC", "LAR", "MIA", "MIN", "NE", "NO", "NYG",
    "NYJ", "PHI", "PIT", "SF", "SEA", "TB", "TEN", "WSH",
]

# (market key, line) per position
MARKET_TEMPLATES: Dict[str, Dict[str, List[tuple]]] = {
    "nfl": {
        "QB": [
            ("player_pass_yards", 255.5),
            ("player_pass_attempts", 33.5),
            ("player_pass_completions", 21.5),
            ("player_pass_tds", 1.8),
            ("player_interceptions", 0.7),
            ("player_rush_yards", 28.5),
            ("longest_completion", 39.5),
        ],
        "RB": [
            ("player_rush_yards", 64.5),
            ("player_rush_attempts", 14.5),
            ("player_rush_tds", 0.5),
            ("player_rec_yards", 22.5),
            ("player_rec_receptions", 2.5),
            ("longest_rush", 18.5),
            ("anytime_td", 0.25),
        ],
        "WR": [
            ("player_rec_yards", 68.5),
            ("player_rec_receptions", 5.5),
            ("player_rec_tds", 0.45),
            ("longest_reception", 26.5),
            ("anytime_td", 0.22),
        ],
        "TE": [
            ("player_rec_yards", 42.5),
            ("player_rec_receptions", 4.0),
            ("player_rec_tds", 0.35),
            ("longest_reception", 18.5),
            ("anytime_td", 0.20),
        ],
    },
}

TEAMS_BY_SPORT = {"nfl": NFL_TEAMS}


def _markets(sport: str, position: str) -> List[Dict[str, Any]]:
    templates = MARKET_TEMPLATES.get(sport, {}).get(position, [])
    return [{"key": key, "line": line} for key, line in templates]


def _team_markets(team: str) -> List[Dict[str, Any]]:
    return [
        {
            "PlayerID": f"{team}_DEF",
            "Name": f"{team} Defense",
            "Team": team,
            "synthetic": True,
            "markets": [{"key": "team_defense_anytime_td", "line": 0.05}],
        },
        {
            "PlayerID": f"{team}_ST",
            "Name": f"{team} Special Teams",
            "Team": team,
            "synthetic": True,
            "markets": [{"key": "team_special_teams_anytime_td", "line": 0.06}],
        },
    ]


def _player_fields(player: Dict[str, Any]) -> tuple:
    """(name, team, position) from a SportsDataIO or ESPN roster record."""
    name = player.get("Name") or player.get("displayName") or player.get("fullName")
    team = player.get("Team") or (player.get("team") or {}).get("abbreviation") or "UNK"
    position = player.get("Position") or (player.get("position") or {}).get("abbreviation") or "UNK"
    return name, str(team), str(position)


def generate_synthetic_props(sport: str, roster: Optional[List[Dict[str, Any]]] = None) -> Optional[List[Dict[str, Any]]]:
    """
    Build synthetic props for a sport.

    Args:
        sport: Catalog sport key
        roster: Cached roster records, if any

    Returns:
        List of players with markets, or None when the sport has no templates
    """
    if sport not in MARKET_TEMPLATES:
        return None

    props: List[Dict[str, Any]] = []
    teams = set()

    for player in roster or []:
        if not isinstance(player, dict):
            continue
        name, team, position = _player_fields(player)
        markets = _markets(sport, position)
        if not name or not markets:
            continue
        teams.add(team)
        props.append({
            "PlayerID": f"{name.replace(' ', '_')}_{position}",
            "Name": name,
            "Team": team,
            "synthetic": True,
            "markets": markets,
        })

    if not props:
        teams = set(TEAMS_BY_SPORT.get(sport, []))
        for team in sorted(teams):
            for position in MARKET_TEMPLATES[sport]:
                props.append({
                    "PlayerID": f"{team}_{position}",
                    "Name": f"{team} {position} (Synthetic)",
                    "Team": team,
                    "synthetic": True,
                    "markets": _markets(sport, position),
                })

    for team in sorted(t for t in teams if t != "UNK"):
        props.extend(_team_markets(team))

    return props


class SyntheticPropsFactory:
    """Callable handed to the coordinator for props resources."""

    def __init__(self, store: CacheStore):
        self._store = store

    def __call__(self, resource: Resource) -> Optional[List[Dict[str, Any]]]:
        if resource.kind is not ResourceKind.PROPS:
            return None
        roster_entry = self._store.get(Resource.build(ResourceKind.ROSTER, resource.sport).cache_key)
        roster = roster_entry.payload if roster_entry and isinstance(roster_entry.payload, list) else None
        props = generate_synthetic_props(resource.sport, roster)
        if props is not None:
            logger.info(
                f"Generated {len(props)} synthetic props for {resource.sport} "
                f"(from roster: {roster is not None})"
            )
        return props
