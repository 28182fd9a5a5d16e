"""
TTL configuration per resource kind.
"""
from datetime import timedelta
from typing import Any, Dict, Optional

from .core import ResourceKind


# TTL configuration by resource kind (in seconds)
TTL_CONFIG: Dict[ResourceKind, Dict[str, Any]] = {
    ResourceKind.ROSTER: {
        "ttl": 12 * 3600,         # 12 hours, rosters rarely change intra-day
        "allow_synthetic": False,
    },
    ResourceKind.ODDS: {
        "ttl": 180 * 60,          # 3 hours
        "allow_synthetic": False,
    },
    ResourceKind.PROPS: {
        "ttl": 6 * 3600,          # 6 hours
        "allow_synthetic": True,  # display-only, any plausible line is fine
    },
}


def get_ttl_for_kind(kind: ResourceKind, settings: Optional[Any] = None) -> timedelta:
    """
    Get the TTL for a resource kind.

    Args:
        kind: The resource kind
        settings: Optional Settings object overriding the defaults

    Returns:
        TTL as a timedelta
    """
    if settings is not None:
        if kind is ResourceKind.ROSTER:
            return timedelta(hours=settings.roster_ttl_hours)
        if kind is ResourceKind.ODDS:
            return timedelta(minutes=settings.odds_ttl_minutes)
        if kind is ResourceKind.PROPS:
            return timedelta(hours=settings.props_ttl_hours)

    return timedelta(seconds=TTL_CONFIG[kind]["ttl"])


def allows_synthetic(kind: ResourceKind) -> bool:
    """Whether a synthetic payload may be served when no live or cached data exists."""
    return bool(TTL_CONFIG[kind].get("allow_synthetic", False))
