"""
Health report: credential presence, cache state and optional upstream pings.
"""
import logging
from typing import Any, Dict, Optional

import requests

from .cache.core import isoformat, utcnow
from .dispatcher import AggregationDispatcher
from .providers.catalog import ESPN_CORE_BASE, ODDS_API_BASE, SPORTSDATA_BASE

logger = logging.getLogger("health")

# Hosts pinged by a deep health check
PING_TARGETS = {
    "odds_api": f"{ODDS_API_BASE}/sports",
    "sportsdata": SPORTSDATA_BASE,
    "espn": ESPN_CORE_BASE,
}
PING_TIMEOUT = 5.0


def _presence(value: Optional[str]) -> str:
    return "present" if value else "missing"


def ping(url: str, session: Optional[requests.Session] = None, timeout: float = PING_TIMEOUT) -> Dict[str, Any]:
    """HEAD a host. Any HTTP answer counts as reachable; only transport errors fail."""
    http = session or requests
    try:
        response = http.head(url, timeout=timeout, allow_redirects=True)
        return {"reachable": True, "status_code": response.status_code}
    except requests.RequestException as e:
        logger.warning(f"Health ping failed for {url}: {e}")
        return {"reachable": False, "error": type(e).__name__}


def build_health_report(
    dispatcher: AggregationDispatcher,
    version: str,
    deep: bool = False,
    session: Optional[requests.Session] = None,
) -> Dict[str, Any]:
    """
    Assemble the /health payload.

    Args:
        dispatcher: Running dispatcher (for settings and cache state)
        version: Application version string
        deep: Also ping upstream hosts
        session: HTTP session for pings; defaults to the fetcher's session

    Returns:
        Report dict; status is "degraded" when any ping fails
    """
    settings = dispatcher.settings
    session = session or dispatcher.coordinator.fetcher.session
    store_stats = dispatcher.coordinator.store.get_stats()

    report: Dict[str, Any] = {
        "status": "ok",
        "timestamp": isoformat(utcnow()),
        "version": version,
        "keys": {
            "odds_api_key": _presence(settings.odds_api_key),
            "roster_api_key": _presence(settings.roster_api_key),
        },
        "cache": store_stats,
    }

    if deep:
        connectivity = {name: ping(url, session) for name, url in PING_TARGETS.items()}
        report["connectivity"] = connectivity
        if not all(result["reachable"] for result in connectivity.values()):
            report["status"] = "degraded"

    return report
