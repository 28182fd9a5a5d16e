"""
Construction and lifetime of the aggregation core.

One dispatcher per process, built explicitly from settings; tests build
their own instances instead of touching the process-wide one.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Optional

import requests

from config.settings import settings as default_settings

from .cache.core import utcnow
from .cache.coordinator import RefreshCoordinator
from .cache.durable import JsonFileMirror, SqlMirror
from .cache.store import CacheStore
from .dispatcher import AggregationDispatcher
from .providers.catalog import ProviderCatalog
from .providers.fetcher import FallbackFetcher

logger = logging.getLogger("service")


def build_store(settings: Any, clock: Callable[[], datetime] = utcnow) -> CacheStore:
    """Create the cache store with the durable mirror named by CACHE_BACKEND."""
    backend = (settings.cache_backend or "memory").lower()
    if backend == "file":
        durable = JsonFileMirror(settings.cache_directory)
    elif backend == "sql":
        if settings.cache_database_url.startswith("sqlite:///"):
            settings.cache_directory.mkdir(parents=True, exist_ok=True)
        durable = SqlMirror(settings.cache_database_url)
    else:
        if backend != "memory":
            logger.warning(f"Unknown cache backend '{backend}', using memory only")
        durable = None
    logger.info(f"Cache store ready (backend={backend})")
    return CacheStore(durable=durable, clock=clock)


def build_dispatcher(
    settings: Any = default_settings,
    session: Optional[requests.Session] = None,
    store: Optional[CacheStore] = None,
    clock: Callable[[], datetime] = utcnow,
    sleep: Optional[Callable[[float], None]] = None,
) -> AggregationDispatcher:
    """Wire store, fetcher, coordinator and dispatcher together."""
    catalog = ProviderCatalog(settings)
    fetcher_kwargs = {"credentials": catalog.credentials(), "session": session}
    if sleep is not None:
        fetcher_kwargs["sleep"] = sleep
    fetcher = FallbackFetcher(**fetcher_kwargs)
    coordinator = RefreshCoordinator(
        store=store or build_store(settings, clock=clock),
        fetcher=fetcher,
        coalesce_timeout=settings.coalesce_timeout_seconds,
        clock=clock,
    )
    return AggregationDispatcher(coordinator, catalog, settings)


# Process-wide dispatcher instance
_dispatcher: Optional[AggregationDispatcher] = None


def get_dispatcher() -> AggregationDispatcher:
    """Get or create the process-wide dispatcher."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = build_dispatcher()
    return _dispatcher


def reset_dispatcher() -> None:
    """Drop the process-wide dispatcher; the next get_dispatcher() builds a new one."""
    global _dispatcher
    _dispatcher = None
