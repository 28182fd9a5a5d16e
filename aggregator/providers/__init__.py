"""
Upstream providers: descriptors, the fallback fetcher and the per-sport catalog.
"""
from .descriptor import AttemptOutcome, FetchAttemptResult, ProviderDescriptor
from .fetcher import FallbackFetcher, FetchSuccess
from .catalog import SPORTS, ProviderCatalog, SportConfig, normalize_sport

__all__ = [
    "AttemptOutcome",
    "FetchAttemptResult",
    "ProviderDescriptor",
    "FallbackFetcher",
    "FetchSuccess",
    "SPORTS",
    "ProviderCatalog",
    "SportConfig",
    "normalize_sport",
]
