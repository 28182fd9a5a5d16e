"""
Caching module: TTL store, freshness evaluation and request coalescing.

The refresh coordinator lives in aggregator.cache.coordinator and is imported
from there; it depends on the providers package, which depends on this one.
"""
from .core import CacheEntry, Provenance, Resource, ResourceKind, tier_label
from .freshness import FreshnessState, FreshnessVerdict, evaluate, freshness_grade
from .ttl_policies import TTL_CONFIG, allows_synthetic, get_ttl_for_kind
from .durable import DurableLayer, JsonFileMirror, SqlMirror
from .store import CacheStore
from .coalescer import RequestCoalescer

__all__ = [
    # Core types
    "CacheEntry",
    "Provenance",
    "Resource",
    "ResourceKind",
    "tier_label",
    # Freshness
    "FreshnessState",
    "FreshnessVerdict",
    "evaluate",
    "freshness_grade",
    # TTL policies
    "TTL_CONFIG",
    "allows_synthetic",
    "get_ttl_for_kind",
    # Storage
    "DurableLayer",
    "JsonFileMirror",
    "SqlMirror",
    "CacheStore",
    # Coordination
    "RequestCoalescer",
]
