"""
Core cache data structures.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class ResourceKind(Enum):
    """Logical data sets the aggregator can serve."""
    ROSTER = "roster"   # player lists, change slowly
    ODDS = "odds"       # game lines, change often
    PROPS = "props"     # player prop markets


class Provenance(Enum):
    """Which tier produced a served payload."""
    CACHE = "cache"
    PRIMARY = "primary"
    STALE_CACHE = "stale-cache"
    SYNTHETIC = "synthetic"


SYNTHETIC_TIER = Provenance.SYNTHETIC.value


def tier_label(provider_index: int) -> str:
    """Provenance label for the provider at a chain position."""
    if provider_index == 0:
        return Provenance.PRIMARY.value
    return f"fallback-{provider_index}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(ts: datetime) -> str:
    """ISO-8601 with a trailing Z for UTC timestamps."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp (Z suffix allowed) into an aware datetime."""
    ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


@dataclass(frozen=True)
class Resource:
    """
    A logical, parameterized data set (e.g. NFL roster, NBA odds).

    Only used to derive cache keys; never persisted.
    """
    kind: ResourceKind
    sport: str
    params: Tuple[Tuple[str, str], ...] = ()

    @classmethod
    def build(cls, kind: ResourceKind, sport: str, params: Optional[Dict[str, Any]] = None) -> "Resource":
        """Create a Resource, dropping empty params and sorting the rest."""
        items = tuple(sorted(
            (str(k), str(v)) for k, v in (params or {}).items() if v not in (None, "")
        ))
        return cls(kind=kind, sport=sport, params=items)

    @property
    def cache_key(self) -> str:
        key = f"{self.kind.value}:{self.sport}"
        if self.params:
            key += "|" + "|".join(f"{k}={v}" for k, v in self.params)
        return key

    @property
    def params_dict(self) -> Dict[str, str]:
        return dict(self.params)

    def __str__(self) -> str:
        return f"{self.kind.value}/{self.sport}"


def _count_items(payload: Any) -> Optional[int]:
    if isinstance(payload, list):
        return len(payload)
    return None


@dataclass(frozen=True)
class CacheEntry:
    """
    The unit of storage: one payload with the time and tier that produced it.

    Entries are replaced wholesale, never mutated.
    """
    key: str
    payload: Any
    created_at: datetime
    source_tier: str = Provenance.PRIMARY.value
    item_count: Optional[int] = None

    @classmethod
    def create(
        cls,
        key: str,
        payload: Any,
        source_tier: str,
        created_at: Optional[datetime] = None,
    ) -> "CacheEntry":
        return cls(
            key=key,
            payload=payload,
            created_at=created_at or utcnow(),
            source_tier=source_tier,
            item_count=_count_items(payload),
        )

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        """Seconds since the payload was fetched."""
        return ((now or utcnow()) - self.created_at).total_seconds()

    def to_record(self) -> Dict[str, Any]:
        """Durable representation."""
        return {
            "key": self.key,
            "createdAt": isoformat(self.created_at),
            "sourceTier": self.source_tier,
            "payload": self.payload,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any], key: Optional[str] = None) -> "CacheEntry":
        return cls.create(
            key=record.get("key") or key,
            payload=record.get("payload"),
            source_tier=record.get("sourceTier") or Provenance.PRIMARY.value,
            created_at=parse_timestamp(record["createdAt"]),
        )

