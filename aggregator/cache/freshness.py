"""
Freshness evaluation: decides whether a cached entry can be served as-is.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Union

from .core import CacheEntry, utcnow


class FreshnessState(Enum):
    FRESH = "fresh"
    STALE = "stale"
    ABSENT = "absent"


# Grade thresholds as a fraction of the TTL: (upper bound, grade)
GRADE_THRESHOLDS = [
    (0.25, "A"),
    (0.50, "B"),
    (1.00, "C"),
    (2.00, "D"),
]


def freshness_grade(age_seconds: Optional[float], ttl_seconds: float) -> str:
    """
    Ordinal freshness bucket for reporting. Never used for control flow.

    Args:
        age_seconds: Entry age, or None when there is no entry
        ttl_seconds: TTL applied to the resource

    Returns:
        "A" through "F"
    """
    if age_seconds is None or ttl_seconds <= 0:
        return "F"
    ratio = max(age_seconds, 0.0) / ttl_seconds
    for upper, grade in GRADE_THRESHOLDS:
        if ratio < upper:
            return grade
    return "F"


@dataclass(frozen=True)
class FreshnessVerdict:
    """Outcome of one freshness check."""
    state: FreshnessState
    ttl_seconds: float
    age_seconds: Optional[float] = None
    forced: bool = False

    @property
    def is_fresh(self) -> bool:
        return self.state is FreshnessState.FRESH

    @property
    def grade(self) -> str:
        return freshness_grade(self.age_seconds, self.ttl_seconds)

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "age_seconds": round(self.age_seconds, 1) if self.age_seconds is not None else None,
            "ttl_seconds": self.ttl_seconds,
            "grade": self.grade,
            "forced": self.forced,
        }


def _ttl_seconds(ttl: Union[timedelta, float, int]) -> float:
    if isinstance(ttl, timedelta):
        return ttl.total_seconds()
    return float(ttl)


def evaluate(
    entry: Optional[CacheEntry],
    ttl: Union[timedelta, float, int],
    force_refresh: bool = False,
    now: Optional[datetime] = None,
) -> FreshnessVerdict:
    """
    Compare an entry's age against its TTL.

    Absent entries are "absent"; a forced refresh is always "stale";
    otherwise age strictly below the TTL is "fresh" and anything else "stale".
    """
    ttl_seconds = _ttl_seconds(ttl)
    if entry is None:
        return FreshnessVerdict(FreshnessState.ABSENT, ttl_seconds, None, force_refresh)

    age = entry.age_seconds(now or utcnow())
    if force_refresh:
        return FreshnessVerdict(FreshnessState.STALE, ttl_seconds, age, True)
    if age < ttl_seconds:
        return FreshnessVerdict(FreshnessState.FRESH, ttl_seconds, age)
    return FreshnessVerdict(FreshnessState.STALE, ttl_seconds, age)
