"""Response envelope - single contract for every dispatcher outcome."""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .exceptions import ExhaustionError


@dataclass
class ResponseEnvelope:
    """
    What the dispatcher returns and the HTTP layer serializes.

    status doubles as the HTTP status code: 200 for anything served with
    data (live, stale or synthetic), 4xx for client/configuration errors,
    502/504 for upstream failure with nothing to fall back to.
    """
    status: int
    operation: str
    sport: Optional[str] = None
    provenance: Optional[str] = None
    timestamp: Optional[str] = None
    data: Any = None
    count: Optional[int] = None
    warning: Optional[str] = None
    freshness: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None

    @property
    def ok(self) -> bool:
        return self.status < 400

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON response, omitting empty optionals."""
        result: Dict[str, Any] = {
            "status": self.status,
            "operation": self.operation,
        }
        if self.sport is not None:
            result["sport"] = self.sport

        if self.error is not None:
            result["error"] = self.error
            return result

        result["provenance"] = self.provenance
        result["timestamp"] = self.timestamp
        if self.count is not None:
            result["count"] = self.count
        if self.warning:
            result["warning"] = self.warning
        if self.freshness is not None:
            result["freshness"] = self.freshness
        result["data"] = self.data
        return result

    @classmethod
    def failure(
        cls,
        status: int,
        operation: str,
        error_type: str,
        message: str,
        sport: Optional[str] = None,
        providers: Optional[List[Dict[str, Any]]] = None,
        **details: Any,
    ) -> "ResponseEnvelope":
        error: Dict[str, Any] = {"type": error_type, "message": message}
        if providers is not None:
            error["providers"] = providers
        error.update(details)
        return cls(status=status, operation=operation, sport=sport, error=error)

    @classmethod
    def from_exhaustion(cls, operation: str, sport: Optional[str], exc: ExhaustionError) -> "ResponseEnvelope":
        """Structured failure listing every provider tried and why it failed."""
        if exc.all_config_errors:
            status, error_type = 400, "configuration_error"
        elif exc.all_timeouts:
            status, error_type = 504, "upstream_timeout"
        else:
            status, error_type = 502, "upstream_unavailable"
        return cls.failure(
            status,
            operation,
            error_type,
            "No provider returned usable data and no cached copy is available",
            sport=sport,
            providers=[f.to_dict() for f in exc.failures],
        )
