"""
Error taxonomy for the aggregation core.

Only exhaustion with no fallback and client errors ever reach the caller;
everything else is absorbed and reported through provenance/warning fields.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional


class AggregatorError(Exception):
    """Base exception for all aggregation errors."""
    pass


# =============================================================================
# PROVIDER ERRORS
# =============================================================================

class ConfigurationError(AggregatorError):
    """
    A provider cannot be called as configured.

    Raised when:
    - The provider requires a credential that is not set
    - The URL template names a parameter the request does not supply

    Never retried; the provider is skipped immediately.
    """

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"{provider}: {message}")


class UpstreamError(AggregatorError):
    """
    One provider attempt failed.

    outcome is one of "http-error", "network-error", "timeout",
    "invalid-payload". Retried per provider policy.
    """

    def __init__(self, provider: str, outcome: str, message: str, status_code: Optional[int] = None):
        self.provider = provider
        self.outcome = outcome
        self.status_code = status_code
        super().__init__(f"{provider}: {message}")


@dataclass
class ProviderFailure:
    """Why one provider in a chain gave up."""
    provider: str
    index: int
    reason: str
    attempts: int = 0
    outcome: str = "http-error"

    @property
    def is_config_error(self) -> bool:
        return self.outcome == "config-error"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "index": self.index,
            "reason": self.reason,
            "attempts": self.attempts,
            "outcome": self.outcome,
        }


class ExhaustionError(AggregatorError):
    """Every provider in the chain failed."""

    def __init__(self, failures: List[ProviderFailure], resource: Optional[str] = None):
        self.failures = list(failures)
        self.resource = resource
        names = ", ".join(f"{f.provider} ({f.reason})" for f in self.failures) or "no providers"
        prefix = f"{resource}: " if resource else ""
        super().__init__(f"{prefix}all providers failed: {names}")

    @property
    def all_config_errors(self) -> bool:
        return bool(self.failures) and all(f.is_config_error for f in self.failures)

    @property
    def all_timeouts(self) -> bool:
        return bool(self.failures) and all(f.outcome == "timeout" for f in self.failures)


# =============================================================================
# CACHE ERRORS
# =============================================================================

class CacheError(AggregatorError):
    """
    Cache store read/write failure.

    For writes, entry holds what was stored in memory before the durable
    layer failed, so callers can keep serving it.
    """

    def __init__(self, key: str, message: str, entry: Any = None):
        self.key = key
        self.entry = entry
        super().__init__(f"cache error for {key}: {message}")


# =============================================================================
# CLIENT ERRORS
# =============================================================================

class InvalidOperationError(AggregatorError):
    """Unknown operation name."""

    def __init__(self, operation: str, supported: List[str]):
        self.operation = operation
        self.supported = list(supported)
        super().__init__(
            f"Invalid operation '{operation}'. Supported: {', '.join(self.supported)}"
        )


class InvalidSportError(AggregatorError):
    """Unknown sport, or a sport the requested resource is not available for."""

    def __init__(self, sport: str, supported: List[str]):
        self.sport = sport
        self.supported = list(supported)
        super().__init__(f"Invalid sport '{sport}'. Supported: {', '.join(self.supported)}")


class InvalidOptionError(AggregatorError):
    """Request option with a value the operation cannot use."""

    def __init__(self, option: str, value: Any, expected: str):
        self.option = option
        self.value = value
        self.expected = expected
        super().__init__(f"Invalid value {value!r} for '{option}': expected {expected}")
