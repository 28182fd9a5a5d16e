"""
Provider descriptors and per-attempt fetch records.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class ProviderDescriptor:
    """
    One upstream option in a fallback chain.

    Static configuration, loaded once and never mutated at runtime.
    """
    name: str
    url_template: str                       # formatted with request params, e.g. ".../{odds_key}/odds"
    credential: Optional[str] = None        # credential name, None when the provider is open
    credential_header: Optional[str] = None
    credential_param: Optional[str] = None
    timeout: float = 10.0                   # seconds, per attempt
    max_attempts: int = 2
    backoff_seconds: float = 0.5            # wait = backoff_seconds * attempt number
    query_params: Tuple[str, ...] = ()      # request params forwarded as the query string
    default_query: Tuple[Tuple[str, str], ...] = ()
    payload_key: Optional[str] = None       # unwrap response[payload_key] before the shape check

    @property
    def requires_credential(self) -> bool:
        return self.credential is not None


class AttemptOutcome(Enum):
    SUCCESS = "success"
    HTTP_ERROR = "http-error"
    NETWORK_ERROR = "network-error"
    TIMEOUT = "timeout"
    INVALID_PAYLOAD = "invalid-payload"
    CONFIG_ERROR = "config-error"


@dataclass
class FetchAttemptResult:
    """Record of one provider attempt. Logged, then discarded."""
    provider_index: int
    provider: str
    attempt: int
    outcome: AttemptOutcome
    elapsed_seconds: float
    detail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider_index": self.provider_index,
            "provider": self.provider,
            "attempt": self.attempt,
            "outcome": self.outcome.value,
            "elapsed_ms": int(self.elapsed_seconds * 1000),
            "detail": self.detail,
        }
