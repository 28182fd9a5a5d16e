"""
Multi-tier fallback fetcher.

Walks an ordered provider chain, retrying each provider with linear backoff
via tenacity, and returns the first payload that passes the caller's shape
check. Providers are tried strictly in order, never in parallel.
"""
import logging
import time
from dataclasses import dataclass, field
from string import Formatter
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import requests
from requests.adapters import HTTPAdapter
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from ..cache.core import tier_label
from ..exceptions import ConfigurationError, ExhaustionError, ProviderFailure, UpstreamError
from .descriptor import AttemptOutcome, FetchAttemptResult, ProviderDescriptor

logger = logging.getLogger("providers.fetcher")

ShapeCheck = Callable[[Any], bool]


@dataclass
class FetchSuccess:
    """A usable payload and the provider that produced it."""
    payload: Any
    provider_index: int
    provider: str
    attempts: List[FetchAttemptResult] = field(default_factory=list)

    @property
    def tier(self) -> str:
        return tier_label(self.provider_index)


def _template_fields(template: str) -> List[str]:
    return [name for _, name, _, _ in Formatter().parse(template) if name]


class FallbackFetcher:
    """
    Fetches a payload from the first working provider in a chain.

    Usage:
        fetcher = FallbackFetcher(credentials={"odds_api_key": "..."})
        result = fetcher.fetch(chain, {"odds_key": "basketball_nba"}, is_list)
        result.payload, result.tier
    """

    def __init__(
        self,
        credentials: Optional[Mapping[str, Optional[str]]] = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            credentials: credential name -> secret (None/empty means missing)
            session: HTTP session; a pooled requests.Session by default
            sleep: Backoff sleep function (replaced in tests)
        """
        self._credentials = dict(credentials or {})
        self._sleep = sleep
        if session is None:
            session = requests.Session()
            adapter = HTTPAdapter(pool_connections=10, pool_maxsize=10, max_retries=0)
            session.mount("https://", adapter)
            session.mount("http://", adapter)
        self._session = session

    @property
    def session(self) -> requests.Session:
        return self._session

    def has_credential(self, name: str) -> bool:
        return bool(self._credentials.get(name))

    def fetch(
        self,
        chain: Sequence[ProviderDescriptor],
        params: Optional[Mapping[str, Any]] = None,
        shape_check: Optional[ShapeCheck] = None,
    ) -> FetchSuccess:
        """
        Try each provider in order until one returns a usable payload.

        Args:
            chain: Providers in priority order
            params: Request parameters (URL template fields and query values)
            shape_check: Resource-specific predicate on the unwrapped payload

        Returns:
            FetchSuccess for the first provider that succeeded

        Raises:
            ExhaustionError: every provider failed; failures are in chain order
        """
        params = dict(params or {})
        failures: List[ProviderFailure] = []

        for index, descriptor in enumerate(chain):
            attempts: List[FetchAttemptResult] = []
            try:
                payload = self._try_provider(index, descriptor, params, shape_check, attempts)
            except ConfigurationError as e:
                logger.warning(f"Skipping provider {descriptor.name}: {e}")
                failures.append(ProviderFailure(
                    provider=descriptor.name,
                    index=index,
                    reason=str(e),
                    attempts=0,
                    outcome=AttemptOutcome.CONFIG_ERROR.value,
                ))
                continue
            except UpstreamError as e:
                logger.warning(
                    f"Provider {descriptor.name} exhausted after {len(attempts)} attempts: {e}"
                )
                failures.append(ProviderFailure(
                    provider=descriptor.name,
                    index=index,
                    reason=str(e),
                    attempts=len(attempts),
                    outcome=e.outcome,
                ))
                continue

            if index > 0:
                logger.info(f"Served by fallback provider {descriptor.name} ({tier_label(index)})")
            return FetchSuccess(
                payload=payload,
                provider_index=index,
                provider=descriptor.name,
                attempts=attempts,
            )

        raise ExhaustionError(failures)

    def _try_provider(
        self,
        index: int,
        descriptor: ProviderDescriptor,
        params: Dict[str, Any],
        shape_check: Optional[ShapeCheck],
        attempts: List[FetchAttemptResult],
    ) -> Any:
        url, query, headers = self._build_request(descriptor, params)

        retrying = Retrying(
            stop=stop_after_attempt(max(1, descriptor.max_attempts)),
            wait=wait_incrementing(
                start=descriptor.backoff_seconds,
                increment=descriptor.backoff_seconds,
            ),
            retry=retry_if_exception_type(UpstreamError),
            sleep=self._sleep,
            reraise=True,
        )
        return retrying(
            self._attempt, index, descriptor, url, query, headers, shape_check, attempts
        )

    def _build_request(
        self,
        descriptor: ProviderDescriptor,
        params: Dict[str, Any],
    ) -> Tuple[str, Dict[str, Any], Dict[str, str]]:
        """
        Resolve URL, query string and headers for a provider.

        Raises:
            ConfigurationError: credential missing or a template field unsupplied
        """
        headers: Dict[str, str] = {"Accept": "application/json"}
        query: Dict[str, Any] = dict(descriptor.default_query)

        if descriptor.requires_credential:
            secret = self._credentials.get(descriptor.credential)
            if not secret:
                raise ConfigurationError(
                    descriptor.name, f"missing credential {descriptor.credential}"
                )
            if descriptor.credential_header:
                headers[descriptor.credential_header] = secret
            if descriptor.credential_param:
                query[descriptor.credential_param] = secret

        missing = [f for f in _template_fields(descriptor.url_template) if params.get(f) in (None, "")]
        if missing:
            raise ConfigurationError(
                descriptor.name, f"URL template needs {', '.join(missing)}"
            )
        url = descriptor.url_template.format(**params)

        for name in descriptor.query_params:
            value = params.get(name)
            if value not in (None, ""):
                query[name] = value

        return url, query, headers

    def _attempt(
        self,
        index: int,
        descriptor: ProviderDescriptor,
        url: str,
        query: Dict[str, Any],
        headers: Dict[str, str],
        shape_check: Optional[ShapeCheck],
        attempts: List[FetchAttemptResult],
    ) -> Any:
        """One HTTP attempt. Raises UpstreamError on any failure."""
        attempt_number = len(attempts) + 1
        started = time.monotonic()

        def record(outcome: AttemptOutcome, detail: str = "") -> None:
            result = FetchAttemptResult(
                provider_index=index,
                provider=descriptor.name,
                attempt=attempt_number,
                outcome=outcome,
                elapsed_seconds=time.monotonic() - started,
                detail=detail,
            )
            attempts.append(result)
            logger.debug(f"Attempt {result.to_dict()}")

        try:
            response = self._session.get(
                url, params=query, headers=headers, timeout=descriptor.timeout
            )
        except requests.Timeout as e:
            record(AttemptOutcome.TIMEOUT, str(e))
            raise UpstreamError(
                descriptor.name, AttemptOutcome.TIMEOUT.value,
                f"timed out after {descriptor.timeout}s",
            )
        except requests.RequestException as e:
            record(AttemptOutcome.NETWORK_ERROR, str(e))
            raise UpstreamError(descriptor.name, AttemptOutcome.NETWORK_ERROR.value, str(e))

        status = response.status_code
        if not 200 <= status < 300:
            record(AttemptOutcome.HTTP_ERROR, f"HTTP {status}")
            raise UpstreamError(
                descriptor.name, AttemptOutcome.HTTP_ERROR.value, f"HTTP {status}", status_code=status
            )

        try:
            payload = response.json()
        except ValueError as e:
            record(AttemptOutcome.INVALID_PAYLOAD, f"malformed JSON: {e}")
            raise UpstreamError(
                descriptor.name, AttemptOutcome.INVALID_PAYLOAD.value, "malformed JSON", status_code=status
            )

        if descriptor.payload_key:
            payload = payload.get(descriptor.payload_key) if isinstance(payload, dict) else None

        accepted = payload is not None and (shape_check is None or shape_check(payload))
        if not accepted:
            record(AttemptOutcome.INVALID_PAYLOAD, "unexpected payload shape")
            raise UpstreamError(
                descriptor.name, AttemptOutcome.INVALID_PAYLOAD.value,
                "unexpected payload shape", status_code=status,
            )

        record(AttemptOutcome.SUCCESS)
        return payload
