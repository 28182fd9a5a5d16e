"""
Unit tests for the multi-tier fallback fetcher.

Providers are scripted through FakeSession; backoff waits are recorded, not slept.
"""
import pytest
import requests

from aggregator.exceptions import ExhaustionError
from aggregator.providers.catalog import is_list, is_non_empty_list
from aggregator.providers.descriptor import AttemptOutcome, ProviderDescriptor
from aggregator.providers.fetcher import FallbackFetcher


def provider(name, **kwargs):
    kwargs.setdefault("max_attempts", 2)
    kwargs.setdefault("backoff_seconds", 0.5)
    return ProviderDescriptor(name=name, url_template=f"https://{name}.example/data", **kwargs)


@pytest.fixture
def fetcher(session, sleeps):
    return FallbackFetcher(credentials={"key_a": "secret-a"}, session=session, sleep=sleeps.append)


@pytest.fixture
def chain():
    return (provider("a"), provider("b"), provider("c"))


class TestFallbackOrder:

    def test_primary_success(self, fetcher, session, chain, fake_response, sleeps):
        session.add("a.example", fake_response(200, [1, 2]))

        result = fetcher.fetch(chain, shape_check=is_list)

        assert result.payload == [1, 2]
        assert result.tier == "primary"
        assert result.provider == "a"
        assert sleeps == []

    def test_second_provider_serves_as_fallback_1(self, fetcher, session, chain, fake_response):
        session.add("a.example", fake_response(500))
        session.add("b.example", fake_response(200, ["from-b"]))
        session.add("c.example", fake_response(200, ["from-c"]))

        result = fetcher.fetch(chain, shape_check=is_list)

        assert result.payload == ["from-b"]
        assert result.tier == "fallback-1"
        assert session.calls_to("a.example") == 2
        assert session.calls_to("c.example") == 0

    def test_exhaustion_lists_failures_in_chain_order(self, fetcher, session, chain, fake_response):
        session.add("a.example", fake_response(500))
        session.add("b.example", fake_response(404))
        session.add("c.example", requests.ConnectionError("refused"))

        with pytest.raises(ExhaustionError) as exc_info:
            fetcher.fetch(chain)

        failures = exc_info.value.failures
        assert [f.provider for f in failures] == ["a", "b", "c"]
        assert [f.index for f in failures] == [0, 1, 2]
        assert failures[0].outcome == "http-error"
        assert failures[2].outcome == "network-error"
        assert all(f.attempts == 2 for f in failures)
        assert not exc_info.value.all_timeouts


class TestRetries:

    def test_retry_then_success_stays_primary(self, fetcher, session, chain, fake_response, sleeps):
        session.add("a.example", fake_response(503), fake_response(200, ["ok"]))

        result = fetcher.fetch(chain)

        assert result.tier == "primary"
        assert [a.outcome for a in result.attempts] == [AttemptOutcome.HTTP_ERROR, AttemptOutcome.SUCCESS]
        assert sleeps == [0.5]

    def test_linear_backoff_between_attempts(self, session, fake_response, sleeps):
        fetcher = FallbackFetcher(session=session, sleep=sleeps.append)
        session.add("a.example", fake_response(500))

        with pytest.raises(ExhaustionError):
            fetcher.fetch([provider("a", max_attempts=3, backoff_seconds=0.5)])

        assert session.calls_to("a.example") == 3
        assert sleeps == [0.5, 1.0]

    def test_single_attempt_never_sleeps(self, session, fake_response, sleeps):
        fetcher = FallbackFetcher(session=session, sleep=sleeps.append)
        session.add("a.example", fake_response(500))

        with pytest.raises(ExhaustionError):
            fetcher.fetch([provider("a", max_attempts=1)])

        assert session.calls_to("a.example") == 1
        assert sleeps == []


class TestCredentials:

    def test_missing_credential_skips_without_calling(self, fetcher, session, fake_response):
        chain = (provider("z", credential="key_z", credential_param="apiKey"), provider("b"))
        session.add("b.example", fake_response(200, ["ok"]))

        result = fetcher.fetch(chain)

        assert result.tier == "fallback-1"
        assert session.calls_to("z.example") == 0

    def test_all_missing_credentials_is_config_exhaustion(self, fetcher, session):
        chain = (provider("y", credential="key_y"), provider("z", credential="key_z"))

        with pytest.raises(ExhaustionError) as exc_info:
            fetcher.fetch(chain)

        assert exc_info.value.all_config_errors
        assert [f.attempts for f in exc_info.value.failures] == [0, 0]
        assert session.calls == []

    def test_credential_sent_as_header_or_param(self, fetcher, session, fake_response):
        session.add("a.example", fake_response(200, []))

        fetcher.fetch([provider("a", credential="key_a", credential_header="X-Key")])
        fetcher.fetch([provider("a", credential="key_a", credential_param="apiKey")])

        assert session.calls[0]["headers"]["X-Key"] == "secret-a"
        assert session.calls[1]["params"]["apiKey"] == "secret-a"

    def test_unfilled_url_template_is_config_error(self, fetcher, session):
        descriptor = ProviderDescriptor(name="t", url_template="https://t.example/{odds_key}/odds")

        with pytest.raises(ExhaustionError) as exc_info:
            fetcher.fetch([descriptor], params={"odds_key": ""})

        assert exc_info.value.failures[0].outcome == "config-error"
        assert session.calls == []


class TestPayloads:

    def test_timeouts_are_reported_as_timeouts(self, fetcher, session, chain):
        session.add(".example", requests.Timeout("read timed out"))

        with pytest.raises(ExhaustionError) as exc_info:
            fetcher.fetch(chain)

        assert exc_info.value.all_timeouts
        assert exc_info.value.failures[0].outcome == "timeout"

    def test_shape_check_rejection_falls_through(self, fetcher, session, chain, fake_response):
        session.add("a.example", fake_response(200, {"message": "quota exceeded"}))
        session.add("b.example", fake_response(200, [{"id": 1}]))

        result = fetcher.fetch(chain, shape_check=is_non_empty_list)

        assert result.tier == "fallback-1"

    def test_malformed_json_is_invalid_payload(self, fetcher, session, fake_response):
        session.add("a.example", fake_response(200, malformed=True))

        with pytest.raises(ExhaustionError) as exc_info:
            fetcher.fetch([provider("a")])

        assert exc_info.value.failures[0].outcome == "invalid-payload"

    def test_payload_key_unwraps_envelope(self, fetcher, session, fake_response):
        session.add("a.example", fake_response(200, {"count": 2, "items": [{"id": 1}, {"id": 2}]}))

        result = fetcher.fetch([provider("a", payload_key="items")], shape_check=is_non_empty_list)

        assert result.payload == [{"id": 1}, {"id": 2}]

    def test_query_params_and_defaults_forwarded(self, fetcher, session, fake_response):
        session.add("a.example", fake_response(200, []))
        descriptor = provider(
            "a",
            query_params=("regions", "markets"),
            default_query=(("limit", "100"),),
        )

        fetcher.fetch([descriptor], params={"regions": "us", "markets": "", "unused": "x"})

        assert session.calls[0]["params"] == {"limit": "100", "regions": "us"}
