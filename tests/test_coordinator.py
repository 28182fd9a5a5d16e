"""
Unit tests for refresh coordination: cache hits, live refresh, stale and
synthetic recovery, and per-key coalescing.
"""
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from aggregator.cache.coalescer import RequestCoalescer
from aggregator.cache.coordinator import RefreshCoordinator
from aggregator.cache.core import Resource, ResourceKind
from aggregator.cache.store import CacheStore
from aggregator.exceptions import ExhaustionError
from aggregator.providers.descriptor import ProviderDescriptor
from aggregator.providers.fetcher import FallbackFetcher, FetchSuccess

TTL = timedelta(hours=12)


@pytest.fixture
def resource():
    return Resource.build(ResourceKind.ROSTER, "nfl")


@pytest.fixture
def chain():
    return (
        ProviderDescriptor(name="a", url_template="https://a.example/players", max_attempts=1),
        ProviderDescriptor(name="b", url_template="https://b.example/players", max_attempts=1),
    )


@pytest.fixture
def coordinator(store, session, clock, sleeps):
    fetcher = FallbackFetcher(session=session, sleep=sleeps.append)
    return RefreshCoordinator(store, fetcher, coalesce_timeout=5.0, clock=clock)


class TestServeOrRefresh:

    def test_fresh_entry_served_from_cache(self, coordinator, store, session, resource, chain, clock):
        store.set(resource.cache_key, [{"id": 1}], "primary")
        clock.advance(hours=1)

        result = coordinator.get_or_refresh(resource, chain, TTL)

        assert result.provenance == "cache"
        assert result.payload == [{"id": 1}]
        assert session.calls == []

    def test_absent_entry_fetched_and_cached(self, coordinator, store, session, resource, chain, fake_response, clock):
        session.add("a.example", fake_response(200, [{"id": 2}]))

        result = coordinator.get_or_refresh(resource, chain, TTL)

        assert result.provenance == "primary"
        assert result.item_count == 1
        entry = store.get(resource.cache_key)
        assert entry.payload == [{"id": 2}]
        assert entry.created_at == clock()

    def test_stale_entry_refreshed(self, coordinator, store, session, resource, chain, fake_response, clock):
        store.set(resource.cache_key, ["old"], "primary")
        clock.advance(hours=13)
        session.add("a.example", fake_response(500))
        session.add("b.example", fake_response(200, ["new"]))

        result = coordinator.get_or_refresh(resource, chain, TTL)

        assert result.provenance == "fallback-1"
        assert result.payload == ["new"]
        assert store.get(resource.cache_key).source_tier == "fallback-1"

    def test_force_refresh_fetches_despite_fresh_entry(self, coordinator, store, session, resource, chain, fake_response):
        store.set(resource.cache_key, ["cached"], "primary")
        session.add("a.example", fake_response(200, ["live"]))

        result = coordinator.get_or_refresh(resource, chain, TTL, force_refresh=True)

        assert result.provenance == "primary"
        assert result.payload == ["live"]
        assert session.calls_to("a.example") == 1


class TestRecovery:

    def test_stale_cache_preferred_over_nothing(self, coordinator, store, session, resource, chain, fake_response, clock):
        store.set(resource.cache_key, ["old"], "primary")
        written_at = clock()
        clock.advance(hours=13)
        session.add(".example", fake_response(503))

        result = coordinator.get_or_refresh(resource, chain, TTL)

        assert result.provenance == "stale-cache"
        assert result.payload == ["old"]
        assert result.created_at == written_at
        assert "2025-01-05T12:00:00Z" in result.warning
        assert [f.provider for f in result.failures] == ["a", "b"]
        # stale data is not rewritten
        assert store.get(resource.cache_key).created_at == written_at

    def test_stale_cache_wins_over_synthetic(self, coordinator, store, session, resource, chain, fake_response, clock):
        store.set(resource.cache_key, ["old"], "primary")
        clock.advance(hours=13)
        session.add(".example", fake_response(503))

        result = coordinator.get_or_refresh(resource, chain, TTL, synthetic=lambda r: ["generated"])

        assert result.provenance == "stale-cache"

    def test_synthetic_when_nothing_cached(self, coordinator, store, session, resource, chain, fake_response):
        session.add(".example", fake_response(503))

        result = coordinator.get_or_refresh(resource, chain, TTL, synthetic=lambda r: [{"synthetic": True}])

        assert result.provenance == "synthetic"
        assert result.warning
        assert store.get(resource.cache_key).source_tier == "synthetic"

    def test_hard_failure_raises(self, coordinator, store, session, resource, chain, fake_response):
        session.add(".example", fake_response(503))

        with pytest.raises(ExhaustionError) as exc_info:
            coordinator.get_or_refresh(resource, chain, TTL)

        assert exc_info.value.resource == "roster/nfl"
        assert store.get(resource.cache_key) is None
        assert coordinator.get_stats()["failures"] == 1

    def test_synthetic_factory_returning_none_is_hard_failure(self, coordinator, session, resource, chain, fake_response):
        session.add(".example", fake_response(503))

        with pytest.raises(ExhaustionError):
            coordinator.get_or_refresh(resource, chain, TTL, synthetic=lambda r: None)


class TestCoalescing:

    def test_concurrent_callers_share_one_fetch(self, store, clock, resource):
        callers = 8
        calls = []

        class SlowFetcher:
            def fetch(self, chain, params=None, shape_check=None):
                calls.append(threading.get_ident())
                # hold the fetch open until every other caller has joined it
                deadline = time.monotonic() + 5
                while time.monotonic() < deadline:
                    if coordinator.get_stats()["coalescer"]["coalesced_total"] >= callers - 1:
                        break
                    time.sleep(0.01)
                return FetchSuccess(payload=[{"id": 99}], provider_index=0, provider="slow")

        coordinator = RefreshCoordinator(store, SlowFetcher(), coalesce_timeout=10, clock=clock)
        store.set(resource.cache_key, ["old"], "primary")
        clock.advance(hours=13)

        with ThreadPoolExecutor(max_workers=callers) as pool:
            results = list(pool.map(lambda _: coordinator.get_or_refresh(resource, (), TTL), range(callers)))

        assert len(calls) == 1
        assert all(r.payload == [{"id": 99}] for r in results)
        assert {r.provenance for r in results} == {"primary"}
        assert not store.is_pinned(resource.cache_key)

    def test_failure_propagates_to_every_waiter(self):
        coalescer = RequestCoalescer(timeout=5)
        started = threading.Event()
        release = threading.Event()

        def failing_fetch():
            started.set()
            release.wait(5)
            raise ExhaustionError([])

        errors = []

        def call():
            try:
                coalescer.run("odds:nfl", failing_fetch)
            except ExhaustionError as e:
                errors.append(e)

        first = threading.Thread(target=call)
        first.start()
        started.wait(5)
        second = threading.Thread(target=call)
        second.start()
        while coalescer.get_stats()["coalesced_total"] < 1:
            time.sleep(0.01)
        release.set()
        first.join(5)
        second.join(5)

        assert len(errors) == 2
        assert coalescer.active_requests == 0

    def test_waiter_times_out(self):
        coalescer = RequestCoalescer(timeout=0.05)
        release = threading.Event()
        started = threading.Event()

        def slow_fetch():
            started.set()
            release.wait(5)
            return "done"

        initiator = threading.Thread(target=coalescer.run, args=("props:nfl", slow_fetch))
        initiator.start()
        started.wait(5)
        try:
            with pytest.raises(TimeoutError):
                coalescer.run("props:nfl", slow_fetch)
        finally:
            release.set()
            initiator.join(5)

    def test_other_keys_refresh_while_one_is_in_flight(self, store, clock):
        held = threading.Event()
        release = threading.Event()

        class GatedFetcher:
            def fetch(self, chain, params=None, shape_check=None):
                if params["sport"] == "nfl":
                    held.set()
                    release.wait(5)
                return FetchSuccess(payload=[params["sport"]], provider_index=0, provider="gated")

        coordinator = RefreshCoordinator(store, GatedFetcher(), coalesce_timeout=5, clock=clock)
        nfl = Resource.build(ResourceKind.ODDS, "nfl")
        nba = Resource.build(ResourceKind.ODDS, "nba")

        with ThreadPoolExecutor(max_workers=1) as pool:
            pending = pool.submit(coordinator.get_or_refresh, nfl, (), TTL, params={"sport": "nfl"})
            try:
                assert held.wait(5)
                result = coordinator.get_or_refresh(nba, (), TTL, params={"sport": "nba"})
                assert result.payload == ["nba"]
                assert not pending.done()
                assert coordinator.get_stats()["coalescer"]["active_keys"] == [nfl.cache_key]
            finally:
                release.set()
            assert pending.result(5).payload == ["nfl"]

        assert coordinator.get_stats()["coalescer"]["coalesced_total"] == 0


class RacingStore(CacheStore):
    """
    Holds one thread's in-flight freshness re-check open until another caller
    has joined the refresh, then lands a fresh entry underneath it.
    """

    def __init__(self, clock):
        super().__init__(clock=clock)
        self.coordinator = None
        self.racer = None
        self.in_flight = threading.Event()
        self._racer_reads = 0

    def get(self, key):
        if threading.get_ident() == self.racer:
            self._racer_reads += 1
            if self._racer_reads == 2:
                self.in_flight.set()
                deadline = time.monotonic() + 5
                while time.monotonic() < deadline:
                    if self.coordinator.get_stats()["coalescer"]["coalesced_total"] >= 1:
                        break
                    time.sleep(0.01)
                self.set(key, ["written elsewhere"], "primary")
        return super().get(key)


class TestForcedRefresh:

    def test_forced_caller_joining_a_cache_answer_fetches_live(self, session, fake_response, clock, sleeps, resource, chain):
        store = RacingStore(clock)
        fetcher = FallbackFetcher(session=session, sleep=sleeps.append)
        coordinator = RefreshCoordinator(store, fetcher, coalesce_timeout=5.0, clock=clock)
        store.coordinator = coordinator
        store.set(resource.cache_key, ["old"], "primary")
        clock.advance(hours=13)
        session.add("a.example", fake_response(200, ["live"]))

        def plain_call():
            store.racer = threading.get_ident()
            return coordinator.get_or_refresh(resource, chain, TTL)

        with ThreadPoolExecutor(max_workers=1) as pool:
            plain = pool.submit(plain_call)
            assert store.in_flight.wait(5)
            forced = coordinator.get_or_refresh(resource, chain, TTL, force_refresh=True)

        assert plain.result(5).provenance == "cache"
        assert forced.provenance == "primary"
        assert forced.payload == ["live"]
        assert session.calls_to("a.example") == 1
