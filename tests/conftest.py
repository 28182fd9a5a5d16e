"""
Shared fixtures: fake clock, scripted HTTP session, settings and a wired dispatcher.

Nothing here touches the network; every upstream call goes through FakeSession.
"""
from datetime import datetime, timedelta, timezone

import pytest
import requests

from aggregator.cache.store import CacheStore
from aggregator.service import build_dispatcher
from config.settings import Settings


class FakeClock:
    """Mutable UTC clock."""

    def __init__(self, start=None):
        self.now = start or datetime(2025, 1, 5, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)

    def rewind(self, **kwargs):
        self.now -= timedelta(**kwargs)


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, status_code=200, payload=None, malformed=False):
        self.status_code = status_code
        self._payload = payload
        self._malformed = malformed

    def json(self):
        if self._malformed:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self._payload


class FakeSession:
    """
    Scripted requests.Session.

    Routes are matched by URL substring in the order they were added. Each
    route holds a queue of responses (or exceptions to raise); the last item
    repeats once the queue is down to one.
    """

    def __init__(self):
        self.routes = []
        self.calls = []

    def add(self, fragment, *responses):
        self.routes.append((fragment, list(responses)))
        return self

    def _respond(self, url):
        for fragment, queue in self.routes:
            if fragment in url:
                item = queue.pop(0) if len(queue) > 1 else queue[0]
                if isinstance(item, Exception):
                    raise item
                return item
        raise requests.ConnectionError(f"no route for {url}")

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append({"method": "GET", "url": url, "params": dict(params or {}), "headers": dict(headers or {})})
        return self._respond(url)

    def head(self, url, timeout=None, allow_redirects=True):
        self.calls.append({"method": "HEAD", "url": url, "params": {}, "headers": {}})
        return self._respond(url)

    def calls_to(self, fragment):
        return sum(1 for call in self.calls if fragment in call["url"])


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def sleeps():
    """Backoff waits recorded instead of slept."""
    return []


@pytest.fixture
def store(clock):
    return CacheStore(clock=clock)


@pytest.fixture
def make_settings():
    def _make(**overrides):
        values = {
            "odds_api_key": "test-odds-key",
            "roster_api_key": "test-roster-key",
            "odds_backup_url": None,
            "cache_backend": "memory",
            "provider_max_attempts": 2,
            "provider_backoff_seconds": 0.5,
            "refresh_sports": ["nfl", "nba"],
            "maintenance_enabled": False,
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)
    return _make


@pytest.fixture
def make_dispatcher(make_settings, session, store, clock, sleeps):
    """Build a dispatcher over the shared fake session, store and clock."""
    def _make(**overrides):
        return build_dispatcher(
            make_settings(**overrides),
            session=session,
            store=store,
            clock=clock,
            sleep=sleeps.append,
        )
    return _make


@pytest.fixture
def dispatcher(make_dispatcher):
    return make_dispatcher()


@pytest.fixture
def fake_response():
    return FakeResponse
