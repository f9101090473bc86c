"""
Pytest configuration and shared fixtures.

Fixtures:
    clock      - manually advanced clock for TTL tests
    store      - CacheStore driven by `clock`
    engine     - CacheStrategyEngine over `store`
    transport  - in-memory stand-in for RequestsTransport
"""

import sys
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from cache_store import CacheStore  # noqa: E402
from strategies import CacheStrategyEngine  # noqa: E402


class FakeClock:
    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport:
    """Records every request; answers from `responses` keyed by URL, or raises `errors[url]`."""

    def __init__(self, responses=None, errors=None):
        self.responses = dict(responses or {})
        self.errors = dict(errors or {})
        self.calls = []

    async def request(self, method, url, params=None, json=None):
        self.calls.append((method, url, dict(params) if params else None, json))
        if url in self.errors:
            raise self.errors[url]
        return self.responses.get(url)

    def calls_for(self, method, url):
        return [c for c in self.calls if c[0] == method and c[1] == url]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return CacheStore(default_ttl=300, clock=clock)


@pytest.fixture
def engine(store):
    return CacheStrategyEngine(store)


@pytest.fixture
def transport():
    return FakeTransport()
