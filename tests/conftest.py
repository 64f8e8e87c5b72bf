"""Shared fixtures: fake clock, temp settings store, loaded resolver."""

import pytest
import pytest_asyncio

from autovote.engine.decision import DecisionEngine
from autovote.hub.config import ConfigResolver
from autovote.hub.config_store import ConfigStore
from autovote.shared.models import Challenge

T0 = 1_700_000_000.0


class FakeClock:
    """Manually advanced unix clock."""

    def __init__(self, now: float = T0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def store(tmp_path):
    """Create and initialize a ConfigStore with a temp DB."""
    s = ConfigStore(str(tmp_path / "settings.db"))
    await s.initialize()
    yield s
    await s.close()


@pytest_asyncio.fixture
async def resolver(store, clock):
    r = ConfigResolver(store, clock=clock)
    await r.load()
    return r


@pytest.fixture
def engine(resolver):
    return DecisionEngine(resolver)


@pytest.fixture
def make_challenge(clock):
    """Factory for challenges relative to the fake clock's current time."""

    def _make(
        id="c1",
        closes_in=7200,
        exposure=75,
        type="default",
        started_ago=3600,
        boost_available=False,
        boost_expires_in=None,
        title="",
    ) -> Challenge:
        now = clock()
        return Challenge(
            id=str(id),
            type=type,
            start_time=now - started_ago,
            close_time=now + closes_in,
            current_exposure=exposure,
            boost_available=boost_available,
            boost_expires_at=now + boost_expires_in if boost_expires_in is not None else 0,
            title=title,
        )

    return _make
