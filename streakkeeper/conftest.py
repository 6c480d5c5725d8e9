# streakkeeper/conftest.py
import os
from datetime import date, datetime

import pytest

from streakkeeper.features.container import build_container, set_container
from streakkeeper.features.persistence.kv_store import InMemoryKeyValueStore
from streakkeeper.features.persistence.repository import StateRepository
from streakkeeper.features.sources import FixedGoalSource
from streakkeeper.tests.factories import FrozenClock, StateBuilder

# Saturday; mid-month so refill and window tests never straddle a month edge by accident
TODAY = date(2026, 10, 17)


@pytest.fixture(scope="session")
def db_url():
    """
    Provide DATABASE_URL for tests.

    Returns the URL from environment, or None if not set.
    Tests run against the in-memory store unless it is set.
    """
    return os.getenv("DATABASE_URL")


@pytest.fixture
def clock():
    return FrozenClock(datetime(TODAY.year, TODAY.month, TODAY.day, 9, 0))


@pytest.fixture
def repository():
    return StateRepository(InMemoryKeyValueStore())


@pytest.fixture
def builder(clock, repository):
    return StateBuilder(clock=clock, repository=repository)


@pytest.fixture
def engine(builder):
    return builder.build()


@pytest.fixture
def container(clock):
    """Fresh in-memory container installed as the process container for API tests."""
    built = build_container(InMemoryKeyValueStore(), goal_source=FixedGoalSource(10_000), clock=clock)
    set_container(built)
    yield built
    set_container(None)
