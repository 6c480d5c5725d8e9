"""Persistence tests: in-memory store, SQLite-backed store and the repository cache."""

from datetime import date

import pytest

from streakkeeper.core.database import create_all_tables, dispose_engine, init_engine
from streakkeeper.core.errors import PersistenceError
from streakkeeper.features.persistence.kv_store import InMemoryKeyValueStore, SqlKeyValueStore
from streakkeeper.features.persistence.repository import StateRepository
from streakkeeper.models.daily_record import DailyRecord
from streakkeeper.models.shield import ShieldState, Tier
from streakkeeper.models.streak import StreakState


@pytest.fixture
def sqlite_store():
    init_engine("sqlite://")
    create_all_tables()
    yield SqlKeyValueStore()
    dispose_engine()


@pytest.fixture(params=["memory", "sqlite"])
def store(request):
    if request.param == "memory":
        return InMemoryKeyValueStore()
    return request.getfixturevalue("sqlite_store")


def test_save_replaces_whole_value(store):
    store.save("k", {"a": 1, "b": [1, 2]})
    store.save("k", {"a": 2})

    assert store.load("k") == {"a": 2}


def test_missing_key_loads_none(store):
    assert store.load("nope") is None


def test_save_many_and_delete(store):
    store.save_many({"x": 1, "y": [1]})
    store.delete("x")

    assert store.load("x") is None
    assert store.load("y") == [1]


def test_memory_store_does_not_share_references():
    store = InMemoryKeyValueStore()
    value = {"items": [1]}
    store.save("k", value)
    value["items"].append(2)

    assert store.load("k") == {"items": [1]}


def test_memory_store_rejects_unserialisable_values():
    with pytest.raises(PersistenceError):
        InMemoryKeyValueStore().save("k", {"when": date(2026, 1, 1)})


def test_repository_round_trips_full_state(store):
    repository = StateRepository(store)
    records = [
        DailyRecord(date=date(2026, 10, 15), steps=12_000, goal_met=True, walk_refs={"w1"}, goal_target=10_000),
        DailyRecord(date=date(2026, 10, 16), shield_used=True),
    ]
    streak = StreakState(current_streak=2, longest_streak=9, last_goal_met_date=date(2026, 10, 16), streak_start_date=date(2026, 10, 15))
    shield = ShieldState(available_shields=3, last_refill_date=date(2026, 10, 1), purchased_shields=1, tier=Tier.PRO)

    repository.save_all(records, streak, shield)
    fresh = StateRepository(store)

    assert fresh.load_records() == records
    assert fresh.load_streak() == streak
    assert fresh.load_shield() == shield


def test_repository_reads_are_cached_until_invalidated():
    store = InMemoryKeyValueStore()
    repository = StateRepository(store)
    repository.save_streak(StreakState(current_streak=4, longest_streak=4))

    repository.load_streak()
    repository.load_streak()
    assert repository.cache_misses == 0

    store.save("streak_state", StreakState(current_streak=1, longest_streak=4).to_payload())
    assert repository.load_streak().current_streak == 4

    repository.invalidate()
    assert repository.load_streak().current_streak == 1
    assert repository.cache_misses == 1


def test_reset_keeps_processed_transactions():
    repository = StateRepository()
    repository.save_all([DailyRecord(date=date(2026, 10, 15))], StreakState(), ShieldState(available_shields=2))
    repository.save_transactions({"shield_purchase:txn-1"})

    repository.reset()

    assert repository.load_records() == []
    assert repository.load_shield().available_shields == 0
    assert repository.load_transactions() == {"shield_purchase:txn-1"}


def test_shield_payload_defaults_for_older_saves():
    state = ShieldState.from_payload({"available_shields": 1, "last_refill_date": "2026-10-01"})

    assert state.total_shields_used == 0
    assert state.tier == Tier.FREE
