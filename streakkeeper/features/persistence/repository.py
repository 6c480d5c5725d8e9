"""
State repository: typed access to persisted engine state.

Reads go through an in-process cache. The cache is only invalidated
explicitly: after reconciliation commits and after a full reset, i.e. the
points where state is overwritten wholesale. Saves write through and refresh
the cached value.
"""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from streakkeeper.features.persistence.kv_store import InMemoryKeyValueStore, KeyValueStore
from streakkeeper.models.daily_record import DailyRecord
from streakkeeper.models.shield import ShieldState
from streakkeeper.models.streak import StreakState

RECORDS_KEY = "daily_records"
STREAK_KEY = "streak_state"
SHIELD_KEY = "shield_state"
TRANSACTIONS_KEY = "processed_transactions"

# Payment transaction ids survive a reset so a redelivered purchase is not granted twice
RESETTABLE_KEYS = (RECORDS_KEY, STREAK_KEY, SHIELD_KEY)


class StateRepository:
    def __init__(self, store: Optional[KeyValueStore] = None):
        self._store = store or InMemoryKeyValueStore()
        self._cache: Dict[str, Any] = {}
        self.cache_misses = 0

    @property
    def store(self) -> KeyValueStore:
        return self._store

    def _read(self, key: str) -> Optional[Any]:
        if key not in self._cache:
            self.cache_misses += 1
            self._cache[key] = self._store.load(key)
        return self._cache[key]

    def _write(self, values: Dict[str, Any]) -> None:
        self._store.save_many(values)
        self._cache.update(values)

    def invalidate(self) -> None:
        """Drop every cached value; the next read goes to the store."""
        self._cache.clear()

    # Records -----------------------------------------------------------
    def load_records(self) -> List[DailyRecord]:
        payload = self._read(RECORDS_KEY) or []
        return [DailyRecord.from_payload(item) for item in payload]

    def save_records(self, records: Iterable[DailyRecord]) -> None:
        self._write({RECORDS_KEY: [r.to_payload() for r in records]})

    # Streak ------------------------------------------------------------
    def load_streak(self) -> StreakState:
        payload = self._read(STREAK_KEY)
        return StreakState.from_payload(payload) if payload else StreakState()

    def save_streak(self, state: StreakState) -> None:
        self._write({STREAK_KEY: state.to_payload()})

    # Shields -----------------------------------------------------------
    def load_shield(self) -> ShieldState:
        payload = self._read(SHIELD_KEY)
        return ShieldState.from_payload(payload) if payload else ShieldState()

    def save_shield(self, state: ShieldState) -> None:
        self._write({SHIELD_KEY: state.to_payload()})

    # Payment transactions ------------------------------------------------
    def load_transactions(self) -> set[str]:
        return set(self._read(TRANSACTIONS_KEY) or [])

    def save_transactions(self, transaction_ids: Iterable[str]) -> None:
        self._write({TRANSACTIONS_KEY: sorted(transaction_ids)})

    # Whole state ---------------------------------------------------------
    def save_all(self, records: Iterable[DailyRecord], streak: StreakState, shield: ShieldState) -> None:
        """Persist records, streak and shield state as one atomic unit."""
        self._write({
            RECORDS_KEY: [r.to_payload() for r in records],
            STREAK_KEY: streak.to_payload(),
            SHIELD_KEY: shield.to_payload(),
        })

    def reset(self) -> None:
        for key in RESETTABLE_KEYS:
            self._store.delete(key)
        self.invalidate()
