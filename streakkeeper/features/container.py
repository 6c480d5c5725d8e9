"""
Process-wide service wiring.

Persistence is picked from config: DATABASE_URL set means the SQL key-value
store, otherwise state lives in memory for the life of the process.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from streakkeeper.core.database import create_all_tables, get_database_url, init_engine
from streakkeeper.core.dates import Clock
from streakkeeper.core.idempotency import IdempotencyRegistry
from streakkeeper.features.payments.service import PaymentEventHandler
from streakkeeper.features.persistence.kv_store import InMemoryKeyValueStore, KeyValueStore, SqlKeyValueStore
from streakkeeper.features.persistence.repository import StateRepository
from streakkeeper.features.reconciliation.service import ReconciliationService
from streakkeeper.features.sources import GoalSource, HttpStepSource, StepSource
from streakkeeper.features.streaks.service import StreakEngine

logger = logging.getLogger("streakkeeper")


@dataclass
class Container:
    repository: StateRepository
    engine: StreakEngine
    reconciliation: ReconciliationService
    payments: PaymentEventHandler


def build_container(
    store: Optional[KeyValueStore] = None,
    *,
    step_source: Optional[StepSource] = None,
    goal_source: Optional[GoalSource] = None,
    clock: Optional[Clock] = None,
) -> Container:
    if store is None:
        url = get_database_url()
        if url:
            init_engine(url)
            create_all_tables()
            store = SqlKeyValueStore()
            logger.info("container.store", extra={"event_type": "startup", "store": "sql"})
        else:
            store = InMemoryKeyValueStore()
            logger.info("container.store", extra={"event_type": "startup", "store": "memory"})

    repository = StateRepository(store)
    engine = StreakEngine.from_repository(repository, goal_source=goal_source, clock=clock)
    reconciliation = ReconciliationService(engine, step_source or HttpStepSource.from_settings())
    payments = PaymentEventHandler(reconciliation, IdempotencyRegistry(repository))
    return Container(repository=repository, engine=engine, reconciliation=reconciliation, payments=payments)


_container: Optional[Container] = None


def get_container() -> Container:
    global _container
    if _container is None:
        _container = build_container()
    return _container


def set_container(container: Optional[Container]) -> None:
    """Swap the process container (tests); None rebuilds lazily from config."""
    global _container
    _container = container
