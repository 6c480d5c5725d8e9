"""
Key-value persistence contract for engine state.

Values are JSON-compatible payloads. ``save`` replaces the whole value for a
key; readers never observe a partially written value. ``save_many`` commits
several keys as one unit.
"""
from __future__ import annotations

import copy
import json
import logging
import threading
from typing import Any, Dict, Mapping, Optional, Protocol

from sqlalchemy import select, insert, update, delete
from sqlalchemy.exc import SQLAlchemyError

from streakkeeper.core.database import get_db_session, kv_entries
from streakkeeper.core.errors import PersistenceError

logger = logging.getLogger("streakkeeper")


class KeyValueStore(Protocol):
    def save(self, key: str, value: Any) -> None: ...

    def save_many(self, values: Mapping[str, Any]) -> None: ...

    def load(self, key: str) -> Optional[Any]: ...

    def delete(self, key: str) -> None: ...


class InMemoryKeyValueStore:
    """Process-local store. Values are serialised on save so callers never share references."""

    def __init__(self):
        self._values: Dict[str, str] = {}
        self._lock = threading.Lock()

    def save(self, key: str, value: Any) -> None:
        self.save_many({key: value})

    def save_many(self, values: Mapping[str, Any]) -> None:
        try:
            encoded = {key: json.dumps(value) for key, value in values.items()}
        except (TypeError, ValueError) as exc:
            raise PersistenceError(f"value is not serialisable: {exc}") from exc
        with self._lock:
            self._values.update(encoded)

    def load(self, key: str) -> Optional[Any]:
        with self._lock:
            raw = self._values.get(key)
        return json.loads(raw) if raw is not None else None

    def delete(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._values)


class SqlKeyValueStore:
    """
    SQLAlchemy-backed store over the ``kv_entries`` table.

    Each call runs in its own transaction; ``save_many`` writes every key in a
    single transaction so a crash leaves either all or none of them updated.
    """

    def save(self, key: str, value: Any) -> None:
        self.save_many({key: value})

    def save_many(self, values: Mapping[str, Any]) -> None:
        try:
            with get_db_session() as session:
                for key, value in values.items():
                    payload = copy.deepcopy(value)
                    result = session.execute(
                        update(kv_entries)
                        .where(kv_entries.c.key == key)
                        .values(value=payload)
                    )
                    if result.rowcount == 0:
                        session.execute(insert(kv_entries).values(key=key, value=payload))
        except SQLAlchemyError as exc:
            logger.error("kv.save_failed", extra={"error_code": "persistence_failed", "keys": list(values)})
            raise PersistenceError(f"failed to save {', '.join(values)}") from exc

    def load(self, key: str) -> Optional[Any]:
        try:
            with get_db_session() as session:
                row = session.execute(
                    select(kv_entries.c.value).where(kv_entries.c.key == key)
                ).first()
        except SQLAlchemyError as exc:
            logger.error("kv.load_failed", extra={"error_code": "persistence_failed", "key": key})
            raise PersistenceError(f"failed to load {key}") from exc
        return row[0] if row else None

    def delete(self, key: str) -> None:
        try:
            with get_db_session() as session:
                session.execute(delete(kv_entries).where(kv_entries.c.key == key))
        except SQLAlchemyError as exc:
            raise PersistenceError(f"failed to delete {key}") from exc
