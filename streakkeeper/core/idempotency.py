"""
streakkeeper/core/idempotency.py
Idempotency key management for externally delivered events (payments).

Keys live in the state repository under their own entry, so they survive a
data reset and process restarts.
"""

import threading
from typing import Optional, Set

from streakkeeper.features.persistence.repository import StateRepository


class IdempotencyRegistry:
    def __init__(self, repository: Optional[StateRepository] = None):
        self._repository = repository
        self._lock = threading.Lock()
        self._keys: Set[str] = repository.load_transactions() if repository else set()

    @staticmethod
    def _scoped(key: str, operation: str) -> str:
        return f"{operation}:{key}"

    def check_and_set(self, key: str, operation: str = "generic") -> bool:
        """
        Check if idempotency key exists, and set it if not (atomic).

        Args:
            key: Idempotency key string
            operation: Operation type, keys are scoped per operation

        Returns:
            True if key was already seen (duplicate delivery)
            False if key is new (first time seeing it)
        """
        scoped = self._scoped(key, operation)
        with self._lock:
            if scoped in self._keys:
                return True
            keys = self._keys | {scoped}
            if self._repository is not None:
                self._repository.save_transactions(keys)
            self._keys = keys
            return False

    def check_key(self, key: str, operation: str = "generic") -> bool:
        """Read-only membership check."""
        with self._lock:
            return self._scoped(key, operation) in self._keys

    def clear_all_keys(self) -> None:
        """Clear all idempotency keys (testing only)."""
        with self._lock:
            self._keys = set()
            if self._repository is not None:
                self._repository.save_transactions(())
