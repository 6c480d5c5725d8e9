"""
DailyRecord store: exactly one record per local calendar day.

Upserts are last-write-wins on step count; the store never rejects a lower
reading because the step source is authoritative for the instant it reports.
"""
from __future__ import annotations

import logging
from datetime import date
from typing import Dict, Iterable, List, Optional

from streakkeeper.core.dates import day_key, normalize_day
from streakkeeper.features.persistence.repository import StateRepository
from streakkeeper.models.daily_record import DailyRecord

logger = logging.getLogger("streakkeeper")


class DailyRecordStore:
    def __init__(self, repository: Optional[StateRepository] = None):
        self._repository = repository
        self._records: Dict[date, DailyRecord] = {}
        if repository is not None:
            for record in repository.load_records():
                self._records[record.date] = record

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, day: date) -> bool:
        return day in self._records

    def upsert(self, day, steps, goal_target) -> Optional[DailyRecord]:
        """Create or update the record for ``day``.

        Returns None (and changes nothing) for malformed input.
        """
        try:
            normalized = normalize_day(day)
        except (TypeError, ValueError):
            logger.warning("records.upsert_rejected", extra={"error_code": "invalid_date", "value": repr(day)})
            return None
        if not _is_count(steps) or steps < 0:
            logger.warning("records.upsert_rejected", extra={"error_code": "invalid_steps", "day": day_key(normalized)})
            return None
        if not _is_count(goal_target) or goal_target <= 0:
            logger.warning("records.upsert_rejected", extra={"error_code": "invalid_goal", "day": day_key(normalized)})
            return None

        record = self._records.get(normalized)
        if record is None:
            record = DailyRecord(date=normalized)
            self._records[normalized] = record
        record.steps = steps
        record.goal_target = goal_target
        record.goal_met = steps >= goal_target
        self._flush()
        return record.copy()

    def get(self, day: date) -> Optional[DailyRecord]:
        record = self._records.get(day)
        return record.copy() if record else None

    def qualifies(self, day: date) -> bool:
        """Met or shielded. A day with no record does not qualify."""
        record = self._records.get(day)
        return bool(record and record.qualifies)

    def all_records(self) -> List[DailyRecord]:
        """Every record, most recent first."""
        return [self._records[d].copy() for d in sorted(self._records, reverse=True)]

    def mark_shield_used(self, day: date) -> bool:
        """Cover a missed day. Days with no record get a 0-step record first."""
        record = self._records.get(day)
        if record is None:
            record = DailyRecord(date=day)
            self._records[day] = record
        elif record.goal_met or record.shield_used:
            return False
        record.shield_used = True
        self._flush()
        return True

    def clear_shield_used(self, day: date) -> bool:
        record = self._records.get(day)
        if record is None or not record.shield_used:
            return False
        record.shield_used = False
        self._flush()
        return True

    def add_walk_ref(self, day: date, walk_id: str) -> Optional[DailyRecord]:
        record = self._records.get(day)
        if record is None:
            record = DailyRecord(date=day)
            self._records[day] = record
        record.walk_refs.add(walk_id)
        self._flush()
        return record.copy()

    def snapshot(self) -> Dict[date, DailyRecord]:
        return {day: record.copy() for day, record in self._records.items()}

    def replace_all(self, records: Iterable[DailyRecord], *, persist: bool = True) -> None:
        """Swap the whole record set in one step."""
        self._records = {record.date: record.copy() for record in records}
        if persist:
            self._flush()

    def delete_all(self) -> None:
        self._records = {}
        self._flush()

    def _flush(self) -> None:
        if self._repository is not None:
            self._repository.save_records(self._records[d] for d in sorted(self._records))


def _is_count(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)
