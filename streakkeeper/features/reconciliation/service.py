"""
Streak reconciliation against the authoritative step history.

Runs on launch/foreground (throttled) or on demand. Resolves:
- Fresh install with prior health history: backfill records, rebuild streak
- Reinstall with a local gap: the rebuild bridges it, since it only trusts the source
- Crash during a paid repair: attempt_streak_repair() is safe to call on every launch

Rules:
- The step source is truth for historical days; today's total is never lowered
- Every reconciled day is classified with the *current* goal (no goal history)
- Any source or persistence failure leaves local state untouched
- Last committed run wins; a run older than the last commit is discarded
"""
from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from streakkeeper.core.config import settings
from streakkeeper.core.dates import normalize_day
from streakkeeper.core.errors import PersistenceError
from streakkeeper.core.logging import bound_request_id, log_event
from streakkeeper.features.sources import DailyTotal, GoalSource, StepSource
from streakkeeper.features.streaks.service import StreakEngine
from streakkeeper.models.daily_record import DailyRecord
from streakkeeper.models.streak import StreakState

logger = logging.getLogger("streakkeeper")


@dataclass
class ReconciliationReport:
    status: str  # completed | skipped | failed | superseded
    sequence: Optional[int] = None
    days_created: int = 0
    days_updated: int = 0
    current_streak: Optional[int] = None
    longest_streak: Optional[int] = None
    error_code: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


def compute_streak_from_history(
    records: Iterable[DailyRecord],
    today: date,
    previous_longest: int = 0,
) -> StreakState:
    """Rebuild streak counters from scratch.

    Walks days oldest to newest. A missing day or a day that is neither met
    nor shielded resets the running count. The current streak is the count at
    the final day when that day is today or yesterday, otherwise 0. Today is
    left out while its goal is still open.
    """
    by_day: Dict[date, DailyRecord] = {r.date: r for r in records if r.date <= today}
    if today in by_day and not by_day[today].qualifies:
        del by_day[today]
    if not by_day:
        return StreakState(longest_streak=previous_longest)

    counter = 0
    longest = previous_longest
    last_qualifying: Optional[date] = None
    previous_day: Optional[date] = None
    for day in sorted(by_day):
        if previous_day is not None and (day - previous_day).days > 1:
            counter = 0
        if by_day[day].qualifies:
            counter += 1
            last_qualifying = day
        else:
            counter = 0
        longest = max(longest, counter)
        previous_day = day

    current = counter if (today - previous_day).days <= 1 else 0
    return StreakState(
        current_streak=current,
        longest_streak=longest,
        last_goal_met_date=last_qualifying,
        streak_start_date=previous_day - timedelta(days=current - 1) if current else None,
    )


class ReconciliationService:
    def __init__(
        self,
        engine: StreakEngine,
        step_source: Optional[StepSource] = None,
        goal_source: Optional[GoalSource] = None,
        *,
        lookback_days: Optional[int] = None,
        throttle_hours: Optional[int] = None,
    ):
        self.engine = engine
        self.step_source = step_source
        self.goal_source = goal_source or engine.goal_source
        self.lookback_days = lookback_days if lookback_days is not None else settings.RECONCILE_LOOKBACK_DAYS
        self.throttle = timedelta(hours=throttle_hours if throttle_hours is not None else settings.RECONCILE_THROTTLE_HOURS)
        self.last_run_at: Optional[datetime] = None
        self._sequence = itertools.count(1)
        self._sequence_lock = threading.Lock()
        self._committed_sequence = 0

    @property
    def committed_sequence(self) -> int:
        return self._committed_sequence

    def next_sequence(self) -> int:
        with self._sequence_lock:
            return next(self._sequence)

    async def reconcile(self, *, force: bool = False, step_source: Optional[StepSource] = None) -> ReconciliationReport:
        """Replay the authoritative history into local records and rebuild the streak."""
        now = self.engine.now()
        if not force and self.last_run_at is not None and now - self.last_run_at < self.throttle:
            return ReconciliationReport(status="skipped", reason="throttled")

        source = step_source or self.step_source
        if source is None:
            return ReconciliationReport(status="skipped", reason="no_step_source")

        sequence = self.next_sequence()
        with bound_request_id(f"reconcile-{sequence}", keep_existing=True):
            return await self._run(sequence, source, now)

    async def _run(self, sequence: int, source: StepSource, now: datetime) -> ReconciliationReport:
        today = normalize_day(now)
        start = today - timedelta(days=self.lookback_days)
        log_event("info", "reconcile.started", event_type="reconcile", extra={"sequence": sequence, "start": start})

        try:
            totals = await source.fetch_daily_totals(start, today)
            goal = self.goal_source.current_daily_goal()
        except Exception as exc:
            log_event(
                "warning",
                "reconcile.source_unavailable",
                event_type="reconcile",
                error_code="source_unavailable",
                extra={"sequence": sequence, "error": exc},
            )
            return ReconciliationReport(status="failed", sequence=sequence, error_code="source_unavailable")

        if not isinstance(goal, int) or isinstance(goal, bool) or goal <= 0:
            log_event("warning", "reconcile.invalid_goal", event_type="reconcile", error_code="invalid_goal", extra={"goal": goal})
            return ReconciliationReport(status="failed", sequence=sequence, error_code="invalid_goal")

        # Critical section: local state may have moved while we awaited the source
        with self.engine.lock:
            if sequence < self._committed_sequence:
                log_event(
                    "info",
                    "reconcile.superseded",
                    event_type="reconcile",
                    extra={"sequence": sequence, "committed": self._committed_sequence},
                )
                return ReconciliationReport(status="superseded", sequence=sequence)

            records, created, updated = self._merge(totals, goal, today)
            streak = compute_streak_from_history(records, today, self.engine.state.longest_streak)
            try:
                self.engine.replace_state(records, streak)
            except PersistenceError:
                log_event("error", "reconcile.persist_failed", event_type="reconcile", error_code="persistence_failed")
                return ReconciliationReport(status="failed", sequence=sequence, error_code="persistence_failed")
            self._committed_sequence = sequence
            self.last_run_at = now

        log_event(
            "info",
            "reconcile.completed",
            event_type="reconcile",
            extra={
                "sequence": sequence,
                "days_created": created,
                "days_updated": updated,
                "current_streak": streak.current_streak,
                "longest_streak": streak.longest_streak,
            },
        )
        return ReconciliationReport(
            status="completed",
            sequence=sequence,
            days_created=created,
            days_updated=updated,
            current_streak=streak.current_streak,
            longest_streak=streak.longest_streak,
        )

    def _merge(self, totals: Iterable[DailyTotal], goal: int, today: date) -> Tuple[List[DailyRecord], int, int]:
        merged = self.engine.records.snapshot()
        created = 0
        updated = 0

        for total in totals:
            day = total.date
            steps = total.steps
            if day > today:
                continue
            if not isinstance(steps, int) or isinstance(steps, bool) or steps < 0:
                logger.warning("reconcile.invalid_total", extra={"day": day.isoformat(), "error_code": "invalid_steps"})
                continue

            existing = merged.get(day)
            if existing is None:
                if steps == 0:
                    continue  # no record is the same as a miss
                merged[day] = DailyRecord(date=day, steps=steps, goal_met=steps >= goal, goal_target=goal)
                created += 1
                continue

            if day == today and steps < existing.steps:
                continue
            goal_met = steps >= goal
            if (existing.steps, existing.goal_met, existing.goal_target) != (steps, goal_met, goal):
                existing.steps = steps
                existing.goal_met = goal_met
                existing.goal_target = goal
                updated += 1

        shielded = sum(1 for r in merged.values() if r.shield_used)
        spent = self.engine.ledger.state.total_shields_used
        if shielded > spent:
            log_event(
                "warning",
                "reconcile.inconsistent_history",
                event_type="reconcile",
                error_code="inconsistent_history",
                extra={"shielded_days": shielded, "shields_spent": spent},
            )

        return sorted(merged.values(), key=lambda r: r.date), created, updated

    def attempt_streak_repair(self) -> Optional[date]:
        """Repair a freshly broken streak with a banked shield.

        Safe to call speculatively on every launch and after every payment
        confirmation. Only acts when the streak is 0 and exactly one missed day
        separates the last qualifying day from today. Returns the repaired day,
        or None when there is nothing to repair.
        """
        engine = self.engine
        # One mutation around the check and the repair; events go out after the lock is released
        with engine.mutation():
            state = engine.state
            today = engine.today()
            last = state.last_goal_met_date
            if state.current_streak != 0 or last is None:
                return None
            if (today - last).days != 2:
                return None

            break_day = last + timedelta(days=1)
            record = engine.records.get(break_day)
            if record is not None and record.qualifies:
                # Day already covered (e.g. a crash between shielding and the rescan)
                engine.recompute_current_run()
                log_event("info", "repair.rescanned", day=break_day.isoformat(), event_type="repair")
                return break_day
            if not engine.repair_date(break_day):
                log_event("info", "repair.not_possible", day=break_day.isoformat(), event_type="repair")
                return None
            return break_day
