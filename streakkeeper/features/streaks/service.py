from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional, Tuple

from streakkeeper.core.config import settings
from streakkeeper.core.dates import Clock, day_range, local_now, normalize_day
from streakkeeper.core.logging import log_event
from streakkeeper.features.persistence.repository import StateRepository
from streakkeeper.features.records.store import DailyRecordStore
from streakkeeper.features.shields.ledger import ShieldLedger, TierLike
from streakkeeper.features.sources import GoalSource, SettingsGoalSource
from streakkeeper.features.streaks.events import (
    GOAL_MET,
    MILESTONES,
    SHIELD_AUTO_DEPLOYED,
    SHIELD_LOW,
    STREAK_BROKEN,
    STREAK_MILESTONE,
    EventBus,
    make_event,
)
from streakkeeper.models.daily_record import DailyRecord
from streakkeeper.models.shield import ShieldState
from streakkeeper.models.streak import StreakState

logger = logging.getLogger("streakkeeper")

ONE_DAY = timedelta(days=1)


@dataclass(frozen=True)
class MissedDayResult:
    shields_deployed: int
    streak_broken: bool
    goal_days_recovered: int = 0
    events: Tuple[dict, ...] = ()


@dataclass(frozen=True)
class StepUpdate:
    record: Optional[DailyRecord]
    events: Tuple[dict, ...] = ()


class StreakEngine:
    """Deterministic streak state machine over local calendar days.

    Per-day states are derived from the record flags: Met, Shielded,
    MissedRepairable (inside the repair window) and MissedUnrepairable.
    All mutations run under one re-entrant lock. Nested mutations share the
    outermost event list, which is published once the lock is released.
    """

    def __init__(
        self,
        *,
        records: Optional[DailyRecordStore] = None,
        ledger: Optional[ShieldLedger] = None,
        state: Optional[StreakState] = None,
        repository: Optional[StateRepository] = None,
        events: Optional[EventBus] = None,
        goal_source: Optional[GoalSource] = None,
        clock: Optional[Clock] = None,
        repair_window_days: Optional[int] = None,
        shield_low_threshold: Optional[int] = None,
        at_risk_hour: Optional[int] = None,
    ):
        self.records = records or DailyRecordStore()
        self.ledger = ledger or ShieldLedger()
        self._state = state.copy() if state else StreakState()
        self.repository = repository
        self.events = events or EventBus()
        self.goal_source = goal_source or SettingsGoalSource()
        self._clock = clock or local_now
        self.repair_window_days = repair_window_days if repair_window_days is not None else settings.REPAIR_WINDOW_DAYS
        self.shield_low_threshold = shield_low_threshold if shield_low_threshold is not None else settings.SHIELD_LOW_THRESHOLD
        self.at_risk_hour = at_risk_hour if at_risk_hour is not None else settings.AT_RISK_HOUR
        self.lock = threading.RLock()
        self._pending: Optional[List[dict]] = None

    @classmethod
    def from_repository(cls, repository: StateRepository, **kwargs) -> "StreakEngine":
        records = DailyRecordStore()
        records.replace_all(repository.load_records(), persist=False)
        return cls(
            records=records,
            ledger=ShieldLedger(repository.load_shield()),
            state=repository.load_streak(),
            repository=repository,
            **kwargs,
        )

    # Queries ------------------------------------------------------------
    @property
    def state(self) -> StreakState:
        with self.lock:
            return self._state.copy()

    def now(self) -> datetime:
        return self._clock()

    def today(self) -> date:
        return normalize_day(self._clock())

    def is_at_risk(self) -> bool:
        """Live streak, today not yet covered, and the evening cutoff has passed."""
        now = self._clock()
        with self.lock:
            if self._state.current_streak <= 0:
                return False
            if now.hour < self.at_risk_hour:
                return False
            return self._state.last_goal_met_date != normalize_day(now)

    def next_milestone(self) -> Optional[int]:
        current = self._state.current_streak
        return next((m for m in MILESTONES if m > current), None)

    def days_until_next_milestone(self) -> Optional[int]:
        milestone = self.next_milestone()
        return milestone - self._state.current_streak if milestone else None

    def snapshot(self) -> dict:
        with self.lock:
            shield = self.ledger.state
            return {
                **self._state.to_payload(),
                "at_risk": self.is_at_risk(),
                "next_milestone": self.next_milestone(),
                "days_until_next_milestone": self.days_until_next_milestone(),
                "shields": {
                    **shield.to_payload(),
                    "can_buy_more": self.ledger.can_buy_more,
                    "next_refill_date": self.ledger.next_refill_date(self._clock()).isoformat(),
                },
            }

    # Live step updates ----------------------------------------------------
    def record_steps(self, day, steps, goal: Optional[int] = None) -> Optional[DailyRecord]:
        """Store the latest step total for a day and advance the streak when the goal is newly met.

        Returns None for malformed input; nothing is changed in that case.
        """
        return self.apply_steps(day, steps, goal=goal).record

    def apply_steps(self, day, steps, goal: Optional[int] = None) -> StepUpdate:
        """Same as record_steps, also returning the events this update produced."""
        with self.mutation() as emitted:
            first = len(emitted)
            goal_target = goal if goal is not None else self.goal_source.current_daily_goal()
            try:
                normalized = normalize_day(day)
            except (TypeError, ValueError):
                normalized = None
            before = self.records.get(normalized) if normalized else None
            record = self.records.upsert(day, steps, goal_target)
            if record is not None and record.goal_met and not (before and before.goal_met):
                # Resolve unprocessed misses first so this day extends the right run
                self._sweep_missed_days(record.date - ONE_DAY, emitted)
                self._record_goal_met(record.date, emitted)
            events = tuple(emitted[first:])
        return StepUpdate(record, events)

    def add_walk_ref(self, day, walk_id: str) -> Optional[DailyRecord]:
        with self.mutation():
            record = self.records.add_walk_ref(normalize_day(day), walk_id)
        return record

    def record_goal_met(self, day) -> None:
        with self.mutation() as emitted:
            self._record_goal_met(normalize_day(day), emitted)

    def break_streak(self) -> None:
        with self.mutation() as emitted:
            self._break(emitted)

    # Shields ----------------------------------------------------------------
    def auto_deploy_if_available(self, for_date) -> bool:
        """Cover the single day right after the last qualifying day with a shield.

        Returns False without changing anything when the day does not need
        cover or no shield is left; breaking the streak is the caller's call.
        """
        with self.mutation() as emitted:
            deployed = self._auto_deploy(normalize_day(for_date), emitted)
        return deployed

    def check_missed_days(self) -> MissedDayResult:
        """App-open sweep: shield every missed day up to yesterday, break on the first uncovered one."""
        with self.mutation() as emitted:
            first = len(emitted)
            result = self._sweep_missed_days(self.today() - ONE_DAY, emitted)
            events = tuple(emitted[first:])
        return replace(result, events=events)

    def can_repair_date(self, day) -> bool:
        target = normalize_day(day)
        days_ago = (self.today() - target).days
        if not 1 <= days_ago <= self.repair_window_days:
            return False
        with self.lock:
            record = self.records.get(target)
            return not (record and record.qualifies)

    def repair_date(self, day) -> bool:
        """Spend a shield on a missed day inside the repair window and rescan the current run."""
        target = normalize_day(day)
        with self.mutation():
            if not self.can_repair_date(target):
                return False
            if not self.ledger.consume():
                log_event("info", "streak.repair_no_shield", day=target.isoformat(), event_type="repair")
                return False
            self.records.mark_shield_used(target)
            self._rescan_current_run()
            log_event(
                "info",
                "streak.repaired",
                day=target.isoformat(),
                event_type="repair",
                extra={"current_streak": self._state.current_streak},
            )
        return True

    def recompute_current_run(self) -> None:
        with self.mutation():
            self._rescan_current_run()

    def refill_shields(self, now=None) -> bool:
        with self.mutation():
            refilled = self.ledger.refill_if_needed(now=now or self._clock())
        return refilled

    def purchase_shields(self, count: int) -> int:
        with self.mutation():
            banked = self.ledger.add_purchased(count)
        return banked

    def set_tier(self, tier: TierLike) -> None:
        with self.mutation():
            self.ledger.set_tier(tier)

    # Wholesale state replacement ------------------------------------------
    def replace_state(
        self,
        records: Iterable[DailyRecord],
        streak: StreakState,
        shield: Optional[ShieldState] = None,
    ) -> None:
        """Install a complete state. Persists first, so a failed save changes nothing in memory."""
        records = [r.copy() for r in records]
        with self.lock:
            shield_state = shield.copy() if shield else self.ledger.state
            if self.repository is not None:
                self.repository.save_all(sorted(records, key=lambda r: r.date), streak, shield_state)
                self.repository.invalidate()
            self.records.replace_all(records, persist=False)
            self._state = streak.copy()
            if shield is not None:
                self.ledger = ShieldLedger(shield_state)

    def reset(self) -> None:
        """Full data reset."""
        with self.lock:
            if self.repository is not None:
                self.repository.reset()
            self.records.replace_all([], persist=False)
            self._state = StreakState()
            self.ledger = ShieldLedger()
        log_event("warning", "streak.reset", event_type="reset")

    @contextmanager
    def mutation(self):
        """Hold the engine lock for a state change, persist it, then publish its events."""
        with self.lock:
            outer = self._pending is None
            if outer:
                self._pending = []
            emitted = self._pending
            try:
                yield emitted
                if outer:
                    self._persist()
            finally:
                if outer:
                    self._pending = None
        if outer:
            self.events.publish(emitted)

    # Internal helpers ---------------------------------------------------
    def _persist(self) -> None:
        if self.repository is None:
            return
        self.repository.save_all(
            list(reversed(self.records.all_records())),
            self._state,
            self.ledger.state,
        )

    def _record_goal_met(self, day: date, emitted: List[dict]) -> None:
        state = self._state
        last = state.last_goal_met_date
        previous = state.current_streak

        if last is not None and day == last:
            return
        if last is not None and day < last:
            # Late assertion for an older day: the records decide the run
            self._rescan_current_run()
        elif previous == 0 or last is None:
            state.current_streak = 1
            state.streak_start_date = day
        elif day == last + ONE_DAY:
            state.current_streak += 1
        else:
            state.current_streak = 1
            state.streak_start_date = day

        if last is None or day > last:
            state.last_goal_met_date = day
        state.longest_streak = max(state.longest_streak, state.current_streak)

        emitted.append(make_event(GOAL_MET, date=day.isoformat(), current_streak=state.current_streak))
        if state.current_streak != previous and state.current_streak in MILESTONES:
            emitted.append(make_event(STREAK_MILESTONE, days=state.current_streak))

    def _break(self, emitted: List[dict]) -> None:
        previous = self._state.current_streak
        self._state.current_streak = 0
        self._state.streak_start_date = None
        if previous > 0:
            emitted.append(make_event(STREAK_BROKEN, previous_streak=previous))
            log_event("info", "streak.broken", event_type="break", extra={"previous_streak": previous})

    def _auto_deploy(self, day: date, emitted: List[dict]) -> bool:
        state = self._state
        if state.current_streak <= 0 or state.last_goal_met_date is None:
            return False
        if day != state.last_goal_met_date + ONE_DAY or day >= self.today():
            return False
        record = self.records.get(day)
        if record and record.qualifies:
            return False
        if not self.ledger.consume():
            return False

        self.records.mark_shield_used(day)
        state.last_goal_met_date = day
        remaining = self.ledger.available_shields
        emitted.append(make_event(SHIELD_AUTO_DEPLOYED, date=day.isoformat(), remaining_shields=remaining))
        if self.ledger.is_low(self.shield_low_threshold):
            emitted.append(make_event(SHIELD_LOW, count=remaining))
        log_event("info", "shield.auto_deployed", day=day.isoformat(), event_type="auto_deploy", extra={"remaining": remaining})
        return True

    def _sweep_missed_days(self, until: date, emitted: List[dict]) -> MissedDayResult:
        state = self._state
        if state.current_streak <= 0 or state.last_goal_met_date is None:
            return MissedDayResult(shields_deployed=0, streak_broken=False)

        deployed = 0
        recovered = 0
        for day in day_range(state.last_goal_met_date + ONE_DAY, until):
            record = self.records.get(day)
            if record and record.goal_met:
                # Step data arrived late for this day
                self._record_goal_met(day, emitted)
                recovered += 1
                continue
            if record and record.shield_used:
                state.last_goal_met_date = day
                continue
            if self._auto_deploy(day, emitted):
                deployed += 1
                continue
            self._break(emitted)
            return MissedDayResult(shields_deployed=deployed, streak_broken=True, goal_days_recovered=recovered)
        return MissedDayResult(shields_deployed=deployed, streak_broken=False, goal_days_recovered=recovered)

    def _rescan_current_run(self) -> None:
        """Recompute the run ending at the most recent qualifying day on or before today.

        Only that run is walked; older gaps stay broken. A run that ended
        before yesterday has lapsed: it still counts toward the longest streak
        but the current streak is 0.
        """
        today = self.today()
        anchor = next(
            (r.date for r in self.records.all_records() if r.date <= today and r.qualifies),
            None,
        )
        state = self._state
        if anchor is None:
            state.current_streak = 0
            state.streak_start_date = None
            return

        start = anchor
        while self.records.qualifies(start - ONE_DAY):
            start -= ONE_DAY
        length = (anchor - start).days + 1
        state.last_goal_met_date = anchor
        state.longest_streak = max(state.longest_streak, length)
        if anchor < today - ONE_DAY:
            state.current_streak = 0
            state.streak_start_date = None
        else:
            state.current_streak = length
            state.streak_start_date = start
