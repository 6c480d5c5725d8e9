from concurrent.futures import ThreadPoolExecutor
from datetime import date, timedelta

from streakkeeper.features.reconciliation.service import compute_streak_from_history
from streakkeeper.features.streaks.events import (
    GOAL_MET,
    SHIELD_AUTO_DEPLOYED,
    SHIELD_LOW,
    STREAK_BROKEN,
    STREAK_MILESTONE,
)
from streakkeeper.tests.factories import build_engine_without_repository, met_days

TODAY = date(2026, 10, 17)


def _types(events):
    return [e["type"] for e in events]


def test_first_goal_starts_streak(engine):
    update = engine.apply_steps(TODAY, 12_000)
    record = update.record

    state = engine.state
    assert record.goal_met is True
    assert state.current_streak == 1
    assert state.longest_streak == 1
    assert state.last_goal_met_date == TODAY
    assert state.streak_start_date == TODAY
    assert _types(update.events) == [GOAL_MET]


def test_goal_counts_once_per_day(engine):
    engine.record_steps(TODAY, 12_000)
    engine.record_steps(TODAY, 15_000)
    engine.record_goal_met(TODAY)

    assert engine.state.current_streak == 1
    assert engine.records.get(TODAY).steps == 15_000


def test_consecutive_days_extend_streak(engine, clock):
    engine.record_steps(TODAY, 12_000)
    clock.advance(days=1)
    engine.record_steps(TODAY + timedelta(days=1), 11_000)

    state = engine.state
    assert state.current_streak == 2
    assert state.streak_start_date == TODAY


def test_below_goal_does_not_count(engine):
    record = engine.record_steps(TODAY, 4_000)

    assert record.goal_met is False
    assert engine.state.current_streak == 0


def test_invalid_step_update_changes_nothing(engine):
    assert engine.record_steps(TODAY, -5) is None
    assert engine.record_steps("not-a-day", 12_000) is None
    assert engine.record_steps(TODAY, 12_000, goal=0) is None

    assert engine.records.all_records() == []
    assert engine.state.current_streak == 0


def test_auto_deploy_preserves_streak(builder, clock):
    engine = (
        builder.with_records(met_days(TODAY - timedelta(days=6), 5))
        .with_streak(5, TODAY - timedelta(days=2))
        .with_shields(2)
        .build()
    )

    result = engine.check_missed_days()

    yesterday = TODAY - timedelta(days=1)
    assert result.shields_deployed == 1
    assert result.streak_broken is False
    assert engine.state.current_streak == 5
    assert engine.state.last_goal_met_date == yesterday
    assert engine.records.get(yesterday).shield_used is True
    assert engine.records.get(yesterday).steps == 0
    assert engine.ledger.available_shields == 1
    assert _types(result.events) == [SHIELD_AUTO_DEPLOYED, SHIELD_LOW]

    engine.record_steps(TODAY, 12_000)
    assert engine.state.current_streak == 6


def test_no_shield_breaks_streak(builder):
    engine = (
        builder.with_records(met_days(TODAY - timedelta(days=6), 5))
        .with_streak(5, TODAY - timedelta(days=2))
        .with_shields(0)
        .build()
    )

    result = engine.check_missed_days()

    state = engine.state
    assert result.streak_broken is True
    assert state.current_streak == 0
    assert state.streak_start_date is None
    assert state.longest_streak == 5
    # Kept so a paid repair can still find the break
    assert state.last_goal_met_date == TODAY - timedelta(days=2)
    assert result.events[-1]["type"] == STREAK_BROKEN
    assert result.events[-1]["payload"]["previous_streak"] == 5


def test_goal_after_unprocessed_miss_starts_over(builder):
    engine = (
        builder.with_records(met_days(TODAY - timedelta(days=6), 5))
        .with_streak(5, TODAY - timedelta(days=2))
        .with_shields(0)
        .build()
    )

    update = engine.apply_steps(TODAY, 12_000)

    state = engine.state
    assert state.current_streak == 1
    assert state.streak_start_date == TODAY
    assert state.longest_streak == 5
    assert _types(update.events) == [STREAK_BROKEN, GOAL_MET]


def test_sweep_picks_up_late_goal_days(builder):
    engine = (
        builder.with_records(met_days(TODAY - timedelta(days=5), 3))
        .with_streak(2, TODAY - timedelta(days=4))
        .with_shields(2)
        .build()
    )

    result = engine.check_missed_days()

    assert result.goal_days_recovered == 1
    assert result.shields_deployed == 2
    assert result.streak_broken is False
    # Shielded days keep the count, they do not add to it
    assert engine.state.current_streak == 3


def test_break_streak_keeps_longest(builder):
    engine = builder.with_records(met_days(TODAY - timedelta(days=3), 3)).with_streak(3, TODAY - timedelta(days=1)).build()

    published = []
    engine.events.subscribe_all(published.append)

    engine.break_streak()
    engine.break_streak()

    state = engine.state
    assert state.current_streak == 0
    assert state.longest_streak == 3
    assert _types(published) == [STREAK_BROKEN]


def test_milestone_event_on_seventh_day(builder):
    engine = (
        builder.with_records(met_days(TODAY - timedelta(days=6), 6))
        .with_streak(6, TODAY - timedelta(days=1))
        .build()
    )

    update = engine.apply_steps(TODAY, 10_000)

    assert engine.state.current_streak == 7
    milestone = [e for e in update.events if e["type"] == STREAK_MILESTONE]
    assert milestone == [{"type": STREAK_MILESTONE, "payload": {"days": 7}}]
    assert engine.next_milestone() == 14
    assert engine.days_until_next_milestone() == 7


def test_repair_window_boundaries(engine):
    assert engine.can_repair_date(TODAY - timedelta(days=1)) is True
    assert engine.can_repair_date(TODAY - timedelta(days=7)) is True
    assert engine.can_repair_date(TODAY - timedelta(days=8)) is False
    assert engine.can_repair_date(TODAY) is False
    assert engine.can_repair_date(TODAY + timedelta(days=1)) is False


def test_met_day_is_not_repairable(builder):
    engine = builder.with_records(met_days(TODAY - timedelta(days=2), 1)).build()

    assert engine.can_repair_date(TODAY - timedelta(days=2)) is False


def test_repair_bridges_gap_and_rescans(builder):
    engine = (
        builder.with_records(met_days(TODAY - timedelta(days=10), 7))
        .with_records(met_days(TODAY - timedelta(days=2), 2))
        .with_streak(2, TODAY - timedelta(days=1), longest=7)
        .with_shields(1)
        .build()
    )

    assert engine.repair_date(TODAY - timedelta(days=3)) is True

    state = engine.state
    assert state.current_streak == 10
    assert state.longest_streak == 10
    assert state.streak_start_date == TODAY - timedelta(days=10)
    assert engine.ledger.available_shields == 0
    assert engine.ledger.state.total_shields_used == 1

    # Second attempt on the same day is a no-op and spends nothing
    assert engine.repair_date(TODAY - timedelta(days=3)) is False
    assert engine.ledger.state.total_shields_used == 1


def test_repair_without_shield_fails(builder):
    engine = builder.with_streak(0, None).with_shields(0).build()

    assert engine.repair_date(TODAY - timedelta(days=1)) is False
    assert engine.records.get(TODAY - timedelta(days=1)) is None


def test_concurrent_repairs_consume_once(clock):
    engine = build_engine_without_repository(clock, met_days(TODAY - timedelta(days=4), 3), shields=2)
    target = TODAY - timedelta(days=1)

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: engine.repair_date(target), range(8)))

    assert results.count(True) == 1
    assert engine.ledger.available_shields == 1


def test_at_risk_after_evening_cutoff(builder, clock):
    engine = builder.with_records(met_days(TODAY - timedelta(days=3), 3)).with_streak(3, TODAY - timedelta(days=1)).build()

    assert engine.is_at_risk() is False
    clock.at_hour(19)
    assert engine.is_at_risk() is True

    engine.record_steps(TODAY, 12_000)
    assert engine.is_at_risk() is False


def test_state_is_persisted_after_mutation(engine, repository):
    engine.record_steps(TODAY, 12_000)

    repository.invalidate()
    assert repository.load_streak().current_streak == 1
    assert [r.date for r in repository.load_records()] == [TODAY]


def test_walk_refs_are_kept(engine, repository):
    engine.record_steps(TODAY, 3_000)
    engine.add_walk_ref(TODAY, "walk-1")
    engine.record_steps(TODAY, 6_000)

    assert engine.records.get(TODAY).walk_refs == {"walk-1"}
    repository.invalidate()
    assert repository.load_records()[0].walk_refs == {"walk-1"}


def test_snapshot_shape(engine):
    snap = engine.snapshot()

    assert snap["current_streak"] == 0
    assert snap["at_risk"] is False
    assert snap["next_milestone"] == 7
    assert snap["shields"]["can_buy_more"] is True
    assert snap["shields"]["next_refill_date"] == "2026-11-01"


def test_reset_clears_everything(builder):
    engine = builder.with_records(met_days(TODAY - timedelta(days=3), 3)).with_streak(3, TODAY - timedelta(days=1)).with_shields(2).build()

    engine.reset()

    assert engine.records.all_records() == []
    assert engine.state.current_streak == 0
    assert engine.state.longest_streak == 0
    assert engine.ledger.available_shields == 0


def test_refill_shields_once_per_month(engine, repository, clock):
    assert engine.refill_shields() is True
    assert engine.refill_shields() is False
    assert engine.ledger.available_shields == 2

    clock.advance(days=15)
    assert engine.refill_shields() is True

    repository.invalidate()
    shield = repository.load_shield()
    assert shield.available_shields == 2
    assert shield.last_refill_date == date(2026, 11, 1)


def test_purchase_shields_is_capped(engine):
    banked = engine.purchase_shields(5)

    assert banked == 2
    assert engine.ledger.available_shields == 2
    assert engine.ledger.can_buy_more is False


def test_recompute_current_run_bridges_shielded_gap(builder):
    records = met_days(TODAY - timedelta(days=4), 2) + met_days(TODAY - timedelta(days=1), 1)
    engine = builder.with_records(records).with_streak(1, TODAY - timedelta(days=1), longest=2).build()
    engine.records.mark_shield_used(TODAY - timedelta(days=2))

    engine.recompute_current_run()

    state = engine.state
    assert state.current_streak == 4
    assert state.streak_start_date == TODAY - timedelta(days=4)
    assert state.longest_streak == 4


def test_repairing_old_gap_does_not_revive_lapsed_streak(builder):
    engine = (
        builder.with_records(met_days(TODAY - timedelta(days=10), 6))
        .with_streak(0, TODAY - timedelta(days=5), longest=6)
        .with_shields(1)
        .build()
    )

    assert engine.repair_date(TODAY - timedelta(days=4)) is True

    state = engine.state
    rebuilt = compute_streak_from_history(engine.records.all_records(), TODAY, previous_longest=6)
    assert state.current_streak == 0 == rebuilt.current_streak
    assert state.streak_start_date is None
    assert state.last_goal_met_date == TODAY - timedelta(days=4)
    assert state.longest_streak == 7
