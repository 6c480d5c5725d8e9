from __future__ import annotations

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from streakkeeper.core.errors import ValidationError
from streakkeeper.features.container import get_container

router = APIRouter()


class StepsEvent(BaseModel):
    day: date
    steps: int
    goal: Optional[int] = Field(default=None, gt=0)
    walk_ids: List[str] = Field(default_factory=list)


class RepairRequest(BaseModel):
    day: date


@router.get("/v1/streaks/current")
def get_current_streak():
    """Streak counters, at-risk flag, next milestone and shield summary."""
    return get_container().engine.snapshot()


@router.get("/v1/streaks/records")
def get_daily_records(limit: Optional[int] = Query(default=None, ge=1)):
    records = get_container().engine.records.all_records()
    if limit is not None:
        records = records[:limit]
    return {"records": [r.to_payload() for r in records]}


@router.post("/v1/streaks/steps")
def record_steps(event: StepsEvent):
    engine = get_container().engine
    update = engine.apply_steps(event.day, event.steps, goal=event.goal)
    if update.record is None:
        raise ValidationError(f"invalid step update for {event.day.isoformat()}")
    for walk_id in event.walk_ids:
        engine.add_walk_ref(event.day, walk_id)
    return {
        "record": engine.records.get(event.day).to_payload(),
        "state": engine.snapshot(),
        "emitted": list(update.events),
    }


@router.post("/v1/streaks/missed-days/check")
def check_missed_days():
    engine = get_container().engine
    result = engine.check_missed_days()
    return {
        "shields_deployed": result.shields_deployed,
        "streak_broken": result.streak_broken,
        "goal_days_recovered": result.goal_days_recovered,
        "state": engine.snapshot(),
        "emitted": list(result.events),
    }


@router.get("/v1/streaks/repair/{day}")
def can_repair(day: date):
    return {"day": day.isoformat(), "repairable": get_container().engine.can_repair_date(day)}


@router.post("/v1/streaks/repair")
def repair_day(body: RepairRequest):
    engine = get_container().engine
    repaired = engine.repair_date(body.day)
    return {"repaired": repaired, "state": engine.snapshot()}


@router.post("/v1/streaks/repair/attempt")
def attempt_repair():
    container = get_container()
    repaired = container.reconciliation.attempt_streak_repair()
    return {
        "repaired_date": repaired.isoformat() if repaired else None,
        "state": container.engine.snapshot(),
    }
