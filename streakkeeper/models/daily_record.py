from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Optional

from streakkeeper.core.dates import day_key, parse_day_key


@dataclass
class DailyRecord:
    """
    One calendar day of step data. Local-day keyed, no storage concerns.

    ``shield_used`` marks a missed day covered by a shield; the raw
    ``goal_met`` flag and ``steps`` are never rewritten by a shield.
    """

    date: date
    steps: int = 0
    goal_met: bool = False
    shield_used: bool = False
    walk_refs: set[str] = field(default_factory=set)
    goal_target: Optional[int] = None

    @property
    def key(self) -> str:
        return day_key(self.date)

    @property
    def qualifies(self) -> bool:
        """Counts toward a streak: goal met or covered by a shield."""
        return self.goal_met or self.shield_used

    def to_payload(self) -> Dict[str, Any]:
        return {
            "date": self.key,
            "steps": self.steps,
            "goal_met": self.goal_met,
            "shield_used": self.shield_used,
            "walk_refs": sorted(self.walk_refs),
            "goal_target": self.goal_target,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "DailyRecord":
        return cls(
            date=parse_day_key(payload["date"]),
            steps=int(payload.get("steps", 0)),
            goal_met=bool(payload.get("goal_met", False)),
            shield_used=bool(payload.get("shield_used", False)),
            walk_refs=set(payload.get("walk_refs") or []),
            goal_target=payload.get("goal_target"),
        )

    def copy(self) -> "DailyRecord":
        return DailyRecord(
            date=self.date,
            steps=self.steps,
            goal_met=self.goal_met,
            shield_used=self.shield_used,
            walk_refs=set(self.walk_refs),
            goal_target=self.goal_target,
        )
