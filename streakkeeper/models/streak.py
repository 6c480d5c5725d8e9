from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from typing import Any, Dict, Optional

from streakkeeper.core.dates import optional_day


@dataclass
class StreakState:
    """
    Singleton streak counters for one user/device. Day-level, local time.

    Invariants: ``longest_streak >= current_streak`` and a zero streak has
    no start date. ``last_goal_met_date`` survives a break so a paid repair
    can still find the day that broke the run.
    """

    current_streak: int = 0
    longest_streak: int = 0
    last_goal_met_date: Optional[date] = None
    streak_start_date: Optional[date] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "current_streak": self.current_streak,
            "longest_streak": self.longest_streak,
            "last_goal_met_date": self.last_goal_met_date.isoformat() if self.last_goal_met_date else None,
            "streak_start_date": self.streak_start_date.isoformat() if self.streak_start_date else None,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "StreakState":
        return cls(
            current_streak=int(payload.get("current_streak", 0)),
            longest_streak=int(payload.get("longest_streak", 0)),
            last_goal_met_date=optional_day(payload.get("last_goal_met_date")),
            streak_start_date=optional_day(payload.get("streak_start_date")),
        )

    def copy(self) -> "StreakState":
        return replace(self)
