"""
Collaborator interfaces consumed by the engine.

- Step source: authoritative daily step totals (health data)
- Goal source: the user's current daily step goal

Historical goals are not versioned; callers always read the current goal.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Iterable, List, Optional, Protocol, Tuple, Union

import httpx

from streakkeeper.core.config import settings
from streakkeeper.core.dates import normalize_day
from streakkeeper.core.errors import SourceUnavailableError

logger = logging.getLogger("streakkeeper")


@dataclass(frozen=True)
class DailyTotal:
    date: date
    steps: int


class StepSource(Protocol):
    async def fetch_daily_totals(self, start: date, end: date) -> List[DailyTotal]:
        """Daily totals in [start, end], oldest first. Days without data may be omitted."""
        ...


class GoalSource(Protocol):
    def current_daily_goal(self) -> int: ...


class FixedGoalSource:
    def __init__(self, goal: int):
        self.goal = goal

    def current_daily_goal(self) -> int:
        return self.goal


class SettingsGoalSource:
    """Reads DEFAULT_DAILY_GOAL on every call so config reloads are honoured."""

    def current_daily_goal(self) -> int:
        return settings.DEFAULT_DAILY_GOAL


class StaticStepSource:
    """Step history supplied up front, e.g. forwarded by the mobile client."""

    def __init__(self, totals: Iterable[Union[DailyTotal, Tuple[date, int]]] = ()):
        self._totals = [t if isinstance(t, DailyTotal) else DailyTotal(date=t[0], steps=t[1]) for t in totals]

    async def fetch_daily_totals(self, start: date, end: date) -> List[DailyTotal]:
        return sorted(
            (t for t in self._totals if start <= t.date <= end),
            key=lambda t: t.date,
        )


class HttpStepSource:
    """
    Pulls daily totals from a health-data aggregation endpoint.

    Expects ``GET {base_url}/daily-steps?start=YYYY-MM-DD&end=YYYY-MM-DD``
    returning ``{"days": [{"date": "YYYY-MM-DD", "steps": 1234}, ...]}``.
    Any transport or payload problem surfaces as SourceUnavailableError.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls) -> Optional["HttpStepSource"]:
        if not settings.STEP_SOURCE_URL:
            return None
        return cls(
            settings.STEP_SOURCE_URL,
            token=settings.STEP_SOURCE_TOKEN,
            timeout=settings.STEP_SOURCE_TIMEOUT_SECONDS,
        )

    async def fetch_daily_totals(self, start: date, end: date) -> List[DailyTotal]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        params = {"start": start.isoformat(), "end": end.isoformat()}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(f"{self.base_url}/daily-steps", params=params, headers=headers)
                response.raise_for_status()
                body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("step_source.fetch_failed", extra={"error_code": "source_unavailable", "error": str(exc)})
            raise SourceUnavailableError(f"step history unavailable: {exc}") from exc

        try:
            totals = [
                DailyTotal(date=normalize_day(item["date"]), steps=int(item["steps"]))
                for item in body.get("days", [])
            ]
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise SourceUnavailableError(f"malformed step history payload: {exc}") from exc
        return sorted(totals, key=lambda t: t.date)
