"""
Shield ledger: the bank of streak shields.

Rules:
- Monthly allocation (+2 free / +4 pro), granted at most once per calendar month
- Bank capped at max_banked(tier) (2 free / 8 pro); a refill never lowers the bank
- consume() is an atomic check-then-decrement
- Purchases are always counted, but only bank up to the cap

Pure state and policy: persisting the state is the caller's job.
"""
from __future__ import annotations

import threading
from datetime import date, datetime
from typing import Optional, Union

from streakkeeper.core.dates import first_of_next_month, local_now, normalize_day
from streakkeeper.core.errors import ValidationError
from streakkeeper.models.shield import MAX_BANKED, MONTHLY_ALLOCATION, ShieldState, Tier

TierLike = Union[Tier, str]


def max_banked(tier: TierLike) -> int:
    return MAX_BANKED[Tier(tier)]


def monthly_allocation(tier: TierLike) -> int:
    return MONTHLY_ALLOCATION[Tier(tier)]


class ShieldLedger:
    def __init__(self, state: Optional[ShieldState] = None):
        self._state = state.copy() if state else ShieldState()
        self._lock = threading.Lock()

    @property
    def state(self) -> ShieldState:
        with self._lock:
            return self._state.copy()

    @property
    def available_shields(self) -> int:
        return self._state.available_shields

    @property
    def tier(self) -> Tier:
        return self._state.tier

    def set_tier(self, tier: TierLike) -> None:
        """Record the subscription tier. Takes effect at the next refill or purchase."""
        with self._lock:
            self._state.tier = Tier(tier)

    def refill_if_needed(self, tier: Optional[TierLike] = None, now: Optional[Union[date, datetime]] = None) -> bool:
        """Grant the monthly allocation if none was granted this calendar month.

        Returns True when an allocation was applied.
        """
        effective_tier = Tier(tier) if tier is not None else self._state.tier
        today = normalize_day(now or local_now())
        with self._lock:
            last = self._state.last_refill_date
            if last is not None and (last.year, last.month) >= (today.year, today.month):
                return False
            granted = min(
                self._state.available_shields + monthly_allocation(effective_tier),
                max_banked(effective_tier),
            )
            self._state.available_shields = max(self._state.available_shields, granted)
            self._state.shields_used_this_month = 0
            self._state.last_refill_date = today
            return True

    def consume(self) -> bool:
        with self._lock:
            if self._state.available_shields <= 0:
                return False
            self._state.available_shields -= 1
            self._state.shields_used_this_month += 1
            self._state.total_shields_used += 1
            return True

    def add_purchased(self, count: int) -> int:
        """Bank purchased shields. Returns how many actually landed in the bank."""
        if not isinstance(count, int) or isinstance(count, bool) or count <= 0:
            raise ValidationError(f"purchase count must be a positive integer, got {count!r}")
        with self._lock:
            before = self._state.available_shields
            cap = max_banked(self._state.tier)
            self._state.purchased_shields += count
            self._state.available_shields = max(before, min(before + count, cap))
            return self._state.available_shields - before

    @property
    def can_buy_more(self) -> bool:
        return self._state.available_shields < max_banked(self._state.tier)

    def is_low(self, threshold: int) -> bool:
        return self._state.available_shields <= threshold

    def next_refill_date(self, now: Optional[Union[date, datetime]] = None) -> date:
        return first_of_next_month(normalize_day(now or local_now()))
