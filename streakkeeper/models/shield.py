from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from enum import Enum
from typing import Any, Dict, Optional

from streakkeeper.core.dates import optional_day


class Tier(str, Enum):
    """Subscription level; drives shield allocation and bank cap."""
    FREE = "free"
    PRO = "pro"


MAX_BANKED = {Tier.FREE: 2, Tier.PRO: 8}
MONTHLY_ALLOCATION = {Tier.FREE: 2, Tier.PRO: 4}


@dataclass
class ShieldState:
    available_shields: int = 0
    last_refill_date: Optional[date] = None
    shields_used_this_month: int = 0
    purchased_shields: int = 0  # lifetime, already folded into available_shields
    total_shields_used: int = 0  # lifetime
    tier: Tier = Tier.FREE

    def to_payload(self) -> Dict[str, Any]:
        return {
            "available_shields": self.available_shields,
            "last_refill_date": self.last_refill_date.isoformat() if self.last_refill_date else None,
            "shields_used_this_month": self.shields_used_this_month,
            "purchased_shields": self.purchased_shields,
            "total_shields_used": self.total_shields_used,
            "tier": self.tier.value,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ShieldState":
        # total_shields_used and tier were added later; default them
        return cls(
            available_shields=int(payload.get("available_shields", 0)),
            last_refill_date=optional_day(payload.get("last_refill_date")),
            shields_used_this_month=int(payload.get("shields_used_this_month", 0)),
            purchased_shields=int(payload.get("purchased_shields", 0)),
            total_shields_used=int(payload.get("total_shields_used", 0)),
            tier=Tier(payload.get("tier", Tier.FREE.value)),
        )

    def copy(self) -> "ShieldState":
        return replace(self)
