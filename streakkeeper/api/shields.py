from __future__ import annotations

from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from streakkeeper.features.container import get_container

router = APIRouter()


class ShieldPurchase(BaseModel):
    count: int = Field(..., gt=0)
    transaction_id: Optional[str] = Field(default=None, min_length=1)


class RepairPurchase(BaseModel):
    transaction_id: str = Field(..., min_length=1)


class TierChange(BaseModel):
    is_pro: bool


def _shield_view(engine) -> dict:
    return engine.snapshot()["shields"]


@router.get("/v1/shields")
def get_shields():
    return _shield_view(get_container().engine)


@router.post("/v1/shields/refill")
def refill_shields():
    engine = get_container().engine
    refilled = engine.refill_shields()
    return {"refilled": refilled, "shields": _shield_view(engine)}


@router.post("/v1/shields/purchases")
def purchase_shields(body: ShieldPurchase):
    container = get_container()
    result = container.payments.shield_purchased(body.count, body.transaction_id)
    return {
        "transaction_id": result.transaction_id,
        "duplicate": result.duplicate,
        "shields_banked": result.shields_banked,
        "shields": _shield_view(container.engine),
    }


@router.post("/v1/shields/repair-purchases")
def purchase_streak_repair(body: RepairPurchase):
    container = get_container()
    result = container.payments.streak_repair_purchased(body.transaction_id)
    return {
        "transaction_id": result.transaction_id,
        "duplicate": result.duplicate,
        "repaired_date": result.repaired_date.isoformat() if result.repaired_date else None,
        "state": container.engine.snapshot(),
    }


@router.post("/v1/subscription/tier")
def change_tier(body: TierChange):
    container = get_container()
    tier = container.payments.pro_tier_changed(body.is_pro)
    return {"tier": tier.value, "shields": _shield_view(container.engine)}
