from __future__ import annotations

import datetime
from typing import List, Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from streakkeeper.features.container import get_container
from streakkeeper.features.sources import DailyTotal, StaticStepSource

router = APIRouter()


class DailyTotalIn(BaseModel):
    date: datetime.date
    steps: int = Field(..., ge=0)


class ReconcileRequest(BaseModel):
    force: bool = False
    # History forwarded by the client; when absent the configured step source is used
    days: Optional[List[DailyTotalIn]] = None


@router.post("/v1/reconciliation/run")
async def run_reconciliation(body: ReconcileRequest):
    container = get_container()
    source = None
    if body.days is not None:
        source = StaticStepSource(DailyTotal(date=d.date, steps=d.steps) for d in body.days)
    report = await container.reconciliation.reconcile(force=body.force, step_source=source)
    return {"report": report.to_dict(), "state": container.engine.snapshot()}
