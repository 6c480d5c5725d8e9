"""
Health endpoints.

Lightweight checks for operational monitoring without exposing state.
"""

import logging
from typing import Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from streakkeeper.core.database import check_connection, get_database_url

logger = logging.getLogger("streakkeeper")

router = APIRouter(tags=["health"])


class ReadyResponse(BaseModel):
    ok: bool
    store: str
    db_connected: Optional[bool] = None


@router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@router.get("/readyz", response_model=ReadyResponse)
def readyz():
    """Readiness: the SQL store must answer when one is configured."""
    if not get_database_url():
        return ReadyResponse(ok=True, store="memory")

    connected = check_connection()
    payload = ReadyResponse(ok=connected, store="sql", db_connected=connected)
    if not connected:
        logger.warning("readyz.db_unavailable", extra={"error_code": "db_unavailable"})
        return JSONResponse(status_code=503, content=payload.model_dump())
    return payload
