"""Leaderboard cache routes: step-wise refresh, zero-point repair and reads."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_leaderboard_store, get_refresher, get_repairer
from models.database import get_db_session
from services.errors import RefreshConflictError, RefreshStepError, ValidationError
from services.leaderboard_refresh import LeaderboardRefresher
from services.leaderboard_store import LeaderboardStore, entry_to_dict
from services.refresh_job_state import data_status_label, job_status_to_json, read_job_status
from services.zero_repair import ZeroPointRepairer
from utils.logger import get_logger
from utils.validation import RefreshCursorParams

logger = get_logger("api")

router = APIRouter(prefix="/leaderboard", tags=["Leaderboard"])


@router.post("/refresh")
async def refresh_step(
    body: Optional[RefreshCursorParams] = None,
    refresher: LeaderboardRefresher = Depends(get_refresher),
):
    """Run one refresh step; the caller passes back the returned cursor."""
    cursor = body or RefreshCursorParams()
    try:
        result = await refresher.run_step(cursor.current_collection, cursor.current_offset)
    except RefreshConflictError:
        return JSONResponse(status_code=409, content={"ok": False, "error": "Refresh already running"})
    except ValidationError as e:
        return JSONResponse(status_code=422, content={"ok": False, "error": str(e)})
    except RefreshStepError:
        return JSONResponse(status_code=500, content={"ok": False, "error": "Refresh failed"})
    return result.to_payload()


@router.post("/retry-zeros")
async def retry_zeros(repairer: ZeroPointRepairer = Depends(get_repairer)):
    try:
        result = await repairer.retry_zero_chunk()
    except RefreshStepError as e:
        return JSONResponse(status_code=500, content={"ok": False, "error": str(e)})
    return result.to_payload()


@router.get("")
async def get_leaderboard(store: LeaderboardStore = Depends(get_leaderboard_store)):
    entries = await store.read_all_entries()
    status = await store.get_job_status()
    zero_points = sum(1 for entry in entries if not entry.points)
    return {
        "entries": [entry_to_dict(entry) for entry in entries],
        "total": len(entries),
        "zeroPoints": zero_points,
        "status": job_status_to_json(status),
    }


@router.get("/status")
async def get_leaderboard_status(
    session: AsyncSession = Depends(get_db_session),
    store: LeaderboardStore = Depends(get_leaderboard_store),
):
    status = await read_job_status(session)
    zero_points = await store.count_zero_points()
    return {
        **job_status_to_json(status),
        "total": await store.count_entries(),
        "zeroPoints": zero_points,
        "dataStatus": data_status_label(status, zero_points),
    }
