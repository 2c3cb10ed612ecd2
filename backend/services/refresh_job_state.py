"""DB-backed refresh job status primitives (the ``leaderboard_meta`` row)."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.database import LEADERBOARD_CACHE_KEY, JobStatus, LeaderboardMeta
from utils.timeutil import is_older_than, to_iso, utcnow


def _now() -> datetime:
    return utcnow()


def _serialize(row: Optional[LeaderboardMeta]) -> dict[str, Any]:
    if row is None:
        return {
            "cache_key": LEADERBOARD_CACHE_KEY,
            "status": JobStatus.IDLE,
            "last_started_at": None,
            "last_completed_at": None,
            "last_error": None,
            "updated_at": None,
        }
    return {
        "cache_key": row.cache_key,
        "status": row.status or JobStatus.IDLE,
        "last_started_at": row.last_started_at,
        "last_completed_at": row.last_completed_at,
        "last_error": row.last_error,
        "updated_at": row.updated_at,
    }


def job_status_to_json(status: dict[str, Any]) -> dict[str, Any]:
    return {
        "status": status.get("status") or JobStatus.IDLE,
        "lastStartedAt": to_iso(status.get("last_started_at")),
        "lastCompletedAt": to_iso(status.get("last_completed_at")),
        "lastError": status.get("last_error"),
        "updatedAt": to_iso(status.get("updated_at")),
    }


async def ensure_job_status(session: AsyncSession) -> LeaderboardMeta:
    result = await session.execute(
        select(LeaderboardMeta).where(LeaderboardMeta.cache_key == LEADERBOARD_CACHE_KEY)
    )
    row = result.scalar_one_or_none()
    if row is None:
        row = LeaderboardMeta(
            cache_key=LEADERBOARD_CACHE_KEY,
            status=JobStatus.IDLE,
            updated_at=_now(),
        )
        session.add(row)
        await session.commit()
        await session.refresh(row)
    return row


async def read_job_status(session: AsyncSession) -> dict[str, Any]:
    result = await session.execute(
        select(LeaderboardMeta).where(LeaderboardMeta.cache_key == LEADERBOARD_CACHE_KEY)
    )
    return _serialize(result.scalar_one_or_none())


def is_running_fresh(
    status: dict[str, Any],
    stale_after: timedelta,
    now: Optional[datetime] = None,
) -> bool:
    """True when a run is marked running and started inside the guard window.

    A running row without a start timestamp counts as abandoned.
    """
    if status.get("status") != JobStatus.RUNNING:
        return False
    return not is_older_than(status.get("last_started_at"), stale_after, now=now)


async def write_job_status(
    session: AsyncSession,
    status: str,
    *,
    last_started_at: Optional[datetime] = None,
    last_completed_at: Optional[datetime] = None,
    last_error: Optional[str] = None,
    clear_error: bool = False,
) -> dict[str, Any]:
    """Set ``status`` and only the timestamps/error that were passed in."""
    row = await ensure_job_status(session)
    row.status = status
    if last_started_at is not None:
        row.last_started_at = last_started_at
    if last_completed_at is not None:
        row.last_completed_at = last_completed_at
    if last_error is not None:
        row.last_error = last_error
    elif clear_error:
        row.last_error = None
    row.updated_at = _now()
    await session.commit()
    return _serialize(row)


def data_status_label(status: dict[str, Any], zero_points: int, refreshing: bool = False) -> str:
    """Short dashboard label summarising cache health"""
    if refreshing:
        return "Updating…"
    if status.get("status") == JobStatus.RUNNING:
        return "Update running…"
    if status.get("status") == JobStatus.ERROR:
        return "Update error"
    if zero_points > 0:
        return f"Missing: {zero_points}"
    return "All loaded"
