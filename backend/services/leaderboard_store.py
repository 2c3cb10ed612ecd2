"""Persistent leaderboard cache.

Rows are keyed by ``(collection_slug, token_id)`` and only ever upserted.
An upsert touches exactly the columns present in the incoming rows, which is
what lets the refresh write metadata and points in separate passes without
clobbering each other.
"""

from typing import Any, Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as postgres_upsert
from sqlalchemy.dialects.sqlite import insert as sqlite_upsert

from models.database import AsyncSessionLocal, JobStatus, LeaderboardEntry
from services import refresh_job_state
from utils.logger import get_logger
from utils.timeutil import to_iso, utcnow

logger = get_logger("leaderboard")

KEY_COLUMNS = ("collection_slug", "token_id")
WRITABLE_COLUMNS = frozenset(
    {"collection_slug", "nft_type", "token_id", "points", "image_url", "opensea_url", "is_listed"}
)
DEFAULT_PAGE_SIZE = 1000
UPSERT_BATCH_SIZE = 500


def entry_to_dict(row: LeaderboardEntry) -> dict[str, Any]:
    return {
        "collectionSlug": row.collection_slug,
        "nftType": row.nft_type,
        "tokenId": row.token_id,
        "points": int(row.points or 0),
        "imageUrl": row.image_url,
        "openseaUrl": row.opensea_url,
        "isListed": bool(row.is_listed),
        "updatedAt": to_iso(row.updated_at),
    }


class LeaderboardStore:
    """Leaderboard rows and refresh job status behind one session factory"""

    def __init__(self, session_factory=None):
        self._session_factory = session_factory or AsyncSessionLocal

    @staticmethod
    def _insert_for(session):
        if session.bind.dialect.name == "postgresql":
            return postgres_upsert
        return sqlite_upsert

    async def upsert_entries(self, rows: Iterable[dict[str, Any]]) -> int:
        """Insert or update rows on ``(collection_slug, token_id)``.

        Rows sharing the same column set are written together; on conflict
        only those columns (plus ``updated_at``) are overwritten.
        """
        groups: dict[tuple[str, ...], list[dict[str, Any]]] = {}
        for row in rows:
            missing = [key for key in KEY_COLUMNS if not row.get(key)]
            if missing:
                raise ValueError(f"Leaderboard row is missing {', '.join(missing)}")
            unknown = set(row) - WRITABLE_COLUMNS
            if unknown:
                raise ValueError(f"Unknown leaderboard columns: {', '.join(sorted(unknown))}")
            groups.setdefault(tuple(sorted(row)), []).append(row)

        if not groups:
            return 0

        written = 0
        async with self._session_factory() as session:
            insert = self._insert_for(session)
            now = utcnow()
            for columns, group in groups.items():
                update_columns = [col for col in columns if col not in KEY_COLUMNS]
                for start in range(0, len(group), UPSERT_BATCH_SIZE):
                    batch = [{**row, "updated_at": now} for row in group[start : start + UPSERT_BATCH_SIZE]]
                    stmt = insert(LeaderboardEntry).values(batch)
                    set_ = {col: getattr(stmt.excluded, col) for col in update_columns}
                    set_["updated_at"] = now
                    stmt = stmt.on_conflict_do_update(index_elements=list(KEY_COLUMNS), set_=set_)
                    await session.execute(stmt)
                    written += len(batch)
            await session.commit()
        return written

    async def read_all_entries(self, page_size: int = DEFAULT_PAGE_SIZE) -> list[LeaderboardEntry]:
        """Every cached row, highest points first, fetched page by page"""
        entries: list[LeaderboardEntry] = []
        offset = 0
        async with self._session_factory() as session:
            while True:
                result = await session.execute(
                    select(LeaderboardEntry)
                    .order_by(
                        LeaderboardEntry.points.desc(),
                        LeaderboardEntry.nft_type,
                        LeaderboardEntry.token_id,
                    )
                    .offset(offset)
                    .limit(page_size)
                )
                page = list(result.scalars().all())
                entries.extend(page)
                if len(page) < page_size:
                    break
                offset += page_size
        return entries

    async def list_token_ids(self, collection_slug: str, page_size: int = DEFAULT_PAGE_SIZE) -> list[str]:
        token_ids: list[str] = []
        offset = 0
        async with self._session_factory() as session:
            while True:
                result = await session.execute(
                    select(LeaderboardEntry.token_id)
                    .where(LeaderboardEntry.collection_slug == collection_slug)
                    .order_by(LeaderboardEntry.token_id)
                    .offset(offset)
                    .limit(page_size)
                )
                page = list(result.scalars().all())
                token_ids.extend(page)
                if len(page) < page_size:
                    break
                offset += page_size
        return token_ids

    async def count_entries(self, collection_slug: Optional[str] = None) -> int:
        query = select(func.count()).select_from(LeaderboardEntry)
        if collection_slug is not None:
            query = query.where(LeaderboardEntry.collection_slug == collection_slug)
        async with self._session_factory() as session:
            return int((await session.execute(query)).scalar_one() or 0)

    async def count_zero_points(self) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count()).select_from(LeaderboardEntry).where(LeaderboardEntry.points == 0)
            )
            return int(result.scalar_one() or 0)

    async def list_zero_point_entries(self, limit: int) -> list[LeaderboardEntry]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(LeaderboardEntry)
                .where(LeaderboardEntry.points == 0)
                .order_by(LeaderboardEntry.nft_type, LeaderboardEntry.token_id)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def get_points_map(self, collection_slug: str, token_ids: Iterable[str]) -> dict[str, int]:
        wanted = list(dict.fromkeys(token_ids))
        points: dict[str, int] = {}
        async with self._session_factory() as session:
            for start in range(0, len(wanted), DEFAULT_PAGE_SIZE):
                result = await session.execute(
                    select(LeaderboardEntry.token_id, LeaderboardEntry.points).where(
                        LeaderboardEntry.collection_slug == collection_slug,
                        LeaderboardEntry.token_id.in_(wanted[start : start + DEFAULT_PAGE_SIZE]),
                    )
                )
                points.update({token_id: int(value or 0) for token_id, value in result.all()})
        return points

    async def get_job_status(self) -> dict[str, Any]:
        async with self._session_factory() as session:
            return await refresh_job_state.read_job_status(session)

    async def set_job_status(self, status: str, **kwargs) -> dict[str, Any]:
        async with self._session_factory() as session:
            return await refresh_job_state.write_job_status(session, status, **kwargs)

    async def mark_running(self) -> dict[str, Any]:
        return await self.set_job_status(JobStatus.RUNNING, last_started_at=utcnow(), clear_error=True)

    async def mark_completed(self) -> dict[str, Any]:
        return await self.set_job_status(JobStatus.IDLE, last_completed_at=utcnow(), clear_error=True)

    async def mark_error(self, message: str) -> dict[str, Any]:
        return await self.set_job_status(JobStatus.ERROR, last_error=message or "Unknown error")


leaderboard_store = LeaderboardStore()
