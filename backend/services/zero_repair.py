"""Re-fetch points for cached tokens that still sit at zero.

Zero means "unknown" as often as "genuinely zero", so after a full refresh
the remaining zero rows are retried with a slower, more patient setting.
Only strictly positive answers are written; the selection always starts from
the front of the zero set because repaired rows drop out of it.
"""

from typing import Optional

from pydantic import BaseModel

from config import LeaderboardConfig
from services.errors import RefreshStepError, ValidationError
from services.leaderboard_store import LeaderboardStore
from services.points_client import StakingPointsClient
from utils.concurrency import gather_in_batches
from utils.logger import get_logger

logger = get_logger("leaderboard")


class ZeroRepairResult(BaseModel):
    ok: bool = True
    completed: bool = False
    updated_this_chunk: Optional[int] = None
    still_zero_this_chunk: Optional[int] = None
    remaining_zeros: Optional[int] = None
    total_zeros: int = 0
    progress: Optional[int] = None
    message: str = ""

    def to_payload(self) -> dict:
        payload = {
            "ok": self.ok,
            "completed": self.completed,
            "updatedThisChunk": self.updated_this_chunk,
            "stillZeroThisChunk": self.still_zero_this_chunk,
            "remainingZeros": self.remaining_zeros,
            "totalZeros": self.total_zeros,
            "progress": self.progress,
            "message": self.message,
        }
        return {key: value for key, value in payload.items() if value is not None}


class ZeroPointRepairer:
    def __init__(
        self,
        store: LeaderboardStore,
        points_client: StakingPointsClient,
        config: Optional[LeaderboardConfig] = None,
    ):
        self.store = store
        self.points_client = points_client
        self.config = config or LeaderboardConfig.from_settings()

    async def retry_zero_chunk(self) -> ZeroRepairResult:
        try:
            return await self._repair_chunk()
        except Exception as e:
            message = str(e) or e.__class__.__name__
            logger.exception("Zero-point repair failed", error=message)
            raise RefreshStepError(message) from e

    async def _repair_chunk(self) -> ZeroRepairResult:
        total_zeros = await self.store.count_zero_points()
        if total_zeros == 0:
            return ZeroRepairResult(completed=True, total_zeros=0, message="All entries have points!")

        entries = await self.store.list_zero_point_entries(self.config.repair_chunk_size)
        if not entries:
            return ZeroRepairResult(completed=True, total_zeros=0, message="All entries processed!")

        logger.info("Repairing zero-point entries", total_zeros=total_zeros, chunk=len(entries))

        async def fetch(entry) -> int:
            try:
                return await self.points_client.fetch_points_with_retry(
                    entry.token_id,
                    entry.nft_type,
                    attempts=self.config.repair_attempts,
                    base_delay=self.config.repair_retry_delay,
                )
            except ValidationError as e:
                logger.warning("Skipping invalid token", collection=entry.collection_slug, error=str(e))
                return 0

        points = await gather_in_batches(
            entries,
            fetch,
            self.config.repair_concurrency,
            self.config.repair_batch_pause,
        )
        repaired = [
            {
                "collection_slug": entry.collection_slug,
                "nft_type": entry.nft_type,
                "token_id": entry.token_id,
                "points": value,
            }
            for entry, value in zip(entries, points)
            if value > 0
        ]
        if repaired:
            await self.store.upsert_entries(repaired)

        updated = len(repaired)
        still_zero = len(entries) - updated
        remaining = await self.store.count_zero_points()
        has_more = remaining > 0
        progress = round((total_zeros - remaining) / total_zeros * 100)

        logger.info(
            "Zero-point chunk repaired",
            updated=updated,
            still_zero=still_zero,
            remaining=remaining,
        )
        return ZeroRepairResult(
            completed=not has_more,
            updated_this_chunk=updated,
            still_zero_this_chunk=still_zero,
            remaining_zeros=remaining,
            total_zeros=total_zeros,
            progress=progress,
            message=(
                f"Fixed {updated} entries. {remaining} remaining..."
                if has_more
                else "All entries have points!"
            ),
        )
