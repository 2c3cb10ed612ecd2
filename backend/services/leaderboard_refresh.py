"""Incremental leaderboard refresh.

Each ``run_step`` call performs one bounded transition and returns the cursor
for the next call, so a full refresh is a sequence of short invocations that
hold no state between them::

    (0, 0) -> ... -> (i, offset) -> (i + 1, 0) -> ... -> (len(COLLECTIONS), 0) -> completed

The first chunk of every collection also re-syncs marketplace metadata
(image, url, listed flag). Points are fetched for at most ``chunk_size``
tokens per call, in barrier batches of ``refresh_concurrency``.
"""

from datetime import timedelta
from typing import Optional, Sequence

from pydantic import BaseModel

from config import LeaderboardConfig
from models.nft import COLLECTIONS, Collection
from services.errors import MarketplaceError, RefreshConflictError, RefreshStepError, ValidationError
from services.leaderboard_store import LeaderboardStore
from services.marketplace_client import MarketplaceClient
from services.points_client import StakingPointsClient
from services.refresh_job_state import is_running_fresh
from utils.concurrency import gather_in_batches
from utils.logger import get_logger
from utils.validation import is_valid_token_id

logger = get_logger("leaderboard")


class RefreshStepResult(BaseModel):
    ok: bool = True
    completed: bool = False
    next_collection: Optional[int] = None
    next_offset: Optional[int] = None
    processed_total: Optional[int] = None
    progress: Optional[str] = None
    message: str = ""

    def to_payload(self) -> dict:
        payload = {
            "ok": self.ok,
            "completed": self.completed,
            "nextCollection": self.next_collection,
            "nextOffset": self.next_offset,
            "processedTotal": self.processed_total,
            "progress": self.progress,
            "message": self.message,
        }
        return {key: value for key, value in payload.items() if value is not None}


class LeaderboardRefresher:
    """Runs single refresh steps against the store and both upstreams"""

    def __init__(
        self,
        store: LeaderboardStore,
        points_client: StakingPointsClient,
        marketplace_client: MarketplaceClient,
        config: Optional[LeaderboardConfig] = None,
        collections: Sequence[Collection] = COLLECTIONS,
    ):
        self.store = store
        self.points_client = points_client
        self.marketplace_client = marketplace_client
        self.config = config or LeaderboardConfig.from_settings()
        self.collections = tuple(collections)

    async def run_step(self, current_collection: int = 0, current_offset: int = 0) -> RefreshStepResult:
        """Advance the refresh by one chunk.

        Raises ``ValidationError`` for a negative cursor and
        ``RefreshConflictError`` when a fresh run is already in progress; in
        both cases nothing is written. Any other failure marks the job as
        ``error`` and surfaces as ``RefreshStepError``.
        """
        if current_collection < 0 or current_offset < 0:
            raise ValidationError("currentCollection and currentOffset must be non-negative")

        if current_collection == 0 and current_offset == 0:
            await self._claim_run()

        try:
            return await self._advance(current_collection, current_offset)
        except Exception as e:
            message = str(e) or e.__class__.__name__
            logger.exception(
                "Refresh step failed",
                collection=current_collection,
                offset=current_offset,
                error=message,
            )
            await self.store.mark_error(message)
            raise RefreshStepError(message) from e

    async def _claim_run(self) -> None:
        status = await self.store.get_job_status()
        stale_after = timedelta(minutes=self.config.stale_after_minutes)
        if is_running_fresh(status, stale_after):
            raise RefreshConflictError(started_at=status.get("last_started_at"))
        if status.get("status") == "running":
            logger.warning("Previous refresh run was stale, restarting", started_at=status.get("last_started_at"))
        await self.store.mark_running()
        logger.info("Leaderboard refresh started")

    async def _advance(self, index: int, offset: int) -> RefreshStepResult:
        if index >= len(self.collections):
            await self.store.mark_completed()
            logger.info("Leaderboard refresh completed")
            return RefreshStepResult(completed=True, message="Refresh complete!")

        collection = self.collections[index]
        nft_type = collection.nft_type.value

        if offset == 0:
            await self._sync_metadata(collection)

        token_ids = await self.store.list_token_ids(collection.slug)
        if not token_ids:
            return RefreshStepResult(
                next_collection=index + 1,
                next_offset=0,
                processed_total=await self._processed_before(index),
                message=f"No {nft_type} tokens found, moving to next collection",
            )

        chunk = token_ids[offset : offset + self.config.chunk_size]
        processed = offset + len(chunk)
        await self._refresh_points(collection, chunk)
        previous = await self._processed_before(index)

        if processed < len(token_ids):
            return RefreshStepResult(
                next_collection=index,
                next_offset=processed,
                processed_total=previous + processed,
                progress=f"{nft_type}: {processed}/{len(token_ids)}",
                message=f"Processing {nft_type}... {processed}/{len(token_ids)}",
            )

        logger.info("Collection refresh complete", collection=collection.slug, tokens=len(token_ids))
        return RefreshStepResult(
            next_collection=index + 1,
            next_offset=0,
            processed_total=previous + len(token_ids),
            progress=f"{nft_type}: {len(token_ids)}/{len(token_ids)}",
            message=f"{nft_type} complete! Moving to next...",
        )

    async def _processed_before(self, index: int) -> int:
        total = 0
        for collection in self.collections[:index]:
            total += await self.store.count_entries(collection.slug)
        return total

    async def _sync_metadata(self, collection: Collection) -> None:
        """Upsert image/url/listed flags for every NFT; points are left alone."""
        try:
            nfts = await self.marketplace_client.fetch_all_nfts(collection.slug)
        except MarketplaceError as e:
            logger.warning("NFT metadata unavailable", collection=collection.slug, status=e.status_code)
            nfts = []
        try:
            listed = await self.marketplace_client.fetch_listed_token_ids(collection.slug)
        except MarketplaceError as e:
            logger.warning("Listings unavailable", collection=collection.slug, status=e.status_code)
            listed = set()

        log = logger.with_context(collection=collection.slug)
        rows = []
        skipped = []
        for nft in nfts:
            if not is_valid_token_id(nft.identifier):
                skipped.append(nft.identifier)
                continue
            rows.append(
                {
                    "collection_slug": collection.slug,
                    "nft_type": collection.nft_type.value,
                    "token_id": nft.identifier,
                    "image_url": nft.image_url,
                    "opensea_url": nft.opensea_url,
                    "is_listed": nft.identifier in listed,
                }
            )
        if skipped:
            log.warning("Skipping NFTs with invalid token ids", count=len(skipped), token_ids=skipped[:20])
        batch_size = self.config.metadata_batch_size
        for start in range(0, len(rows), batch_size):
            await self.store.upsert_entries(rows[start : start + batch_size])
        log.info("Stored NFT metadata", nfts=len(rows), listed=len(listed))

    async def _refresh_points(self, collection: Collection, token_ids: list[str]) -> None:
        async def fetch(token_id: str) -> int:
            try:
                return await self.points_client.fetch_points_with_retry(
                    token_id,
                    collection.nft_type,
                    attempts=self.config.refresh_attempts,
                    base_delay=self.config.refresh_retry_delay,
                )
            except ValidationError as e:
                logger.warning("Skipping invalid token", collection=collection.slug, error=str(e))
                return 0

        points = await gather_in_batches(
            token_ids,
            fetch,
            self.config.refresh_concurrency,
            self.config.refresh_batch_pause,
        )
        rows = [
            {
                "collection_slug": collection.slug,
                "nft_type": collection.nft_type.value,
                "token_id": token_id,
                "points": value,
            }
            for token_id, value in zip(token_ids, points)
        ]
        await self.store.upsert_entries(rows)
        logger.info(
            "Stored points chunk",
            collection=collection.slug,
            tokens=len(rows),
            with_points=sum(1 for value in points if value > 0),
        )
