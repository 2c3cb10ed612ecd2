"""In-process caller for the step-wise refresh and zero-point repair.

The HTTP surface leaves driving to the browser; the scheduled worker and the
tests use these loops instead. Both are bounded by an iteration cap.
"""

import asyncio
from typing import Awaitable, Callable, Optional

from pydantic import BaseModel

from services.errors import RefreshConflictError
from services.leaderboard_refresh import LeaderboardRefresher
from services.leaderboard_store import LeaderboardStore
from services.zero_repair import ZeroPointRepairer
from utils.logger import get_logger

logger = get_logger("leaderboard")


class ZeroRepairSummary(BaseModel):
    completed: bool
    iterations: int
    remaining: int
    stalled: bool = False


class RefreshRunSummary(BaseModel):
    completed: bool
    steps: int
    conflicts: int = 0
    finished_elsewhere: bool = False
    last_message: str = ""
    zero_repair: Optional[ZeroRepairSummary] = None


class LeaderboardDriver:
    def __init__(
        self,
        refresher: LeaderboardRefresher,
        repairer: ZeroPointRepairer,
        store: LeaderboardStore,
        step_pause: float = 0.5,
        conflict_wait: float = 3.0,
        repair_pause: float = 0.6,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.refresher = refresher
        self.repairer = repairer
        self.store = store
        self.step_pause = step_pause
        self.conflict_wait = conflict_wait
        self.repair_pause = repair_pause
        self._sleep = sleep

    async def run_refresh(
        self,
        max_iterations: int = 50,
        repair_max_iterations: int = 12,
        repair_stall_limit: int = 2,
    ) -> RefreshRunSummary:
        """Drive refresh steps from ``(0, 0)`` until completion or the cap.

        On a conflict the loop waits, then checks whether the other run
        finished in the meantime; if not, the same cursor is tried again.
        A completed run is followed by zero-point repair when zeros remain.
        """
        collection, offset = 0, 0
        conflicts = 0
        message = ""

        for step in range(1, max_iterations + 1):
            try:
                result = await self.refresher.run_step(collection, offset)
            except RefreshConflictError:
                conflicts += 1
                logger.info("Refresh already running, waiting", attempt=conflicts)
                await self._sleep(self.conflict_wait)
                status = await self.store.get_job_status()
                if status.get("status") == "idle":
                    logger.info("Concurrent refresh finished elsewhere")
                    return RefreshRunSummary(
                        completed=True,
                        steps=step,
                        conflicts=conflicts,
                        finished_elsewhere=True,
                        last_message="Refresh finished by another runner",
                    )
                continue

            message = result.message
            if result.completed:
                summary = RefreshRunSummary(
                    completed=True, steps=step, conflicts=conflicts, last_message=message
                )
                if await self.store.count_zero_points() > 0:
                    summary.zero_repair = await self.run_zero_repair(
                        max_iterations=repair_max_iterations, stall_limit=repair_stall_limit
                    )
                return summary

            if result.next_collection is None:
                raise ValueError("Refresh step returned no cursor")
            collection = result.next_collection
            offset = result.next_offset or 0
            logger.debug("Refresh step done", step=step, message=message)
            await self._sleep(self.step_pause)

        logger.warning("Refresh hit the iteration cap", max_iterations=max_iterations)
        return RefreshRunSummary(
            completed=False, steps=max_iterations, conflicts=conflicts, last_message=message
        )

    async def run_zero_repair(self, max_iterations: int = 12, stall_limit: int = 2) -> ZeroRepairSummary:
        """Repeat repair chunks until none remain, progress stalls or the cap hits.

        A remaining count that does not drop below the previous one extends
        the stall streak; ``stall_limit`` consecutive stalls abort the loop.
        """
        last_remaining: Optional[int] = None
        stall_streak = 0

        for iteration in range(1, max_iterations + 1):
            result = await self.repairer.retry_zero_chunk()
            remaining = result.remaining_zeros

            if result.completed:
                return ZeroRepairSummary(completed=True, iterations=iteration, remaining=remaining or 0)

            if remaining is not None:
                if last_remaining is not None and remaining >= last_remaining:
                    stall_streak += 1
                else:
                    stall_streak = 0
                last_remaining = remaining

                if stall_streak >= stall_limit:
                    logger.warning("Zero-point repair stalled", remaining=remaining, iterations=iteration)
                    return ZeroRepairSummary(
                        completed=False, iterations=iteration, remaining=remaining, stalled=True
                    )

            await self._sleep(self.repair_pause)

        return ZeroRepairSummary(
            completed=False, iterations=max_iterations, remaining=last_remaining or 0
        )
