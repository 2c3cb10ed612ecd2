"""Leaderboard worker: drives a full refresh plus zero-point repair on a schedule.

Runs as a dedicated process. It is just another caller of the step-wise
refresh, so it competes with browser-driven refreshes through the same
job-status guard.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

_BACKEND = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND not in sys.path:
    sys.path.insert(0, _BACKEND)
if os.getcwd() != _BACKEND:
    os.chdir(_BACKEND)

from config import settings
from models.database import init_database
from services.errors import RefreshStepError
from services.leaderboard_driver import LeaderboardDriver, RefreshRunSummary
from services.leaderboard_refresh import LeaderboardRefresher
from services.leaderboard_store import leaderboard_store
from services.marketplace_client import marketplace_client
from services.points_client import points_client
from services.zero_repair import ZeroPointRepairer
from utils.logger import get_logger, setup_logging

logger = get_logger("leaderboard_worker")


def build_driver() -> LeaderboardDriver:
    return LeaderboardDriver(
        refresher=LeaderboardRefresher(leaderboard_store, points_client, marketplace_client),
        repairer=ZeroPointRepairer(leaderboard_store, points_client),
        store=leaderboard_store,
    )


async def run_once(driver: LeaderboardDriver | None = None) -> RefreshRunSummary:
    driver = driver or build_driver()
    summary = await driver.run_refresh(
        max_iterations=settings.REFRESH_MAX_STEPS,
        repair_max_iterations=settings.REPAIR_MAX_ITERATIONS,
        repair_stall_limit=settings.REPAIR_STALL_LIMIT,
    )
    logger.info(
        "Leaderboard refresh run finished",
        completed=summary.completed,
        steps=summary.steps,
        conflicts=summary.conflicts,
        finished_elsewhere=summary.finished_elsewhere,
        zeros_remaining=summary.zero_repair.remaining if summary.zero_repair else 0,
    )
    return summary


async def _run_loop() -> None:
    interval_seconds = max(1, settings.LEADERBOARD_REFRESH_INTERVAL_MINUTES) * 60
    logger.info("Leaderboard worker started", interval_seconds=interval_seconds)
    driver = build_driver()

    while True:
        try:
            await run_once(driver)
        except RefreshStepError as e:
            logger.error("Leaderboard refresh run failed", error=str(e))
        await asyncio.sleep(interval_seconds)


async def main(once: bool = False) -> None:
    setup_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON, log_file=settings.LOG_FILE)
    await init_database()
    logger.info("Database initialized")
    try:
        if once:
            await run_once()
        else:
            await _run_loop()
    except asyncio.CancelledError:
        logger.info("Leaderboard worker shutting down")
    finally:
        await points_client.close()
        await marketplace_client.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Scheduled leaderboard refresh")
    parser.add_argument("--once", action="store_true", help="run a single refresh and exit")
    args = parser.parse_args()
    asyncio.run(main(once=args.once))
