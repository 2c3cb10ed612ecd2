from fastapi import APIRouter

from .routes_leaderboard import router as leaderboard_router
from .routes_market import router as market_router

router = APIRouter()
router.include_router(leaderboard_router)
router.include_router(market_router)

__all__ = ["router"]
