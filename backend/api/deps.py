"""FastAPI dependency providers for the leaderboard services.

Routes receive their collaborators through ``Depends`` so tests can swap
them with ``app.dependency_overrides``.
"""

from services.leaderboard_refresh import LeaderboardRefresher
from services.leaderboard_store import LeaderboardStore, leaderboard_store
from services.marketplace_client import MarketplaceClient, marketplace_client
from services.points_client import StakingPointsClient, points_client
from services.price_feed import EthPriceFeed, eth_price_feed
from services.zero_repair import ZeroPointRepairer


def get_leaderboard_store() -> LeaderboardStore:
    return leaderboard_store


def get_points_client() -> StakingPointsClient:
    return points_client


def get_marketplace_client() -> MarketplaceClient:
    return marketplace_client


def get_price_feed() -> EthPriceFeed:
    return eth_price_feed


def get_refresher() -> LeaderboardRefresher:
    return LeaderboardRefresher(leaderboard_store, points_client, marketplace_client)


def get_repairer() -> ZeroPointRepairer:
    return ZeroPointRepairer(leaderboard_store, points_client)
