from importlib import import_module

__all__ = [
    "leaderboard_store",
    "LeaderboardStore",
    "points_client",
    "StakingPointsClient",
    "marketplace_client",
    "MarketplaceClient",
    "eth_price_feed",
    "EthPriceFeed",
]

_LAZY_EXPORTS = {
    "leaderboard_store": ("services.leaderboard_store", "leaderboard_store"),
    "LeaderboardStore": ("services.leaderboard_store", "LeaderboardStore"),
    "points_client": ("services.points_client", "points_client"),
    "StakingPointsClient": ("services.points_client", "StakingPointsClient"),
    "marketplace_client": ("services.marketplace_client", "marketplace_client"),
    "MarketplaceClient": ("services.marketplace_client", "MarketplaceClient"),
    "eth_price_feed": ("services.price_feed", "eth_price_feed"),
    "EthPriceFeed": ("services.price_feed", "EthPriceFeed"),
}


def __getattr__(name):
    if name not in _LAZY_EXPORTS:
        raise AttributeError(f"module 'services' has no attribute {name!r}")

    module_name, attr_name = _LAZY_EXPORTS[name]
    module = import_module(module_name)
    value = getattr(module, attr_name)
    globals()[name] = value
    return value
