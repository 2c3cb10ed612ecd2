from .logger import setup_logging, get_logger, api_logger, leaderboard_logger
from .retry import RetryConfig, RetryableClient
from .concurrency import gather_bounded, gather_in_batches

__all__ = [
    # Logger
    "setup_logging",
    "get_logger",
    "api_logger",
    "leaderboard_logger",

    # Retry
    "RetryConfig",
    "RetryableClient",

    # Concurrency
    "gather_bounded",
    "gather_in_batches",
]
