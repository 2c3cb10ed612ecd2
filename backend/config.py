from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings

# Get the directory where this config file is located.
_BACKEND_DIR = Path(__file__).parent.resolve()
_PROJECT_ROOT = _BACKEND_DIR.parent.resolve()
_DEFAULT_DB_PATH = (_PROJECT_ROOT / "data" / "leaderboard.db").resolve()
_SQLITE_ASYNC_PREFIX = "sqlite+aiosqlite:///"
_SQLITE_SYNC_PREFIX = "sqlite:///"


class Settings(BaseSettings):
    # Upstream API Base URLs
    POINTS_API_URL: str = "https://staking.youmio.ai/api"
    MARKETPLACE_API_URL: str = "https://api.opensea.io/api/v2"
    MARKETPLACE_API_KEY: str = ""
    ETH_PRICE_API_URL: str = "https://api.coingecko.com/api/v3/simple/price"
    ETH_PRICE_FALLBACK_USD: float = 2500.0

    # Collections (slug per seed type)
    ANCIENT_COLLECTION_SLUG: str = "ancientseed"
    MYTHIC_COLLECTION_SLUG: str = "mythicseed"

    # Database
    DATABASE_URL: str = f"sqlite+aiosqlite:///{_DEFAULT_DB_PATH}"

    # Production Settings
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True
    LOG_FILE: Optional[str] = None
    CORS_ORIGINS: list[str] = ["*"]

    # API Settings
    API_TIMEOUT_SECONDS: float = 30.0
    NFT_IMAGE_TIMEOUT_SECONDS: float = 10.0
    MARKETPLACE_MAX_RETRY_ATTEMPTS: int = 3
    MARKETPLACE_RETRY_BASE_DELAY: float = 1.0  # linear: 1s, 2s, ...

    # Marketplace pagination
    LISTINGS_MAX_PAGES: int = 20
    NFTS_MAX_PAGES: int = 50
    NFTS_PAGE_LIMIT: int = 200  # Max per page upstream

    # Leaderboard refresh (one step per call)
    LEADERBOARD_CHUNK_SIZE: int = 800  # Tokens priced per refresh step
    LEADERBOARD_METADATA_BATCH_SIZE: int = 200
    REFRESH_POINTS_CONCURRENCY: int = 25
    REFRESH_POINTS_ATTEMPTS: int = 3
    REFRESH_RETRY_BASE_DELAY: float = 0.1
    REFRESH_BATCH_PAUSE_SECONDS: float = 0.05
    REFRESH_STALE_MINUTES: int = 5  # Running job older than this is abandoned

    # Zero-point repair
    REPAIR_CHUNK_SIZE: int = 200
    REPAIR_POINTS_CONCURRENCY: int = 15  # Lower for more reliable results
    REPAIR_POINTS_ATTEMPTS: int = 5
    REPAIR_RETRY_BASE_DELAY: float = 0.2
    REPAIR_BATCH_PAUSE_SECONDS: float = 0.1
    REPAIR_MAX_ITERATIONS: int = 12
    REPAIR_STALL_LIMIT: int = 2

    # Single-token / batch proxy
    BATCH_POINTS_CONCURRENCY: int = 6
    BATCH_POINTS_MAX_TOKENS: int = 50

    # Scheduled refresh worker
    LEADERBOARD_REFRESH_INTERVAL_MINUTES: int = 60
    REFRESH_MAX_STEPS: int = 50

    @field_validator(
        "POINTS_API_URL",
        "MARKETPLACE_API_URL",
        "ETH_PRICE_API_URL",
        mode="before",
    )
    @classmethod
    def _normalize_url_field(cls, value: object) -> object:
        """Trim accidental quotes/whitespace from URL env vars."""
        if value is None:
            return value
        text = str(value).strip().strip('"').strip("'")
        if not text:
            return text
        return text.rstrip("/")

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def _normalize_database_url(cls, value: object) -> object:
        """Normalize DB URL so worker cwd changes never split databases."""
        if value is None:
            return value

        text = str(value).strip().strip('"').strip("'")
        if not text:
            return text

        # Hosted Postgres hands out postgres://..., the async engine wants asyncpg.
        if text.startswith("postgres://"):
            return text.replace("postgres://", "postgresql+asyncpg://", 1)
        if text.startswith("postgresql://"):
            return text.replace("postgresql://", "postgresql+asyncpg://", 1)

        # Convert relative SQLite paths to absolute project-root paths.
        for prefix in (_SQLITE_ASYNC_PREFIX, _SQLITE_SYNC_PREFIX):
            if not text.startswith(prefix):
                continue
            path_part = text[len(prefix) :]
            if not path_part:
                return text
            if path_part in {":memory:", "/:memory:"}:
                return f"{prefix}:memory:"
            absolute = Path(path_part).resolve() if path_part.startswith("/") else (_PROJECT_ROOT / path_part).resolve()
            absolute.parent.mkdir(parents=True, exist_ok=True)
            return f"{prefix}{absolute}"

        return text

    class Config:
        # Load project-root .env first, then backend/.env as an override.
        env_file = (
            str(_PROJECT_ROOT / ".env"),
            str(_BACKEND_DIR / ".env"),
        )
        env_file_encoding = "utf-8"


settings = Settings()


@dataclass(frozen=True)
class LeaderboardConfig:
    """Explicit knobs handed to the leaderboard components at construction."""

    points_api_base: str
    marketplace_api_base: str
    marketplace_api_key: str = ""
    chunk_size: int = 800
    metadata_batch_size: int = 200
    listings_max_pages: int = 20
    nfts_max_pages: int = 50
    nfts_page_limit: int = 200
    refresh_concurrency: int = 25
    refresh_attempts: int = 3
    refresh_retry_delay: float = 0.1
    refresh_batch_pause: float = 0.05
    stale_after_minutes: int = 5
    repair_chunk_size: int = 200
    repair_concurrency: int = 15
    repair_attempts: int = 5
    repair_retry_delay: float = 0.2
    repair_batch_pause: float = 0.1
    batch_concurrency: int = 6
    batch_max_tokens: int = 50
    request_timeout: float = 30.0
    image_timeout: float = 10.0

    @classmethod
    def from_settings(cls, source: Optional[Settings] = None) -> "LeaderboardConfig":
        s = source or settings
        return cls(
            points_api_base=s.POINTS_API_URL,
            marketplace_api_base=s.MARKETPLACE_API_URL,
            marketplace_api_key=s.MARKETPLACE_API_KEY,
            chunk_size=s.LEADERBOARD_CHUNK_SIZE,
            metadata_batch_size=s.LEADERBOARD_METADATA_BATCH_SIZE,
            listings_max_pages=s.LISTINGS_MAX_PAGES,
            nfts_max_pages=s.NFTS_MAX_PAGES,
            nfts_page_limit=s.NFTS_PAGE_LIMIT,
            refresh_concurrency=s.REFRESH_POINTS_CONCURRENCY,
            refresh_attempts=s.REFRESH_POINTS_ATTEMPTS,
            refresh_retry_delay=s.REFRESH_RETRY_BASE_DELAY,
            refresh_batch_pause=s.REFRESH_BATCH_PAUSE_SECONDS,
            stale_after_minutes=s.REFRESH_STALE_MINUTES,
            repair_chunk_size=s.REPAIR_CHUNK_SIZE,
            repair_concurrency=s.REPAIR_POINTS_CONCURRENCY,
            repair_attempts=s.REPAIR_POINTS_ATTEMPTS,
            repair_retry_delay=s.REPAIR_RETRY_BASE_DELAY,
            repair_batch_pause=s.REPAIR_BATCH_PAUSE_SECONDS,
            batch_concurrency=s.BATCH_POINTS_CONCURRENCY,
            batch_max_tokens=s.BATCH_POINTS_MAX_TOKENS,
            request_timeout=s.API_TIMEOUT_SECONDS,
            image_timeout=s.NFT_IMAGE_TIMEOUT_SECONDS,
        )
