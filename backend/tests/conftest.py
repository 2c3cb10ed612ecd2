"""Shared fixtures for the leaderboard tests."""

import sys
from pathlib import Path

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from config import LeaderboardConfig
from models.database import Base
from models.nft import MarketplaceNFT, NFTType
from services.leaderboard_store import LeaderboardStore
from utils.validation import validate_token_id

CONTRACT = "0x1111111111111111111111111111111111111111"


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'leaderboard.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    finally:
        await engine.dispose()


@pytest.fixture
def store(session_factory):
    return LeaderboardStore(session_factory)


@pytest.fixture
def fast_config():
    """Production sizes, zero sleeps."""
    return LeaderboardConfig(
        points_api_base="https://points.test/api",
        marketplace_api_base="https://market.test/api/v2",
        marketplace_api_key="test-key",
        refresh_retry_delay=0.0,
        refresh_batch_pause=0.0,
        repair_retry_delay=0.0,
        repair_batch_pause=0.0,
    )


# ---------------------------------------------------------------------------
# Upstream fakes
# ---------------------------------------------------------------------------


class FakePointsClient:
    """Answers ``fetch_points_with_retry`` from a dict and records every call."""

    def __init__(self):
        self.points: dict[str, object] = {}
        self.default = 0
        self.calls: list[tuple[str, str, object]] = []

    async def fetch_points_with_retry(self, token_id, nft_type, attempts=None, base_delay=None):
        token_id = validate_token_id(token_id)
        self.calls.append((token_id, NFTType(nft_type).value, attempts))
        value = self.points.get(str(token_id), self.default)
        if isinstance(value, Exception):
            raise value
        return value


class FakeMarketplaceClient:
    """Serves NFTs and listed ids per collection slug."""

    def __init__(self):
        self.nfts: dict[str, list[str]] = {}
        self.listed: dict[str, set[str]] = {}
        self.nft_calls: list[str] = []
        self.listing_calls: list[str] = []

    def add_collection(self, slug: str, token_ids, listed=()):
        self.nfts[slug] = [str(t) for t in token_ids]
        self.listed[slug] = {str(t) for t in listed}

    async def fetch_all_nfts(self, slug):
        self.nft_calls.append(slug)
        return [
            MarketplaceNFT(
                identifier=token_id,
                contract=CONTRACT,
                image_url=f"https://img.test/{slug}/{token_id}.png",
                opensea_url=f"https://opensea.io/assets/ethereum/{CONTRACT}/{token_id}",
            )
            for token_id in self.nfts.get(slug, [])
        ]

    async def fetch_listed_token_ids(self, slug):
        self.listing_calls.append(slug)
        return set(self.listed.get(slug, set()))


@pytest.fixture
def fake_points():
    return FakePointsClient()


@pytest.fixture
def fake_marketplace():
    return FakeMarketplaceClient()


@pytest.fixture
def mock_http():
    """Build an ``httpx.AsyncClient`` whose requests are answered by ``handler``."""

    def _build(handler):
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _build
