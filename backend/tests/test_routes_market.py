import sys
from pathlib import Path
from unittest.mock import AsyncMock

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from api import router  # noqa: E402
from api.deps import (  # noqa: E402
    get_leaderboard_store,
    get_marketplace_client,
    get_points_client,
    get_price_feed,
)
from models.nft import Listing, MarketplaceNFT  # noqa: E402
from services.errors import MarketplaceError  # noqa: E402
from services.points_client import StakingPointsClient  # noqa: E402
from services.price_feed import EthPriceFeed  # noqa: E402

CONTRACT = "0xabcabcabcabcabcabcabcabcabcabcabcabcabca"


def _listing(token_id, wei, order_hash):
    return Listing.from_opensea_response(
        {
            "order_hash": order_hash,
            "price": {"current": {"value": str(wei), "currency": "ETH", "decimals": 18}},
            "protocol_data": {
                "parameters": {"offer": [{"identifierOrCriteria": str(token_id), "token": CONTRACT}]}
            },
        }
    )


@pytest.fixture
def points_requests():
    return []


@pytest.fixture
def marketplace():
    return AsyncMock()


@pytest_asyncio.fixture
async def client(store, fast_config, mock_http, points_requests, marketplace):
    def points_handler(request):
        points_requests.append(request)
        token_id = request.url.params["id"]
        if token_id == "404":
            return httpx.Response(404)
        return httpx.Response(200, json={"totalPoints": int(token_id) * 10})

    points = StakingPointsClient(config=fast_config, client=mock_http(points_handler))
    feed = EthPriceFeed(
        url="https://price.test/eth",
        fallback_usd=3000.0,
        client=mock_http(lambda request: httpx.Response(200, json={"ethereum": {"usd": 2512.5}})),
    )

    app = FastAPI()
    app.include_router(router, prefix="/api")
    app.dependency_overrides[get_points_client] = lambda: points
    app.dependency_overrides[get_marketplace_client] = lambda: marketplace
    app.dependency_overrides[get_leaderboard_store] = lambda: store
    app.dependency_overrides[get_price_feed] = lambda: feed

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.mark.asyncio
async def test_staking_points_single_lookup_is_cached(client, points_requests):
    first = await client.post("/api/staking-points", json={"tokenId": "7", "nftType": "Ancient"})
    second = await client.post("/api/staking-points", json={"tokenId": "7", "nftType": "Ancient"})

    assert first.json() == {"points": 70}
    assert second.json() == {"points": 70}
    assert len(points_requests) == 1


@pytest.mark.asyncio
async def test_staking_points_404_means_zero(client):
    response = await client.post("/api/staking-points", json={"tokenId": "404", "nftType": "Mythic"})

    assert response.json() == {"points": 0}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"nftType": "Ancient"},
        {"tokenId": "1"},
        {"tokenId": "abc", "nftType": "Ancient"},
        {"tokenId": "1", "nftType": "Legendary"},
    ],
)
async def test_staking_points_rejects_bad_input(client, payload, points_requests):
    response = await client.post("/api/staking-points", json=payload)

    assert response.status_code == 400
    assert points_requests == []


@pytest.mark.asyncio
async def test_staking_points_batch_skips_invalid_ids(client):
    response = await client.post(
        "/api/staking-points/batch",
        json={"tokenIds": ["1", "x", 2, "3"], "nftType": "Mythic"},
    )

    assert response.status_code == 200
    assert response.json() == {"pointsById": {"1": 10, "3": 30}}


@pytest.mark.asyncio
async def test_staking_points_batch_requires_list_and_type(client):
    missing_list = await client.post("/api/staking-points/batch", json={"nftType": "Mythic"})
    bad_type = await client.post("/api/staking-points/batch", json={"tokenIds": ["1"], "nftType": "x"})

    assert missing_list.status_code == 400
    assert bad_type.status_code == 400


@pytest.mark.asyncio
async def test_listings_are_collapsed_and_enriched_from_cache(client, store, marketplace):
    await store.upsert_entries(
        [{"collection_slug": "ancientseed", "nft_type": "Ancient", "token_id": "1", "points": 300}]
    )
    marketplace.fetch_all_listings.return_value = [
        _listing(1, 3 * 10**18, "a"),
        _listing(1, 2 * 10**18, "b"),
        _listing(2, 10**18, "c"),
    ]

    response = await client.post("/api/opensea/listings", json={"collectionSlug": "ancientseed"})

    assert response.status_code == 200
    listings = response.json()["listings"]
    assert [(item["tokenId"], item["order_hash"]) for item in listings] == [("1", "b"), ("2", "c")]
    first, second = listings
    assert first["nftType"] == "Ancient"
    assert first["priceEth"] == pytest.approx(2.0)
    assert first["stakingPoints"] == 300
    assert first["pointsPerEth"] == pytest.approx(150.0)
    assert first["openseaUrl"] == f"https://opensea.io/assets/ethereum/{CONTRACT}/1"
    assert second["stakingPoints"] == 0
    assert second["pointsPerEth"] == 0


@pytest.mark.asyncio
async def test_listings_upstream_error_keeps_status(client, marketplace):
    marketplace.fetch_all_listings.side_effect = MarketplaceError(401, "invalid api key")

    response = await client.post("/api/opensea/listings", json={"collectionSlug": "ancientseed"})

    assert response.status_code == 401
    body = response.json()
    assert body["error"] == "OpenSea API error: 401"
    assert body["details"] == "invalid api key"
    assert "hint" in body


@pytest.mark.asyncio
async def test_collection_nfts_proxy(client, marketplace):
    marketplace.fetch_all_nfts.return_value = [MarketplaceNFT(identifier="5", image_url="https://img/5.png")]

    response = await client.post("/api/opensea/collection-nfts", json={"collectionSlug": "mythicseed"})

    assert response.status_code == 200
    [nft] = response.json()["nfts"]
    assert nft["identifier"] == "5"
    assert nft["image_url"] == "https://img/5.png"


@pytest.mark.asyncio
async def test_nft_image_validates_then_proxies(client, marketplace):
    marketplace.fetch_nft_image.return_value = "https://img/9.png"

    ok = await client.post("/api/opensea/nft-image", json={"contractAddress": CONTRACT, "tokenId": "9"})
    bad_contract = await client.post("/api/opensea/nft-image", json={"contractAddress": "0x12", "tokenId": "9"})
    bad_token = await client.post("/api/opensea/nft-image", json={"contractAddress": CONTRACT, "tokenId": "9a"})

    assert ok.json() == {"imageUrl": "https://img/9.png"}
    marketplace.fetch_nft_image.assert_awaited_once_with(CONTRACT, "9")
    assert bad_contract.status_code == 400
    assert bad_token.status_code == 400


@pytest.mark.asyncio
async def test_eth_price(client):
    response = await client.get("/api/eth-price")

    assert response.json() == {"price": 2512.5}


@pytest.mark.asyncio
async def test_eth_price_falls_back_on_bad_payload(mock_http):
    feed = EthPriceFeed(
        url="https://price.test/eth",
        fallback_usd=3000.0,
        client=mock_http(lambda request: httpx.Response(200, json={"ethereum": {"usd": 0}})),
    )

    assert await feed.get_price() == 3000.0
