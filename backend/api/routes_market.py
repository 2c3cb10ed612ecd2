"""Thin proxies over the points service, the marketplace and the ETH price feed."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from api.deps import (
    get_leaderboard_store,
    get_marketplace_client,
    get_points_client,
    get_price_feed,
)
from models.nft import COLLECTIONS, Listing
from services.errors import MarketplaceError, ValidationError
from services.leaderboard_store import LeaderboardStore
from services.marketplace_client import MarketplaceClient, collapse_duplicate_listings
from services.points_client import StakingPointsClient
from services.price_feed import EthPriceFeed
from utils.logger import get_logger
from utils.validation import (
    CollectionRequest,
    NFTImageRequest,
    StakingPointsBatchRequest,
    StakingPointsRequest,
    validate_contract_address,
    validate_token_id,
)

logger = get_logger("api")

router = APIRouter(tags=["Marketplace"])


def _listing_payload(listing: Listing, nft_type, points: int) -> dict:
    price_eth = listing.price_eth
    return {
        **listing.raw,
        "tokenId": listing.token_id,
        "nftType": nft_type,
        "contract": listing.contract,
        "priceEth": price_eth,
        "currency": listing.currency,
        "openseaUrl": listing.opensea_url,
        "stakingPoints": points,
        "pointsPerEth": points / price_eth if price_eth > 0 and points > 0 else 0,
    }


@router.post("/staking-points")
async def get_staking_points(
    body: StakingPointsRequest,
    client: StakingPointsClient = Depends(get_points_client),
):
    if not body.token_id or not body.nft_type:
        raise HTTPException(status_code=400, detail="tokenId and nftType are required")
    try:
        points = await client.get_points_cached(body.token_id, body.nft_type)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"points": points}


@router.post("/staking-points/batch")
async def get_staking_points_batch(
    body: StakingPointsBatchRequest,
    client: StakingPointsClient = Depends(get_points_client),
):
    if not isinstance(body.token_ids, list):
        raise HTTPException(status_code=400, detail="tokenIds (array) and nftType (Mythic|Ancient) are required")
    try:
        points_by_id = await client.fetch_points_batch(body.token_ids, body.nft_type)
    except ValidationError:
        raise HTTPException(status_code=400, detail="tokenIds (array) and nftType (Mythic|Ancient) are required")
    return {"pointsById": points_by_id}


@router.post("/opensea/listings")
async def get_listings(
    body: CollectionRequest,
    client: MarketplaceClient = Depends(get_marketplace_client),
    store: LeaderboardStore = Depends(get_leaderboard_store),
):
    """Active listings, one per token at its lowest price, with cached points."""
    try:
        listings = await client.fetch_all_listings(body.collection_slug)
    except MarketplaceError as e:
        return JSONResponse(
            status_code=e.status_code,
            content={
                "error": f"OpenSea API error: {e.status_code}",
                "details": e.detail,
                "hint": "OpenSea API may be temporarily unavailable. Please try again in a few minutes.",
            },
        )

    unique = collapse_duplicate_listings(listings)
    points = await store.get_points_map(body.collection_slug, [listing.token_id for listing in unique])
    nft_type = next(
        (c.nft_type.value for c in COLLECTIONS if c.slug == body.collection_slug),
        None,
    )
    logger.info(
        "Listings served",
        slug=body.collection_slug,
        total=len(listings),
        unique=len(unique),
    )
    return {
        "listings": [
            _listing_payload(listing, nft_type, points.get(listing.token_id, 0)) for listing in unique
        ]
    }


@router.post("/opensea/collection-nfts")
async def get_collection_nfts(
    body: CollectionRequest,
    client: MarketplaceClient = Depends(get_marketplace_client),
):
    try:
        nfts = await client.fetch_all_nfts(body.collection_slug)
    except MarketplaceError as e:
        return JSONResponse(
            status_code=e.status_code,
            content={"error": f"OpenSea API error: {e.status_code}", "details": e.detail},
        )
    return {"nfts": [nft.model_dump(by_alias=True) for nft in nfts]}


@router.post("/opensea/nft-image")
async def get_nft_image(
    body: NFTImageRequest,
    client: MarketplaceClient = Depends(get_marketplace_client),
):
    try:
        contract = validate_contract_address(body.contract_address)
        token_id = validate_token_id(body.token_id)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"imageUrl": await client.fetch_nft_image(contract, token_id)}


@router.get("/eth-price")
async def get_eth_price(feed: EthPriceFeed = Depends(get_price_feed)):
    return {"price": await feed.get_price()}
