import asyncio
from typing import Callable, Optional, TypeVar

import httpx

from config import LeaderboardConfig, settings
from models.nft import Listing, MarketplaceNFT
from services.errors import MarketplaceError
from utils.logger import get_logger
from utils.retry import RetryableClient, RetryConfig

logger = get_logger("marketplace")

T = TypeVar("T")

# Transport faults surface without an upstream status code.
TRANSPORT_ERROR_STATUS = 502


def collapse_duplicate_listings(listings: list[Listing]) -> list[Listing]:
    """Keep the cheapest listing per token id.

    Ties keep the listing seen first, listings without a token id are
    dropped, and tokens come back in order of first appearance.
    """
    best: dict[str, Listing] = {}
    for listing in listings:
        if not listing.token_id:
            continue
        current = best.get(listing.token_id)
        if current is None or listing.price_wei < current.price_wei:
            best[listing.token_id] = listing
    return list(best.values())


class MarketplaceClient:
    """Paginated access to collection listings and NFT metadata"""

    def __init__(
        self,
        config: Optional[LeaderboardConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.config = config or LeaderboardConfig.from_settings()
        self.base_url = self.config.marketplace_api_base.rstrip("/")
        self._client = client
        # Only 5xx and transport faults are retried; 4xx (429 included) is final.
        self.retry_config = retry_config or RetryConfig(
            max_attempts=settings.MARKETPLACE_MAX_RETRY_ATTEMPTS,
            base_delay=settings.MARKETPLACE_RETRY_BASE_DELAY,
            backoff="linear",
            retryable_status_codes=(),
        )

    @property
    def headers(self) -> dict[str, str]:
        return {"Accept": "application/json", "X-API-KEY": self.config.marketplace_api_key}

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.config.request_timeout)
        return self._client

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _paginate(
        self,
        slug: str,
        path: str,
        items_key: str,
        parse: Callable[[dict], T],
        max_pages: int,
        params: Optional[dict] = None,
    ) -> list[T]:
        retrying = RetryableClient(await self._get_client(), self.retry_config)
        collected: list[T] = []
        cursor: Optional[str] = None
        pages = 0

        while True:
            pages += 1
            page_params = dict(params or {})
            if cursor:
                page_params["next"] = cursor
            data = None
            try:
                response = await retrying.get(
                    f"{self.base_url}{path}", params=page_params or None, headers=self.headers
                )
            except httpx.HTTPStatusError as e:
                status, detail = e.response.status_code, e.response.text
            except httpx.HTTPError as e:
                status, detail = TRANSPORT_ERROR_STATUS, str(e)
            else:
                try:
                    data = response.json()
                except ValueError:
                    data = None
                if not isinstance(data, dict):
                    status, detail = TRANSPORT_ERROR_STATUS, "Malformed marketplace response"
                    data = None
            if data is not None:
                page_items = data.get(items_key) or []
                collected.extend(parse(item) for item in page_items if isinstance(item, dict))
                logger.debug(
                    "Marketplace page fetched",
                    slug=slug,
                    path=path,
                    page=pages,
                    items=len(page_items),
                    total=len(collected),
                )
                cursor = data.get("next") or None
                if not cursor:
                    break
                if pages >= max_pages:
                    logger.info("Marketplace page cap reached", slug=slug, path=path, pages=pages)
                    break
                continue

            if collected:
                logger.warning(
                    "Marketplace error mid-pagination, returning partial results",
                    slug=slug,
                    path=path,
                    page=pages,
                    status=status,
                    collected=len(collected),
                )
                break
            logger.error("Marketplace API error", slug=slug, path=path, status=status)
            raise MarketplaceError(status, detail, slug=slug)

        return collected

    async def fetch_all_listings(self, slug: str) -> list[Listing]:
        listings = await self._paginate(
            slug,
            f"/listings/collection/{slug}/all",
            "listings",
            Listing.from_opensea_response,
            self.config.listings_max_pages,
        )
        logger.info("Fetched listings", slug=slug, count=len(listings))
        return listings

    async def fetch_all_nfts(self, slug: str) -> list[MarketplaceNFT]:
        nfts = await self._paginate(
            slug,
            f"/collection/{slug}/nfts",
            "nfts",
            MarketplaceNFT.from_opensea_response,
            self.config.nfts_max_pages,
            params={"limit": self.config.nfts_page_limit},
        )
        logger.info("Fetched collection NFTs", slug=slug, count=len(nfts))
        return nfts

    async def fetch_listed_token_ids(self, slug: str) -> set[str]:
        listings = await self.fetch_all_listings(slug)
        return {listing.token_id for listing in listings if listing.token_id}

    async def fetch_nft_image(self, contract: str, token_id: str) -> Optional[str]:
        """Image URL for a single NFT, or None when the lookup fails in any way"""
        client = await self._get_client()
        url = f"{self.base_url}/chain/ethereum/contract/{contract}/nfts/{token_id}"
        try:
            response = await asyncio.wait_for(
                client.get(url, headers=self.headers, timeout=self.config.image_timeout),
                timeout=self.config.image_timeout,
            )
        except (httpx.HTTPError, asyncio.TimeoutError) as e:
            logger.warning("NFT image lookup failed", contract=contract, token_id=token_id, error=str(e))
            return None

        if not response.is_success:
            logger.warning("NFT image lookup non-OK", token_id=token_id, status=response.status_code)
            return None
        try:
            nft = response.json().get("nft") or {}
        except (ValueError, AttributeError):
            return None
        return nft.get("image_url") or nft.get("display_image_url") or None


marketplace_client = MarketplaceClient()
