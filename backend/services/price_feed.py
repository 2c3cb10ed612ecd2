from typing import Optional

import httpx

from config import settings
from utils.logger import get_logger

logger = get_logger("price_feed")


class EthPriceFeed:
    """ETH/USD spot price with a fixed fallback when the feed is unavailable"""

    def __init__(
        self,
        url: Optional[str] = None,
        fallback_usd: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url or settings.ETH_PRICE_API_URL
        self.fallback_usd = fallback_usd if fallback_usd is not None else settings.ETH_PRICE_FALLBACK_USD
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=settings.API_TIMEOUT_SECONDS)
        return self._client

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def get_price(self) -> float:
        client = await self._get_client()
        try:
            response = await client.get(self.url)
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("ETH price feed unavailable", error=str(e))
            return self.fallback_usd

        price = (data.get("ethereum") or {}).get("usd") if isinstance(data, dict) else None
        if isinstance(price, (int, float)) and not isinstance(price, bool) and price > 0:
            return float(price)
        return self.fallback_usd


eth_price_feed = EthPriceFeed()
