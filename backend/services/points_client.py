"""Client for the third-party staking points service.

The service answers ``GET /seeds/points?id=<token>&type=<Ancient|Mythic>``.
A 404 simply means the token has no staking data, so it maps to 0 points
like every other non-OK answer. Zero is therefore ambiguous ("unknown" or
"genuinely zero") and the retrying variants treat it as a soft failure.
"""

import asyncio
from typing import Any, Iterable, Optional, Union

import httpx

from config import LeaderboardConfig
from models.nft import NFTType
from utils.concurrency import gather_bounded
from utils.logger import get_logger
from utils.retry import RetryConfig, calculate_delay
from utils.validation import is_valid_token_id, validate_nft_type, validate_token_id

logger = get_logger("points")

POINTS_FIELD_ALIASES = ("points", "totalPoints", "stakingPoints")


def parse_points(data: Any) -> int:
    """Pick the first present points alias and normalise it to a non-negative int"""
    if not isinstance(data, dict):
        return 0
    raw = None
    for field in POINTS_FIELD_ALIASES:
        if data.get(field) is not None:
            raw = data[field]
            break
    if raw is None or isinstance(raw, bool):
        return 0
    try:
        value = int(float(raw))
    except (TypeError, ValueError, OverflowError):
        return 0
    return max(0, value)


class PointsCache:
    """Process-lifetime memo of points per ``(nft_type, token_id)``"""

    def __init__(self):
        self._values: dict[tuple[str, str], int] = {}

    @staticmethod
    def _key(token_id: str, nft_type: Union[NFTType, str]) -> tuple[str, str]:
        return (NFTType(nft_type).value, str(token_id))

    def get(self, token_id: str, nft_type: Union[NFTType, str]) -> Optional[int]:
        return self._values.get(self._key(token_id, nft_type))

    def set(self, token_id: str, nft_type: Union[NFTType, str], points: int) -> None:
        self._values[self._key(token_id, nft_type)] = int(points)

    def clear(self) -> None:
        self._values.clear()

    def __len__(self) -> int:
        return len(self._values)


class StakingPointsClient:
    """Fetches staking points for single tokens and small batches"""

    def __init__(
        self,
        config: Optional[LeaderboardConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        cache: Optional[PointsCache] = None,
    ):
        self.config = config or LeaderboardConfig.from_settings()
        self.base_url = self.config.points_api_base.rstrip("/")
        self._client = client
        self.cache = cache or PointsCache()

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.config.request_timeout)
        return self._client

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _request_points(self, token_id: str, nft_type: NFTType) -> tuple[bool, int]:
        """One upstream call. Returns ``(ok, points)``; transport errors propagate."""
        client = await self._get_client()
        response = await client.get(
            f"{self.base_url}/seeds/points",
            params={"id": token_id, "type": nft_type.value},
        )
        if response.status_code == 404:
            return True, 0
        if not response.is_success:
            logger.debug("Points API non-OK", token_id=token_id, status=response.status_code)
            return False, 0
        try:
            data = response.json()
        except ValueError:
            return False, 0
        return True, parse_points(data)

    async def fetch_points(self, token_id: Any, nft_type: Any) -> int:
        """Fetch points for one token. 404 and other non-OK answers give 0."""
        token_id = validate_token_id(token_id)
        nft_type = validate_nft_type(nft_type)
        _, points = await self._request_points(token_id, nft_type)
        return points

    async def fetch_points_with_retry(
        self,
        token_id: Any,
        nft_type: Any,
        attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
    ) -> int:
        """Retry until a strictly positive value comes back, else return 0.

        Non-OK answers, zero answers and transport errors all count as a
        failed attempt; attempt ``n`` is followed by a ``n * base_delay`` pause.
        """
        token_id = validate_token_id(token_id)
        nft_type = validate_nft_type(nft_type)
        retry = RetryConfig(
            max_attempts=attempts if attempts is not None else self.config.refresh_attempts,
            base_delay=base_delay if base_delay is not None else self.config.refresh_retry_delay,
            backoff="linear",
        )

        for attempt in range(1, retry.max_attempts + 1):
            try:
                _, points = await self._request_points(token_id, nft_type)
                if points > 0:
                    return points
            except httpx.HTTPError as e:
                logger.debug(
                    "Points request failed",
                    token_id=token_id,
                    nft_type=nft_type.value,
                    attempt=attempt,
                    error=str(e),
                )
            if attempt < retry.max_attempts:
                await asyncio.sleep(calculate_delay(attempt, retry))
        return 0

    async def get_points_cached(self, token_id: Any, nft_type: Any) -> int:
        """Single-token lookup backed by the owned ``PointsCache``"""
        token_id = validate_token_id(token_id)
        nft_type = validate_nft_type(nft_type)
        cached = self.cache.get(token_id, nft_type)
        if cached is not None:
            return cached
        points = await self.fetch_points(token_id, nft_type)
        self.cache.set(token_id, nft_type, points)
        return points

    async def fetch_points_batch(self, token_ids: Iterable[Any], nft_type: Any) -> dict[str, int]:
        """Points for up to ``batch_max_tokens`` valid ids; invalid ids are skipped."""
        nft_type = validate_nft_type(nft_type)
        cleaned = [validate_token_id(t) for t in token_ids if isinstance(t, str) and is_valid_token_id(t)]
        sliced = cleaned[: self.config.batch_max_tokens]

        async def one(token_id: str) -> tuple[str, int]:
            try:
                return token_id, await self.fetch_points(token_id, nft_type)
            except httpx.HTTPError as e:
                logger.warning("Batch points lookup failed", token_id=token_id, error=str(e))
                return token_id, 0

        results = await gather_bounded(sliced, one, self.config.batch_concurrency)
        return dict(results)


points_client = StakingPointsClient()
