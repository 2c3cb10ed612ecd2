from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel

from config import settings

WEI_PER_ETH = 10**18


class NFTType(str, Enum):
    ANCIENT = "Ancient"
    MYTHIC = "Mythic"


class Collection(BaseModel):
    """One tracked seed collection and its marketplace slug"""

    nft_type: NFTType
    slug: str


# Refresh order is fixed: the orchestrator cursor indexes into this tuple.
COLLECTIONS: tuple[Collection, ...] = (
    Collection(nft_type=NFTType.ANCIENT, slug=settings.ANCIENT_COLLECTION_SLUG),
    Collection(nft_type=NFTType.MYTHIC, slug=settings.MYTHIC_COLLECTION_SLUG),
)


def _first_offer(data: dict) -> dict:
    protocol = data.get("protocol_data") or {}
    parameters = protocol.get("parameters") or {}
    offer = parameters.get("offer") or []
    if offer and isinstance(offer[0], dict):
        return offer[0]
    return {}


def _parse_wei(raw: object) -> int:
    if raw is None:
        return 0
    try:
        # Values arrive as decimal strings; go through float only as a fallback.
        return max(0, int(str(raw).strip()))
    except (TypeError, ValueError):
        try:
            return max(0, int(float(str(raw))))
        except (TypeError, ValueError):
            return 0


class Listing(BaseModel):
    """An active marketplace listing with derived token id and ETH price"""

    token_id: Optional[str] = None
    contract: Optional[str] = None
    price_wei: int = 0
    currency: str = "ETH"
    image_url: Optional[str] = None
    order_hash: Optional[str] = None
    raw: dict[str, Any] = {}

    @property
    def price_eth(self) -> float:
        return self.price_wei / WEI_PER_ETH

    @property
    def opensea_url(self) -> Optional[str]:
        if self.token_id and self.contract:
            return f"https://opensea.io/assets/ethereum/{self.contract}/{self.token_id}"
        return None

    @classmethod
    def from_opensea_response(cls, data: dict) -> "Listing":
        """Parse a listing from the marketplace listings endpoint"""
        offer = _first_offer(data)
        price = (data.get("price") or {}).get("current") or {}
        token_id = offer.get("identifierOrCriteria")
        return cls(
            token_id=str(token_id) if token_id not in (None, "") else None,
            contract=offer.get("token") or None,
            price_wei=_parse_wei(price.get("value")),
            currency=price.get("currency") or "ETH",
            image_url=offer.get("imageUrl") or None,
            order_hash=data.get("order_hash"),
            raw=data,
        )


class MarketplaceNFT(BaseModel):
    """Collection item metadata from the marketplace NFT listing endpoint"""

    identifier: str
    name: Optional[str] = None
    contract: Optional[str] = None
    image_url: Optional[str] = None
    opensea_url: Optional[str] = None

    @classmethod
    def from_opensea_response(cls, data: dict) -> "MarketplaceNFT":
        return cls(
            identifier=str(data.get("identifier") or ""),
            name=data.get("name"),
            contract=data.get("contract"),
            image_url=data.get("image_url") or data.get("display_image_url"),
            opensea_url=data.get("opensea_url"),
        )
