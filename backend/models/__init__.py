from .nft import (
    COLLECTIONS,
    Collection,
    Listing,
    MarketplaceNFT,
    NFTType,
)

__all__ = [
    "COLLECTIONS",
    "Collection",
    "Listing",
    "MarketplaceNFT",
    "NFTType",
]
