import re
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from models.nft import NFTType
from services.errors import ValidationError


TOKEN_ID_REGEX = re.compile(r"^[0-9]{1,20}$")
ETH_ADDRESS_REGEX = re.compile(r"^0x[a-fA-F0-9]{40}$")


def validate_token_id(token_id: Any) -> str:
    """Validate a token id: a decimal numeral of at most 20 digits"""
    if isinstance(token_id, bool) or token_id is None:
        raise ValidationError("tokenId is required")
    if isinstance(token_id, int):
        token_id = str(token_id)
    if not isinstance(token_id, str):
        raise ValidationError("tokenId must be a string")

    token_id = token_id.strip()
    if not TOKEN_ID_REGEX.match(token_id):
        raise ValidationError(f"Invalid tokenId: {token_id!r}")
    return token_id


def is_valid_token_id(token_id: Any) -> bool:
    try:
        validate_token_id(token_id)
    except ValidationError:
        return False
    return True


def validate_nft_type(nft_type: Any) -> NFTType:
    """Validate an NFT type, which must be exactly Ancient or Mythic"""
    if isinstance(nft_type, NFTType):
        return nft_type
    try:
        return NFTType(nft_type)
    except ValueError:
        raise ValidationError("nftType must be Mythic or Ancient") from None


def validate_contract_address(address: Any) -> str:
    if not isinstance(address, str) or not ETH_ADDRESS_REGEX.match(address.strip()):
        raise ValidationError(f"Invalid contract address: {address!r}")
    return address.strip()


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class RefreshCursorParams(_CamelModel):
    """Cursor handed back by the caller between refresh steps"""

    current_collection: int = Field(default=0, ge=0, alias="currentCollection")
    current_offset: int = Field(default=0, ge=0, alias="currentOffset")


class StakingPointsRequest(_CamelModel):
    token_id: Optional[Union[str, int]] = Field(default=None, alias="tokenId")
    nft_type: Optional[str] = Field(default=None, alias="nftType")


class StakingPointsBatchRequest(_CamelModel):
    token_ids: Optional[list[Any]] = Field(default=None, alias="tokenIds")
    nft_type: Optional[str] = Field(default=None, alias="nftType")


class CollectionRequest(_CamelModel):
    collection_slug: str = Field(..., min_length=1, alias="collectionSlug")


class NFTImageRequest(_CamelModel):
    contract_address: str = Field(..., min_length=1, alias="contractAddress")
    token_id: Union[str, int] = Field(..., alias="tokenId")
