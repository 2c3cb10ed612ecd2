import sys
from pathlib import Path

import httpx
import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from models.nft import Listing  # noqa: E402
from services.errors import MarketplaceError  # noqa: E402
from services.marketplace_client import MarketplaceClient, collapse_duplicate_listings  # noqa: E402
from utils.retry import RetryConfig  # noqa: E402

CONTRACT = "0xabcabcabcabcabcabcabcabcabcabcabcabcabca"


def _raw_listing(token_id, wei, order_hash=None):
    return {
        "order_hash": order_hash or f"0x{token_id}-{wei}",
        "price": {"current": {"value": str(wei), "currency": "ETH", "decimals": 18}},
        "protocol_data": {
            "parameters": {"offer": [{"identifierOrCriteria": str(token_id), "token": CONTRACT}]}
        },
    }


def _client(fast_config, mock_http, handler):
    return MarketplaceClient(
        config=fast_config,
        client=mock_http(handler),
        retry_config=RetryConfig(max_attempts=3, base_delay=0.0, retryable_status_codes=()),
    )


def test_listing_parsing_derives_token_contract_and_price():
    listing = Listing.from_opensea_response(_raw_listing(42, 1_500_000_000_000_000_000))

    assert listing.token_id == "42"
    assert listing.contract == CONTRACT
    assert listing.price_eth == pytest.approx(1.5)
    assert listing.opensea_url == f"https://opensea.io/assets/ethereum/{CONTRACT}/42"


def test_listing_without_offer_or_price_is_tolerated():
    listing = Listing.from_opensea_response({"price": {"current": {"value": "garbage"}}})

    assert listing.token_id is None
    assert listing.price_eth == 0
    assert listing.opensea_url is None


def test_collapse_keeps_lowest_price_first_on_ties_and_drops_missing_ids():
    listings = [
        Listing.from_opensea_response(_raw_listing(1, 300, "a")),
        Listing.from_opensea_response(_raw_listing(2, 100, "b")),
        Listing.from_opensea_response(_raw_listing(1, 200, "c")),
        Listing.from_opensea_response(_raw_listing(2, 100, "d")),
        Listing.from_opensea_response({"order_hash": "e"}),
    ]

    collapsed = collapse_duplicate_listings(listings)

    assert [(item.token_id, item.order_hash) for item in collapsed] == [("1", "c"), ("2", "b")]


@pytest.mark.asyncio
async def test_listings_follow_cursor_and_send_headers(fast_config, mock_http):
    pages = {
        None: {"listings": [_raw_listing(1, 10)], "next": "cur-2"},
        "cur-2": {"listings": [_raw_listing(2, 20)], "next": ""},
    }
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=pages[request.url.params.get("next")])

    client = _client(fast_config, mock_http, handler)
    listings = await client.fetch_all_listings("ancientseed")

    assert [item.token_id for item in listings] == ["1", "2"]
    assert seen[0].url.path == "/api/v2/listings/collection/ancientseed/all"
    assert seen[0].headers["X-API-KEY"] == "test-key"
    assert seen[0].headers["Accept"] == "application/json"


@pytest.mark.asyncio
async def test_listings_stop_at_page_cap(fast_config, mock_http):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(
            200, json={"listings": [_raw_listing(len(calls), 1)], "next": f"c{len(calls)}"}
        )

    client = _client(fast_config, mock_http, handler)
    listings = await client.fetch_all_listings("mythicseed")

    assert len(calls) == fast_config.listings_max_pages == 20
    assert len(listings) == 20


@pytest.mark.asyncio
async def test_nfts_page_limit_and_cap(fast_config, mock_http):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(
            200,
            json={"nfts": [{"identifier": str(len(calls)), "display_image_url": "x"}], "next": "more"},
        )

    client = _client(fast_config, mock_http, handler)
    nfts = await client.fetch_all_nfts("mythicseed")

    assert len(calls) == 50
    assert calls[0].url.params["limit"] == "200"
    assert nfts[0].image_url == "x"


@pytest.mark.asyncio
async def test_error_after_first_page_returns_partial_results(fast_config, mock_http):
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(200, json={"listings": [_raw_listing(5, 1)], "next": "c2"})
        return httpx.Response(400, text="bad cursor")

    client = _client(fast_config, mock_http, handler)
    listings = await client.fetch_all_listings("ancientseed")

    assert [item.token_id for item in listings] == ["5"]
    # 4xx is not retried.
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_error_on_first_page_raises_with_upstream_status(fast_config, mock_http):
    client = _client(fast_config, mock_http, lambda request: httpx.Response(401, text="no key"))

    with pytest.raises(MarketplaceError) as exc_info:
        await client.fetch_all_listings("ancientseed")

    assert exc_info.value.status_code == 401
    assert exc_info.value.detail == "no key"


@pytest.mark.asyncio
async def test_server_errors_are_retried_before_succeeding(fast_config, mock_http):
    answers = iter([httpx.Response(502), httpx.Response(503), httpx.Response(200, json={"nfts": []})])
    client = _client(fast_config, mock_http, lambda request: next(answers))

    assert await client.fetch_all_nfts("ancientseed") == []


@pytest.mark.asyncio
async def test_server_errors_exhausted_raise_marketplace_error(fast_config, mock_http):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500, text="down")

    client = _client(fast_config, mock_http, handler)
    with pytest.raises(MarketplaceError) as exc_info:
        await client.fetch_all_nfts("ancientseed")

    assert exc_info.value.status_code == 500
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_listed_token_ids(fast_config, mock_http):
    payload = {"listings": [_raw_listing(1, 5), _raw_listing(1, 3), _raw_listing(9, 1)]}
    client = _client(fast_config, mock_http, lambda request: httpx.Response(200, json=payload))

    assert await client.fetch_listed_token_ids("ancientseed") == {"1", "9"}


@pytest.mark.asyncio
async def test_nft_image_prefers_image_url_then_display_url(fast_config, mock_http):
    answers = iter(
        [
            httpx.Response(200, json={"nft": {"image_url": "https://img/1.png"}}),
            httpx.Response(200, json={"nft": {"image_url": None, "display_image_url": "https://img/d.png"}}),
            httpx.Response(200, json={"nft": {}}),
        ]
    )
    client = _client(fast_config, mock_http, lambda request: next(answers))

    assert await client.fetch_nft_image(CONTRACT, "1") == "https://img/1.png"
    assert await client.fetch_nft_image(CONTRACT, "1") == "https://img/d.png"
    assert await client.fetch_nft_image(CONTRACT, "1") is None


@pytest.mark.asyncio
async def test_nft_image_failures_degrade_to_none(fast_config, mock_http):
    def handler(request):
        if request.url.path.endswith("/timeout"):
            raise httpx.ReadTimeout("slow", request=request)
        return httpx.Response(404)

    client = _client(fast_config, mock_http, handler)

    assert await client.fetch_nft_image(CONTRACT, "timeout") is None
    assert await client.fetch_nft_image(CONTRACT, "2") is None


@pytest.mark.asyncio
async def test_malformed_page_after_first_returns_partial_results(fast_config, mock_http):
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(200, json={"nfts": [{"identifier": "1"}], "next": "c2"})
        return httpx.Response(200, text="<html>gateway hiccup</html>")

    client = _client(fast_config, mock_http, handler)
    nfts = await client.fetch_all_nfts("ancientseed")

    assert [nft.identifier for nft in nfts] == ["1"]
    assert len(calls) == 2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, text="not json"),
        httpx.Response(200, json=["listing"]),
    ],
)
async def test_malformed_first_page_raises_marketplace_error(fast_config, mock_http, response):
    client = _client(fast_config, mock_http, lambda request: response)

    with pytest.raises(MarketplaceError) as exc_info:
        await client.fetch_all_listings("ancientseed")

    assert exc_info.value.status_code == 502
