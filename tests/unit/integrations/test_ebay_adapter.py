# tests/unit/integrations/test_ebay_adapter.py
import httpx
import pytest
import xmltodict

from crosslister.core.exceptions import AdapterError, PlatformConfigurationError
from crosslister.integrations.platforms.ebay import EBAY_NAMESPACE, EbayAdapter
from crosslister.schemas.listing import ListingPayload
from crosslister.schemas.platform import EbaySettings, PlatformCredentials


def trading_response(call_name, body, ack="Success"):
    return xmltodict.unparse({f"{call_name}Response": {"@xmlns": EBAY_NAMESPACE, "Ack": ack, **body}})


def failure(call_name, code, message):
    return trading_response(
        call_name,
        {"Errors": {"ShortMessage": message, "LongMessage": message, "ErrorCode": code, "SeverityCode": "Error"}},
        ack="Failure",
    )


def make_adapter(settings, handler, **ebay_settings):
    return EbayAdapter(
        PlatformCredentials(access_token="ebay-token"),
        EbaySettings(**ebay_settings),
        settings,
        transport=httpx.MockTransport(handler),
    )


@pytest.fixture
def payload():
    return ListingPayload(
        title="Fender Stratocaster",
        description="Sunburst\n1998",
        price=20.0,
        quantity=1,
        condition="good",
        images=["https://img.example/1.jpg", "https://img.example/2.jpg"],
        sku="GTR-001",
        shipping_cost=7.99,
        handling_time=2,
    )


@pytest.mark.asyncio
async def test_create_listing_sends_trading_call(settings, payload):
    """AddFixedPriceItem is built from the payload and fees are parsed"""
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, text=trading_response("AddFixedPriceItem", {
            "ItemID": "110012345",
            "Fees": {"Fee": [
                {"Name": "InsertionFee", "Fee": {"@currencyID": "USD", "#text": "0.35"}},
                {"Name": "FinalValueFee", "Fee": {"@currencyID": "USD", "#text": "0.00"}},
            ]},
        }))

    adapter = make_adapter(settings, handler)
    created = await adapter.create_listing(payload)

    assert created.listing_id == "110012345"
    assert created.url == "https://www.ebay.com/itm/110012345"
    assert created.fees.listing_fee == 0.35
    assert created.fees.total == 0.35

    request = requests[0]
    assert str(request.url) == settings.EBAY_TRADING_URL
    assert request.headers["X-EBAY-API-CALL-NAME"] == "AddFixedPriceItem"
    assert request.headers["X-EBAY-API-IAF-TOKEN"] == "ebay-token"
    assert request.headers["X-EBAY-API-SITEID"] == "0"

    item = xmltodict.parse(request.content)["AddFixedPriceItemRequest"]["Item"]
    assert item["Title"] == "Fender Stratocaster"
    assert item["StartPrice"] == "20.00"
    assert item["ConditionID"] == "3000"
    assert item["PictureDetails"]["PictureURL"] == ["https://img.example/1.jpg", "https://img.example/2.jpg"]
    assert "Sunburst<br>1998" in item["Description"]


@pytest.mark.asyncio
async def test_sandbox_uses_sandbox_endpoint(settings, payload):
    seen = []

    def handler(request):
        seen.append(str(request.url))
        return httpx.Response(200, text=trading_response("AddFixedPriceItem", {"ItemID": "1"}))

    adapter = make_adapter(settings, handler, sandbox=True)
    created = await adapter.create_listing(payload)

    assert seen == [settings.EBAY_SANDBOX_TRADING_URL]
    assert created.url == "https://www.sandbox.ebay.com/itm/1"


@pytest.mark.asyncio
async def test_failure_ack_raises_adapter_error(settings, payload):
    def handler(request):
        return httpx.Response(200, text=failure("AddFixedPriceItem", "240", "The title is invalid"))

    adapter = make_adapter(settings, handler)
    with pytest.raises(AdapterError) as exc_info:
        await adapter.create_listing(payload)

    assert exc_info.value.code == "VALIDATION"
    assert exc_info.value.is_permanent
    assert exc_info.value.details["ebay_error_code"] == "240"
    assert "The title is invalid" in exc_info.value.message


@pytest.mark.asyncio
async def test_auth_error_code_is_mapped(settings):
    def handler(request):
        return httpx.Response(200, text=failure("ReviseFixedPriceItem", "931", "Auth token is invalid"))

    adapter = make_adapter(settings, handler)
    with pytest.raises(AdapterError) as exc_info:
        await adapter.update_listing("110012345", {"price": 25.0})
    assert exc_info.value.code == "AUTH"


@pytest.mark.asyncio
async def test_update_only_sends_changed_fields(settings):
    bodies = []

    def handler(request):
        bodies.append(xmltodict.parse(request.content))
        return httpx.Response(200, text=trading_response("ReviseFixedPriceItem", {"ItemID": "110012345"}))

    adapter = make_adapter(settings, handler)
    await adapter.update_listing("110012345", {"price": 25.5})

    item = bodies[0]["ReviseFixedPriceItemRequest"]["Item"]
    assert item == {"ItemID": "110012345", "StartPrice": "25.50"}


@pytest.mark.asyncio
async def test_end_already_ended_listing_is_not_an_error(settings):
    def handler(request):
        return httpx.Response(200, text=failure("EndFixedPriceItem", "1047", "Auction has been closed"))

    adapter = make_adapter(settings, handler)
    ended = await adapter.end_listing("110012345", "Sold elsewhere")
    assert ended.already_ended is True


@pytest.mark.asyncio
async def test_end_listing_uses_end_time(settings):
    def handler(request):
        return httpx.Response(200, text=trading_response("EndFixedPriceItem", {"EndTime": "2026-01-02T03:04:05.000Z"}))

    adapter = make_adapter(settings, handler)
    ended = await adapter.end_listing("110012345", "Sold elsewhere")
    assert ended.already_ended is False
    assert ended.ended_at.year == 2026
    assert ended.ended_at.tzinfo is not None


@pytest.mark.asyncio
async def test_get_listing_maps_status_and_metrics(settings):
    def handler(request):
        return httpx.Response(200, text=trading_response("GetItem", {"Item": {
            "ItemID": "110012345",
            "Quantity": "3",
            "HitCount": "10",
            "WatchCount": "2",
            "SellingStatus": {
                "CurrentPrice": {"@currencyID": "USD", "#text": "25.00"},
                "QuantitySold": "1",
                "ListingStatus": "Active",
            },
        }}))

    adapter = make_adapter(settings, handler)
    remote = await adapter.get_listing("110012345")

    assert remote.status == "active"
    assert remote.price == 25.0
    assert remote.quantity == 2
    assert remote.views == 10
    assert remote.watchers == 2


@pytest.mark.asyncio
async def test_http_error_status_raises(settings, payload):
    def handler(request):
        return httpx.Response(503, text="Service Unavailable")

    adapter = make_adapter(settings, handler)
    with pytest.raises(AdapterError) as exc_info:
        await adapter.create_listing(payload)
    assert exc_info.value.code == "REMOTE_ERROR"
    assert exc_info.value.details["status_code"] == 503
    assert not exc_info.value.is_permanent


@pytest.mark.asyncio
async def test_network_error_is_unreachable(settings, payload):
    def handler(request):
        raise httpx.ConnectError("connection refused")

    adapter = make_adapter(settings, handler)
    with pytest.raises(AdapterError) as exc_info:
        await adapter.create_listing(payload)
    assert exc_info.value.code == "UNREACHABLE"


def test_missing_token_fails_at_construction(settings):
    with pytest.raises(PlatformConfigurationError):
        EbayAdapter(PlatformCredentials(), EbaySettings(), settings)


def test_condition_mapping():
    assert EbayAdapter.map_condition("new") == 1000
    assert EbayAdapter.map_condition("Fair") == 4000
    assert EbayAdapter.map_condition(None) == 1000


def test_description_is_escaped():
    assert "&lt;script&gt;" in EbayAdapter.format_description("<script>")
