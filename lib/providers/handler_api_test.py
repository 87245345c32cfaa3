"""Unit tests for the handler_api.php adapters (SMS-Activate, GoGetSMS)."""

import time

import httpx
import pytest
from unittest.mock import AsyncMock, patch

from lib.providers.errors import ErrorKind, ProviderError
from lib.providers.gogetsms import GoGetSmsClient, SlidingWindowLimiter, parse_webhook_payload
from lib.providers.handler_api import normalize_status
from lib.providers.sms_activate import SmsActivateClient


def _response(body) -> httpx.Response:
    request = httpx.Request("GET", "https://api.example.test/handler_api.php")
    if isinstance(body, str):
        return httpx.Response(200, text=body, request=request)
    return httpx.Response(200, json=body, request=request)


def _router(responses: dict):
    """side_effect answering by `action`; a list value is consumed in order."""
    calls = []

    async def request(method, url, params=None, json=None):
        calls.append(params)
        answer = responses[params["action"]]
        if isinstance(answer, list):
            answer = answer.pop(0)
        return _response(answer)

    request.calls = calls
    return request


# =============================================================================
# SMS-Activate
# =============================================================================

@pytest.mark.no_db
@pytest.mark.asyncio
async def test_sms_activate_rent():
    """Should rent with canonical codes and parse the phone object."""
    client = SmsActivateClient(api_key="k", attempts=1, retry_delay=0)
    router = _router({"getRentNumber": {
        "status": "success",
        "phone": {"id": 9001, "number": 447700900123, "endDate": "2026-10-19T14:00:00", "cost": 1.5},
    }})

    with patch.object(client, "_request", new=AsyncMock(side_effect=router)):
        rental = await client.rent("wa", rent_time="4", country="16")

    assert rental.booking_id == "9001"
    assert rental.phone_number == "447700900123"
    assert rental.country == "16"
    assert rental.cost == 1.5
    assert rental.expires_at.hour == 14
    assert router.calls[0] == {
        "api_key": "k", "action": "getRentNumber", "service": "wa", "rent_time": "4", "country": "16",
    }


@pytest.mark.no_db
@pytest.mark.asyncio
async def test_sms_activate_bad_key_token():
    """Should raise INVALID_API_KEY for a bare BAD_KEY body."""
    client = SmsActivateClient(api_key="k", attempts=1, retry_delay=0)
    router = _router({"getRentNumber": "BAD_KEY"})

    with patch.object(client, "_request", new=AsyncMock(side_effect=router)):
        with pytest.raises(ProviderError) as exc_info:
            await client.rent("wa")

    assert exc_info.value.kind == ErrorKind.INVALID_API_KEY


@pytest.mark.no_db
@pytest.mark.asyncio
async def test_sms_activate_error_object():
    client = SmsActivateClient(api_key="k", attempts=1, retry_delay=0)
    router = _router({"getRentStatus": {"status": "error", "message": "STATUS_WAIT_CODE"}})

    with patch.object(client, "_request", new=AsyncMock(side_effect=router)):
        with pytest.raises(ProviderError) as exc_info:
            await client.get_messages("1")

    assert exc_info.value.kind == ErrorKind.API_ERROR
    assert exc_info.value.upstream_code == "STATUS_WAIT_CODE"


@pytest.mark.no_db
def test_normalize_status_list_and_object():
    """Should accept values as an object or a list and skip empty texts."""
    item = {"phoneFrom": "Google", "text": "G-123456 is your code", "date": "2026-10-19 10:00:00"}
    as_object = normalize_status({"status": "success", "values": {"0": item, "1": {"text": ""}}})
    as_list = normalize_status({"status": "success", "values": [item]})

    assert [m.key() for m in as_object] == [m.key() for m in as_list] == [("Google", "G-123456 is your code")]
    assert as_object[0].code == "123456"
    assert normalize_status("STATUS_OK") == []


@pytest.mark.no_db
@pytest.mark.asyncio
async def test_sms_activate_cancel_and_balance():
    client = SmsActivateClient(api_key="k", attempts=1, retry_delay=0)
    router = _router({
        "setRentStatus": {"status": "success"},
        "getBalance": "ACCESS_BALANCE:12.34",
    })

    with patch.object(client, "_request", new=AsyncMock(side_effect=router)):
        ack = await client.cancel("9001")
        balance = await client.get_balance()

    assert ack.success
    assert router.calls[0]["status"] == "2"
    assert balance == 12.34


@pytest.mark.no_db
@pytest.mark.asyncio
async def test_sms_activate_catalog_live():
    client = SmsActivateClient(api_key="k", attempts=1, retry_delay=0)
    router = _router({"getRentServicesAndCountries": {
        "services": {"wa": {"cost": 0.5, "quant": 30}, "tg": {"cost": 0.4, "quant": 0}},
        "countries": {"0": 16, "1": 43},
    }})

    with patch.object(client, "_request", new=AsyncMock(side_effect=router)):
        catalog = await client.get_catalog(country="16")

    assert catalog.source == "live"
    assert catalog.services["wa"].count == 30
    assert catalog.services["wa"].name == "WhatsApp"
    assert set(catalog.countries) == {"16", "43"}
    assert catalog.countries["43"].name == "Germany"


@pytest.mark.no_db
@pytest.mark.asyncio
async def test_sms_activate_catalog_fallback_on_timeout():
    client = SmsActivateClient(api_key="k", attempts=1, retry_delay=0)

    with patch.object(client, "_request", new=AsyncMock(side_effect=httpx.ReadTimeout("slow"))):
        catalog = await client.get_catalog()

    assert catalog.source == "fallback"
    assert not catalog.is_empty()


@pytest.mark.no_db
@pytest.mark.asyncio
async def test_sms_activate_list_active():
    client = SmsActivateClient(api_key="k", attempts=1, retry_delay=0)
    router = _router({"getRentList": {"status": "success", "values": {
        "0": {"id": 1, "phone": "79001112233", "status": "Active", "endDate": "2026-10-20 10:00:00"},
        "1": {"id": 2},
    }}})

    with patch.object(client, "_request", new=AsyncMock(side_effect=router)):
        rentals = await client.list_active()

    assert len(rentals) == 1
    assert rentals[0].status == "active"
    assert rentals[0].phone_number == "79001112233"


# =============================================================================
# GoGetSMS
# =============================================================================

def _gogetsms() -> GoGetSmsClient:
    return GoGetSmsClient(api_key="k", attempts=1, retry_delay=0, limiter=SlidingWindowLimiter(100, 60))


@pytest.mark.no_db
@pytest.mark.asyncio
async def test_gogetsms_translates_codes():
    """Should send ISO countries and numeric service ids."""
    client = _gogetsms()
    router = _router({"getRentNumber": {"status": "success", "phone": {"id": 5, "number": "447700900555"}}})

    with patch.object(client, "_request", new=AsyncMock(side_effect=router)):
        rental = await client.rent("wa", country="16")

    assert router.calls[0]["country"] == "GB"
    assert router.calls[0]["service"] == "3"
    assert rental.country == "16"


@pytest.mark.no_db
@pytest.mark.asyncio
async def test_gogetsms_bad_country_falls_back():
    """Should retry in the fallback countries after BAD_COUNTRY."""
    client = _gogetsms()
    router = _router({"getRentNumber": [
        "BAD_COUNTRY",
        {"status": "success", "phone": {"id": 6, "number": "447700900666"}},
    ]})

    with patch.object(client, "_request", new=AsyncMock(side_effect=router)):
        rental = await client.rent("wa", country="43")

    assert [c["country"] for c in router.calls] == ["DE", "GB"]
    assert rental.country == "16"


@pytest.mark.no_db
@pytest.mark.asyncio
async def test_gogetsms_bad_country_everywhere_raises_original():
    client = _gogetsms()
    router = _router({"getRentNumber": ["BAD_COUNTRY", "NO_NUMBERS", "NO_NUMBERS", "NO_NUMBERS"]})

    with patch.object(client, "_request", new=AsyncMock(side_effect=router)):
        with pytest.raises(ProviderError) as exc_info:
            await client.rent("wa", country="43")

    assert exc_info.value.upstream_code == "BAD_COUNTRY"
    assert [c["country"] for c in router.calls] == ["DE", "GB", "US", "RU"]


@pytest.mark.no_db
@pytest.mark.asyncio
async def test_gogetsms_other_errors_do_not_fall_back():
    client = _gogetsms()
    router = _router({"getRentNumber": ["NO_BALANCE"]})

    with patch.object(client, "_request", new=AsyncMock(side_effect=router)):
        with pytest.raises(ProviderError):
            await client.rent("wa", country="16")

    assert len(router.calls) == 1


@pytest.mark.no_db
@pytest.mark.asyncio
async def test_sliding_window_limiter_blocks_when_full():
    """Should delay the acquisition that exceeds the window budget."""
    limiter = SlidingWindowLimiter(max_requests=2, window=0.2)
    start = time.monotonic()
    await limiter.acquire()
    await limiter.acquire()
    assert time.monotonic() - start < 0.1

    await limiter.acquire()
    assert time.monotonic() - start >= 0.15


@pytest.mark.no_db
def test_parse_webhook_payload():
    """Should build a webhook-sourced message from a valid payload."""
    parsed = parse_webhook_payload({
        "id": 42, "phone": " 447700900123 ", "text": "Code 9876", "sender": "Telegram", "date": 1760868000,
    })
    assert parsed["booking_id"] == "42"
    assert parsed["phone_number"] == "447700900123"
    assert parsed["message"].source == "webhook"
    assert parsed["message"].code == "9876"


@pytest.mark.no_db
def test_parse_webhook_payload_rejects_incomplete():
    assert parse_webhook_payload({"id": 1, "phone": "1"}) is None
    assert parse_webhook_payload({"phone": "1", "text": "hi"}) is None
    assert parse_webhook_payload(["not", "a", "dict"]) is None


@pytest.mark.no_db
@pytest.mark.asyncio
async def test_rent_and_extend_sent_once_on_timeout():
    """Purchases are not resent when the answer never arrived."""
    client = SmsActivateClient(api_key="k", attempts=3, retry_delay=0)
    request = AsyncMock(side_effect=httpx.ReadTimeout("slow"))

    with patch.object(client, "_request", new=request):
        with pytest.raises(ProviderError) as exc_info:
            await client.rent("wa", country="16")
        assert exc_info.value.kind == ErrorKind.TIMEOUT
        assert request.await_count == 1

        with pytest.raises(ProviderError):
            await client.extend("9001", 24)
        assert request.await_count == 2

        # reads keep their retries
        with pytest.raises(ProviderError):
            await client.get_messages("9001")
        assert request.await_count == 5
