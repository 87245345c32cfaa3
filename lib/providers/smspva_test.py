"""Unit tests for the SMSPVA adapter (HTTP layer mocked)."""

import httpx
import pytest
from unittest.mock import AsyncMock, patch

from lib.providers.errors import ErrorKind, ProviderError
from lib.providers.smspva import SmspvaClient, normalize_messages, prolong_period, rent_period


def _json(payload, status: int = 200) -> httpx.Response:
    return httpx.Response(status, json=payload, request=httpx.Request("GET", "https://smspva.com/api/rent.php"))


def _router(responses: dict):
    """side_effect that answers by the `method` query param."""
    calls = []

    async def request(method, url, params=None, json=None):
        calls.append(params)
        answer = responses[params["method"]]
        if isinstance(answer, Exception):
            raise answer
        return _json(answer)

    request.calls = calls
    return request


def _client() -> SmspvaClient:
    return SmspvaClient(api_key="test-key", attempts=1, retry_delay=0)


@pytest.mark.no_db
def test_periods():
    """Should rent in whole weeks and prolong in weeks or months."""
    assert rent_period(4) == ("week", 1)
    assert rent_period(169) == ("week", 2)
    assert prolong_period(24) == ("week", 1)
    assert prolong_period(1000) == ("month", 2)


@pytest.mark.no_db
@pytest.mark.asyncio
async def test_rent_then_receive_code():
    """Should rent opt1 in DE and surface the code of the first SMS."""
    client = _client()
    router = _router({
        "create": {"status": 1, "data": {"id": 777, "pnumber": "15123456789", "ccode": "+49", "until": "2026-10-26 12:00:00"}},
        "sms": {"status": 1, "data": [{"text": "Your code is 123456", "sender": "WhatsApp", "date": "2026-10-19 10:00:00"}]},
    })

    with patch.object(client, "_request", new=AsyncMock(side_effect=router)):
        rental = await client.rent("opt1", rent_time="4", country="DE")
        messages = await client.get_messages(rental.booking_id)

    assert rental.booking_id == "777"
    assert rental.phone_number == "+4915123456789"
    assert rental.expires_at.year == 2026
    create = router.calls[0]
    assert create["country"] == "DE"
    assert create["service"] == "opt1"
    assert create["dtype"] == "week"
    assert create["apikey"] == "test-key"
    assert "provider" not in create

    assert len(messages) == 1
    assert messages[0].sender == "WhatsApp"
    assert messages[0].code == "123456"


@pytest.mark.no_db
def test_message_shapes_normalize_the_same():
    """Should read split lists, data arrays and bare lists identically."""
    item = {"message": "Code 4321", "from": "Bank", "time": 1760868000}
    split = normalize_messages({"status": 1, "data": {"SmsList": [item], "OtherSms": []}})
    array = normalize_messages({"status": 1, "data": [item]})
    bare = normalize_messages([item])

    assert [m.key() for m in split] == [m.key() for m in array] == [m.key() for m in bare] == [("Bank", "Code 4321")]
    assert split[0].received_at == bare[0].received_at


@pytest.mark.no_db
def test_normalize_messages_defaults_and_skips():
    """Should default the sender and skip empty bodies."""
    messages = normalize_messages([{"text": "hello there"}, {"text": "  "}, "junk"])
    assert len(messages) == 1
    assert messages[0].sender == "SMSPVA"
    assert normalize_messages({"status": 1, "data": "nope"}) == []


@pytest.mark.no_db
@pytest.mark.asyncio
async def test_empty_inbox_status_zero():
    client = _client()
    router = _router({"sms": {"status": 0, "msg": "No SMS"}})
    with patch.object(client, "_request", new=AsyncMock(side_effect=router)):
        assert await client.get_messages("1") == []


@pytest.mark.no_db
@pytest.mark.asyncio
async def test_rent_no_numbers_confirmed_by_availability_check():
    """Should raise NO_NUMBERS_AVAILABLE when getdata shows no stock."""
    client = _client()
    router = _router({
        "create": {"status": 0, "msg": "No numbers available"},
        "getdata": {"status": 1, "data": {"services": [{"service": "opt1", "count": 0}]}},
    })

    with patch.object(client, "_request", new=AsyncMock(side_effect=router)):
        with pytest.raises(ProviderError) as exc_info:
            await client.rent("opt1", country="DE")

    assert exc_info.value.kind == ErrorKind.NO_NUMBERS_AVAILABLE
    assert router.calls[1] == {"method": "getdata", "apikey": "test-key", "country": "DE"}


@pytest.mark.no_db
@pytest.mark.asyncio
async def test_rent_no_numbers_but_stock_is_api_error():
    """Should report a generic failure when the availability check shows stock."""
    client = _client()
    router = _router({
        "create": {"status": 0, "msg": "no numbers"},
        "getdata": {"status": 1, "data": {"services": [{"service": "opt1", "count": 12}]}},
    })

    with patch.object(client, "_request", new=AsyncMock(side_effect=router)):
        with pytest.raises(ProviderError) as exc_info:
            await client.rent("opt1", country="DE")

    assert exc_info.value.kind == ErrorKind.API_ERROR


@pytest.mark.no_db
@pytest.mark.asyncio
async def test_rent_without_key():
    client = SmspvaClient(api_key="")
    with pytest.raises(ProviderError) as exc_info:
        await client.rent("opt1")
    assert exc_info.value.kind == ErrorKind.NO_API_KEY
    assert not client.is_available()


@pytest.mark.no_db
@pytest.mark.asyncio
async def test_catalog_falls_back_when_upstream_down():
    """Should return the curated catalog (not cached) when every call fails."""
    client = _client()
    mock = AsyncMock(side_effect=httpx.ConnectError("refused"))

    with patch.object(client, "_request", new=mock):
        catalog = await client.get_catalog()
        again = await client.get_catalog()

    assert catalog.source == "fallback"
    assert len(catalog.services) == 20
    assert catalog.services["opt1"].name == "WhatsApp"
    assert again.source == "fallback"
    # 1 getcountries + 5 getdata per call, nothing served from cache
    assert mock.await_count == 12


@pytest.mark.no_db
@pytest.mark.asyncio
async def test_catalog_merges_countries_preferring_stock():
    """Should merge per-country services, keeping entries that have stock."""
    client = _client()

    async def request(method, url, params=None, json=None):
        if params["method"] == "getcountries":
            return _json({"status": 1, "data": [{"code": "DE", "name": "Germany"}]})
        count = 5 if params["country"] == "DE" else 0
        return _json({"status": 1, "data": {"services": [
            {"service": "opt20", "name": "WhatsApp", "price_day": "0.5", "count": count},
        ]}})

    mock = AsyncMock(side_effect=request)
    with patch.object(client, "_request", new=mock):
        catalog = await client.get_catalog()
        cached = await client.get_catalog()

    assert catalog.source == "live"
    assert catalog.services["opt20"].count == 5
    assert catalog.services["opt20"].price == 0.5
    assert list(catalog.countries) == ["DE"]
    assert cached is catalog
    assert mock.await_count == 6


@pytest.mark.no_db
@pytest.mark.asyncio
async def test_catalog_auth_error_raises():
    """Should not hide a bad key behind the fallback catalog."""
    client = _client()
    request = httpx.Request("GET", "https://smspva.com/api/rent.php")
    unauthorized = httpx.HTTPStatusError("401", request=request, response=httpx.Response(401, request=request))

    with patch.object(client, "_request", new=AsyncMock(side_effect=unauthorized)):
        with pytest.raises(ProviderError) as exc_info:
            await client.get_catalog()

    assert exc_info.value.kind == ErrorKind.INVALID_API_KEY


@pytest.mark.no_db
@pytest.mark.asyncio
async def test_cancel_and_extend():
    client = _client()
    router = _router({
        "delete": {"status": 1},
        "prolong": {"status": 1, "data": {"until": 1793404800}},
    })

    with patch.object(client, "_request", new=AsyncMock(side_effect=router)):
        cancelled = await client.cancel("777")
        extended = await client.extend("777", 24)

    assert cancelled.success
    assert extended.expires_at is not None
    assert router.calls[1]["dtype"] == "week"


@pytest.mark.no_db
@pytest.mark.asyncio
async def test_cancel_failure_raises():
    client = _client()
    router = _router({"delete": {"status": 0, "msg": "Rental is not active"}})

    with patch.object(client, "_request", new=AsyncMock(side_effect=router)):
        with pytest.raises(ProviderError) as exc_info:
            await client.cancel("777")

    assert "not active" in exc_info.value.message


@pytest.mark.no_db
@pytest.mark.asyncio
async def test_list_active_maps_states():
    client = _client()
    router = _router({"orders": {"status": 1, "data": [
        {"id": 1, "pnumber": "111", "ccode": "+1", "state": 1, "canprolong": 1},
        {"id": 2, "pnumber": "222", "state": 0},
        {"id": 3},
    ]}})

    with patch.object(client, "_request", new=AsyncMock(side_effect=router)):
        rentals = await client.list_active()

    assert [(r.booking_id, r.phone_number, r.status) for r in rentals] == [
        ("1", "+1111", "active"),
        ("2", "222", "inactive"),
    ]
    assert rentals[0].can_extend is True


@pytest.mark.no_db
@pytest.mark.asyncio
async def test_catalog_malformed_payloads_fall_back():
    """Should use the curated catalog when the data fields have the wrong shape."""
    client = _client()
    router = _router({
        "getcountries": {"status": 1, "data": {"US": "United States"}},
        "getdata": {"status": 1, "data": ["opt1", "opt20"]},
    })

    with patch.object(client, "_request", new=AsyncMock(side_effect=router)):
        catalog = await client.get_catalog()

    assert catalog.source == "fallback"
    assert catalog.services["opt1"].name == "WhatsApp"
    assert catalog.countries == client.translator.fallback_catalog().countries


@pytest.mark.no_db
@pytest.mark.asyncio
async def test_catalog_keeps_good_services_when_countries_malformed():
    client = _client()

    async def request(method, url, params=None, json=None):
        if params["method"] == "getcountries":
            return _json({"status": 1, "data": "US,DE"})
        if params["country"] == "DE":
            return _json({"status": 1, "data": {"services": "opt1"}})
        return _json({"status": 1, "data": {"services": [
            {"service": "opt1", "name": "WhatsApp", "price_day": "0.4", "count": 3},
            "garbage",
        ]}})

    with patch.object(client, "_request", new=AsyncMock(side_effect=request)):
        catalog = await client.get_catalog()

    assert catalog.source == "live"
    assert list(catalog.services) == ["opt1"]
    assert catalog.countries == client.translator.fallback_catalog().countries


@pytest.mark.no_db
@pytest.mark.asyncio
async def test_availability_check_tolerates_bad_data():
    client = _client()
    router = _router({"getdata": {"status": 1, "data": [{"service": "opt1", "count": 4}]}})

    with patch.object(client, "_request", new=AsyncMock(side_effect=router)):
        assert await client.check_service_availability("DE", "opt1") is False


@pytest.mark.no_db
@pytest.mark.asyncio
async def test_create_not_resent_after_timeout():
    """A rent request whose answer timed out is sent once."""
    client = SmspvaClient(api_key="test-key", attempts=3, retry_delay=0)
    router = _router({"create": httpx.ReadTimeout("slow")})

    with patch.object(client, "_request", new=AsyncMock(side_effect=router)):
        with pytest.raises(ProviderError) as exc_info:
            await client.rent("opt1", country="DE")

    assert exc_info.value.kind == ErrorKind.TIMEOUT
    assert [c["method"] for c in router.calls] == ["create"]
