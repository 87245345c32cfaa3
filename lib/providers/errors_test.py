"""Tests for provider error classification and retry."""

import httpx
import pytest
from unittest.mock import AsyncMock

from lib.providers.errors import (
    ErrorKind,
    ProviderError,
    ResolveError,
    classify_http_error,
    classify_token,
    is_already_inactive,
    kind_for_status,
)
from lib.providers.retry import retry_async


def _status_error(status: int, body: str = "") -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://api.example.test/x")
    response = httpx.Response(status, text=body, request=request)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


@pytest.mark.no_db
def test_kind_for_status():
    """Should map HTTP statuses onto error kinds."""
    assert kind_for_status(401) == ErrorKind.INVALID_API_KEY
    assert kind_for_status(403) == ErrorKind.ACCESS_FORBIDDEN
    assert kind_for_status(404) == ErrorKind.NOT_FOUND
    assert kind_for_status(429) == ErrorKind.RATE_LIMITED
    assert kind_for_status(502) == ErrorKind.SERVER_ERROR
    assert kind_for_status(400) == ErrorKind.API_ERROR


@pytest.mark.no_db
def test_rejected_statuses_are_terminal():
    """Should not retry 400/422 answers whatever their kind."""
    assert not classify_http_error(_status_error(400)).retryable
    assert not classify_http_error(_status_error(422, "invalid")).retryable
    assert not ProviderError(ErrorKind.API_ERROR, "x", status_code=400).retryable
    assert classify_http_error(_status_error(500)).retryable
    assert ProviderError(ErrorKind.API_ERROR, "x").retryable


@pytest.mark.no_db
def test_classify_token_known_and_unknown():
    """Should turn handler API tokens into errors and ignore other text."""
    err = classify_token("BAD_KEY", provider="sms_activate")
    assert err.kind == ErrorKind.INVALID_API_KEY
    assert err.upstream_code == "BAD_KEY"
    assert err.provider == "sms_activate"

    # payload after the colon is ignored
    assert classify_token("BAD_SERVICE:wa").kind == ErrorKind.PRODUCT_NOT_FOUND
    assert classify_token("no_numbers").kind == ErrorKind.NO_NUMBERS_AVAILABLE
    assert classify_token("ACCESS_BALANCE:12.5") is None
    assert classify_token("") is None


@pytest.mark.no_db
def test_classify_http_error_variants():
    """Should classify status, timeout, connection and decode errors."""
    assert classify_http_error(_status_error(429)).kind == ErrorKind.RATE_LIMITED
    assert classify_http_error(_status_error(503, "down")).kind == ErrorKind.SERVER_ERROR
    assert classify_http_error(httpx.ReadTimeout("slow")).kind == ErrorKind.TIMEOUT
    assert classify_http_error(httpx.ConnectError("refused")).kind == ErrorKind.CONNECTION_ERROR
    assert classify_http_error(ValueError("bad json")).kind == ErrorKind.UNEXPECTED_RESPONSE
    assert classify_http_error(RuntimeError("?")).kind == ErrorKind.UNKNOWN_ERROR


@pytest.mark.no_db
def test_classify_http_error_prefers_body_token():
    """Should classify by the error token in the body when there is one."""
    err = classify_http_error(_status_error(400, "NO_NUMBERS"), provider="gogetsms")
    assert err.kind == ErrorKind.NO_NUMBERS_AVAILABLE
    assert err.status_code == 400


@pytest.mark.no_db
def test_classify_http_error_passes_provider_errors_through():
    """Should return an existing ProviderError unchanged."""
    original = ProviderError(ErrorKind.NOT_FOUND, "gone", provider="anosim")
    assert classify_http_error(original) is original


@pytest.mark.no_db
def test_retryable_kinds():
    """Should treat credential and stock errors as terminal."""
    assert not ProviderError(ErrorKind.INVALID_API_KEY, "x").retryable
    assert not ProviderError(ErrorKind.NO_NUMBERS_AVAILABLE, "x").retryable
    assert ProviderError(ErrorKind.TIMEOUT, "x").retryable
    assert ProviderError(ErrorKind.SERVER_ERROR, "x").retryable


@pytest.mark.no_db
def test_resolve_error_is_not_found():
    err = ResolveError("no booking", provider="anosim")
    assert err.kind == ErrorKind.NOT_FOUND
    assert str(err) == "[anosim] NOT_FOUND: no booking"


@pytest.mark.no_db
def test_is_already_inactive():
    """Should recognise cancel failures that mean the rental is gone."""
    assert is_already_inactive(classify_token("NOT_AUTHORIZED"))
    assert is_already_inactive(classify_http_error(_status_error(400)))
    assert is_already_inactive(ProviderError(ErrorKind.API_ERROR, "Rental is not active"))
    assert not is_already_inactive(ProviderError(ErrorKind.TIMEOUT, "timed out"))


@pytest.mark.no_db
@pytest.mark.asyncio
async def test_retry_recovers_from_transient_error():
    """Should retry a transient failure and return the later success."""
    operation = AsyncMock(side_effect=[httpx.ConnectError("refused"), "ok"])

    result = await retry_async(operation, attempts=3, delay=0)

    assert result == "ok"
    assert operation.await_count == 2


@pytest.mark.no_db
@pytest.mark.asyncio
async def test_retry_stops_on_terminal_error():
    """Should raise a non-retryable error without further attempts."""
    operation = AsyncMock(side_effect=_status_error(401))

    with pytest.raises(ProviderError) as exc_info:
        await retry_async(operation, attempts=3, delay=0)

    assert exc_info.value.kind == ErrorKind.INVALID_API_KEY
    assert operation.await_count == 1


@pytest.mark.no_db
@pytest.mark.asyncio
async def test_retry_raises_last_error_when_exhausted():
    """Should raise the classified error once attempts run out."""
    operation = AsyncMock(side_effect=httpx.ReadTimeout("slow"))

    with pytest.raises(ProviderError) as exc_info:
        await retry_async(operation, attempts=2, delay=0)

    assert exc_info.value.kind == ErrorKind.TIMEOUT
    assert operation.await_count == 2
