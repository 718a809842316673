import asyncio

import httpx
import pytest

from backend.errors import SheetsUnavailableError
from backend.sheets import GoogleSheetsClient, extract_sheet_id, quote_range


def client_for(handler, api_key="key-1"):
    transport = httpx.MockTransport(handler)
    return GoogleSheetsClient(api_key, client=httpx.AsyncClient(transport=transport))


@pytest.mark.parametrize("raw, expected", [
    ("https://docs.google.com/spreadsheets/d/1AbC-d_9/edit#gid=0", "1AbC-d_9"),
    ("1AbC-d_9", "1AbC-d_9"),
    ("  1AbC  ", "1AbC"),
])
def test_extract_sheet_id(raw, expected):
    assert extract_sheet_id(raw) == expected


def test_extract_sheet_id_rejects_garbage():
    with pytest.raises(ValueError):
        extract_sheet_id("not a sheet?")


def test_quote_range():
    assert quote_range("Sheet1") == "Sheet1"
    assert quote_range("Promo Rates!A1:F40") == "'Promo Rates'!A1:F40"
    assert quote_range("'Promo Rates'") == "'Promo Rates'"


def test_fetch_values():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json={"range": "Sheet1!A1:C2", "values": [["Tiers", "36M"], ["Tier 1", 4.99]]})

    values = asyncio.run(client_for(handler).fetch_values("abc123", "Sheet1"))

    assert values == [["Tiers", "36M"], ["Tier 1", "4.99"]]
    assert seen["path"] == "/v4/spreadsheets/abc123/values/Sheet1"
    assert seen["params"]["key"] == "key-1"
    assert seen["params"]["valueRenderOption"] == "FORMATTED_VALUE"


def test_fetch_values_without_key_omits_param():
    seen = {}

    def handler(request):
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json={})

    values = asyncio.run(client_for(handler, api_key="").fetch_values("abc123"))

    assert values == []
    assert "key" not in seen["params"]


@pytest.mark.parametrize("status, fragment", [
    (403, "shared"),
    (404, "status 404"),
    (500, "status 500"),
])
def test_http_errors(status, fragment):
    client = client_for(lambda request: httpx.Response(status, json={"error": {}}))

    with pytest.raises(SheetsUnavailableError) as exc:
        asyncio.run(client.fetch_values("abc123"))
    assert fragment in str(exc.value)


def test_malformed_sheet_id_is_unavailable():
    def handler(request):
        raise AssertionError("no request expected")

    with pytest.raises(SheetsUnavailableError, match="Invalid Google Sheet ID"):
        asyncio.run(client_for(handler).fetch_values("not a valid id"))


def test_transport_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(SheetsUnavailableError):
        asyncio.run(client_for(handler).fetch_values("abc123"))


def test_aclose_leaves_injected_client_open():
    injected = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
    client = GoogleSheetsClient("key", client=injected)

    asyncio.run(client.aclose())

    assert not injected.is_closed
    asyncio.run(injected.aclose())
