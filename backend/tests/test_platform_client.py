import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from catalog_sync.errors import RemoteQueryError, TransportError, ValidationError
from catalog_sync.services.platform_client import PlatformClient, raise_for_user_errors

_ENDPOINT = "https://test-shop.myshopify.com/admin/api/2024-10/graphql.json"


def _client(handler):
    return PlatformClient(httpx.AsyncClient(transport=httpx.MockTransport(handler)), endpoint=_ENDPOINT, access_token="tok")


@pytest.mark.asyncio
async def test_request_returns_data_and_sends_token():
    def handler(request):
        assert request.headers["X-Shopify-Access-Token"] == "tok"
        assert json.loads(request.content)["variables"] == {"id": 1}
        return httpx.Response(200, json={"data": {"node": {"id": 1}}})

    assert await _client(handler).request("query { node }", {"id": 1}) == {"node": {"id": 1}}


@pytest.mark.asyncio
async def test_throttled_request_is_retried():
    responses = [
        httpx.Response(429),
        httpx.Response(200, json={"errors": [{"message": "Throttled", "extensions": {"code": "THROTTLED"}}]}),
        httpx.Response(200, json={"data": {"ok": True}}),
    ]

    with patch("catalog_sync.services.platform_client.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        result = await _client(lambda request: responses.pop(0)).request("query { ok }")

    assert result == {"ok": True}
    assert mock_sleep.await_count == 2


@pytest.mark.asyncio
async def test_graphql_errors_raise():
    def handler(request):
        return httpx.Response(200, json={"errors": [{"message": "Field 'nope' doesn't exist"}]})

    with pytest.raises(RemoteQueryError) as exc:
        await _client(handler).request("query { nope }")
    assert exc.value.errors[0]["message"] == "Field 'nope' doesn't exist"


@pytest.mark.asyncio
async def test_http_error_raises_transport_error():
    with pytest.raises(TransportError) as exc:
        await _client(lambda request: httpx.Response(502, text="Bad Gateway")).request("query { ok }")
    assert exc.value.status_code == 502


def test_raise_for_user_errors():
    raise_for_user_errors({"userErrors": []}, "product create")
    with pytest.raises(ValidationError) as exc:
        raise_for_user_errors({"userErrors": [{"field": ["sku"], "message": "SKU taken"}]}, "product create")
    assert exc.value.user_errors[0]["message"] == "SKU taken"
