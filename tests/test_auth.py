import json

import httpx
import pytest

from relay.auth import AuthBridge
from relay.models import AuthResult

from tests.utils import make_settings


def bridge_for(handler):
    settings = make_settings(auth_required=True)
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return AuthBridge(settings, client=client)


@pytest.mark.asyncio
async def test_valid_token():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"result": True})

    bridge = bridge_for(handler)
    result = await bridge.authenticate("account-1", "secret")

    assert result == AuthResult(True, 200)
    assert seen["url"] == "http://auth.test/v1/auth-token"
    assert seen["body"] == {"uuid": "account-1", "token": "secret"}


@pytest.mark.asyncio
async def test_rejected_token():
    bridge = bridge_for(lambda request: httpx.Response(200, json={"result": False}))
    assert await bridge.authenticate("account-1", "wrong") == AuthResult(False, 200)


@pytest.mark.asyncio
async def test_upstream_error_status_is_passed_through():
    bridge = bridge_for(lambda request: httpx.Response(401, json={"result": True}))
    assert await bridge.authenticate("account-1", "secret") == AuthResult(False, 401)


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [
    httpx.Response(200, text="<html>ok</html>"),
    httpx.Response(200, json={"valid": True}),
    httpx.Response(200, json={"result": "yes"}),
    httpx.Response(200, json=[True]),
])
async def test_malformed_response_is_a_failure(response):
    bridge = bridge_for(lambda request: response)
    result = await bridge.authenticate("account-1", "secret")
    assert result.result is False
    assert result.status == 200


@pytest.mark.asyncio
async def test_transport_failure_resolves_to_500():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    bridge = bridge_for(handler)
    assert await bridge.authenticate("account-1", "secret") == AuthResult(False, 500)


@pytest.mark.asyncio
async def test_timeout_resolves_to_500():
    def handler(request):
        raise httpx.ReadTimeout("too slow", request=request)

    bridge = bridge_for(handler)
    assert await bridge.authenticate("account-1", "secret") == AuthResult(False, 500)


@pytest.mark.asyncio
async def test_injected_client_is_not_closed():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
    bridge = AuthBridge(make_settings(), client=client)

    await bridge.aclose()

    assert not client.is_closed
    await client.aclose()
