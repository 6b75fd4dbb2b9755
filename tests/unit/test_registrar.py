"""
tests/unit/test_registrar.py
Domain promotion client against an httpx mock transport.
"""
import json

import httpx
import pytest

from sniwatch.base.config import ApiConfig
from sniwatch.clients.registrar import DomainRegistrar


def _registrar(handler):
    return DomainRegistrar("http://appliance", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_posts_domain_and_reports_success():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"success": True})

    async with _registrar(handler) as registrar:
        result = await registrar.add_domain("example.com")

    assert result.ok is True
    assert result.domain == "example.com"
    assert requests[0].method == "POST"
    assert requests[0].url.path == "/api/geosite/domain"
    assert json.loads(requests[0].content) == {"domain": "example.com"}


@pytest.mark.asyncio
async def test_server_message_is_surfaced_on_rejection():
    def handler(request):
        return httpx.Response(400, json={"message": "domain already exists"})

    async with _registrar(handler) as registrar:
        result = await registrar.add_domain("example.com")

    assert result.ok is False
    assert result.message == "domain already exists"


@pytest.mark.asyncio
async def test_non_json_error_body():
    def handler(request):
        return httpx.Response(502, text="")

    async with _registrar(handler) as registrar:
        result = await registrar.add_domain("example.com")

    assert result.ok is False
    assert result.message == "HTTP 502"


@pytest.mark.asyncio
async def test_transport_failure_does_not_raise():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with _registrar(handler) as registrar:
        result = await registrar.add_domain("example.com")

    assert result.ok is False
    assert "connection refused" in result.message


@pytest.mark.asyncio
async def test_blank_domain_is_not_sent():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200)

    async with _registrar(handler) as registrar:
        result = await registrar.add_domain("   ")

    assert result.ok is False
    assert calls == []


@pytest.mark.asyncio
async def test_from_config_uses_configured_path():
    paths = []

    def handler(request):
        paths.append(request.url.path)
        return httpx.Response(200)

    api = ApiConfig(base_url="http://appliance:7000", domain_path="/custom/domain")
    async with DomainRegistrar.from_config(api, transport=httpx.MockTransport(handler)) as registrar:
        assert (await registrar.add_domain("a.com")).ok

    assert paths == ["/custom/domain"]
