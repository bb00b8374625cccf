"""
Tests for upstream adapters.

Test organization:
- TestAccessManagerClient: Grant parameters and signed grant requests
- TestRedisKeyValueStore: JSON serialization and TTLs over a mocked client
- TestSettingsVault: Secret lookup
- TestHttpxFetcher: GET and status handling over httpx.MockTransport
- TestGatewayCall: Timeout and error translation
"""
from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, Mock
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from chat_gateway import UpstreamFailure, UpstreamTimeout
from chat_gateway.grants import GrantRequest
from chat_gateway.signing import RequestSigner
from chat_gateway.testing import StaticVault, build_gateway
from chat_gateway.upstream import (
    AccessManagerClient,
    HttpxFetcher,
    RedisKeyValueStore,
    SettingsVault,
)


@pytest.fixture
def signer():
    return RequestSigner(
        subscribe_key="sub-c-test",
        publish_key="pub-c-test",
        vault=StaticVault(),
        clock=lambda: 1700000000,
    )


def mock_fetcher(status_code: int = 200, body: dict | None = None):
    """HttpxFetcher over a MockTransport that records requests."""
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(status_code, json=body if body is not None else {"message": "Success"})

    fetcher = HttpxFetcher(httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    return fetcher, seen


class TestAccessManagerClient:
    def test_grant_params_for_channels(self):
        grant = GrantRequest(channels=("a", "a-pnpres"), read=True, write=True, auth_keys=("k",))
        params = AccessManagerClient.grant_params(grant)
        assert params == {
            "r": "1",
            "w": "1",
            "ttl": "10080",
            "channel": "a,a-pnpres",
            "auth": "k",
        }

    def test_grant_params_for_groups(self):
        grant = GrantRequest(channel_groups=("g1", "g2"), read=True, auth_keys=("k",), ttl=5)
        params = AccessManagerClient.grant_params(grant)
        assert params["channel-group"] == "g1,g2"
        assert params["w"] == "0"
        assert params["ttl"] == "5"
        assert "channel" not in params

    def test_grant_params_without_auth_keys(self):
        params = AccessManagerClient.grant_params(GrantRequest(channels=("a",), read=True))
        assert "auth" not in params

    @pytest.mark.asyncio
    async def test_sends_signed_grant(self, signer):
        fetcher, seen = mock_fetcher()
        client = AccessManagerClient(signer, fetcher)
        status = await client.grant(GrantRequest(channels=("acme",), read=True))
        assert status == {"message": "Success"}
        (request,) = seen
        parts = urlsplit(str(request.url))
        assert parts.path == "/v2/auth/grant/sub-key/sub-c-test"
        query = parse_qs(parts.query)
        assert query["channel"] == ["acme"]
        assert query["timestamp"] == ["1700000000"]
        assert "signature" in query

    @pytest.mark.asyncio
    async def test_error_status_returns_body(self, signer):
        fetcher, _ = mock_fetcher(status_code=403, body={"message": "Forbidden", "status": 403})
        client = AccessManagerClient(signer, fetcher)
        status = await client.grant(GrantRequest(channels=("acme",), read=True))
        assert status["message"] == "Forbidden"


class TestRedisKeyValueStore:
    @pytest.mark.asyncio
    async def test_get_decodes_json(self):
        redis_client = Mock()
        redis_client.get = AsyncMock(return_value=json.dumps({"channel": "c1"}))
        store = RedisKeyValueStore(redis_client)
        assert await store.get("meta:c1") == {"channel": "c1"}
        redis_client.get.assert_awaited_once_with("meta:c1")

    @pytest.mark.asyncio
    async def test_get_missing(self):
        redis_client = Mock()
        redis_client.get = AsyncMock(return_value=None)
        assert await RedisKeyValueStore(redis_client).get("missing") is None

    @pytest.mark.asyncio
    async def test_set_encodes_json_with_ttl(self):
        redis_client = Mock()
        redis_client.set = AsyncMock(return_value=True)
        store = RedisKeyValueStore(redis_client)
        await store.set("acme:u1:state", {"a": 1}, 525600)
        redis_client.set.assert_awaited_once_with("acme:u1:state", '{"a": 1}', ex=525600 * 60)

    @pytest.mark.asyncio
    async def test_close(self):
        redis_client = Mock()
        redis_client.aclose = AsyncMock()
        await RedisKeyValueStore(redis_client).close()
        redis_client.aclose.assert_awaited_once()


class TestSettingsVault:
    @pytest.mark.asyncio
    async def test_get(self):
        assert await SettingsVault({"secretKey": "abc"}).get("secretKey") == "abc"

    @pytest.mark.asyncio
    async def test_missing(self):
        with pytest.raises(LookupError):
            await SettingsVault({}).get("secretKey")


class TestHttpxFetcher:
    @pytest.mark.asyncio
    async def test_fetch(self):
        fetcher, seen = mock_fetcher()
        response = await fetcher.fetch("https://ps.pndsn.com/x?a=1")
        assert response.status_code == 200
        assert seen[0].method == "GET"
        await fetcher.close()

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        fetcher, _ = mock_fetcher(status_code=500)
        with pytest.raises(httpx.HTTPStatusError):
            await fetcher.fetch("https://ps.pndsn.com/x")


class TestGatewayCall:
    @pytest.mark.asyncio
    async def test_returns_result(self):
        async def ok():
            return 42

        assert await build_gateway().call("test", ok()) == 42

    @pytest.mark.asyncio
    async def test_timeout(self):
        gateway = build_gateway(upstream_timeout=0.01)
        with pytest.raises(UpstreamTimeout) as exc_info:
            await gateway.call("slow", asyncio.sleep(1))
        assert exc_info.value.operation == "slow"
        assert exc_info.value.timeout == 0.01
        assert isinstance(exc_info.value, UpstreamFailure)

    @pytest.mark.asyncio
    async def test_wraps_errors(self):
        async def broken():
            raise ConnectionError("refused")

        with pytest.raises(UpstreamFailure) as exc_info:
            await build_gateway().call("store_get", broken())
        assert exc_info.value.reason == "ConnectionError"
        assert isinstance(exc_info.value.__cause__, ConnectionError)

    @pytest.mark.asyncio
    async def test_no_timeout(self):
        async def ok():
            return "done"

        assert await build_gateway(upstream_timeout=None).call("test", ok()) == "done"
