"""
Upstream collaborators the gateway depends on.

The dispatcher and handlers only see the protocols below. Concrete adapters
talk to Redis (chat metadata and user state), Access Manager (grants) and the
REST origin (signed channel-group changes) over httpx.
"""
from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Protocol

import httpx
import redis.asyncio as redis

if TYPE_CHECKING:
    from .grants import GrantRequest
    from .signing import RequestSigner

logger = logging.getLogger("chat_gateway.upstream")

__all__ = [
    "AccessManagerClient",
    "GrantClient",
    "HttpFetcher",
    "HttpxFetcher",
    "KeyValueStore",
    "RedisKeyValueStore",
    "SecretVault",
    "SettingsVault",
]


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any, ttl_minutes: int) -> None: ...


class GrantClient(Protocol):
    async def grant(self, request: GrantRequest) -> Mapping[str, Any]: ...


class SecretVault(Protocol):
    async def get(self, name: str) -> str: ...


class HttpFetcher(Protocol):
    async def fetch(self, url: str) -> httpx.Response: ...


class RedisKeyValueStore:
    """
    JSON key/value store on top of Redis.

    Values are serialized with ``json`` and expire after ``ttl_minutes``.
    """

    def __init__(self, client: redis.Redis) -> None:
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> RedisKeyValueStore:
        return cls(redis.Redis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> Any | None:
        raw = await self.client.get(key)
        if raw is None:
            logger.debug(f"Key {key} not found")
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl_minutes: int) -> None:
        await self.client.set(key, json.dumps(value), ex=ttl_minutes * 60)
        logger.debug(f"Stored {key} for {ttl_minutes} minutes")

    async def close(self) -> None:
        await self.client.aclose()


class SettingsVault:
    """Serves secrets configured at startup."""

    def __init__(self, secrets: Mapping[str, str]) -> None:
        self._secrets = dict(secrets)

    async def get(self, name: str) -> str:
        try:
            return self._secrets[name]
        except KeyError:
            raise LookupError(f"Secret {name!r} is not configured") from None


class HttpxFetcher:
    """Issues GET requests with a shared ``httpx.AsyncClient``."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self.client = client

    async def fetch(self, url: str) -> httpx.Response:
        response = await self.client.get(url)
        response.raise_for_status()
        return response

    async def close(self) -> None:
        await self.client.aclose()


class AccessManagerClient:
    """
    Grant client for the Access Manager REST API.

    Sends a signed ``GET /v2/auth/grant/sub-key/{subscribe_key}`` and returns
    the decoded JSON body, whose ``message`` is ``"Success"`` when the grant
    was applied.
    """

    def __init__(self, signer: RequestSigner, fetcher: HttpFetcher) -> None:
        self.signer = signer
        self.fetcher = fetcher

    @property
    def path(self) -> str:
        return f"/v2/auth/grant/sub-key/{self.signer.subscribe_key}"

    @staticmethod
    def grant_params(request: GrantRequest) -> dict[str, str]:
        params: dict[str, str] = {
            "r": "1" if request.read else "0",
            "w": "1" if request.write else "0",
            "ttl": str(request.ttl),
        }
        if request.channels:
            params["channel"] = ",".join(request.channels)
        if request.channel_groups:
            params["channel-group"] = ",".join(request.channel_groups)
        if request.auth_keys:
            params["auth"] = ",".join(request.auth_keys)
        return params

    async def grant(self, request: GrantRequest) -> Mapping[str, Any]:
        signed = await self.signer.sign(self.path, self.grant_params(request))
        try:
            response = await self.fetcher.fetch(signed.url)
        except httpx.HTTPStatusError as e:
            # Access Manager reports refusals in the body as well
            response = e.response
        return response.json()
