"""
Testing utilities for chat-gateway.

In-memory stand-ins for every upstream collaborator, so routes can be
exercised without Redis, Access Manager or network access.
"""
from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx

from .grants import GrantRequest
from .policy import AuthorizationPolicy, RoutePolicy
from .router import Gateway
from .signing import RequestSigner

__all__ = [
    "InMemoryStore",
    "MockGrantClient",
    "RecordingFetcher",
    "StaticVault",
    "StoredValue",
    "build_gateway",
]

SUCCESS = {"message": "Success", "status": 200, "service": "Access Manager"}


@dataclass
class StoredValue:
    value: Any
    ttl_minutes: int


class InMemoryStore:
    """Key/value store backed by a dict. TTLs are recorded, not enforced."""

    def __init__(self, data: Mapping[str, Any] | None = None, fail_with: Exception | None = None):
        self.data: dict[str, StoredValue] = {
            key: StoredValue(value, 0) for key, value in (data or {}).items()
        }
        self.fail_with = fail_with

    async def get(self, key: str) -> Any | None:
        if self.fail_with:
            raise self.fail_with
        entry = self.data.get(key)
        return entry.value if entry else None

    async def set(self, key: str, value: Any, ttl_minutes: int) -> None:
        if self.fail_with:
            raise self.fail_with
        self.data[key] = StoredValue(value, ttl_minutes)


@dataclass
class MockGrantClient:
    """
    Grant client that records every request.

    Args:
        response: Status returned for each grant (default: a Success message)
        fail_with: Exception raised instead of returning
        delay: Seconds to sleep before answering
    """

    response: Any = field(default_factory=lambda: dict(SUCCESS))
    fail_with: Exception | None = None
    delay: float = 0.0
    grants: list[GrantRequest] = field(default_factory=list)

    async def grant(self, request: GrantRequest) -> Any:
        self.grants.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with:
            raise self.fail_with
        return self.response


class StaticVault:
    """Vault serving a fixed set of secrets."""

    def __init__(self, secrets: Mapping[str, str] | None = None, fail_with: Exception | None = None):
        self.secrets = dict(secrets or {"secretKey": "test-secret"})
        self.fail_with = fail_with
        self.lookups: list[str] = []

    async def get(self, name: str) -> str:
        self.lookups.append(name)
        if self.fail_with:
            raise self.fail_with
        return self.secrets[name]


@dataclass
class RecordingFetcher:
    """Fetcher that records URLs and answers with a canned status code."""

    status_code: int = 200
    fail_with: Exception | None = None
    delay: float = 0.0
    urls: list[str] = field(default_factory=list)

    async def fetch(self, url: str) -> httpx.Response:
        self.urls.append(url)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with:
            raise self.fail_with
        request = httpx.Request("GET", url)
        response = httpx.Response(self.status_code, json={"status": self.status_code}, request=request)
        response.raise_for_status()
        return response


def build_gateway(
    *,
    store: InMemoryStore | None = None,
    grant_client: MockGrantClient | None = None,
    vault: StaticVault | None = None,
    fetcher: RecordingFetcher | None = None,
    policy: AuthorizationPolicy | None = None,
    subscribe_key: str = "sub-c-test",
    publish_key: str = "pub-c-test",
    clock: Any = None,
    **kwargs: Any,
) -> Gateway:
    """Create a Gateway wired to in-memory collaborators."""
    signer = RequestSigner(
        subscribe_key=subscribe_key,
        publish_key=publish_key,
        vault=vault or StaticVault(),
    )
    if clock is not None:
        signer.clock = clock
    return Gateway(
        store=store or InMemoryStore(),
        grant_client=grant_client or MockGrantClient(),
        signer=signer,
        fetcher=fetcher or RecordingFetcher(),
        policy=policy or RoutePolicy(),
        **kwargs,
    )
