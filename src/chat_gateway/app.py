"""
HTTP surface for the gateway.

Serves ``/`` and ``/{route}`` for GET, POST, PUT and DELETE, converts each
request into a ``GatewayRequest`` and hands it to the ``Router``. Every
response carries permissive CORS headers, and OPTIONS preflights are answered
directly.
"""
from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import httpx
from fastapi import FastAPI, Request
from starlette.datastructures import MutableHeaders
from starlette.responses import JSONResponse, PlainTextResponse, Response

from .audit import AuditLogger
from .config import GatewaySettings, get_settings
from .router import Gateway, GatewayRequest, GatewayResponse, Router
from .signing import RequestSigner
from .upstream import AccessManagerClient, HttpxFetcher, RedisKeyValueStore, SettingsVault

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from starlette.types import ASGIApp, Message, Receive, Scope, Send

    from .observability import PrometheusMetrics
    from .upstream import HttpFetcher, KeyValueStore

logger = logging.getLogger("chat_gateway.app")

__all__ = ["CORS_HEADERS", "CORSHeadersMiddleware", "create_app", "gateway_from_settings"]

METHODS = ["GET", "POST", "PUT", "DELETE"]

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Origin, X-Requested-With, Content-Type, Accept",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS, PUT, DELETE",
}


class CORSHeadersMiddleware:
    """
    Adds CORS_HEADERS to every HTTP response (pure ASGI).

    Unlike Starlette's CORSMiddleware the headers are sent whether or not the
    request carried an ``Origin`` header, and on error responses too.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        if scope.get("method") == "OPTIONS":
            response = Response(status_code=200, headers=CORS_HEADERS)
            await response(scope, receive, send)
            return

        async def send_with_cors(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                for name, value in CORS_HEADERS.items():
                    headers[name] = value
            await send(message)

        await self.app(scope, receive, send_with_cors)


def gateway_from_settings(
    settings: GatewaySettings,
    store: KeyValueStore,
    fetcher: HttpFetcher,
    metrics: PrometheusMetrics | None = None,
) -> Gateway:
    """Wire the Access Manager client, signer and vault from settings."""
    signer = RequestSigner(
        subscribe_key=settings.subscribe_key,
        publish_key=settings.publish_key,
        vault=SettingsVault(settings.vault_secrets()),
        secret_name=settings.secret_name,
        origin=settings.origin,
    )
    return Gateway(
        store=store,
        grant_client=AccessManagerClient(signer, fetcher),
        signer=signer,
        fetcher=fetcher,
        audit_logger=AuditLogger(),
        metrics=metrics,
        upstream_timeout=settings.upstream_timeout,
        grant_ttl=settings.grant_ttl,
        record_ttl=settings.record_ttl,
    )


def _parse_body(raw: bytes) -> dict[str, Any] | None:
    if not raw:
        return None
    try:
        parsed = json.loads(raw)
    except ValueError:
        logger.debug("Ignoring request body that is not valid JSON")
        return None
    return parsed if isinstance(parsed, dict) else None


def _to_response(result: GatewayResponse) -> Response:
    if result.body is None:
        return Response(status_code=result.status_code)
    if isinstance(result.body, str):
        return PlainTextResponse(result.body, status_code=result.status_code)
    return JSONResponse(result.body, status_code=result.status_code)


def create_app(
    settings: GatewaySettings | None = None,
    gateway: Gateway | None = None,
    metrics: PrometheusMetrics | None = None,
) -> FastAPI:
    """
    Build the gateway application.

    Args:
        settings: Gateway settings (default: read from the environment)
        gateway: Pre-built gateway. When omitted, Redis and httpx clients are
            created on startup from ``settings`` and closed on shutdown.
        metrics: Optional Prometheus metrics collector for the built gateway
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if gateway is not None:
            yield
            return

        store = RedisKeyValueStore.from_url(settings.redis_url)
        fetcher = HttpxFetcher(httpx.AsyncClient(timeout=settings.upstream_timeout))
        app.state.router = Router(gateway_from_settings(settings, store, fetcher, metrics))
        logger.info(f"Gateway started for origin {settings.origin}")
        try:
            yield
        finally:
            await fetcher.close()
            await store.close()

    app = FastAPI(title="ChatEngine access gateway", lifespan=lifespan)
    app.add_middleware(CORSHeadersMiddleware)
    if gateway is not None:
        app.state.router = Router(gateway)

    async def handle(request: Request, route: str) -> Response:
        router: Router = request.app.state.router
        signer = router.gateway.signer
        gateway_request = GatewayRequest(
            method=request.method,
            route=route,
            params=dict(request.query_params),
            body=_parse_body(await request.body()),
            subkey=signer.subscribe_key,
            pubkey=signer.publish_key,
            headers=dict(request.headers),
        )
        return _to_response(await router.dispatch(gateway_request))

    @app.api_route("/", methods=METHODS, include_in_schema=False)
    async def index(request: Request) -> Response:
        return await handle(request, "")

    @app.api_route("/{route}", methods=METHODS, include_in_schema=False)
    async def dispatch(request: Request, route: str) -> Response:
        return await handle(request, route)

    return app
