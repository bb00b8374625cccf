"""
Route dispatch for the ChatEngine gateway.

Routes are looked up in ``ROUTES``, a read-only mapping from
``RouteKey(route, method)`` to a handler, built once at import time. The
``Router`` applies the global channel check and the authorization policy in
front of every handler and turns gateway errors into status codes:

    unknown route / method      -> 404
    reserved global channel     -> 404
    policy denied               -> 401
    malformed body              -> 400
    upstream failure / timeout  -> 500
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, NamedTuple, TypeVar
from urllib.parse import quote

from pydantic import BaseModel, ValidationError

from ._defaults import (
    AuthorizationDenied,
    ChannelValidationError,
    GatewayError,
    Handler,
    MalformedRequest,
    UpstreamFailure,
    UpstreamTimeout,
)
from .grants import (
    DEFAULT_GRANT_TTL,
    BootstrapBody,
    ChatBody,
    ChatGrantBody,
    GrantRequest,
    GroupBody,
    MembershipBody,
    UserBody,
    UserStateBody,
    bootstrap_grant,
    chat_grant,
    group_grant,
    handle_status,
    user_read_grant,
    user_write_grant,
)
from .policy import RoutePolicy, policy_kind
from .topology import find_reserved_pattern, validate_global_channel

if TYPE_CHECKING:
    from .audit import AuditLogger
    from .observability import PrometheusMetrics
    from .policy import AuthorizationPolicy
    from .signing import RequestSigner
    from .upstream import GrantClient, HttpFetcher, KeyValueStore

T = TypeVar("T")
ModelT = TypeVar("ModelT", bound=BaseModel)
logger = logging.getLogger("chat_gateway.router")

__all__ = [
    "DECLARED_ROUTES",
    "ROUTES",
    "Gateway",
    "GatewayRequest",
    "GatewayResponse",
    "RouteKey",
    "Router",
]

# One year, in minutes.
DEFAULT_RECORD_TTL = 525600
INTERNAL_ERROR = "Internal Server Error"


@dataclass(frozen=True)
class GatewayRequest:
    """
    An inbound request, independent of the HTTP framework.

    Attributes:
        method: HTTP method, any case
        route: Route name taken from the URL, ``""`` for the index
        params: Query parameters (``global``, ``channel``, ``user``)
        body: Parsed JSON object, or None when the request had no usable body
        subkey: Subscribe key of the keyset the request is scoped to
        pubkey: Publish key of the keyset the request is scoped to
        headers: Request headers with lower-case names
    """

    method: str
    route: str = ""
    params: Mapping[str, str] = field(default_factory=dict)
    body: dict[str, Any] | None = None
    subkey: str = ""
    pubkey: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def global_channel(self) -> str | None:
        """The claimed global channel: from the body when present, else from the query."""
        if self.body is not None:
            value = self.body.get("global")
        else:
            value = self.params.get("global")
        return value if isinstance(value, str) else None


@dataclass(frozen=True)
class GatewayResponse:
    status_code: int = 200
    body: Any = None

    @classmethod
    def ok(cls, body: Any = None) -> GatewayResponse:
        return cls(200, body)

    @classmethod
    def bad_request(cls) -> GatewayResponse:
        return cls(400)

    @classmethod
    def unauthorized(cls) -> GatewayResponse:
        return cls(401)

    @classmethod
    def not_found(cls) -> GatewayResponse:
        return cls(404)

    @classmethod
    def server_error(cls) -> GatewayResponse:
        return cls(500, INTERNAL_ERROR)


class Gateway:
    """
    Collaborators and settings shared by every route handler.
    Create once at app startup.

    Args:
        store: Key/value store for chat metadata and user state
        grant_client: Access Manager client
        signer: Signs channel-group membership requests
        fetcher: Sends signed requests upstream
        policy: Authorization policy (default: RoutePolicy, which allows)
        audit_logger: Optional audit logger for gateway decisions
        metrics: Optional Prometheus metrics collector
        upstream_timeout: Seconds allowed per external call, None to wait forever
        grant_ttl: Grant lifetime in minutes
        record_ttl: Lifetime of stored chat metadata and user state in minutes
    """

    def __init__(
        self,
        *,
        store: KeyValueStore,
        grant_client: GrantClient,
        signer: RequestSigner,
        fetcher: HttpFetcher,
        policy: AuthorizationPolicy | None = None,
        audit_logger: AuditLogger | None = None,
        metrics: PrometheusMetrics | None = None,
        upstream_timeout: float | None = 5.0,
        grant_ttl: int = DEFAULT_GRANT_TTL,
        record_ttl: int = DEFAULT_RECORD_TTL,
    ):
        self.store = store
        self.grant_client = grant_client
        self.signer = signer
        self.fetcher = fetcher
        self.policy = policy or RoutePolicy()
        self.audit_logger = audit_logger
        self.metrics = metrics
        self.upstream_timeout = upstream_timeout
        self.grant_ttl = grant_ttl
        self.record_ttl = record_ttl

    async def call(self, operation: str, awaitable: Awaitable[T]) -> T:
        """
        Await an external call under the upstream timeout.

        Any failure, including the timeout, is raised as UpstreamFailure with
        the cause logged here and never passed back to the client.
        """
        start_time = time.monotonic()
        try:
            return await asyncio.wait_for(awaitable, timeout=self.upstream_timeout)
        except asyncio.TimeoutError:
            logger.error(f"Upstream {operation} timed out after {self.upstream_timeout}s")
            if self.metrics:
                self.metrics.record_upstream_error(operation, "timeout")
            raise UpstreamTimeout(
                operation=operation, reason="timeout", timeout=self.upstream_timeout or 0.0
            ) from None
        except GatewayError:
            raise
        except Exception as e:
            logger.error(f"Upstream {operation} failed: {e!r}")
            if self.metrics:
                self.metrics.record_upstream_error(operation, type(e).__name__)
            raise UpstreamFailure(operation=operation, reason=type(e).__name__) from e
        finally:
            if self.metrics:
                self.metrics.record_upstream_latency(operation, time.monotonic() - start_time)

    async def apply_grant(self, grant: GrantRequest) -> None:
        status = await self.call("grant", self.grant_client.grant(grant))
        handle_status(status)

    async def change_membership(self, request: GatewayRequest, body: MembershipBody, action: str) -> None:
        """Add or remove ``body.chat.channel`` on the caller's channel group."""
        group = quote(body.group, safe="!*'()")
        path = f"/v1/channel-registration/sub-key/{request.subkey}/channel-group/{group}"
        options = {action: body.chat.channel, "uuid": body.uuid}

        signed = await self.call("sign", self.signer.sign(path, options))
        await self.call("channel_group", self.fetcher.fetch(signed.url))
        logger.info(f"Channel group {body.group}: {action} {body.chat.channel}")


def _parse(model: type[ModelT], request: GatewayRequest) -> ModelT:
    try:
        return model.model_validate(request.body or {})
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise MalformedRequest(route=request.route, reason=f"invalid fields: {fields}") from e


async def index(gateway: Gateway, request: GatewayRequest) -> GatewayResponse:
    return GatewayResponse.ok()


async def user_read(gateway: Gateway, request: GatewayRequest) -> GatewayResponse:
    body = _parse(UserBody, request)
    await gateway.apply_grant(user_read_grant(body, ttl=gateway.grant_ttl))
    return GatewayResponse.ok()


async def user_write(gateway: Gateway, request: GatewayRequest) -> GatewayResponse:
    body = _parse(UserBody, request)
    await gateway.apply_grant(user_write_grant(body, ttl=gateway.grant_ttl))
    return GatewayResponse.ok()


async def bootstrap(gateway: Gateway, request: GatewayRequest) -> GatewayResponse:
    body = _parse(BootstrapBody, request)
    await gateway.apply_grant(bootstrap_grant(body, ttl=gateway.grant_ttl))
    return GatewayResponse.ok()


async def group(gateway: Gateway, request: GatewayRequest) -> GatewayResponse:
    body = _parse(GroupBody, request)
    await gateway.apply_grant(group_grant(body, ttl=gateway.grant_ttl))
    return GatewayResponse.ok()


async def grant(gateway: Gateway, request: GatewayRequest) -> GatewayResponse:
    body = _parse(ChatGrantBody, request)
    await gateway.apply_grant(chat_grant(body, ttl=gateway.grant_ttl))
    return GatewayResponse.ok()


async def join(gateway: Gateway, request: GatewayRequest) -> GatewayResponse:
    body = _parse(MembershipBody, request)
    await gateway.change_membership(request, body, "add")
    return GatewayResponse.ok()


async def leave(gateway: Gateway, request: GatewayRequest) -> GatewayResponse:
    body = _parse(MembershipBody, request)
    await gateway.change_membership(request, body, "remove")
    return GatewayResponse.ok()


async def create_chat(gateway: Gateway, request: GatewayRequest) -> GatewayResponse:
    body = _parse(ChatBody, request)
    await gateway.call("store_set", gateway.store.set(f"meta:{body.channel}", body.chat, gateway.record_ttl))
    return GatewayResponse.ok()


async def get_chat(gateway: Gateway, request: GatewayRequest) -> GatewayResponse:
    channel = request.params.get("channel")
    if not channel:
        raise MalformedRequest(route=request.route, reason="missing channel parameter")

    chat = await gateway.call("store_get", gateway.store.get(f"meta:{channel}"))
    if chat is not None:
        return GatewayResponse.ok({"found": True, "chat": chat})
    # client will create the chat
    return GatewayResponse.ok({"found": False})


async def invite(gateway: Gateway, request: GatewayRequest) -> GatewayResponse:
    return GatewayResponse.ok()


async def get_user_state(gateway: Gateway, request: GatewayRequest) -> GatewayResponse:
    global_channel = request.params.get("global")
    user = request.params.get("user")
    if not global_channel or not user:
        raise MalformedRequest(route=request.route, reason="missing global or user parameter")

    state = await gateway.call("store_get", gateway.store.get(f"{global_channel}:{user}:state"))
    return GatewayResponse.ok(state or {})


async def set_user_state(gateway: Gateway, request: GatewayRequest) -> GatewayResponse:
    body = _parse(UserStateBody, request)
    key = f"{body.channel}:{body.uuid}:state"
    await gateway.call("store_set", gateway.store.set(key, body.data, gateway.record_ttl))
    return GatewayResponse.ok()


class RouteKey(NamedTuple):
    route: str
    method: str


DECLARED_ROUTES: tuple[str, ...] = (
    "index",
    "bootstrap",
    "user_read",
    "user_write",
    "user_state",
    "grant",
    "chat",
    "group",
    "join",
    "leave",
    "invite",
    "reset",  # declared, no methods
)

ROUTES: Mapping[RouteKey, Handler] = MappingProxyType({
    RouteKey("index", "GET"): index,
    RouteKey("bootstrap", "POST"): bootstrap,
    RouteKey("user_read", "POST"): user_read,
    RouteKey("user_write", "POST"): user_write,
    RouteKey("user_state", "GET"): get_user_state,
    RouteKey("user_state", "POST"): set_user_state,
    RouteKey("grant", "POST"): grant,
    RouteKey("chat", "GET"): get_chat,
    RouteKey("chat", "POST"): create_chat,
    RouteKey("group", "POST"): group,
    RouteKey("join", "POST"): join,
    RouteKey("leave", "POST"): leave,
    RouteKey("invite", "POST"): invite,
})


class Router:
    """
    Dispatches gateway requests to route handlers.

    Every call to ``dispatch`` returns exactly one response; errors raised by
    handlers or collaborators are converted, never propagated.

    Args:
        gateway: Collaborators handed to each handler
        routes: Route table (default: ROUTES)
    """

    def __init__(self, gateway: Gateway, routes: Mapping[RouteKey, Handler] = ROUTES) -> None:
        self.gateway = gateway
        self.routes = routes

    async def dispatch(self, request: GatewayRequest) -> GatewayResponse:
        response = await self._dispatch(request)
        if self.gateway.metrics:
            route = request.route if not request.route or request.route in DECLARED_ROUTES else "unknown"
            self.gateway.metrics.record_request(route, request.method.upper(), response.status_code)
        return response

    async def _dispatch(self, request: GatewayRequest) -> GatewayResponse:
        route = request.route
        method = request.method.upper()

        try:
            # GET with an empty route is the index
            if not route and method == "GET":
                return await self.routes[RouteKey("index", "GET")](self.gateway, request)

            # State writes are keyed by channel and uuid, not by global channel
            if route == "user_state" and method == "POST":
                return await self.routes[RouteKey(route, method)](self.gateway, request)

            handler = self.routes.get(RouteKey(route, method))
            if handler is None:
                if self.gateway.audit_logger:
                    await self.gateway.audit_logger.log_not_found(request)
                return GatewayResponse.not_found()

            global_channel = request.global_channel
            if not validate_global_channel(global_channel):
                pattern = find_reserved_pattern(global_channel) if global_channel else None
                raise ChannelValidationError(global_channel, pattern.name if pattern else None)

            await self._authorize(request)
            return await handler(self.gateway, request)
        except GatewayError as e:
            return await self._error_response(request, e)
        except Exception:
            logger.exception(f"Unhandled error on {method} {route!r}")
            return GatewayResponse.server_error()

    async def _authorize(self, request: GatewayRequest) -> None:
        policy = self.gateway.policy
        kind = policy_kind(request.route)
        start_time = time.monotonic()
        try:
            allowed = await policy.authorize(request)
        except Exception as e:
            logger.warning(f"Policy {policy.name} failed on {request.route!r}, denying: {e!r}")
            allowed = False
        latency_ms = (time.monotonic() - start_time) * 1000

        if self.gateway.metrics:
            self.gateway.metrics.record_policy_decision(kind.value, allowed)
        if self.gateway.audit_logger:
            await self.gateway.audit_logger.log_decision(
                request, allowed, policy=policy.name, policy_kind=kind.value, latency_ms=latency_ms
            )

        if not allowed:
            raise AuthorizationDenied(route=request.route, policy=policy.name)

    async def _error_response(self, request: GatewayRequest, error: GatewayError) -> GatewayResponse:
        audit = self.gateway.audit_logger

        if isinstance(error, ChannelValidationError):
            logger.info(f"Rejected global channel {error.global_channel!r} (pattern: {error.pattern})")
            if audit:
                await audit.log_channel_rejected(request, error.pattern)
            return GatewayResponse.not_found()

        if isinstance(error, AuthorizationDenied):
            return GatewayResponse.unauthorized()

        if isinstance(error, MalformedRequest):
            logger.warning(f"Malformed {request.route!r} request: {error.reason}")
            return GatewayResponse.bad_request()

        if isinstance(error, UpstreamFailure):
            if audit:
                await audit.log_upstream_failure(request, error.operation, error.reason)
            return GatewayResponse.server_error()

        logger.error(f"Unexpected gateway error on {request.route!r}: {error!r}")
        return GatewayResponse.server_error()
