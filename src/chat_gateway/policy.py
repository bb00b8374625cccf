"""
Authorization policy consulted before every gated route.

The dispatcher only knows the ``AuthorizationPolicy`` interface. The default
``RoutePolicy`` classifies a route into a ``PolicyKind`` and hands the request
to the decision function registered for that kind, so per-route rules can be
added without touching the dispatcher.
"""
from __future__ import annotations

import logging
from collections.abc import Awaitable, Mapping
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Callable, Protocol, Union

if TYPE_CHECKING:
    from .router import GatewayRequest

logger = logging.getLogger("chat_gateway.policy")

__all__ = [
    "AuthorizationPolicy",
    "Decision",
    "PolicyKind",
    "RoutePolicy",
    "allow",
    "policy_kind",
]


class PolicyKind(Enum):
    """Decision families a route can fall into."""

    INVITE = "invite"
    GRANT = "grant"
    DEFAULT = "default"


def policy_kind(route: str) -> PolicyKind:
    if route == "invite":
        return PolicyKind.INVITE
    if route == "grant":
        return PolicyKind.GRANT
    return PolicyKind.DEFAULT


# Decision functions may be sync or async
Decision = Callable[["GatewayRequest"], Union[bool, Awaitable[bool]]]


class AuthorizationPolicy(Protocol):
    name: str

    async def authorize(self, request: GatewayRequest) -> bool: ...


def allow(request: GatewayRequest) -> bool:
    return True


def _can_invite(request: GatewayRequest) -> bool:
    # can this user invite?
    return allow(request)


def _can_join(request: GatewayRequest) -> bool:
    # is this user allowed in the channel they're trying to join?
    return allow(request)


class RoutePolicy:
    """
    Default policy: one decision function per ``PolicyKind``.

    Args:
        decisions: Overrides for individual kinds. Kinds without an entry
            fall back to the built-in decision, which allows.

    Example:
        ```python
        policy = RoutePolicy({PolicyKind.INVITE: lambda request: False})
        ```
    """

    name = "route"

    def __init__(self, decisions: Mapping[PolicyKind, Decision] | None = None) -> None:
        table: dict[PolicyKind, Decision] = {
            PolicyKind.INVITE: _can_invite,
            PolicyKind.GRANT: _can_join,
            PolicyKind.DEFAULT: allow,
        }
        table.update(decisions or {})
        self.decisions = MappingProxyType(table)

    async def authorize(self, request: GatewayRequest) -> bool:
        kind = policy_kind(request.route)
        result = self.decisions[kind](request)
        if isinstance(result, Awaitable):
            result = await result
        logger.debug(f"Policy {kind.value} for route {request.route!r}: {result}")
        return bool(result)
