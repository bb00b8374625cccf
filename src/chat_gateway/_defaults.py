from __future__ import annotations

from collections.abc import Awaitable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

if TYPE_CHECKING:
    from .router import Gateway, GatewayRequest, GatewayResponse

__all__ = [
    "AuthorizationDenied",
    "ChannelValidationError",
    "GatewayError",
    "Handler",
    "JSONObject",
    "MalformedRequest",
    "UpstreamFailure",
    "UpstreamTimeout",
]


JSONObject = dict[str, Any]
Handler = Callable[["Gateway", "GatewayRequest"], Awaitable["GatewayResponse"]]


class GatewayError(Exception):
    """Base class for errors that terminate a gateway request."""

    status_code: int = 500


@dataclass(frozen=True)
class ChannelValidationError(GatewayError):
    global_channel: str | None
    pattern: str | None = None

    status_code = 404


@dataclass(frozen=True)
class AuthorizationDenied(GatewayError):
    route: str
    policy: str

    status_code = 401


@dataclass(frozen=True)
class MalformedRequest(GatewayError):
    route: str
    reason: str

    status_code = 400


@dataclass(frozen=True)
class UpstreamFailure(GatewayError):
    operation: str
    reason: str

    status_code = 500


@dataclass(frozen=True)
class UpstreamTimeout(UpstreamFailure):
    timeout: float = 0.0
