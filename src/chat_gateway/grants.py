"""
Grant construction for ChatEngine routes.

Each builder turns a validated request body into the exact set of channels
(or channel groups) and permission flags to send to Access Manager. ``.*``
suffixes are wildcard grants on the upstream ACL system.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ._defaults import UpstreamFailure

logger = logging.getLogger("chat_gateway.grants")

__all__ = [
    "DEFAULT_GRANT_TTL",
    "BootstrapBody",
    "ChatBody",
    "ChatGrantBody",
    "ChatRef",
    "GrantRequest",
    "GroupRef",
    "GroupBody",
    "MembershipBody",
    "UserBody",
    "UserStateBody",
    "bootstrap_grant",
    "chat_grant",
    "group_grant",
    "handle_status",
    "user_read_grant",
    "user_write_grant",
]

# One week, in minutes.
DEFAULT_GRANT_TTL = 10080

GROUP_SUFFIXES = (
    "rooms",
    "rooms-pnpres",
    "system",
    "system-pnpres",
    "custom",
    "custom-pnpres",
)


@dataclass(frozen=True)
class GrantRequest:
    """Permissions to apply to a set of channels or channel groups."""

    channels: tuple[str, ...] = ()
    channel_groups: tuple[str, ...] = ()
    read: bool = False
    write: bool = False
    auth_keys: tuple[str, ...] = ()
    ttl: int = DEFAULT_GRANT_TTL


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ChatRef(_Body):
    channel: str
    group: str | None = None


class UserBody(_Body):
    global_channel: str = Field(alias="global")
    uuid: str


class BootstrapBody(UserBody):
    auth_key: str = Field(alias="authKey")


class GroupBody(UserBody):
    # Lower-case on the wire for this route only.
    auth_key: str = Field(alias="authkey")


class ChatGrantBody(_Body):
    chat: ChatRef
    auth_key: str = Field(alias="authKey")


class GroupRef(ChatRef):
    group: str


class MembershipBody(UserBody):
    chat: GroupRef

    @property
    def group(self) -> str:
        return "#".join([self.global_channel, self.uuid, self.chat.group])


class ChatBody(_Body):
    """Chat metadata is stored as sent, so ``chat`` stays a plain dict."""

    chat: dict[str, Any]

    @field_validator("chat")
    @classmethod
    def _has_channel(cls, value: dict[str, Any]) -> dict[str, Any]:
        channel = value.get("channel")
        if not isinstance(channel, str) or not channel:
            raise ValueError("chat.channel must be a non-empty string")
        return value

    @property
    def channel(self) -> str:
        return self.chat["channel"]


class UserStateBody(_Body):
    channel: str
    uuid: str
    data: Any = None


def user_read_grant(body: UserBody, ttl: int = DEFAULT_GRANT_TTL) -> GrantRequest:
    return GrantRequest(
        channels=(f"{body.global_channel}#user:{body.uuid}#read.*",),
        read=True,
        write=False,
        ttl=ttl,
    )


def user_write_grant(body: UserBody, ttl: int = DEFAULT_GRANT_TTL) -> GrantRequest:
    return GrantRequest(
        channels=(f"{body.global_channel}#user:{body.uuid}#write.*",),
        read=False,
        write=True,
        ttl=ttl,
    )


def bootstrap_grant(body: BootstrapBody, ttl: int = DEFAULT_GRANT_TTL) -> GrantRequest:
    """
    Grants a fresh client needs before it can connect.

    The global channel and its presence channel, the public chat wildcard,
    and the client's own ``me``/``read``/``write`` user channels.
    """
    root = body.global_channel
    user = f"{root}#user#{body.uuid}"
    return GrantRequest(
        channels=(
            root,
            f"{root}-pnpres",
            f"{root}#chat#public.*",
            f"{user}#me.*",
            f"{user}#read.*",
            f"{user}#write.*",
        ),
        read=True,
        write=True,
        auth_keys=(body.auth_key,),
        ttl=ttl,
    )


def group_grant(body: GroupBody, ttl: int = DEFAULT_GRANT_TTL) -> GrantRequest:
    prefix = f"{body.global_channel}#{body.uuid}"
    return GrantRequest(
        channel_groups=tuple(f"{prefix}#{suffix}" for suffix in GROUP_SUFFIXES),
        read=True,
        auth_keys=(body.auth_key,),
        ttl=ttl,
    )


def chat_grant(body: ChatGrantBody, ttl: int = DEFAULT_GRANT_TTL) -> GrantRequest:
    channel = body.chat.channel
    return GrantRequest(
        channels=(channel, f"{channel}-pnpres"),
        read=True,
        write=True,
        auth_keys=(body.auth_key,),
        ttl=ttl,
    )


def handle_status(status: Any, operation: str = "grant") -> None:
    """
    Check an Access Manager response.

    Only a mapping whose ``message`` is exactly ``"Success"`` counts as
    success. Raises UpstreamFailure otherwise.
    """
    message = status.get("message") if isinstance(status, Mapping) else None
    if message != "Success":
        logger.error(f"Access Manager issue on {operation}: {message!r}")
        raise UpstreamFailure(operation=operation, reason=f"unexpected status message {message!r}")
