"""
Channel topology grammar for ChatEngine namespaces.

A global channel is the root every tenant channel is derived from. Clients
pick it themselves, so a global channel that already looks like one of the
private channels derived below it would let a client request grants on
another tenant's private namespace. The reserved shapes are listed here one
pattern at a time:

    {global}#chat#public.*              -> chat-public
    {global}#chat#private.*             -> chat-private
    {global}#user#{uuid}#read.*         -> user-read
    {global}#user#{uuid}#write.*        -> user-write
    {global}#{uuid}#rooms[-pnpres]      -> rooms, rooms-pnpres
    {global}#{uuid}#system[-pnpres]     -> system, system-pnpres
    {global}#{uuid}#custom[-pnpres]     -> custom, custom-pnpres
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field

__all__ = [
    "RESERVED_PATTERNS",
    "ReservedPattern",
    "find_reserved_pattern",
    "validate_global_channel",
]

# Identifier segment inside a channel name (uuids, group names): word
# characters and hyphens only.
_ID = r"[\w-]*"


@dataclass(frozen=True)
class ReservedPattern:
    """A reserved channel shape a global channel may not contain."""

    name: str
    expression: str
    _compiled: re.Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_compiled", re.compile(self.expression))

    def matches(self, channel: str) -> bool:
        return self._compiled.search(channel) is not None


def _member(suffix: str) -> ReservedPattern:
    return ReservedPattern(suffix, rf"#{_ID}#{re.escape(suffix)}")


RESERVED_PATTERNS: tuple[ReservedPattern, ...] = (
    ReservedPattern("chat-public", r"#chat#public"),
    ReservedPattern("chat-private", r"#chat#private"),
    ReservedPattern("user-read", rf"#user#{_ID}#read"),
    ReservedPattern("user-write", rf"#user#{_ID}#write"),
    _member("rooms"),
    _member("rooms-pnpres"),
    _member("system"),
    _member("system-pnpres"),
    _member("custom"),
    _member("custom-pnpres"),
)


def find_reserved_pattern(channel: str) -> ReservedPattern | None:
    """Return the first reserved pattern ``channel`` collides with, if any."""
    for pattern in RESERVED_PATTERNS:
        if pattern.matches(channel):
            return pattern
    return None


def validate_global_channel(channel: str | None) -> bool:
    """
    Check that ``channel`` is usable as a global channel.

    A missing or empty channel is rejected since every grant-bearing route
    derives its channel list from it.

    Examples:
        "acme-root" -> True
        "acme#chat#public" -> False
        "acme#u1#rooms" -> False
        "" -> False
    """
    if not channel or not isinstance(channel, str):
        return False
    return find_reserved_pattern(channel) is None
