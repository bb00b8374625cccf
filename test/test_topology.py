"""
Tests for the channel topology grammar.

A global channel must not contain any of the reserved private channel shapes,
otherwise a client could request grants on another tenant's namespace.

Test organization:
- TestValidateGlobalChannel: Accept/reject behavior, one case per pattern
- TestFindReservedPattern: Diagnostics for rejected names
- TestReservedPatterns: Shape of the enumerated grammar
"""
from __future__ import annotations

import pytest

from chat_gateway.topology import (
    RESERVED_PATTERNS,
    ReservedPattern,
    find_reserved_pattern,
    validate_global_channel,
)


class TestValidateGlobalChannel:
    """validate_global_channel() is NOT match(name, reserved grammar)."""

    @pytest.mark.parametrize(
        "channel",
        [
            "acme-root",
            "acme",
            "chat-engine-demo",
            "acme#lobby",
            "acme#user:u1#read",
            "tenant_42",
            "acme#user#a.b#read",
            "acme#x.y#rooms",
        ],
    )
    def test_accepts_unreserved_names(self, channel):
        assert validate_global_channel(channel) is True

    @pytest.mark.parametrize(
        "channel",
        [
            "acme#chat#public",
            "acme#chat#public.general",
            "acme#chat#private",
            "acme#user#u1#read",
            "acme#user#u-1#write",
            "acme#u1#rooms",
            "acme#u1#rooms-pnpres",
            "acme#u1#system",
            "acme#u1#system-pnpres",
            "acme#u1#custom",
            "acme#u1#custom-pnpres",
        ],
    )
    def test_rejects_reserved_shapes(self, channel):
        assert validate_global_channel(channel) is False

    def test_rejects_reserved_shape_with_any_prefix(self):
        assert validate_global_channel("some.prefix/acme#chat#private") is False

    def test_rejects_reserved_shape_anywhere_in_name(self):
        assert validate_global_channel("acme#chat#public-suffix") is False

    @pytest.mark.parametrize(
        "channel",
        ["acme#teams#systems", "acme#chat#publication", "x.y#u1#rooms"],
    )
    def test_reserved_shape_inside_longer_name(self, channel):
        assert validate_global_channel(channel) is False

    @pytest.mark.parametrize("channel", [None, ""])
    def test_missing_channel_fails_closed(self, channel):
        assert validate_global_channel(channel) is False

    def test_rejects_non_string(self):
        assert validate_global_channel(42) is False  # type: ignore[arg-type]


class TestFindReservedPattern:
    """find_reserved_pattern() names the first colliding pattern."""

    def test_returns_none_for_valid_name(self):
        assert find_reserved_pattern("acme-root") is None

    @pytest.mark.parametrize(
        ("channel", "expected"),
        [
            ("acme#chat#public", "chat-public"),
            ("acme#chat#private", "chat-private"),
            ("acme#user#u1#read", "user-read"),
            ("acme#user#u1#write", "user-write"),
            ("acme#u1#rooms", "rooms"),
            ("acme#u1#system", "system"),
            ("acme#u1#custom", "custom"),
        ],
    )
    def test_names_colliding_pattern(self, channel, expected):
        pattern = find_reserved_pattern(channel)
        assert pattern is not None
        assert pattern.name == expected


class TestReservedPatterns:
    """The grammar is an enumerated, compiled list."""

    def test_ten_patterns(self):
        assert len(RESERVED_PATTERNS) == 10

    def test_pattern_names_are_unique(self):
        names = [p.name for p in RESERVED_PATTERNS]
        assert len(names) == len(set(names))

    def test_pattern_matches_directly(self):
        pattern = ReservedPattern("test", r"#forbidden$")
        assert pattern.matches("acme#forbidden")
        assert not pattern.matches("acme#allowed")

    def test_patterns_are_immutable(self):
        with pytest.raises(AttributeError):
            RESERVED_PATTERNS[0].name = "other"  # type: ignore[misc]
