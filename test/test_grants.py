"""
Tests for grant construction.

Each builder derives the exact channel (or channel group) list and flags for
one route from its request body.

Test organization:
- TestUserGrants: user_read / user_write single wildcard grants
- TestBootstrapGrant: The six channels a new client needs
- TestGroupGrant: Channel group grants and the lower-case authkey field
- TestChatGrant: Per-chat grants
- TestBodies: Body models and wire field names
- TestHandleStatus: Access Manager status interpretation
"""
from __future__ import annotations

import pytest
from pydantic import ValidationError

from chat_gateway import UpstreamFailure
from chat_gateway.grants import (
    BootstrapBody,
    ChatBody,
    ChatGrantBody,
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


class TestUserGrants:
    def test_user_read(self):
        grant = user_read_grant(UserBody.model_validate({"global": "acme", "uuid": "u1"}))
        assert grant.channels == ("acme#user:u1#read.*",)
        assert grant.read is True
        assert grant.write is False
        assert grant.ttl == 10080
        assert grant.auth_keys == ()
        assert grant.channel_groups == ()

    def test_user_write(self):
        grant = user_write_grant(UserBody.model_validate({"global": "acme", "uuid": "u1"}))
        assert grant.channels == ("acme#user:u1#write.*",)
        assert grant.read is False
        assert grant.write is True
        assert grant.ttl == 10080

    def test_custom_ttl(self):
        grant = user_read_grant(UserBody.model_validate({"global": "acme", "uuid": "u1"}), ttl=60)
        assert grant.ttl == 60


class TestBootstrapGrant:
    def test_six_channels_in_order(self):
        body = BootstrapBody.model_validate({"global": "acme", "uuid": "u1", "authKey": "k"})
        grant = bootstrap_grant(body)
        assert grant.channels == (
            "acme",
            "acme-pnpres",
            "acme#chat#public.*",
            "acme#user#u1#me.*",
            "acme#user#u1#read.*",
            "acme#user#u1#write.*",
        )
        assert grant.read is True
        assert grant.write is True
        assert grant.ttl == 10080
        assert grant.auth_keys == ("k",)

    def test_requires_auth_key(self):
        with pytest.raises(ValidationError):
            BootstrapBody.model_validate({"global": "acme", "uuid": "u1"})


class TestGroupGrant:
    def test_six_channel_groups(self):
        body = GroupBody.model_validate({"global": "acme", "uuid": "u1", "authkey": "k"})
        grant = group_grant(body)
        assert grant.channel_groups == (
            "acme#u1#rooms",
            "acme#u1#rooms-pnpres",
            "acme#u1#system",
            "acme#u1#system-pnpres",
            "acme#u1#custom",
            "acme#u1#custom-pnpres",
        )
        assert grant.channels == ()
        assert grant.read is True
        assert grant.write is False
        assert grant.auth_keys == ("k",)
        assert grant.ttl == 10080

    def test_reads_lowercase_authkey(self):
        # The group route reads "authkey", not "authKey"
        with pytest.raises(ValidationError):
            GroupBody.model_validate({"global": "acme", "uuid": "u1", "authKey": "k"})

    def test_bootstrap_ignores_lowercase_authkey(self):
        with pytest.raises(ValidationError):
            BootstrapBody.model_validate({"global": "acme", "uuid": "u1", "authkey": "k"})


class TestChatGrant:
    def test_channel_and_presence(self):
        body = ChatGrantBody.model_validate(
            {"global": "acme", "chat": {"channel": "acme#chat#public.#lobby"}, "authKey": "k"}
        )
        grant = chat_grant(body)
        assert grant.channels == ("acme#chat#public.#lobby", "acme#chat#public.#lobby-pnpres")
        assert grant.read is True
        assert grant.write is True
        assert grant.auth_keys == ("k",)
        assert grant.ttl == 10080


class TestBodies:
    def test_global_alias(self):
        body = UserBody.model_validate({"global": "acme", "uuid": "u1"})
        assert body.global_channel == "acme"

    def test_populate_by_name(self):
        body = UserBody(global_channel="acme", uuid="u1")
        assert body.global_channel == "acme"

    def test_membership_group_name(self):
        body = MembershipBody.model_validate(
            {"global": "acme", "uuid": "u1", "chat": {"channel": "c1", "group": "rooms"}}
        )
        assert body.group == "acme#u1#rooms"

    def test_membership_requires_group(self):
        with pytest.raises(ValidationError):
            MembershipBody.model_validate({"global": "acme", "uuid": "u1", "chat": {"channel": "c1"}})

    def test_chat_body_keeps_metadata(self):
        body = ChatBody.model_validate({"chat": {"channel": "c1", "private": True, "meta": {"a": 1}}})
        assert body.channel == "c1"
        assert body.chat == {"channel": "c1", "private": True, "meta": {"a": 1}}

    def test_chat_body_requires_channel(self):
        with pytest.raises(ValidationError):
            ChatBody.model_validate({"chat": {"private": True}})

    def test_user_state_data_optional(self):
        body = UserStateBody.model_validate({"channel": "acme", "uuid": "u1"})
        assert body.data is None


class TestHandleStatus:
    """Only {"message": "Success"} counts as success."""

    def test_success(self):
        handle_status({"message": "Success", "status": 200})

    @pytest.mark.parametrize(
        "status",
        [
            {},
            {"message": "Forbidden"},
            {"message": "success"},
            {"error": True, "message": None},
            None,
            "Success",
            ["Success"],
        ],
    )
    def test_failure(self, status):
        with pytest.raises(UpstreamFailure) as exc_info:
            handle_status(status)
        assert exc_info.value.operation == "grant"
        assert exc_info.value.status_code == 500
