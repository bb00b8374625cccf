"""
HMAC request signing for upstream REST calls.

Channel-group membership changes (and Access Manager grants) are sent as
plain GET requests whose query string carries a ``timestamp`` and an
HMAC-SHA256 ``signature`` over a canonical form of the request:

    {subscribe_key}\\n{publish_key}\\n{path}\\n{k1=v1&k2=v2...}

Parameter keys are sorted and values percent-encoded with ``! ~ * ' ( )``
escaped as well, so both sides build byte-identical sign strings.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable
from urllib.parse import quote as _quote
from urllib.parse import urlencode

if TYPE_CHECKING:
    from .upstream import SecretVault

logger = logging.getLogger("chat_gateway.signing")

__all__ = [
    "RequestSigner",
    "SignedRequest",
    "canonical_params",
    "compute_signature",
    "quote",
    "sign_string",
]


def quote(value: Any) -> str:
    """
    Percent-encode a parameter value.

    Everything outside ``A-Z a-z 0-9 - _ .`` is escaped, including the
    characters ``! ~ * ' ( )`` that URI-component encoders usually keep.
    """
    return _quote(str(value), safe="").replace("~", "%7E")


def _quote_param(value: Any, safe: str = "", encoding: str | None = None, errors: str | None = None) -> str:
    return quote(value)


def canonical_params(params: Mapping[str, Any]) -> str:
    """Join ``params`` as ``key=value`` pairs sorted by key."""
    return "&".join(f"{key}={quote(params[key])}" for key in sorted(params))


def sign_string(subscribe_key: str, publish_key: str, path: str, params: Mapping[str, Any]) -> str:
    return f"{subscribe_key}\n{publish_key}\n{path}\n{canonical_params(params)}"


def compute_signature(secret: str, message: str) -> str:
    """
    HMAC-SHA256 ``message`` with ``secret`` as key.

    Returns the digest as url-safe base64.
    """
    digest = hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii")


@dataclass(frozen=True)
class SignedRequest:
    """A signed upstream request, ready to be fetched once."""

    origin: str
    path: str
    params: dict[str, str]
    timestamp: int
    signature: str

    @property
    def query(self) -> str:
        return urlencode(self.params, quote_via=_quote_param)

    @property
    def url(self) -> str:
        return f"https://{self.origin}{self.path}?{self.query}"


@dataclass
class RequestSigner:
    """
    Signs upstream requests with the secret key held in a vault.

    Args:
        subscribe_key: Subscribe key of the keyset being administered
        publish_key: Publish key of the keyset being administered
        vault: Secret store the signing key is read from
        secret_name: Name of the signing key in the vault
        origin: Upstream host the signed URL points at
        clock: Source of the current time in seconds
    """

    subscribe_key: str
    publish_key: str
    vault: SecretVault
    secret_name: str = "secretKey"
    origin: str = "ps.pndsn.com"
    clock: Callable[[], float] = field(default=time.time)

    def prepare(self, path: str, options: Mapping[str, Any], secret: str) -> SignedRequest:
        """Sign ``options`` for ``path`` with an already retrieved secret."""
        timestamp = int(self.clock())
        params = {key: str(value) for key, value in options.items()}
        params["timestamp"] = str(timestamp)

        message = sign_string(self.subscribe_key, self.publish_key, path, params)
        signature = compute_signature(secret, message)
        logger.debug(f"Signed {path} with params {sorted(params)}")

        params["signature"] = signature
        return SignedRequest(
            origin=self.origin,
            path=path,
            params=params,
            timestamp=timestamp,
            signature=signature,
        )

    async def sign(self, path: str, options: Mapping[str, Any]) -> SignedRequest:
        """Fetch the signing key and sign ``options`` for ``path``."""
        secret = await self.vault.get(self.secret_name)
        if not secret:
            raise LookupError(f"Vault returned an empty secret for {self.secret_name!r}")
        return self.prepare(path, options, secret)
