from ._defaults import (
    AuthorizationDenied,
    ChannelValidationError,
    GatewayError,
    Handler,
    JSONObject,
    MalformedRequest,
    UpstreamFailure,
    UpstreamTimeout,
)
from .app import CORS_HEADERS, CORSHeadersMiddleware, create_app, gateway_from_settings
from .audit import AuditEvent, AuditLogger
from .config import GatewaySettings, get_settings
from .grants import (
    GrantRequest,
    bootstrap_grant,
    chat_grant,
    group_grant,
    handle_status,
    user_read_grant,
    user_write_grant,
)
from .observability import PrometheusMetrics
from .policy import AuthorizationPolicy, PolicyKind, RoutePolicy
from .router import ROUTES, Gateway, GatewayRequest, GatewayResponse, RouteKey, Router
from .signing import RequestSigner, SignedRequest, canonical_params, compute_signature
from .topology import RESERVED_PATTERNS, ReservedPattern, find_reserved_pattern, validate_global_channel
from .upstream import (
    AccessManagerClient,
    GrantClient,
    HttpFetcher,
    HttpxFetcher,
    KeyValueStore,
    RedisKeyValueStore,
    SecretVault,
    SettingsVault,
)

__all__ = [
    # Core
    "Gateway",
    "GatewayRequest",
    "GatewayResponse",
    "Router",
    "RouteKey",
    "ROUTES",
    # Errors
    "GatewayError",
    "ChannelValidationError",
    "AuthorizationDenied",
    "MalformedRequest",
    "UpstreamFailure",
    "UpstreamTimeout",
    # Type aliases
    "Handler",
    "JSONObject",
    # Topology
    "RESERVED_PATTERNS",
    "ReservedPattern",
    "find_reserved_pattern",
    "validate_global_channel",
    # Grants
    "GrantRequest",
    "bootstrap_grant",
    "chat_grant",
    "group_grant",
    "handle_status",
    "user_read_grant",
    "user_write_grant",
    # Signing
    "RequestSigner",
    "SignedRequest",
    "canonical_params",
    "compute_signature",
    # Policy
    "AuthorizationPolicy",
    "PolicyKind",
    "RoutePolicy",
    # Upstream
    "AccessManagerClient",
    "GrantClient",
    "HttpFetcher",
    "HttpxFetcher",
    "KeyValueStore",
    "RedisKeyValueStore",
    "SecretVault",
    "SettingsVault",
    # HTTP surface
    "create_app",
    "gateway_from_settings",
    "CORS_HEADERS",
    "CORSHeadersMiddleware",
    # Configuration
    "GatewaySettings",
    "get_settings",
    # Audit Logging
    "AuditLogger",
    "AuditEvent",
    # Observability
    "PrometheusMetrics",
]
