"""
Audit logging for gateway decisions.

Emits structured JSON events for rejected routes, rejected global channels,
policy decisions and upstream failures.
"""
from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Awaitable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Union

if TYPE_CHECKING:
    from .router import GatewayRequest

logger = logging.getLogger("chat_gateway.audit")

__all__ = ["AuditLogger", "AuditEvent"]


@dataclass
class AuditEvent:
    """Structured audit event for a gateway decision."""

    event: str
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    level: str = "INFO"
    request_id: str | None = None

    # Request
    route: str | None = None
    method: str | None = None
    global_channel: str | None = None

    # Decision
    policy: str | None = None
    policy_kind: str | None = None
    decision: str | None = None  # allowed, denied, rejected
    status: int | None = None
    latency_ms: float | None = None

    # Additional
    reason: str | None = None
    pattern: str | None = None
    operation: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to structured dict for logging."""
        data: dict[str, Any] = {
            "timestamp": self.timestamp,
            "level": self.level,
            "event": self.event,
        }
        if self.request_id:
            data["request_id"] = self.request_id

        req: dict[str, Any] = {}
        if self.route is not None:
            req["route"] = self.route
        if self.method:
            req["method"] = self.method
        if self.global_channel:
            req["global"] = self.global_channel
        if req:
            data["request"] = req

        decision: dict[str, Any] = {}
        if self.policy:
            decision["policy"] = self.policy
        if self.policy_kind:
            decision["kind"] = self.policy_kind
        if self.decision:
            decision["decision"] = self.decision
        if self.status is not None:
            decision["status"] = self.status
        if self.latency_ms is not None:
            decision["latency_ms"] = round(self.latency_ms, 2)
        if decision:
            data["decision"] = decision

        if self.reason:
            data["reason"] = self.reason
        if self.pattern:
            data["pattern"] = self.pattern
        if self.operation:
            data["operation"] = self.operation

        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


# Type for custom handlers
AuditHandler = Callable[[AuditEvent], Union[Awaitable[None], None]]


@dataclass
class AuditLogger:
    """
    Audit logger for gateway decisions.

    Args:
        log_allowed: Log requests the policy allowed
        log_denied: Log requests the policy denied (401)
        log_rejected: Log unknown routes and rejected global channels (404)
        log_upstream_failures: Log failed upstream calls (500)
        level_allowed: Log level for allowed events
        level_denied: Log level for denied events
        level_rejected: Log level for rejected events
        level_upstream: Log level for upstream failures
        handler: Custom sync or async handler for events
    """

    log_allowed: bool = True
    log_denied: bool = True
    log_rejected: bool = True
    log_upstream_failures: bool = True

    level_allowed: str = "INFO"
    level_denied: str = "WARNING"
    level_rejected: str = "WARNING"
    level_upstream: str = "ERROR"

    handler: AuditHandler | None = None

    def _get_request_id(self, request: GatewayRequest | None) -> str:
        """Get or generate request ID."""
        if request is not None:
            for header in ("x-request-id", "x-correlation-id", "request-id"):
                if header in request.headers:
                    return request.headers[header]
        return str(uuid.uuid4())[:8]

    async def _emit(self, event: AuditEvent) -> None:
        """Emit event to handler or default logger."""
        if self.handler:
            try:
                result = self.handler(event)
                if result is not None:
                    await result
            except Exception:
                logger.exception(f"Audit handler failed on {event.event}")
        else:
            level = getattr(logging, event.level.upper(), logging.INFO)
            logger.log(level, event.to_json())

    def _event(self, name: str, level: str, request: GatewayRequest | None, **kwargs: Any) -> AuditEvent:
        return AuditEvent(
            event=name,
            level=level,
            request_id=self._get_request_id(request),
            route=request.route if request else None,
            method=request.method if request else None,
            global_channel=request.global_channel if request else None,
            **kwargs,
        )

    async def log_decision(
        self,
        request: GatewayRequest,
        allowed: bool,
        *,
        policy: str,
        policy_kind: str | None = None,
        latency_ms: float | None = None,
    ) -> None:
        """Log an authorization policy decision."""
        if allowed and not self.log_allowed:
            return
        if not allowed and not self.log_denied:
            return

        decision = "allowed" if allowed else "denied"
        event = self._event(
            f"gateway.policy.{decision}",
            self.level_allowed if allowed else self.level_denied,
            request,
            policy=policy,
            policy_kind=policy_kind,
            decision=decision,
            status=200 if allowed else 401,
            latency_ms=latency_ms,
        )
        await self._emit(event)

    async def log_not_found(self, request: GatewayRequest) -> None:
        """Log a request for an unknown route or method."""
        if not self.log_rejected:
            return
        event = self._event(
            "gateway.route.not_found",
            self.level_rejected,
            request,
            decision="rejected",
            status=404,
            reason="unknown_route",
        )
        await self._emit(event)

    async def log_channel_rejected(self, request: GatewayRequest, pattern: str | None) -> None:
        """Log a global channel that failed topology validation."""
        if not self.log_rejected:
            return
        event = self._event(
            "gateway.channel.rejected",
            self.level_rejected,
            request,
            decision="rejected",
            status=404,
            reason="reserved_pattern" if pattern else "missing_global_channel",
            pattern=pattern,
        )
        await self._emit(event)

    async def log_upstream_failure(self, request: GatewayRequest, operation: str, reason: str) -> None:
        """Log an upstream failure that ended the request with a 500."""
        if not self.log_upstream_failures:
            return
        event = self._event(
            "gateway.upstream.failed",
            self.level_upstream,
            request,
            status=500,
            operation=operation,
            reason=reason,
        )
        await self._emit(event)
