"""
Prometheus metrics for the gateway.

Metrics are registered lazily on first use so that several collectors with
their own registries can live side by side in tests.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from prometheus_client import REGISTRY, Counter, Histogram

logger = logging.getLogger("chat_gateway.observability")

__all__ = ["PrometheusMetrics"]


@dataclass
class PrometheusMetrics:
    """
    Prometheus metrics collector for gateway requests.

    Args:
        prefix: Metric name prefix (default: "chat_gateway")
        latency_buckets: Histogram buckets for upstream latency
        registry: Custom prometheus registry (default: global)
    """

    prefix: str = "chat_gateway"
    latency_buckets: list[float] = field(
        default_factory=lambda: [0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0]
    )
    registry: Any = None

    _initialized: bool = field(default=False, init=False, repr=False)
    _requests: Any = field(default=None, init=False, repr=False)
    _policy_decisions: Any = field(default=None, init=False, repr=False)
    _upstream_latency: Any = field(default=None, init=False, repr=False)
    _upstream_errors: Any = field(default=None, init=False, repr=False)

    def _initialize(self) -> None:
        """Lazy initialization of metrics."""
        if self._initialized:
            return

        registry = self.registry or REGISTRY
        p = self.prefix

        self._requests = Counter(
            f"{p}_requests_total",
            "Gateway requests by outcome",
            ["route", "method", "status"],
            registry=registry,
        )
        self._policy_decisions = Counter(
            f"{p}_policy_decisions_total",
            "Authorization policy decisions",
            ["kind", "decision"],
            registry=registry,
        )
        self._upstream_errors = Counter(
            f"{p}_upstream_errors_total",
            "Failed upstream calls",
            ["operation", "error_type"],
            registry=registry,
        )
        self._upstream_latency = Histogram(
            f"{p}_upstream_latency_seconds",
            "Upstream call latency",
            ["operation"],
            buckets=self.latency_buckets,
            registry=registry,
        )

        self._initialized = True

    def record_request(self, route: str, method: str, status: int) -> None:
        self._initialize()
        self._requests.labels(route=route or "index", method=method, status=str(status)).inc()

    def record_policy_decision(self, kind: str, allowed: bool) -> None:
        self._initialize()
        self._policy_decisions.labels(kind=kind, decision="allowed" if allowed else "denied").inc()

    def record_upstream_latency(self, operation: str, latency_seconds: float) -> None:
        self._initialize()
        self._upstream_latency.labels(operation=operation).observe(latency_seconds)

    def record_upstream_error(self, operation: str, error_type: str) -> None:
        self._initialize()
        self._upstream_errors.labels(operation=operation, error_type=error_type).inc()
