"""Prometheus metrics for Herald.

Provides metrics collection and exposure:
- Current role of this instance (one gauge per role, 1 for the held role)
- Role transitions applied by the state machine
- Marker write/touch/remove failures
- Role label patch failures

Usage:
    from herald.observability.metrics import get_metrics

    metrics = get_metrics()
    metrics.record_transition("leader")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest

logger = logging.getLogger(__name__)

ROLE_NAMES = ("unknown", "leader", "follower")


@dataclass
class MetricsRegistry:
    """Registry for Prometheus metrics."""

    role: Any = None
    transitions_total: Any = None
    marker_write_failures_total: Any = None
    label_patch_failures_total: Any = None

    # Internal state
    _initialized: bool = field(default=False, repr=False)
    _registry: CollectorRegistry | None = field(default=None, repr=False)

    def initialize(self, enabled: bool = True) -> None:
        """Initialize Prometheus metrics."""
        if self._initialized:
            return

        if not enabled:
            logger.info("Metrics are disabled")
            self._initialized = True
            return

        self._registry = CollectorRegistry()

        self.role = Gauge(
            "herald_role",
            "Role currently held by this instance (1 for the held role)",
            ["role"],
            registry=self._registry,
        )
        for name in ROLE_NAMES:
            self.role.labels(role=name).set(1 if name == "unknown" else 0)

        self.transitions_total = Counter(
            "herald_transitions_total",
            "Role transitions applied",
            ["role"],
            registry=self._registry,
        )

        self.marker_write_failures_total = Counter(
            "herald_marker_write_failures_total",
            "Failed marker operations",
            ["operation"],
            registry=self._registry,
        )

        self.label_patch_failures_total = Counter(
            "herald_label_patch_failures_total",
            "Failed role label patches",
            registry=self._registry,
        )

        self._initialized = True
        logger.info("Prometheus metrics initialized")

    def record_transition(self, role: str) -> None:
        """Mark `role` as held and count the transition."""
        if self.role is None:
            return
        for name in ROLE_NAMES:
            self.role.labels(role=name).set(1 if name == role else 0)
        self.transitions_total.labels(role=role).inc()

    def record_marker_failure(self, operation: str) -> None:
        if self.marker_write_failures_total is not None:
            self.marker_write_failures_total.labels(operation=operation).inc()

    def record_label_failure(self) -> None:
        if self.label_patch_failures_total is not None:
            self.label_patch_failures_total.inc()

    def generate_latest(self) -> bytes:
        """Generate Prometheus metrics in exposition format."""
        if self._registry is None:
            return b"# Metrics disabled\n"
        return generate_latest(self._registry)


# Global metrics registry
metrics_registry = MetricsRegistry()


def get_metrics() -> MetricsRegistry:
    """Get the global metrics registry.

    Initializes metrics on first access.
    """
    if not metrics_registry._initialized:
        metrics_registry.initialize()
    return metrics_registry
