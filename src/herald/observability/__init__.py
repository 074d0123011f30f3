"""Observability module for Herald.

Provides structured logging and metrics:
- JSON structured logging with role and identity context
- Prometheus metrics for role, transitions and marker failures
"""

from herald.observability.logging import (
    LogContext,
    RoleFilter,
    bind_role_source,
    configure_logging,
    identity_var,
    role_var,
    unbind_role_source,
)
from herald.observability.metrics import (
    MetricsRegistry,
    get_metrics,
    metrics_registry,
)

__all__ = [
    # Logging
    "configure_logging",
    "LogContext",
    "identity_var",
    "role_var",
    "RoleFilter",
    "bind_role_source",
    "unbind_role_source",
    # Metrics
    "MetricsRegistry",
    "get_metrics",
    "metrics_registry",
]
