"""Observability for the reconciliation service.

Structured logging with request correlation, Prometheus metrics and health
checks.
"""

from .logging_config import configure_logging
from .metrics import (
    links_created_total,
    link_transitions_total,
    link_conflicts_total,
    candidate_score_histogram,
    auto_map_runs_total,
    auto_map_orders_total,
    auto_map_duration_seconds,
)
from .request_id import (
    request_id_var,
    operator_id_var,
    get_request_id,
    set_request_id,
    get_operator_id,
    set_operator_id,
    generate_request_id,
)
from .health import HealthStatus, ComponentHealth
from .middleware import RequestIDMiddleware

__all__ = [
    # Logging
    "configure_logging",
    # Metrics
    "links_created_total",
    "link_transitions_total",
    "link_conflicts_total",
    "candidate_score_histogram",
    "auto_map_runs_total",
    "auto_map_orders_total",
    "auto_map_duration_seconds",
    # Request context
    "request_id_var",
    "operator_id_var",
    "get_request_id",
    "set_request_id",
    "get_operator_id",
    "set_operator_id",
    "generate_request_id",
    # Health
    "HealthStatus",
    "ComponentHealth",
    # Middleware
    "RequestIDMiddleware",
]
