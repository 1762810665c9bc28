"""Prometheus metrics for the reconciliation engine.

Defines and exposes operational metrics for monitoring and alerting.
Mapping coverage itself is not a metric: it is derived per request by the
reporting module.
"""

from prometheus_client import Counter, Histogram

# Link lifecycle metrics
links_created_total = Counter(
    "order_recon_links_created_total",
    "Total order links created",
    ["link_type", "link_status", "classification"]
)

link_transitions_total = Counter(
    "order_recon_link_transitions_total",
    "Order link status transitions",
    ["from_status", "to_status"]
)

link_conflicts_total = Counter(
    "order_recon_link_conflicts_total",
    "Create/correct attempts rejected by the single-active-link guard"
)

# Matching metrics
candidate_score_histogram = Histogram(
    "order_recon_top_candidate_score",
    "Score of the best storefront candidate per provider order",
    buckets=[0.0, 0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.85, 0.9, 0.95, 1.0]
)

# Auto-mapping metrics
auto_map_runs_total = Counter(
    "order_recon_auto_map_runs_total",
    "Auto-mapping batch runs",
    ["stopped_early"]  # true|false
)

auto_map_orders_total = Counter(
    "order_recon_auto_map_orders_total",
    "Provider orders processed by auto-mapping",
    ["outcome"]  # linked|pending_review|left_unlinked|error
)

auto_map_duration_seconds = Histogram(
    "order_recon_auto_map_duration_seconds",
    "Wall time of an auto-mapping batch in seconds",
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 300.0]
)
