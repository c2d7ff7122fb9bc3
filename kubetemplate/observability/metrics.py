"""Prometheus metrics for kubetemplate."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, start_http_server

prefix = "kubetemplate"


# =============================================================================
# Watch metrics
# =============================================================================

WATCH_EVENTS_TOTAL = Counter(
    f"{prefix}_watch_events_total",
    "Watch events received, by kind and event type",
    ["kind", "type"],
)

WATCH_FAILURES_TOTAL = Counter(
    f"{prefix}_watch_failures_total",
    "Watch subscriptions that ended abnormally",
    ["kind"],
)

MONITORED_NAMESPACES = Gauge(
    f"{prefix}_monitored_namespaces",
    "Namespaces with an active controller",
)

# =============================================================================
# Change detection metrics
# =============================================================================

CHANGES_DETECTED_TOTAL = Counter(
    f"{prefix}_changes_detected_total",
    "Material changes detected, by kind",
    ["kind"],
)

CHANGE_SIGNALS_TOTAL = Counter(
    f"{prefix}_change_signals_total",
    "Change signal emissions, by outcome (queued or coalesced)",
    ["outcome"],
)

# =============================================================================
# Template metrics
# =============================================================================

TEMPLATE_EXECUTIONS_TOTAL = Counter(
    f"{prefix}_template_executions_total",
    "Template executions, by mode (learn or render) and result",
    ["mode", "result"],
)

TEMPLATE_DURATION_SECONDS = Histogram(
    f"{prefix}_template_duration_seconds",
    "Template execution duration in seconds",
    ["mode"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)


def start_metrics_server(port: int) -> bool:
    """Expose the default registry over HTTP. Returns False when disabled."""
    if port <= 0:
        return False
    start_http_server(port)
    return True
