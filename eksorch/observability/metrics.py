"""Prometheus metrics for graph runs."""

from __future__ import annotations

from prometheus_client import Counter, Histogram, start_http_server

node_operations_total = Counter(
    "eksorch_node_operations_total",
    "Provisioning operations per node kind, operation and outcome",
    ["kind", "operation", "outcome"],
)

node_retries_total = Counter(
    "eksorch_node_retries_total",
    "Retried provisioning calls after a transient error",
    ["kind"],
)

operation_duration_seconds = Histogram(
    "eksorch_operation_duration_seconds",
    "Wall time from submission to a stable state, per node kind",
    ["kind", "operation"],
    buckets=(0.1, 1, 5, 15, 60, 300, 900, 1800, 3600),
)


def serve_metrics(port: int) -> None:
    """Expose the default registry over HTTP on *port*."""
    start_http_server(port)
