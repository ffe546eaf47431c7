"""Prometheus instruments for the controller."""

from prometheus_client import Counter, Gauge, Histogram

reconcile_duration = Histogram(
    "grantsync_reconcile_duration_seconds",
    "Time spent reconciling one object",
    ["kind"],
)

object_writes = Counter(
    "grantsync_object_writes_total",
    "Total number of writes issued to the object store",
    ["kind", "operation"],
)

reconcile_errors = Counter(
    "grantsync_reconcile_errors_total",
    "Total number of failed reconciliations",
    ["error_type"],
)

indexed_namespaces = Gauge(
    "grantsync_indexed_namespaces", "Namespaces tracked by the project index"
)

indexed_bindings = Gauge(
    "grantsync_indexed_bindings", "Project bindings tracked by the project index"
)
