"""Prometheus metrics helpers."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

HTTP_REQUESTS_TOTAL = Counter(
    "mbee_http_requests_total",
    "Total number of HTTP requests.",
    ["method", "route", "status"],
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "mbee_http_request_duration_seconds",
    "HTTP request duration in seconds.",
    ["method", "route", "status"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

ELEMENT_OPERATIONS_TOTAL = Counter(
    "mbee_element_operations_total",
    "Elements touched by element operations.",
    ["operation"],
)

CASCADE_FAILURES_TOTAL = Counter(
    "mbee_cascade_failures_total",
    "Hierarchy cascades that failed and were rolled back.",
    ["scope"],
)


def observe_http_request(
    *,
    method: str,
    route: str,
    status_code: int,
    duration_ms: float,
) -> None:
    status = str(status_code)
    HTTP_REQUESTS_TOTAL.labels(method=method, route=route, status=status).inc()
    HTTP_REQUEST_DURATION_SECONDS.labels(
        method=method, route=route, status=status
    ).observe(duration_ms / 1000.0)


def observe_element_operation(operation: str, count: int) -> None:
    if count > 0:
        ELEMENT_OPERATIONS_TOTAL.labels(operation=operation).inc(count)
