"""
Prometheus metrics for the booking bridge.

Provides RED metrics (Rate, Errors, Duration) for inbound HTTP and upstream
calls, plus pipeline counters.
"""

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    REGISTRY,
)

# Use the default registry
metrics_registry = REGISTRY

# HTTP Metrics (RED - Rate, Errors, Duration)
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
    registry=metrics_registry,
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=metrics_registry,
)

http_requests_in_progress = Gauge(
    "http_requests_in_progress",
    "Number of HTTP requests in progress",
    ["method", "endpoint"],
    registry=metrics_registry,
)

# Upstream API Metrics (shopify, bookingkit)
upstream_request_duration_seconds = Histogram(
    "upstream_request_duration_seconds",
    "Upstream API call duration in seconds",
    ["service", "operation"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
    registry=metrics_registry,
)

upstream_errors_total = Counter(
    "upstream_errors_total",
    "Total upstream API errors",
    ["service", "operation", "error_type"],
    registry=metrics_registry,
)

# Pipeline Metrics
orders_normalized_total = Counter(
    "orders_normalized_total",
    "Orders normalized into canonical bookings",
    registry=metrics_registry,
)

host_lookups_total = Counter(
    "host_lookups_total",
    "Product host lookups by outcome",
    ["outcome"],  # found, absent, unresolved
    registry=metrics_registry,
)

# Partner Integration Metrics
bookings_synced_total = Counter(
    "bookings_synced_total",
    "Bookings pushed to BookingKit by outcome",
    ["outcome"],  # synced, failed
    registry=metrics_registry,
)

webhooks_received_total = Counter(
    "webhooks_received_total",
    "BookingKit webhooks received",
    ["event_type", "outcome"],  # outcome: processed, unhandled, rejected
    registry=metrics_registry,
)

token_refreshes_total = Counter(
    "token_refreshes_total",
    "BookingKit OAuth token refreshes by outcome",
    ["outcome"],
    registry=metrics_registry,
)
