"""
Observability infrastructure for the Cowlendar booking bridge.

Provides:
- Structured logging with correlation IDs
- Sentry error tracking
- Prometheus metrics
- Health check utilities
"""

from .logging import get_logger, correlation_id_context, get_correlation_id
from .metrics import (
    metrics_registry,
    http_requests_total,
    http_request_duration_seconds,
    http_requests_in_progress,
    upstream_request_duration_seconds,
    upstream_errors_total,
    orders_normalized_total,
)

__all__ = [
    "get_logger",
    "correlation_id_context",
    "get_correlation_id",
    "metrics_registry",
    "http_requests_total",
    "http_request_duration_seconds",
    "http_requests_in_progress",
    "upstream_request_duration_seconds",
    "upstream_errors_total",
    "orders_normalized_total",
]
