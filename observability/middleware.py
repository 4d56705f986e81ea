"""
Request middleware: correlation ids, request logging and HTTP metrics.

Metric labels use the sanitized path so customer emails, event dates and
order ids never become label values.
"""

import re
import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from .logging import correlation_id_context, get_logger
from .metrics import (
    http_request_duration_seconds,
    http_requests_in_progress,
    http_requests_total,
)

logger = get_logger(__name__)

_EMAIL_SEGMENT = re.compile(r"/[^/@]+@[^/]+")
_DATE_SEGMENT = re.compile(r"/\d{4}-\d{2}-\d{2}(?=/|$)")
_NUMERIC_SEGMENT = re.compile(r"/\d+(?=/|$)")

SLOW_REQUEST_SECONDS = 5.0
QUIET_PREFIXES = ("/api/health", "/metrics")


class ObservabilityMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, enable_request_logging: bool = True):
        super().__init__(app)
        self.enable_request_logging = enable_request_logging

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get("X-Request-ID") or request.headers.get("X-Correlation-ID")

        with correlation_id_context(correlation_id) as req_id:
            request.state.correlation_id = req_id

            method = request.method
            path = self._sanitize_path(request.url.path)
            log_requests = self.enable_request_logging and not self._is_health_check(request)

            http_requests_in_progress.labels(method=method, endpoint=path).inc()
            start_time = time.time()
            try:
                if log_requests:
                    logger.info(
                        f"{method} {path}",
                        extra={
                            "method": method,
                            "path": path,
                            "client_host": request.client.host if request.client else None,
                        },
                    )

                response = await call_next(request)
            except Exception as exc:
                duration = self._observe(method, path, 500, start_time)
                logger.error(
                    "Request failed",
                    extra={
                        "method": method,
                        "path": path,
                        "duration_seconds": round(duration, 3),
                        "error_type": type(exc).__name__,
                    },
                    exc_info=True,
                )
                raise
            finally:
                http_requests_in_progress.labels(method=method, endpoint=path).dec()

            duration = self._observe(method, path, response.status_code, start_time)
            response.headers["X-Request-ID"] = req_id

            if log_requests:
                # Normalizing 250 orders fans out to many product lookups
                level = "warning" if duration > SLOW_REQUEST_SECONDS else "info"
                getattr(logger, level)(
                    f"{method} {path} -> {response.status_code}",
                    extra={
                        "method": method,
                        "path": path,
                        "status_code": response.status_code,
                        "duration_seconds": round(duration, 3),
                        "slow": duration > SLOW_REQUEST_SECONDS,
                    },
                )
            return response

    @staticmethod
    def _observe(method: str, path: str, status: int, start_time: float) -> float:
        duration = time.time() - start_time
        http_requests_total.labels(method=method, endpoint=path, status=status).inc()
        http_request_duration_seconds.labels(method=method, endpoint=path).observe(duration)
        return duration

    def _sanitize_path(self, path: str) -> str:
        """Collapse emails, ISO dates and numeric ids into placeholders."""
        path = _EMAIL_SEGMENT.sub("/{email}", path)
        path = _DATE_SEGMENT.sub("/{date}", path)
        return _NUMERIC_SEGMENT.sub("/{id}", path)

    def _is_health_check(self, request: Request) -> bool:
        return request.url.path.startswith(QUIET_PREFIXES)
