"""
Structured logging for the booking bridge.

Every record carries the request correlation id. Partner credentials are
redacted and customer contact details (orders carry them) are masked
before a record reaches a handler.

Usage:
    from observability import get_logger

    logger = get_logger(__name__)
    logger.info("Bookings normalized", extra={"provider": "llamas", "bookings": 12})
"""

import logging
import os
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger

SERVICE_NAME = "cowlendar-booking-bridge"

REDACTED = "[REDACTED]"

_correlation_id_ctx: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


def get_correlation_id() -> Optional[str]:
    return _correlation_id_ctx.get()


def generate_correlation_id() -> str:
    return f"req-{uuid.uuid4().hex[:16]}"


class correlation_id_context:
    """Bind a correlation id for the duration of a request (generated when absent)."""

    def __init__(self, correlation_id: Optional[str] = None):
        self.correlation_id = correlation_id or generate_correlation_id()
        self.token = None

    def __enter__(self) -> str:
        self.token = _correlation_id_ctx.set(self.correlation_id)
        return self.correlation_id

    def __exit__(self, exc_type, exc_val, exc_tb):
        _correlation_id_ctx.reset(self.token)


class CorrelationIDFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or "none"
        return True


def mask_email(value: Any) -> Any:
    """`anna.rossi@example.com` -> `a***@example.com`; non-emails pass through."""
    if not isinstance(value, str) or "@" not in value:
        return value
    local, _, domain = value.partition("@")
    return f"{local[:1]}***@{domain}"


def mask_phone(value: Any) -> Any:
    if not isinstance(value, str) or len(value) < 4:
        return value
    return f"***{value[-4:]}"


class SensitiveDataFilter(logging.Filter):
    """
    Scrub log records in place.

    Credential keys (API keys, OAuth tokens and codes, webhook secrets and
    signatures) are replaced outright. Customer contact keys keep enough of
    the value to correlate with a Shopify order.
    """

    SENSITIVE_KEYS = {
        "password", "token", "api_key", "x-api-key", "secret", "authorization",
        "access_token", "refresh_token", "client_secret", "code", "signature",
    }
    MASKED_KEYS = {
        "email": mask_email,
        "customer_email": mask_email,
        "phone": mask_phone,
    }

    def filter(self, record: logging.LogRecord) -> bool:
        if record.args:
            record.args = self._scrub(record.args)

        for key in list(record.__dict__.keys()):
            replacement = self._replace(key, record.__dict__[key])
            if replacement is not record.__dict__[key]:
                setattr(record, key, replacement)

        return True

    def _replace(self, key: Any, value: Any) -> Any:
        name = str(key).lower()
        if name in self.SENSITIVE_KEYS:
            return REDACTED
        if name in self.MASKED_KEYS:
            return self.MASKED_KEYS[name](value)
        return value

    def _scrub(self, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: self._scrub(self._replace(k, v)) for k, v in data.items()}
        if isinstance(data, tuple):
            return tuple(self._scrub(item) for item in data)
        if isinstance(data, list):
            return [self._scrub(item) for item in data]
        return data


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = self.formatTime(record, self.datefmt)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["correlation_id"] = getattr(record, "correlation_id", "none")
        log_record["service"] = SERVICE_NAME
        log_record["environment"] = os.getenv("ENVIRONMENT", "development")

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)


def setup_logging(level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """
    Install one stream handler on the root logger.

    LOG_LEVEL and LOG_FORMAT (json | text) are read from the environment
    when not given; the format defaults to json in production.
    """
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    production = os.getenv("ENVIRONMENT") == "production"
    log_format = log_format or os.getenv("LOG_FORMAT", "json" if production else "text")

    root_logger = logging.getLogger()
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)

    handler = logging.StreamHandler()
    if log_format == "json":
        handler.setFormatter(CustomJsonFormatter(
            "%(timestamp)s %(level)s %(logger)s %(correlation_id)s %(message)s",
            rename_fields={"timestamp": "@timestamp"},
        ))
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(correlation_id)s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
    handler.addFilter(CorrelationIDFilter())
    handler.addFilter(SensitiveDataFilter())

    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # httpx logs every Shopify page fetch at INFO
    for noisy in ("httpx", "httpcore", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
