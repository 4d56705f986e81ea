"""
Sentry error tracking.

Disabled unless SENTRY_DSN is set (SENTRY_ENABLE=false also turns it off).
Events are stripped of API keys, webhook signatures and OAuth codes before
they leave the process.
"""

import logging
import os
from typing import Any, Dict, Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

from .logging import REDACTED, SERVICE_NAME, get_correlation_id, get_logger

logger = get_logger(__name__)

SCRUBBED_HEADERS = {"x-api-key", "authorization", "x-bookingkit-signature", "x-webhook-signature"}
SCRUBBED_QUERY_PARAMS = ("api_key", "code", "state")


def init_sentry() -> bool:
    """Returns True when Sentry was initialized."""
    dsn = os.getenv("SENTRY_DSN")
    if not dsn or os.getenv("SENTRY_ENABLE", "true").lower() != "true":
        logger.info("Sentry is disabled (SENTRY_DSN not set or SENTRY_ENABLE=false)")
        return False

    environment = os.getenv("SENTRY_ENVIRONMENT") or os.getenv("ENVIRONMENT", "development")
    release = os.getenv("SENTRY_RELEASE") or "unknown"
    default_rate = "0.2" if environment == "production" else "0.0"
    traces_sample_rate = float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", default_rate))

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        release=f"{SERVICE_NAME}@{release}",
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
        ],
        traces_sample_rate=traces_sample_rate,
        # Orders carry customer names, emails and phone numbers
        send_default_pii=False,
        attach_stacktrace=True,
        before_send=before_send_hook,
    )

    logger.info(
        "Sentry initialized",
        extra={"environment": environment, "release": release, "traces_sample_rate": traces_sample_rate},
    )
    return True


def _scrub_request(request: Dict[str, Any]) -> None:
    headers = request.get("headers")
    if isinstance(headers, dict):
        for name in list(headers):
            if name.lower() in SCRUBBED_HEADERS:
                headers[name] = REDACTED

    query = request.get("query_string")
    if isinstance(query, str) and query:
        pairs = []
        for pair in query.split("&"):
            key, sep, _ = pair.partition("=")
            pairs.append(f"{key}{sep}{REDACTED}" if key in SCRUBBED_QUERY_PARAMS else pair)
        request["query_string"] = "&".join(pairs)


def before_send_hook(event: Dict[str, Any], hint: Any) -> Optional[Dict[str, Any]]:
    """Drop client disconnects, scrub credentials and tag the correlation id."""
    for exc_value in event.get("exception", {}).get("values", []):
        if "client disconnected" in str(exc_value.get("value", "")).lower():
            return None

    if isinstance(event.get("request"), dict):
        _scrub_request(event["request"])

    correlation_id = get_correlation_id()
    if correlation_id:
        event.setdefault("tags", {})["correlation_id"] = correlation_id

    return event
