"""Environment-driven settings.

Values come from the process environment (a local .env file is loaded by
main.py with python-dotenv). Host-scoped API keys use the pattern
HOST_API_KEY_<NAME>=<key>; the host name is lowercased.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

APP_VERSION = "1.0.0"

DEFAULT_METADATA_PREFIX = "__cow_"
DEFAULT_SHOPIFY_API_VERSION = "2023-10"
DEFAULT_BOOKINGKIT_BASE_URL = "https://api.bookingkit.com/v3"
HOST_API_KEY_PREFIX = "HOST_API_KEY_"


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    try:
        return int(env.get(name, default))
    except (TypeError, ValueError):
        return default


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    try:
        return float(env.get(name, default))
    except (TypeError, ValueError):
        return default


def host_api_keys_from_env(env: Mapping[str, str]) -> Dict[str, str]:
    """Map lowercased host name -> API key for every HOST_API_KEY_* variable."""
    keys: Dict[str, str] = {}
    for name, value in env.items():
        if name.startswith(HOST_API_KEY_PREFIX) and value:
            keys[name[len(HOST_API_KEY_PREFIX):].lower()] = value
    return keys


@dataclass
class Settings:
    environment: str = "development"

    shopify_store_url: Optional[str] = None
    shopify_access_token: Optional[str] = None
    shopify_api_version: str = DEFAULT_SHOPIFY_API_VERSION
    metadata_prefix: str = DEFAULT_METADATA_PREFIX

    api_key: Optional[str] = None
    host_api_keys: Dict[str, str] = field(default_factory=dict)

    bookingkit_client_id: Optional[str] = None
    bookingkit_client_secret: Optional[str] = None
    bookingkit_base_url: str = DEFAULT_BOOKINGKIT_BASE_URL
    bookingkit_webhook_secret: Optional[str] = None
    bookingkit_currency: str = "EUR"

    rate_limit_max: int = 100
    rate_limit_window: int = 15 * 60
    product_lookup_concurrency: int = 8
    http_timeout: float = 10.0

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        return cls(
            environment=env.get("ENVIRONMENT", "development"),
            shopify_store_url=env.get("SHOPIFY_STORE_URL") or None,
            shopify_access_token=env.get("SHOPIFY_ACCESS_TOKEN") or None,
            shopify_api_version=env.get("SHOPIFY_API_VERSION") or DEFAULT_SHOPIFY_API_VERSION,
            metadata_prefix=env.get("COWLENDAR_METADATA_PREFIX") or DEFAULT_METADATA_PREFIX,
            api_key=env.get("API_KEY") or None,
            host_api_keys=host_api_keys_from_env(env),
            bookingkit_client_id=env.get("BOOKINGKIT_CLIENT_ID") or None,
            bookingkit_client_secret=env.get("BOOKINGKIT_CLIENT_SECRET") or None,
            bookingkit_base_url=env.get("BOOKINGKIT_BASE_URL") or DEFAULT_BOOKINGKIT_BASE_URL,
            bookingkit_webhook_secret=env.get("BOOKINGKIT_WEBHOOK_SECRET") or None,
            bookingkit_currency=env.get("BOOKINGKIT_CURRENCY") or "EUR",
            rate_limit_max=_int(env, "RATE_LIMIT_MAX", 100),
            rate_limit_window=_int(env, "RATE_LIMIT_WINDOW", 15 * 60),
            product_lookup_concurrency=max(1, _int(env, "PRODUCT_LOOKUP_CONCURRENCY", 8)),
            http_timeout=_float(env, "HTTP_TIMEOUT", 10.0),
        )

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def has_api_keys(self) -> bool:
        return bool(self.api_key or self.host_api_keys)

    @property
    def bookingkit_configured(self) -> bool:
        return bool(self.bookingkit_client_id and self.bookingkit_client_secret)
