"""
Centralized FastAPI dependencies: settings, services, API key auth, rate limiting.

API keys are accepted from the X-API-Key header or the api_key query
parameter. The global key (API_KEY) sees everything; a host key
(HOST_API_KEY_<NAME>) is scoped to the bookings of that host.
"""

import hmac
import logging
from typing import Literal, Optional

from fastapi import Depends, Header, Query, Request
from pydantic import BaseModel, ConfigDict

from booking.service import BookingService
from config import Settings
from exceptions import (
    AuthenticationError,
    AuthorizationError,
    ConfigurationError,
    RateLimitError,
    ResourceNotFoundError,
)
from routes.rate_limit import check_rate_limit
from services.bookingkit import BookingKitClient, OAuthStateStore
from services.shopify import ShopifyClient

logger = logging.getLogger(__name__)


class Caller(BaseModel):
    """Who is calling: the global key, a host-scoped key, or the dev bypass."""

    model_config = ConfigDict(frozen=True)

    scope: Literal["global", "host"]
    host: Optional[str] = None
    authenticated: bool = True

    @property
    def is_global(self) -> bool:
        return self.scope == "global"

    @property
    def identity(self) -> Optional[str]:
        if not self.authenticated:
            return None
        return "global" if self.is_global else f"host:{self.host}"


DEVELOPMENT_CALLER = Caller(scope="global", authenticated=False)


# ---------------------------------------------------------------------------
# App state accessors (wired in main.py)
# ---------------------------------------------------------------------------


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_shopify_client(request: Request) -> ShopifyClient:
    return request.app.state.shopify


def get_booking_service(request: Request) -> BookingService:
    return request.app.state.booking_service


def get_bookingkit_client(request: Request) -> BookingKitClient:
    return request.app.state.bookingkit


def get_oauth_states(request: Request) -> OAuthStateStore:
    return request.app.state.oauth_states


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


def _same_key(provided: str, expected: str) -> bool:
    return hmac.compare_digest(provided.encode(), expected.encode())


def authenticate_api_key(provided: Optional[str], settings: Settings) -> Caller:
    """
    Map a presented API key to a Caller.

    Raises:
        ConfigurationError: no keys configured outside development (500)
        AuthenticationError: no key presented (401)
        AuthorizationError: unknown key (403)
    """
    if not settings.has_api_keys:
        if settings.is_development:
            logger.warning("[AUTH] No API keys configured - allowing request in development mode")
            return DEVELOPMENT_CALLER
        raise ConfigurationError("API_KEY or HOST_API_KEY_* not configured")

    if not provided:
        raise AuthenticationError("API key required. Provide X-API-Key header or api_key query parameter")

    if settings.api_key and _same_key(provided, settings.api_key):
        return Caller(scope="global")

    for host, key in settings.host_api_keys.items():
        if _same_key(provided, key):
            return Caller(scope="host", host=host)

    logger.warning("[AUTH] Rejected request with unknown API key")
    raise AuthorizationError("Invalid API key")


def enforce_rate_limit(key: str, settings: Settings) -> None:
    retry_after = check_rate_limit(key, settings.rate_limit_max, settings.rate_limit_window)
    if retry_after is not None:
        raise RateLimitError("Too many requests, please try again later", retry_after=retry_after)


async def require_caller(
    request: Request,
    x_api_key: Optional[str] = Header(None),
    api_key: Optional[str] = Query(None, include_in_schema=False),
    settings: Settings = Depends(get_settings),
) -> Caller:
    """Authenticate and rate limit. Failed attempts count against the client IP."""
    client_ip = request.client.host if request.client else "unknown"
    try:
        caller = authenticate_api_key(x_api_key or api_key, settings)
    except (AuthenticationError, AuthorizationError):
        enforce_rate_limit(f"ip:{client_ip}", settings)
        raise

    enforce_rate_limit(f"key:{caller.identity}" if caller.identity else f"ip:{client_ip}", settings)
    request.state.caller = caller
    return caller


async def require_global(caller: Caller = Depends(require_caller)) -> Caller:
    if not caller.is_global:
        raise AuthorizationError("This endpoint requires the global API key")
    return caller


def authorize_provider(caller: Caller, provider: str) -> None:
    """A host caller may only ask for its own provider name (case-insensitive)."""
    if caller.is_global:
        return
    if (provider or "").lower() != caller.host:
        raise AuthorizationError(f'Host "{caller.host}" cannot access data for "{provider}"')


def hidden_from_host(resource: str) -> ResourceNotFoundError:
    """The one answer a host caller gets for a missing, non-booking or foreign id."""
    return ResourceNotFoundError(f"{resource} not found")
