"""BookingKit partner API client.

OAuth2 authorization-code flow, token refresh, booking sync and webhook
verification for the BookingKit v3 API.

Required env vars:
  BOOKINGKIT_CLIENT_ID: OAuth2 client ID
  BOOKINGKIT_CLIENT_SECRET: OAuth2 client secret

Optional:
  BOOKINGKIT_BASE_URL: defaults to https://api.bookingkit.com/v3
  BOOKINGKIT_WEBHOOK_SECRET: HMAC key for inbound webhooks
  BOOKINGKIT_CURRENCY: currency of synced bookings (EUR)

Tokens live only in memory, in a TokenCache created at application start-up.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import logging
import secrets
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
from pydantic import BaseModel

from booking.models import CanonicalBooking
from config import DEFAULT_BOOKINGKIT_BASE_URL, Settings
from exceptions import BookingKitError, ConfigurationError
from observability.metrics import (
    token_refreshes_total,
    upstream_errors_total,
    upstream_request_duration_seconds,
    webhooks_received_total,
)

logger = logging.getLogger(__name__)

DEFAULT_SCOPE = "bookings:read bookings:write webhooks:manage"
TOKEN_REFRESH_MARGIN = 300  # seconds before expiry
DEFAULT_EXPIRES_IN = 3600
OAUTH_STATE_TTL = 600


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Token bookkeeping
# ---------------------------------------------------------------------------


class TokenBundle(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: datetime
    token_type: str = "Bearer"
    scope: Optional[str] = None

    @classmethod
    def from_response(
        cls,
        payload: Dict[str, Any],
        previous_refresh_token: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> "TokenBundle":
        now = now or _utcnow()
        try:
            expires_in = float(payload.get("expires_in") or DEFAULT_EXPIRES_IN)
        except (TypeError, ValueError):
            expires_in = DEFAULT_EXPIRES_IN
        return cls(
            access_token=payload["access_token"],
            # Some providers don't rotate refresh tokens
            refresh_token=payload.get("refresh_token") or previous_refresh_token,
            expires_at=now + timedelta(seconds=expires_in),
            token_type=payload.get("token_type") or "Bearer",
            scope=payload.get("scope"),
        )

    def expires_within(self, seconds: float, now: Optional[datetime] = None) -> bool:
        return (now or _utcnow()) >= self.expires_at - timedelta(seconds=seconds)

    @property
    def expired(self) -> bool:
        return self.expires_within(0)


class TokenCache:
    """In-memory token bundles keyed by OAuth client id.

    Refreshes are single-flight per client id: concurrent callers that find
    the token near expiry wait on one lock and reuse the refreshed bundle.
    """

    def __init__(self, refresh_margin: float = TOKEN_REFRESH_MARGIN):
        self.refresh_margin = refresh_margin
        self._tokens: Dict[str, TokenBundle] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def get(self, client_id: str) -> Optional[TokenBundle]:
        return self._tokens.get(client_id)

    def set(self, client_id: str, bundle: TokenBundle) -> None:
        self._tokens[client_id] = bundle

    def clear(self, client_id: str) -> None:
        self._tokens.pop(client_id, None)

    def _lock_for(self, client_id: str) -> asyncio.Lock:
        lock = self._locks.get(client_id)
        if lock is None:
            lock = self._locks[client_id] = asyncio.Lock()
        return lock

    async def valid_token(
        self,
        client_id: str,
        refresh: Callable[[str], Awaitable[TokenBundle]],
    ) -> TokenBundle:
        bundle = self._tokens.get(client_id)
        if bundle is None:
            raise ConfigurationError("BookingKit is not authorized. Complete the OAuth flow first.")
        if not bundle.expires_within(self.refresh_margin):
            return bundle

        async with self._lock_for(client_id):
            # Another caller may have refreshed while we waited
            bundle = self._tokens.get(client_id)
            if bundle is None:
                raise ConfigurationError("BookingKit is not authorized. Complete the OAuth flow first.")
            if not bundle.expires_within(self.refresh_margin):
                return bundle
            if not bundle.refresh_token:
                raise ConfigurationError("BookingKit access token expired and no refresh token is available")

            logger.info("[BOOKINGKIT] Access token near expiry, refreshing")
            try:
                refreshed = await refresh(bundle.refresh_token)
            except Exception:
                token_refreshes_total.labels(outcome="failed").inc()
                raise
            token_refreshes_total.labels(outcome="refreshed").inc()
            self._tokens[client_id] = refreshed
            return refreshed


class OAuthStateStore:
    """Single-use OAuth `state` values with a TTL (CSRF protection)."""

    def __init__(self, ttl_seconds: float = OAUTH_STATE_TTL):
        self.ttl_seconds = ttl_seconds
        self._states: Dict[str, float] = {}

    def issue(self) -> str:
        self._purge()
        state = secrets.token_hex(32)
        self._states[state] = time.monotonic() + self.ttl_seconds
        return state

    def consume(self, state: Optional[str]) -> bool:
        self._purge()
        if not state:
            return False
        return self._states.pop(state, None) is not None

    def _purge(self) -> None:
        now = time.monotonic()
        for state, expires_at in list(self._states.items()):
            if expires_at <= now:
                del self._states[state]


# ---------------------------------------------------------------------------
# Booking transform
# ---------------------------------------------------------------------------


def _total_amount(booking: CanonicalBooking) -> float:
    total = Decimal("0")
    for item in booking.line_items:
        try:
            total += Decimal(item.price or "0")
        except InvalidOperation:
            logger.warning(f"[BOOKINGKIT] Ignoring unparseable price {item.price!r} on order {booking.order_id}")
    return float(total)


def to_partner_payload(booking: CanonicalBooking, currency: str = "EUR") -> Dict[str, Any]:
    """CanonicalBooking -> BookingKit booking object."""
    return {
        "external_id": booking.order_id,
        "source": "shopify",
        "customer": {
            "first_name": booking.customer.first_name,
            "last_name": booking.customer.last_name,
            "email": booking.customer.email,
            "phone": booking.customer.phone,
        },
        "product": {
            "name": booking.event_name,
            "description": f"Event: {booking.event_name}",
        },
        "start_date": booking.start_datetime.isoformat() if booking.start_datetime else None,
        "end_date": booking.end_datetime.isoformat() if booking.end_datetime else None,
        "timezone": booking.timezone,
        "status": booking.status,
        "total_amount": _total_amount(booking),
        "currency": currency,
        "metadata": {
            "shopify_order_number": booking.order_number,
            "cowlendar_id": booking.cowlendar_id,
            "host": booking.provider,
            "provider": booking.provider,
        },
    }


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class BookingKitClient:
    def __init__(
        self,
        client_id: Optional[str],
        client_secret: Optional[str],
        token_cache: TokenCache,
        base_url: str = DEFAULT_BOOKINGKIT_BASE_URL,
        webhook_secret: Optional[str] = None,
        currency: str = "EUR",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.tokens = token_cache
        self.base_url = base_url.rstrip("/")
        self.webhook_secret = webhook_secret
        self.currency = currency
        self.timeout = timeout
        self._transport = transport

        if not self.configured:
            logger.warning("[BOOKINGKIT] BOOKINGKIT_CLIENT_ID or BOOKINGKIT_CLIENT_SECRET not set")

    @classmethod
    def from_settings(cls, settings: Settings, token_cache: TokenCache) -> "BookingKitClient":
        return cls(
            settings.bookingkit_client_id,
            settings.bookingkit_client_secret,
            token_cache,
            base_url=settings.bookingkit_base_url,
            webhook_secret=settings.bookingkit_webhook_secret,
            currency=settings.bookingkit_currency,
            timeout=settings.http_timeout,
        )

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            timeout=self.timeout,
            transport=self._transport,
        )

    # -- OAuth ---------------------------------------------------------------

    def authorization_url(self, redirect_uri: str, state: str, scope: str = DEFAULT_SCOPE) -> str:
        if not self.client_id:
            raise ConfigurationError("BOOKINGKIT_CLIENT_ID not configured")
        url = httpx.URL(
            f"{self.base_url}/oauth/authorize",
            params={
                "client_id": self.client_id,
                "redirect_uri": redirect_uri,
                "response_type": "code",
                "scope": scope,
                "state": state,
            },
        )
        return str(url)

    async def _token_request(self, body: Dict[str, Any], operation: str) -> Dict[str, Any]:
        if not self.configured:
            raise ConfigurationError("BookingKit client credentials not configured")

        payload = {"client_id": self.client_id, "client_secret": self.client_secret, **body}
        start = time.time()
        try:
            async with self._client() as client:
                response = await client.post("/oauth/token", json=payload)
        except httpx.RequestError as e:
            upstream_errors_total.labels(service="bookingkit", operation=operation, error_type="network").inc()
            raise BookingKitError(f"BookingKit unreachable: {type(e).__name__}") from e
        finally:
            upstream_request_duration_seconds.labels(service="bookingkit", operation=operation).observe(
                time.time() - start
            )

        data = _json_or_none(response)
        if response.status_code >= 400 or not isinstance(data, dict) or not data.get("access_token"):
            upstream_errors_total.labels(
                service="bookingkit", operation=operation, error_type=str(response.status_code)
            ).inc()
            error = data.get("error") if isinstance(data, dict) else None
            raise BookingKitError(
                f"BookingKit {operation} failed: {error or response.status_code}",
                detail={"status_code": response.status_code},
            )
        return data

    async def exchange_code(self, code: str, redirect_uri: str) -> TokenBundle:
        data = await self._token_request(
            {"grant_type": "authorization_code", "code": code, "redirect_uri": redirect_uri},
            "exchange_code",
        )
        bundle = TokenBundle.from_response(data)
        self.tokens.set(self.client_id, bundle)
        logger.info("[BOOKINGKIT] Authorization code exchanged for access token")
        return bundle

    async def refresh_token(self, refresh_token: str) -> TokenBundle:
        data = await self._token_request(
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
            "refresh_token",
        )
        return TokenBundle.from_response(data, previous_refresh_token=refresh_token)

    async def access_token(self) -> str:
        if not self.client_id:
            raise ConfigurationError("BOOKINGKIT_CLIENT_ID not configured")
        bundle = await self.tokens.valid_token(self.client_id, self.refresh_token)
        return bundle.access_token

    def token_status(self) -> Dict[str, Any]:
        bundle = self.tokens.get(self.client_id) if self.client_id else None
        if bundle is None:
            return {"authorized": False, "token_status": "no_token"}
        return {
            "authorized": True,
            "token_expired": bundle.expired,
            "token_status": "expired" if bundle.expired else "valid",
            "expires_at": bundle.expires_at.isoformat(),
        }

    # -- API -----------------------------------------------------------------

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        token = await self.access_token()
        operation = f"{method.lower()} {path.split('?')[0]}"
        start = time.time()
        try:
            async with self._client() as client:
                response = await client.request(
                    method,
                    path,
                    json=json,
                    params=params,
                    headers={"Authorization": f"Bearer {token}"},
                )
        except httpx.RequestError as e:
            upstream_errors_total.labels(service="bookingkit", operation=operation, error_type="network").inc()
            raise BookingKitError(f"BookingKit unreachable: {type(e).__name__}") from e
        finally:
            upstream_request_duration_seconds.labels(service="bookingkit", operation=operation).observe(
                time.time() - start
            )

        data = _json_or_none(response)
        if response.status_code >= 400:
            upstream_errors_total.labels(
                service="bookingkit", operation=operation, error_type=str(response.status_code)
            ).inc()
            error = data.get("error") if isinstance(data, dict) else None
            raise BookingKitError(
                f"BookingKit request to {path} failed: {error or response.status_code}",
                detail={"status_code": response.status_code},
            )
        return data

    async def list_bookings(self, filters: Optional[Dict[str, Any]] = None) -> Any:
        data = await self.request("GET", "/bookings", params=filters or None)
        if isinstance(data, dict) and "data" in data:
            return data["data"]
        return data

    async def create_booking(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self.request("POST", "/bookings", json=payload) or {}

    async def update_booking(self, booking_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self.request("PUT", f"/bookings/{booking_id}", json=payload) or {}

    async def get_profile(self) -> Any:
        return await self.request("GET", "/profile")

    def to_partner_payload(self, booking: CanonicalBooking) -> Dict[str, Any]:
        return to_partner_payload(booking, currency=self.currency)

    # -- Webhooks ------------------------------------------------------------

    def verify_webhook_signature(self, payload: bytes, signature: Optional[str]) -> bool:
        """HMAC-SHA256 over the raw body, hex encoded, optional `sha256=` prefix."""
        if not self.webhook_secret:
            logger.warning("[BOOKINGKIT] No webhook secret configured - skipping signature verification")
            return True
        if not signature:
            return False

        provided = signature.strip()
        if provided.startswith("sha256="):
            provided = provided[len("sha256="):]
        expected = hmac.new(self.webhook_secret.encode(), payload, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected.encode(), provided.encode("utf-8", errors="replace"))

    async def process_webhook(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        event_type = payload.get("event_type")
        data = payload.get("data") or {}
        booking_id = data.get("id") if isinstance(data, dict) else None

        actions = {
            "booking.created": "booking_created",
            "booking.updated": "booking_updated",
            "booking.cancelled": "booking_cancelled",
        }
        action = actions.get(event_type)
        if action is None:
            logger.info(f"[BOOKINGKIT] Unhandled webhook event type: {event_type}")
            webhooks_received_total.labels(event_type=str(event_type), outcome="unhandled").inc()
            return {"processed": False, "message": f"Unhandled event type: {event_type}"}

        logger.info(f"[BOOKINGKIT] Handling {event_type}", extra={"booking_id": booking_id})
        webhooks_received_total.labels(event_type=event_type, outcome="processed").inc()
        return {"processed": True, "action": action, "booking_id": booking_id}


def _json_or_none(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None
