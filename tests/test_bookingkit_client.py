"""Tests for the BookingKit client: OAuth tokens, API calls, webhooks, payload transform."""

import asyncio
import hashlib
import hmac
import json
from datetime import datetime, timezone
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from booking.models import RawOrder
from booking.normalizer import OrderNormalizer
from booking.providers import ProviderResolver
from exceptions import BookingKitError, ConfigurationError
from services.bookingkit import OAuthStateStore, TokenBundle, TokenCache, to_partner_payload

from factories import FakeShopify, make_order, token_bundle

TOKEN_PATH = "/v3/oauth/token"


def sign(body: bytes, secret: str = "whsec-test") -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def test_authorization_url(bookingkit_client):
    url = bookingkit_client.authorization_url("http://test/api/bookingkit/auth/callback", "state-123")
    parsed = urlparse(url)
    params = parse_qs(parsed.query)

    assert parsed.path == "/v3/oauth/authorize"
    assert params["client_id"] == ["bk-client"]
    assert params["redirect_uri"] == ["http://test/api/bookingkit/auth/callback"]
    assert params["response_type"] == ["code"]
    assert params["scope"] == ["bookings:read bookings:write webhooks:manage"]
    assert params["state"] == ["state-123"]


@pytest.mark.asyncio
async def test_exchange_code_stores_token(bookingkit_client, partner):
    partner.respond("POST", TOKEN_PATH, json={
        "access_token": "access-new",
        "refresh_token": "refresh-new",
        "expires_in": 7200,
        "token_type": "Bearer",
        "scope": "bookings:read",
    })

    bundle = await bookingkit_client.exchange_code("code-1", "http://test/callback")

    body = json.loads(partner.calls("POST", TOKEN_PATH)[0].content)
    assert body["grant_type"] == "authorization_code"
    assert body["code"] == "code-1"
    assert body["client_secret"] == "bk-secret"
    assert bundle.access_token == "access-new"
    assert bookingkit_client.tokens.get("bk-client") == bundle
    assert await bookingkit_client.access_token() == "access-new"


@pytest.mark.asyncio
async def test_failed_exchange_raises(bookingkit_client, partner):
    partner.respond("POST", TOKEN_PATH, status=400, json={"error": "invalid_grant"})
    with pytest.raises(BookingKitError, match="invalid_grant"):
        await bookingkit_client.exchange_code("bad", "http://test/callback")
    assert bookingkit_client.tokens.get("bk-client") is None


@pytest.mark.asyncio
async def test_access_token_without_authorization(bookingkit_client):
    with pytest.raises(ConfigurationError, match="not authorized"):
        await bookingkit_client.access_token()


@pytest.mark.asyncio
async def test_token_near_expiry_is_refreshed_once_for_concurrent_callers(bookingkit_client, partner):
    bookingkit_client.tokens.set("bk-client", token_bundle(expires_in=60))

    def refresh(request):
        body = json.loads(request.content)
        assert body["grant_type"] == "refresh_token"
        assert body["refresh_token"] == "refresh-1"
        # No refresh_token in the response: the old one must be kept
        return httpx.Response(200, json={"access_token": "access-2", "expires_in": 3600})

    partner.on("POST", TOKEN_PATH, refresh)

    tokens = await asyncio.gather(*(bookingkit_client.access_token() for _ in range(5)))

    assert tokens == ["access-2"] * 5
    assert len(partner.calls("POST", TOKEN_PATH)) == 1
    assert bookingkit_client.tokens.get("bk-client").refresh_token == "refresh-1"


@pytest.mark.asyncio
async def test_token_cache_single_flight():
    cache = TokenCache()
    cache.set("client", token_bundle(expires_in=10))
    calls = []

    async def refresh(refresh_token):
        calls.append(refresh_token)
        await asyncio.sleep(0.01)
        return token_bundle(access_token=f"access-{len(calls) + 1}")

    bundles = await asyncio.gather(*(cache.valid_token("client", refresh) for _ in range(10)))

    assert calls == ["refresh-1"]
    assert {b.access_token for b in bundles} == {"access-2"}


@pytest.mark.asyncio
async def test_valid_token_is_not_refreshed():
    cache = TokenCache()
    bundle = token_bundle(expires_in=3600)
    cache.set("client", bundle)

    async def refresh(refresh_token):
        raise AssertionError("should not refresh")

    assert await cache.valid_token("client", refresh) is bundle


@pytest.mark.asyncio
async def test_expired_token_without_refresh_token():
    cache = TokenCache()
    cache.set("client", token_bundle(expires_in=-10, refresh_token=None))

    async def refresh(refresh_token):
        raise AssertionError("should not refresh")

    with pytest.raises(ConfigurationError, match="no refresh token"):
        await cache.valid_token("client", refresh)


def test_token_bundle_from_response_defaults():
    now = datetime(2025, 1, 1, tzinfo=timezone.utc)
    bundle = TokenBundle.from_response({"access_token": "a"}, previous_refresh_token="r", now=now)
    assert bundle.refresh_token == "r"
    assert bundle.token_type == "Bearer"
    assert (bundle.expires_at - now).total_seconds() == 3600


@pytest.mark.asyncio
async def test_request_sends_bearer_token(bookingkit_client, partner):
    bookingkit_client.tokens.set("bk-client", token_bundle())
    partner.respond("GET", "/v3/bookings", json={"data": [{"id": "bk-1"}]})

    bookings = await bookingkit_client.list_bookings({"status": "confirmed"})

    request = partner.calls("GET", "/v3/bookings")[0]
    assert request.headers["Authorization"] == "Bearer access-1"
    assert request.url.params["status"] == "confirmed"
    assert bookings == [{"id": "bk-1"}]


@pytest.mark.asyncio
async def test_request_failure_raises_bookingkit_error(bookingkit_client, partner):
    bookingkit_client.tokens.set("bk-client", token_bundle())
    partner.respond("POST", "/v3/bookings", status=422, json={"error": "invalid booking"})

    with pytest.raises(BookingKitError) as exc_info:
        await bookingkit_client.create_booking({"external_id": "1"})
    assert exc_info.value.status_code == 502
    assert exc_info.value.detail["service"] == "bookingkit"


@pytest.mark.asyncio
async def test_update_booking(bookingkit_client, partner):
    bookingkit_client.tokens.set("bk-client", token_bundle())
    partner.respond("PUT", "/v3/bookings/bk-9", json={"id": "bk-9", "status": "cancelled"})

    updated = await bookingkit_client.update_booking("bk-9", {"status": "cancelled"})

    assert updated == {"id": "bk-9", "status": "cancelled"}
    assert json.loads(partner.calls("PUT", "/v3/bookings/bk-9")[0].content) == {"status": "cancelled"}


def test_token_status(bookingkit_client):
    assert bookingkit_client.token_status() == {"authorized": False, "token_status": "no_token"}

    bookingkit_client.tokens.set("bk-client", token_bundle(expires_in=-1))
    status = bookingkit_client.token_status()
    assert status["authorized"] is True
    assert status["token_expired"] is True
    assert status["token_status"] == "expired"


# -- Webhooks -----------------------------------------------------------------


def test_verify_webhook_signature(bookingkit_client):
    body = b'{"event_type": "booking.created"}'
    assert bookingkit_client.verify_webhook_signature(body, sign(body))
    assert bookingkit_client.verify_webhook_signature(body, "sha256=" + sign(body))
    assert not bookingkit_client.verify_webhook_signature(body, sign(body, "other-secret"))
    assert not bookingkit_client.verify_webhook_signature(body + b" ", sign(body))
    assert not bookingkit_client.verify_webhook_signature(body, None)
    assert not bookingkit_client.verify_webhook_signature(body, "not-hex-ünïcode")


def test_webhook_signature_skipped_without_secret(bookingkit_client):
    bookingkit_client.webhook_secret = None
    assert bookingkit_client.verify_webhook_signature(b"{}", None)


@pytest.mark.asyncio
@pytest.mark.parametrize("event_type,action", [
    ("booking.created", "booking_created"),
    ("booking.updated", "booking_updated"),
    ("booking.cancelled", "booking_cancelled"),
])
async def test_process_webhook_known_events(bookingkit_client, event_type, action):
    result = await bookingkit_client.process_webhook({"event_type": event_type, "data": {"id": "bk-9"}})
    assert result == {"processed": True, "action": action, "booking_id": "bk-9"}


@pytest.mark.asyncio
async def test_process_webhook_unknown_event(bookingkit_client):
    result = await bookingkit_client.process_webhook({"event_type": "payment.refunded", "data": {}})
    assert result["processed"] is False
    assert "payment.refunded" in result["message"]


# -- Payload transform ----------------------------------------------------------


@pytest.mark.asyncio
async def test_to_partner_payload():
    store = FakeShopify()
    store.set_host(501, "Llamas")
    raw = make_order(price="10.10", extra_line_items=[{"name": "Photo pack", "price": "20.20", "vendor": "Llama Farm"}])
    booking = await OrderNormalizer(ProviderResolver(store)).normalize(RawOrder.model_validate(raw))

    payload = to_partner_payload(booking)

    assert payload["external_id"] == 1001
    assert payload["source"] == "shopify"
    assert payload["customer"]["first_name"] == "Anna"
    assert payload["product"] == {"name": "Llama Trek", "description": "Event: Llama Trek"}
    assert payload["start_date"] == "2025-11-30T16:00:00+00:00"
    assert payload["timezone"] == "Europe/Rome"
    assert payload["status"] == "confirmed"
    assert payload["total_amount"] == 30.3
    assert payload["currency"] == "EUR"
    assert payload["metadata"] == {
        "shopify_order_number": 1001,
        "cowlendar_id": "cow-1001",
        "host": "Llamas",
        "provider": "Llamas",
    }


# -- OAuth state --------------------------------------------------------------


def test_oauth_state_is_single_use():
    states = OAuthStateStore()
    state = states.issue()
    assert len(state) == 64
    assert states.consume(state) is True
    assert states.consume(state) is False
    assert states.consume("never-issued") is False
    assert states.consume(None) is False


def test_oauth_state_expires():
    states = OAuthStateStore(ttl_seconds=-1)
    state = states.issue()
    assert states.consume(state) is False
