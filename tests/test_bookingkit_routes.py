"""Tests for /api/bookingkit endpoints: OAuth flow, webhooks, sync, status."""

import hashlib
import hmac
import json
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from factories import GLOBAL_KEY, WEBHOOK_SECRET, make_order, make_plain_order, token_bundle

TOKEN_RESPONSE = {
    "access_token": "access-new",
    "refresh_token": "refresh-new",
    "expires_in": 3600,
    "token_type": "Bearer",
    "scope": "bookings:read bookings:write webhooks:manage",
}


def sign(body: bytes) -> str:
    return hmac.new(WEBHOOK_SECRET.encode(), body, hashlib.sha256).hexdigest()


@pytest.fixture
def authorized(bookingkit_client):
    bookingkit_client.tokens.set("bk-client", token_bundle())
    return bookingkit_client


# -- OAuth -------------------------------------------------------------------


@pytest.mark.asyncio
async def test_authorize_requires_global_key(client, llamas_headers):
    response = await client.get("/api/bookingkit/auth/authorize", headers=llamas_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_authorize_then_callback(client, global_headers, partner, bookingkit_client):
    partner.respond("POST", "/v3/oauth/token", json=TOKEN_RESPONSE)

    response = await client.get("/api/bookingkit/auth/authorize", headers=global_headers)
    assert response.status_code == 200
    body = response.json()
    assert body["redirect_uri"] == "http://test/api/bookingkit/auth/callback"
    state = parse_qs(urlparse(body["auth_url"]).query)["state"][0]

    response = await client.get("/api/bookingkit/auth/callback", params={"code": "abc", "state": state})
    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Authorization successful"
    assert body["token_info"]["token_type"] == "Bearer"
    assert body["token_info"]["scope"] == TOKEN_RESPONSE["scope"]

    sent = json.loads(partner.calls("POST", "/v3/oauth/token")[0].content)
    assert sent["grant_type"] == "authorization_code"
    assert sent["code"] == "abc"
    assert bookingkit_client.tokens.get("bk-client").access_token == "access-new"

    # States are single use
    response = await client.get("/api/bookingkit/auth/callback", params={"code": "abc", "state": state})
    assert response.status_code == 400
    assert response.json()["message"] == "Invalid state parameter"


@pytest.mark.asyncio
async def test_callback_rejects_unknown_state(client, partner):
    response = await client.get("/api/bookingkit/auth/callback", params={"code": "abc", "state": "forged"})
    assert response.status_code == 400
    assert partner.requests == []


@pytest.mark.asyncio
async def test_callback_reports_provider_error(client):
    response = await client.get("/api/bookingkit/auth/callback", params={"error": "access_denied"})
    assert response.status_code == 400
    assert response.json()["detail"] == {"error": "access_denied"}


@pytest.mark.asyncio
async def test_callback_requires_code(client):
    response = await client.get("/api/bookingkit/auth/callback", params={"state": "s"})
    assert response.status_code == 400
    assert response.json()["message"] == "Missing authorization code"


@pytest.mark.asyncio
async def test_auth_status(client, global_headers, bookingkit_client):
    response = await client.get("/api/bookingkit/auth/status", headers=global_headers)
    assert response.json() == {"success": True, "authorized": False, "message": "No authorization token found"}

    bookingkit_client.tokens.set("bk-client", token_bundle())
    body = (await client.get("/api/bookingkit/auth/status", headers=global_headers)).json()
    assert body["authorized"] is True
    assert body["token_expired"] is False


# -- Webhooks ----------------------------------------------------------------


@pytest.mark.asyncio
async def test_webhook_with_valid_signature(client):
    body = json.dumps({"event_type": "booking.cancelled", "data": {"id": "bk-7"}}).encode()
    response = await client.post(
        "/api/bookingkit/webhooks",
        content=body,
        headers={"X-BookingKit-Signature": f"sha256={sign(body)}", "Content-Type": "application/json"},
    )
    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "processed": True,
        "result": {"processed": True, "action": "booking_cancelled", "booking_id": "bk-7"},
    }


@pytest.mark.asyncio
async def test_webhook_accepts_generic_signature_header(client):
    body = json.dumps({"event_type": "booking.created", "data": {"id": "bk-1"}}).encode()
    response = await client.post("/api/bookingkit/webhooks", content=body, headers={"X-Webhook-Signature": sign(body)})
    assert response.status_code == 200
    assert response.json()["result"]["action"] == "booking_created"


@pytest.mark.asyncio
async def test_webhook_unknown_event_is_acknowledged(client):
    body = json.dumps({"event_type": "invoice.paid"}).encode()
    response = await client.post("/api/bookingkit/webhooks", content=body, headers={"X-Webhook-Signature": sign(body)})
    assert response.status_code == 200
    assert response.json()["result"] == {"processed": False, "message": "Unhandled event type: invoice.paid"}


@pytest.mark.asyncio
async def test_webhook_invalid_signature_is_rejected_before_parsing(client):
    response = await client.post(
        "/api/bookingkit/webhooks", content=b"not json", headers={"X-BookingKit-Signature": "deadbeef"}
    )
    assert response.status_code == 401
    assert response.json()["error"] == "SignatureError"


@pytest.mark.asyncio
async def test_webhook_missing_signature_is_rejected(client):
    response = await client.post("/api/bookingkit/webhooks", content=b"{}")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_webhook_signed_but_malformed_json_is_400(client):
    body = b"{not json"
    response = await client.post("/api/bookingkit/webhooks", content=body, headers={"X-Webhook-Signature": sign(body)})
    assert response.status_code == 400
    assert response.json()["message"] == "Invalid JSON payload"


# -- Sync --------------------------------------------------------------------


@pytest.mark.asyncio
async def test_sync_with_partial_failures(client, global_headers, store, partner, authorized):
    store.add(
        make_order(1, internal_id="cow-1", schedule="1 dec 2025, 10:00 - 11:00 (Europe/Rome)"),
        make_order(2, internal_id="cow-2"),
        make_plain_order(3),
    )

    def create(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        if payload["external_id"] == 2:
            return httpx.Response(422, json={"error": "invalid_product"})
        return httpx.Response(201, json={"id": f"bk-{payload['external_id']}"})

    partner.on("POST", "/v3/bookings", create)

    response = await client.post(
        "/api/bookingkit/sync", json={"order_ids": ["1", "2", "3"]}, headers=global_headers
    )
    assert response.status_code == 200
    body = response.json()
    assert body["synced"] == 1
    assert body["failed"] == 2
    assert body["message"] == "Sync completed: 1 synced, 2 failed"

    by_order = {str(r["shopify_order_id"]): r for r in body["results"]}
    assert by_order["1"] == {"shopify_order_id": 1, "bookingkit_id": "bk-1", "status": "synced"}
    assert by_order["2"]["status"] == "failed"
    assert "invalid_product" in by_order["2"]["error"]
    assert by_order["3"]["status"] == "failed"

    sent = json.loads(partner.calls("POST", "/v3/bookings")[0].content)
    assert sent["start_date"] == "2025-12-01T09:00:00+00:00"
    assert sent["metadata"]["cowlendar_id"] == "cow-1"
    assert partner.calls("POST", "/v3/bookings")[0].headers["Authorization"] == "Bearer access-1"


@pytest.mark.asyncio
async def test_sync_by_provider(client, global_headers, store, partner, authorized):
    store.set_host(501, "Llamas")
    store.add(make_order(1, product_id=501), make_order(2, product_id=502, vendor="Goat Yoga"))
    partner.respond("POST", "/v3/bookings", status=201, json={"id": "bk"})

    response = await client.post("/api/bookingkit/sync", json={"provider": "llamas"}, headers=global_headers)
    body = response.json()
    assert body["synced"] == 1
    assert [r["shopify_order_id"] for r in body["results"]] == [1]


@pytest.mark.asyncio
async def test_sync_with_nothing_to_do(client, global_headers, store):
    store.add(make_plain_order(3))
    response = await client.post("/api/bookingkit/sync", json={}, headers=global_headers)
    assert response.json() == {"success": True, "message": "No orders found to sync", "synced": 0}


@pytest.mark.asyncio
async def test_sync_without_authorization_fails_fast(client, global_headers, store, partner):
    store.add(make_order(1))
    response = await client.post("/api/bookingkit/sync", json={}, headers=global_headers)
    assert response.status_code == 500
    assert response.json()["error"] == "ConfigurationError"
    assert partner.calls("POST", "/v3/bookings") == []


@pytest.mark.asyncio
async def test_sync_requires_global_key(client, llamas_headers):
    response = await client.post("/api/bookingkit/sync", json={}, headers=llamas_headers)
    assert response.status_code == 403


# -- Partner bookings & health -----------------------------------------------


@pytest.mark.asyncio
async def test_partner_bookings_passes_filters_through(client, partner, authorized):
    partner.respond("GET", "/v3/bookings", json={"data": [{"id": "bk-1"}, {"id": "bk-2"}]})

    response = await client.get("/api/bookingkit/bookings", params={"status": "confirmed", "api_key": GLOBAL_KEY})
    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 2
    assert body["filters"] == {"status": "confirmed"}

    request = partner.calls("GET", "/v3/bookings")[0]
    assert dict(request.url.params) == {"status": "confirmed"}


@pytest.mark.asyncio
async def test_partner_error_is_502(client, global_headers, partner, authorized):
    partner.respond("GET", "/v3/bookings", status=500, json={"error": "boom"})
    response = await client.get("/api/bookingkit/bookings", headers=global_headers)
    assert response.status_code == 502
    assert response.json()["error"] == "BookingKitError"


@pytest.mark.asyncio
async def test_health_with_valid_token(client, global_headers, partner, authorized):
    partner.respond("GET", "/v3/profile", json={"name": "Llama Farm"})

    body = (await client.get("/api/bookingkit/health", headers=global_headers)).json()
    assert body["status"] == "ok"
    integration = body["bookingkit_integration"]
    assert integration["has_access_token"] is True
    assert integration["credentials_configured"] is True
    assert integration["api_connectivity"] == "ok"


@pytest.mark.asyncio
async def test_health_without_token(client, global_headers):
    body = (await client.get("/api/bookingkit/health", headers=global_headers)).json()
    assert body["status"] == "degraded"
    assert body["bookingkit_integration"]["has_access_token"] is False
    assert body["bookingkit_integration"]["token_status"] == "no_token"


@pytest.mark.asyncio
async def test_health_reports_api_error(client, global_headers, partner, authorized):
    partner.respond("GET", "/v3/profile", status=401, json={"error": "invalid_token"})

    body = (await client.get("/api/bookingkit/health", headers=global_headers)).json()
    assert body["status"] == "degraded"
    assert "invalid_token" in body["bookingkit_integration"]["api_error"]
