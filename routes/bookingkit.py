"""BookingKit routes - OAuth flow, inbound webhooks, order sync."""
import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel

from booking.models import BookingFilter, CanonicalBooking
from booking.service import BookingService
from dependencies import (
    Caller,
    get_booking_service,
    get_bookingkit_client,
    get_oauth_states,
    require_global,
)
from exceptions import BookingBridgeError, SignatureError, ValidationError
from observability.health import check_bookingkit
from observability.metrics import bookings_synced_total, webhooks_received_total
from services.bookingkit import BookingKitClient, OAuthStateStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["bookingkit"])

MAX_SYNC_LIMIT = 100


class SyncRequest(BaseModel):
    provider: Optional[str] = None
    order_ids: Optional[List[str]] = None
    limit: int = 50


def _redirect_uri(request: Request) -> str:
    return str(request.url_for("bookingkit_auth_callback"))


@router.get("/api/bookingkit/auth/authorize")
async def bookingkit_auth_authorize(
    request: Request,
    caller: Caller = Depends(require_global),
    client: BookingKitClient = Depends(get_bookingkit_client),
    states: OAuthStateStore = Depends(get_oauth_states),
):
    redirect_uri = _redirect_uri(request)
    auth_url = client.authorization_url(redirect_uri, states.issue())
    return {
        "success": True,
        "auth_url": auth_url,
        "redirect_uri": redirect_uri,
        "message": "Visit the auth_url to authorize this application with BookingKit",
    }


@router.get("/api/bookingkit/auth/callback", name="bookingkit_auth_callback")
async def bookingkit_auth_callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    client: BookingKitClient = Depends(get_bookingkit_client),
    states: OAuthStateStore = Depends(get_oauth_states),
):
    """BookingKit redirects here after the user authorizes the app."""
    if error:
        raise ValidationError("Authorization failed", detail={"error": error})
    if not code:
        raise ValidationError("Missing authorization code")
    if not states.consume(state):
        logger.warning("[BOOKINGKIT] OAuth callback with unknown or expired state")
        raise ValidationError("Invalid state parameter")

    bundle = await client.exchange_code(code, _redirect_uri(request))
    return {
        "success": True,
        "message": "Authorization successful",
        "token_info": {
            "token_type": bundle.token_type,
            "expires_at": bundle.expires_at.isoformat(),
            "scope": bundle.scope,
        },
    }


@router.get("/api/bookingkit/auth/status")
async def bookingkit_auth_status(
    caller: Caller = Depends(require_global),
    client: BookingKitClient = Depends(get_bookingkit_client),
):
    status = client.token_status()
    if not status["authorized"]:
        return {"success": True, "authorized": False, "message": "No authorization token found"}
    return {
        "success": True,
        "authorized": True,
        "token_expired": status["token_expired"],
        "expires_at": status["expires_at"],
    }


@router.post("/api/bookingkit/webhooks")
async def bookingkit_webhook(
    request: Request,
    x_bookingkit_signature: Optional[str] = Header(None),
    x_webhook_signature: Optional[str] = Header(None),
    client: BookingKitClient = Depends(get_bookingkit_client),
):
    # Signature covers the raw bytes; verify before parsing
    payload = await request.body()
    signature = x_bookingkit_signature or x_webhook_signature

    if not client.verify_webhook_signature(payload, signature):
        logger.warning("[BOOKINGKIT] Invalid webhook signature received")
        webhooks_received_total.labels(event_type="unknown", outcome="rejected").inc()
        raise SignatureError("Invalid signature")

    try:
        data = json.loads(payload)
    except ValueError:
        raise ValidationError("Invalid JSON payload")
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")

    result = await client.process_webhook(data)
    logger.info("[BOOKINGKIT] Webhook processed", extra={"result": result})
    return {"success": True, "processed": True, "result": result}


async def _collect_for_sync(body: SyncRequest, service: BookingService, results: List[Dict[str, Any]]) -> List[CanonicalBooking]:
    if body.order_ids:
        bookings = []
        for order_id in body.order_ids:
            try:
                bookings.append(await service.booking_for_order(order_id))
            except BookingBridgeError as e:
                logger.warning(f"[BOOKINGKIT] Failed to fetch order {order_id}: {e.message}")
                results.append({"shopify_order_id": order_id, "status": "failed", "error": e.message})
        return bookings

    limit = max(1, min(body.limit, MAX_SYNC_LIMIT))
    if body.provider:
        return await service.find_bookings(BookingFilter(provider=body.provider, limit=limit))
    return await service.event_bookings(limit=limit)


@router.post("/api/bookingkit/sync")
async def bookingkit_sync(
    body: SyncRequest,
    caller: Caller = Depends(require_global),
    service: BookingService = Depends(get_booking_service),
    client: BookingKitClient = Depends(get_bookingkit_client),
):
    """Push Shopify event orders to BookingKit. One failed order never aborts the rest."""
    results: List[Dict[str, Any]] = []
    bookings = await _collect_for_sync(body, service, results)

    if not bookings and not results:
        return {"success": True, "message": "No orders found to sync", "synced": 0}

    if bookings:
        # Fail fast when the integration isn't authorized at all
        await client.access_token()

    for booking in bookings:
        try:
            created = await client.create_booking(client.to_partner_payload(booking))
        except BookingBridgeError as e:
            logger.error(f"[BOOKINGKIT] Failed to sync order {booking.order_id}: {e.message}")
            bookings_synced_total.labels(outcome="failed").inc()
            results.append({"shopify_order_id": booking.order_id, "status": "failed", "error": e.message})
            continue

        bookings_synced_total.labels(outcome="synced").inc()
        results.append({
            "shopify_order_id": booking.order_id,
            "bookingkit_id": created.get("id") if isinstance(created, dict) else None,
            "status": "synced",
        })

    synced = sum(1 for r in results if r["status"] == "synced")
    failed = sum(1 for r in results if r["status"] == "failed")
    return {
        "success": True,
        "message": f"Sync completed: {synced} synced, {failed} failed",
        "synced": synced,
        "failed": failed,
        "results": results,
    }


@router.get("/api/bookingkit/bookings")
async def bookingkit_bookings(
    request: Request,
    caller: Caller = Depends(require_global),
    client: BookingKitClient = Depends(get_bookingkit_client),
):
    filters = {k: v for k, v in request.query_params.items() if k != "api_key"}
    bookings = await client.list_bookings(filters)
    return {
        "success": True,
        "data": bookings,
        "count": len(bookings) if isinstance(bookings, list) else 0,
        "filters": filters,
    }


@router.get("/api/bookingkit/health")
async def bookingkit_health(
    caller: Caller = Depends(require_global),
    client: BookingKitClient = Depends(get_bookingkit_client),
):
    result = await check_bookingkit(client)
    details = dict(result.details)
    details["has_access_token"] = details.pop("authorized", False)
    if result.error:
        details["api_error"] = result.error
    return {"success": True, "status": result.status, "bookingkit_integration": details}
