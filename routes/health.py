"""Health routes - liveness of the Shopify link and a detailed dependency report."""
import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from booking.service import BookingService
from config import APP_VERSION, Settings
from dependencies import get_booking_service, get_bookingkit_client, get_settings, get_shopify_client
from observability.health import check_shopify, run_health_checks
from services.bookingkit import BookingKitClient
from services.shopify import ShopifyClient

router = APIRouter(tags=["health"])

STARTED_AT = time.time()


def _base(settings: Settings) -> dict:
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": round(time.time() - STARTED_AT, 3),
        "environment": settings.environment,
        "version": APP_VERSION,
    }


@router.get("/api/health")
async def health_check(
    settings: Settings = Depends(get_settings),
    shopify: ShopifyClient = Depends(get_shopify_client),
):
    """200 when Shopify answers, 503 otherwise."""
    result = await check_shopify(shopify)
    body = {"status": "OK" if result.is_healthy else "DEGRADED", **_base(settings)}
    body["shopify_connection"] = "OK" if result.is_healthy else "ERROR"
    if result.error:
        body["shopify_error"] = result.error
    return JSONResponse(status_code=200 if result.is_healthy else 503, content=body)


@router.get("/api/health/detailed")
async def detailed_health_check(
    settings: Settings = Depends(get_settings),
    shopify: ShopifyClient = Depends(get_shopify_client),
    service: BookingService = Depends(get_booking_service),
    bookingkit: BookingKitClient = Depends(get_bookingkit_client),
):
    """
    Configuration presence plus every dependency check.

    Returns 503 only when a check errors; an unconfigured BookingKit
    integration is reported as degraded.
    """
    report = await run_health_checks(shopify, service, bookingkit)
    body = {
        **report,
        **_base(settings),
        "configuration": {
            "shopify_store_url": "SET" if settings.shopify_store_url else "MISSING",
            "shopify_access_token": "SET" if settings.shopify_access_token else "MISSING",
            "api_key": "SET" if settings.api_key else "MISSING",
            "host_api_keys": len(settings.host_api_keys),
            "bookingkit_credentials": "SET" if settings.bookingkit_configured else "MISSING",
        },
    }
    return JSONResponse(status_code=503 if report["status"] == "unhealthy" else 200, content=body)
