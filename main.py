"""
Cowlendar booking bridge.

Reads Shopify orders carrying Cowlendar event metadata and serves them as
normalized bookings to booking apps (BookingIt, Bokun) and BookingKit.
"""
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

load_dotenv(dotenv_path=Path(__file__).resolve().parent / ".env", override=False)

from booking.normalizer import OrderNormalizer
from booking.providers import ProviderResolver
from booking.service import BookingService
from config import APP_VERSION, Settings
from exceptions import BookingBridgeError, RateLimitError
from observability.logging import setup_logging
from observability.metrics import metrics_registry
from observability.middleware import ObservabilityMiddleware
from observability.sentry_config import init_sentry
from routes import bookingkit as bookingkit_routes
from routes import bookings as bookings_routes
from routes import health as health_routes
from routes import orders as orders_routes
from services.bookingkit import BookingKitClient, OAuthStateStore, TokenCache
from services.shopify import ShopifyClient

setup_logging()
init_sentry()

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()

    app = FastAPI(
        title="Cowlendar Booking Bridge",
        description="Shopify + Cowlendar event orders as bookings for booking apps and BookingKit",
        version=APP_VERSION,
    )

    shopify = ShopifyClient.from_settings(settings)
    resolver = ProviderResolver(shopify, concurrency=settings.product_lookup_concurrency)
    normalizer = OrderNormalizer(resolver, prefix=settings.metadata_prefix)

    app.state.settings = settings
    app.state.shopify = shopify
    app.state.booking_service = BookingService(shopify, normalizer)
    app.state.bookingkit = BookingKitClient.from_settings(settings, TokenCache())
    app.state.oauth_states = OAuthStateStore()

    app.add_middleware(ObservabilityMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.include_router(health_routes.router)
    app.include_router(orders_routes.router)
    app.include_router(bookings_routes.router)
    app.include_router(bookingkit_routes.router)

    @app.exception_handler(BookingBridgeError)
    async def booking_bridge_error_handler(request: Request, exc: BookingBridgeError):
        if exc.status_code >= 500:
            logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.message}", extra={"detail": exc.detail})
        headers = None
        if isinstance(exc, RateLimitError) and exc.retry_after:
            headers = {"Retry-After": str(exc.retry_after)}
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": "ValidationError",
                "message": "Invalid request parameters",
                "detail": jsonable_encoder(exc.errors()),
            },
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Log the traceback, return a safe message with an id to grep for."""
        error_id = f"ERR-{datetime.now(timezone.utc).strftime('%Y%m%d%H%M%S')}-{id(exc)}"
        logger.exception(
            f"[ERROR {error_id}] Unhandled exception",
            extra={"error_id": error_id, "path": request.url.path, "method": request.method},
        )
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": "Internal server error",
                "error_id": error_id,
                "message": "An unexpected error occurred. Please try again.",
            },
        )

    @app.get("/")
    async def index():
        return {
            "message": "Shopify Cowlendar Booking Bridge",
            "version": APP_VERSION,
            "endpoints": {
                "health": "/api/health",
                "orders": "/api/orders?provider={provider_name}",
                "order_by_id": "/api/orders/{order_id}",
                "providers": "/api/orders/providers",
                "bookings": "/api/bookings",
                "host_bookings": "/api/bookings/host/{host_name}",
                "bookingkit": "/api/bookingkit/health",
                "metrics": "/metrics",
            },
        }

    @app.get("/metrics", include_in_schema=False)
    async def metrics():
        return Response(generate_latest(metrics_registry), media_type=CONTENT_TYPE_LATEST)

    logger.info(
        "Booking bridge configured",
        extra={
            "environment": settings.environment,
            "shopify_configured": shopify.configured,
            "bookingkit_configured": settings.bookingkit_configured,
            "host_keys": len(settings.host_api_keys),
        },
    )
    return app


app = create_app()


if __name__ == "__main__":
    import os

    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=int(os.getenv("PORT", "3000")))
