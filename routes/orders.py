"""Orders routes - primary endpoint family for booking apps (BookingIt, Bokun, ...)."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from booking.models import BookingFilter
from booking.providers import serves_provider
from booking.query import DEFAULT_ORDER_LIMIT, MAX_ORDER_LIMIT, clamp_limit
from booking.service import BookingService
from dependencies import (
    Caller,
    authorize_provider,
    get_booking_service,
    hidden_from_host,
    require_caller,
    require_global,
)
from exceptions import ResourceNotFoundError
from routes.serializers import serialize_for_booking_app

logger = logging.getLogger(__name__)

router = APIRouter(tags=["orders"])


@router.get("/api/orders")
async def list_orders(
    provider: Optional[str] = None,
    customer_email: Optional[str] = None,
    event_date: Optional[str] = None,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    limit: int = DEFAULT_ORDER_LIMIT,
    status: str = "any",
    caller: Caller = Depends(require_caller),
    service: BookingService = Depends(get_booking_service),
):
    """
    Bookings for a provider (host or any line item vendor).

    A host-scoped key without `provider` gets its own bookings.
    """
    if provider is None and not caller.is_global:
        provider = caller.host
    if provider:
        authorize_provider(caller, provider)

    limit = clamp_limit(limit)
    spec = BookingFilter(
        provider=provider,
        customer_email=customer_email,
        event_date=event_date,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
    )
    bookings = await service.find_bookings(spec, status=status)
    data = [serialize_for_booking_app(booking) for booking in bookings]

    return {
        "success": True,
        "data": data,
        "count": len(data),
        "provider": provider or "all",
        "filters": {
            "provider": provider,
            "customer_email": customer_email,
            "event_date": event_date,
            "date_from": date_from,
            "date_to": date_to,
            "status": status,
            "limit": limit,
        },
    }


@router.get("/api/orders/providers")
async def list_providers(
    limit: int = Query(MAX_ORDER_LIMIT, ge=1),
    caller: Caller = Depends(require_global),
    service: BookingService = Depends(get_booking_service),
):
    providers = await service.providers(limit=limit)
    return {"success": True, "data": providers, "count": len(providers)}


@router.get("/api/orders/{order_id}")
async def get_order(
    order_id: str,
    caller: Caller = Depends(require_caller),
    service: BookingService = Depends(get_booking_service),
):
    try:
        booking = await service.booking_for_order(order_id)
    except ResourceNotFoundError:
        if caller.is_global:
            raise
        raise hidden_from_host("Order") from None

    if not caller.is_global and not serves_provider(booking, caller.host):
        logger.warning(f"[AUTH] Host {caller.host} denied access to order {order_id}")
        raise hidden_from_host("Order")
    return {"success": True, "data": serialize_for_booking_app(booking)}
