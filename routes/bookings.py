"""Bookings routes - legacy Bokun-compatible endpoints.

Host scoping here uses the canonical provider only (host, falling back to
vendor), unlike /api/orders which also matches any line item vendor.
"""
import logging
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query

from booking.models import BookingFilter, CanonicalBooking
from booking.providers import host_matches
from booking.query import DEFAULT_ORDER_LIMIT, MAX_ORDER_LIMIT, clamp_limit, query_bookings
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
from routes.serializers import serialize_for_bokun

logger = logging.getLogger(__name__)

router = APIRouter(tags=["bookings"])


def _visible(bookings: List[CanonicalBooking], caller: Caller) -> List[CanonicalBooking]:
    if caller.is_global:
        return bookings
    return [booking for booking in bookings if host_matches(booking, caller.host)]


def _check_visible(booking: CanonicalBooking, caller: Caller) -> None:
    if not caller.is_global and not host_matches(booking, caller.host):
        logger.warning(f"[AUTH] Host {caller.host} denied access to order {booking.order_id}")
        raise hidden_from_host("Booking")


def _serialize(bookings: List[CanonicalBooking]) -> list:
    return [serialize_for_bokun(booking) for booking in bookings]


@router.get("/api/bookings")
async def list_bookings(
    customer_email: Optional[str] = None,
    event_date: Optional[str] = None,
    cowlendar_id: Optional[str] = None,
    host: Optional[str] = None,
    limit: int = DEFAULT_ORDER_LIMIT,
    order_id: Optional[str] = None,
    caller: Caller = Depends(require_caller),
    service: BookingService = Depends(get_booking_service),
):
    if order_id:
        try:
            booking = await service.booking_for_order(order_id)
        except ResourceNotFoundError:
            if caller.is_global:
                raise
            raise hidden_from_host("Booking") from None
        _check_visible(booking, caller)
        return {"success": True, "data": [serialize_for_bokun(booking)], "count": 1}

    if host is None and not caller.is_global:
        host = caller.host
    if host:
        authorize_provider(caller, host)

    limit = clamp_limit(limit)
    if host:
        bookings = await service.bookings_for_host(host, email=customer_email, limit=limit)
    else:
        bookings = await service.event_bookings(email=customer_email, limit=limit)
    bookings = query_bookings(bookings, BookingFilter(event_date=event_date, cowlendar_id=cowlendar_id))

    data = _serialize(bookings)
    return {
        "success": True,
        "data": data,
        "count": len(data),
        "filters": {
            "customer_email": customer_email,
            "event_date": event_date,
            "cowlendar_id": cowlendar_id,
            "host": host,
            "limit": limit,
        },
    }


@router.get("/api/bookings/hosts")
async def list_hosts(
    limit: int = Query(MAX_ORDER_LIMIT, ge=1),
    caller: Caller = Depends(require_global),
    service: BookingService = Depends(get_booking_service),
):
    hosts = await service.hosts(limit=limit)
    return {"success": True, "data": hosts, "count": len(hosts)}


@router.get("/api/bookings/host/{host_name}")
async def host_bookings(
    host_name: str,
    customer_email: Optional[str] = None,
    event_date: Optional[str] = None,
    cowlendar_id: Optional[str] = None,
    limit: int = DEFAULT_ORDER_LIMIT,
    caller: Caller = Depends(require_caller),
    service: BookingService = Depends(get_booking_service),
):
    """Primary endpoint for a single host (e.g. "Llamas") pulling only its events."""
    authorize_provider(caller, host_name)

    limit = clamp_limit(limit)
    bookings = await service.bookings_for_host(host_name, email=customer_email, limit=limit)
    bookings = query_bookings(bookings, BookingFilter(event_date=event_date, cowlendar_id=cowlendar_id))

    data = _serialize(bookings)
    return {
        "success": True,
        "data": data,
        "count": len(data),
        "host": host_name,
        "filters": {
            "customer_email": customer_email,
            "event_date": event_date,
            "cowlendar_id": cowlendar_id,
            "limit": limit,
        },
    }


@router.get("/api/bookings/host/{host_name}/customer/{email}")
async def host_customer_bookings(
    host_name: str,
    email: str,
    limit: int = DEFAULT_ORDER_LIMIT,
    caller: Caller = Depends(require_caller),
    service: BookingService = Depends(get_booking_service),
):
    authorize_provider(caller, host_name)

    bookings = await service.bookings_for_host(host_name, email=email, limit=limit)
    data = _serialize(bookings)
    return {"success": True, "data": data, "count": len(data), "host": host_name, "customer_email": email}


@router.get("/api/bookings/host/{host_name}/events/{date}")
async def host_event_bookings(
    host_name: str,
    date: str,
    limit: int = 100,
    caller: Caller = Depends(require_caller),
    service: BookingService = Depends(get_booking_service),
):
    authorize_provider(caller, host_name)

    bookings = await service.bookings_for_host(host_name, limit=limit)
    bookings = query_bookings(bookings, BookingFilter(event_date=date))
    data = _serialize(bookings)
    return {"success": True, "data": data, "count": len(data), "host": host_name, "event_date": date}


@router.get("/api/bookings/customer/{email}")
async def customer_bookings(
    email: str,
    limit: int = DEFAULT_ORDER_LIMIT,
    caller: Caller = Depends(require_caller),
    service: BookingService = Depends(get_booking_service),
):
    bookings = _visible(await service.event_bookings(email=email, limit=limit), caller)
    data = _serialize(bookings)
    return {"success": True, "data": data, "count": len(data), "customer_email": email}


@router.get("/api/bookings/events/{date}")
async def event_date_bookings(
    date: str,
    limit: int = 100,
    caller: Caller = Depends(require_caller),
    service: BookingService = Depends(get_booking_service),
):
    bookings = await service.event_bookings(limit=limit)
    bookings = _visible(query_bookings(bookings, BookingFilter(event_date=date)), caller)
    data = _serialize(bookings)
    return {"success": True, "data": data, "count": len(data), "event_date": date}


@router.get("/api/bookings/debug/orders")
async def debug_orders(
    limit: int = Query(5, ge=1),
    caller: Caller = Depends(require_global),
    service: BookingService = Depends(get_booking_service),
):
    """Raw Shopify orders, with or without Cowlendar metadata."""
    orders = await service.fetch_orders(limit=limit)
    return {
        "success": True,
        "data": [order.model_dump(mode="json") for order in orders],
        "count": len(orders),
        "note": "These are raw Shopify orders - may not have Cowlendar metadata",
    }


@router.get("/api/bookings/{booking_id}")
async def get_booking(
    booking_id: str,
    id_type: Literal["shopify", "cowlendar"] = "shopify",
    caller: Caller = Depends(require_caller),
    service: BookingService = Depends(get_booking_service),
):
    """Look a booking up by Shopify order id or Cowlendar internal id."""
    try:
        if id_type == "cowlendar":
            booking = await service.booking_for_cowlendar_id(booking_id)
        else:
            booking = await service.booking_for_order(booking_id)
    except ResourceNotFoundError:
        if not caller.is_global:
            raise hidden_from_host("Booking") from None
        raise ResourceNotFoundError(
            f"No booking found with {id_type} ID: {booking_id}",
            detail={"id_type": id_type, "booking_id": booking_id},
        )

    _check_visible(booking, caller)
    return {"success": True, "data": serialize_for_bokun(booking)}
