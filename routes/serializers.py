"""Response shapes for booking consumers.

`serialize_for_booking_app` is the shape served by /api/orders;
`serialize_for_bokun` is the older Bokun-compatible shape served by
/api/bookings and kept field-for-field for existing integrations.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from booking.models import CanonicalBooking


def iso_instant(value: Optional[datetime]) -> Optional[str]:
    """UTC instant as `YYYY-MM-DDTHH:MM:SSZ`."""
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _customer(booking: CanonicalBooking) -> Dict[str, Any]:
    customer = booking.customer
    return {
        "first_name": customer.first_name,
        "last_name": customer.last_name,
        "full_name": customer.full_name,
        "email": customer.email,
        "phone": customer.phone,
    }


def _booking_details(booking: CanonicalBooking) -> Dict[str, Any]:
    return {
        "created_at": booking.created_at,
        "financial_status": booking.financial_status,
        "fulfillment_status": booking.fulfillment_status,
        "items": [item.model_dump() for item in booking.line_items],
    }


def _cowlendar(booking: CanonicalBooking) -> Dict[str, Any]:
    return {
        "internal_id": booking.cowlendar_id,
        "integrity": booking.cowlendar_integrity,
    }


def serialize_for_booking_app(booking: CanonicalBooking) -> Dict[str, Any]:
    return {
        "booking_id": booking.order_id,
        "order_number": booking.order_number,
        "order_name": booking.order_name,
        "customer": _customer(booking),
        "event": {
            "name": booking.event_name,
            "date": booking.event_date,
            "start_time": booking.start_time,
            "end_time": booking.end_time,
            "timezone": booking.timezone,
            "start_datetime": iso_instant(booking.start_datetime),
            "end_datetime": iso_instant(booking.end_datetime),
        },
        "provider": booking.provider,
        "host": booking.provider,
        "vendor": booking.vendor,
        "booking_details": _booking_details(booking),
        "cowlendar": _cowlendar(booking),
        "status": booking.status,
        "booking_type": "event",
        "source": "shopify_cowlendar",
    }


def serialize_for_bokun(booking: CanonicalBooking) -> Dict[str, Any]:
    return {
        "booking_id": booking.order_id,
        "order_number": booking.order_number,
        "order_name": booking.order_name,
        "customer": _customer(booking),
        "event": {
            "name": booking.event_name,
            "host": booking.provider,
            "date": booking.event_date,
            "start_time": booking.start_time,
            "end_time": booking.end_time,
            "timezone": booking.timezone,
            "start_datetime": iso_instant(booking.start_datetime),
            "end_datetime": iso_instant(booking.end_datetime),
        },
        "booking_details": _booking_details(booking),
        "cowlendar": _cowlendar(booking),
        "status": booking.status,
        "booking_type": "event",
        "source": "shopify_cowlendar",
        "host": booking.provider,
    }
