"""Deterministic filtering over canonical bookings.

Filters compose with AND and preserve input order; nothing is sorted.
`customer_email` is applied by the upstream order fetch, not here.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence

from booking.models import BookingFilter, CanonicalBooking, RawOrder
from booking.providers import serves_provider

DEFAULT_ORDER_LIMIT = 50
MAX_ORDER_LIMIT = 250


def clamp_limit(limit: Optional[int], default: int = DEFAULT_ORDER_LIMIT) -> int:
    """Shopify caps a page at 250 orders; never ask for more."""
    if limit is None or limit < 1:
        return default
    return min(limit, MAX_ORDER_LIMIT)


def matches(booking: CanonicalBooking, spec: BookingFilter) -> bool:
    if spec.provider and not serves_provider(booking, spec.provider):
        return False
    if spec.event_date and booking.event_date != spec.event_date:
        return False
    if spec.date_from and (booking.event_date is None or booking.event_date < spec.date_from):
        return False
    if spec.date_to and (booking.event_date is None or booking.event_date > spec.date_to):
        return False
    if spec.cowlendar_id and booking.cowlendar_id != spec.cowlendar_id:
        return False
    return True


def query_bookings(bookings: Sequence[CanonicalBooking], spec: BookingFilter) -> List[CanonicalBooking]:
    results = [booking for booking in bookings if matches(booking, spec)]
    if spec.limit is not None:
        results = results[:spec.limit]
    return results


def available_hosts(bookings: Iterable[CanonicalBooking]) -> List[str]:
    """Sorted distinct canonical providers."""
    return sorted({booking.provider for booking in bookings if booking.provider})


def available_providers(orders: Iterable[RawOrder], bookings: Iterable[CanonicalBooking]) -> List[str]:
    """Canonical providers of bookings plus every vendor seen on any raw order."""
    providers = {booking.provider for booking in bookings if booking.provider}
    for order in orders:
        providers.update(item.vendor for item in order.line_items if item.vendor)
    return sorted(providers)
