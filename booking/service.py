"""BookingService: order store + normalization pipeline.

Every call re-derives bookings from Shopify; nothing is cached between
requests. Only order-store failures propagate (not found -> 404, upstream
unavailable -> 502).
"""

from __future__ import annotations

import logging
from typing import List, Optional, Protocol, Union

from booking.models import BookingFilter, CanonicalBooking, RawOrder
from booking.normalizer import OrderNormalizer
from booking.providers import host_matches
from booking.query import (
    DEFAULT_ORDER_LIMIT,
    MAX_ORDER_LIMIT,
    available_hosts,
    available_providers,
    clamp_limit,
    query_bookings,
)
from exceptions import ResourceNotFoundError

logger = logging.getLogger(__name__)


class OrderStore(Protocol):
    async def fetch_orders(
        self,
        *,
        email: Optional[str] = None,
        status: str = "any",
        limit: int = DEFAULT_ORDER_LIMIT,
    ) -> List[RawOrder]:
        ...

    async def fetch_order(self, order_id: Union[int, str]) -> RawOrder:
        ...


class BookingService:
    def __init__(self, store: OrderStore, normalizer: OrderNormalizer):
        self.store = store
        self.normalizer = normalizer

    async def fetch_orders(
        self,
        *,
        email: Optional[str] = None,
        status: str = "any",
        limit: Optional[int] = DEFAULT_ORDER_LIMIT,
    ) -> List[RawOrder]:
        return await self.store.fetch_orders(email=email, status=status, limit=clamp_limit(limit))

    async def event_bookings(
        self,
        *,
        email: Optional[str] = None,
        status: str = "any",
        limit: Optional[int] = DEFAULT_ORDER_LIMIT,
    ) -> List[CanonicalBooking]:
        orders = await self.fetch_orders(email=email, status=status, limit=limit)
        bookings = await self.normalizer.normalize_many(orders)
        logger.info(
            "Normalized event bookings",
            extra={"orders_fetched": len(orders), "bookings": len(bookings)},
        )
        return bookings

    async def find_bookings(self, spec: BookingFilter, *, status: str = "any") -> List[CanonicalBooking]:
        """Fetch, normalize and filter. The email filter is applied upstream."""
        bookings = await self.event_bookings(email=spec.customer_email, status=status, limit=spec.limit)
        return query_bookings(bookings, spec)

    async def bookings_for_host(
        self,
        host: str,
        *,
        email: Optional[str] = None,
        limit: Optional[int] = DEFAULT_ORDER_LIMIT,
    ) -> List[CanonicalBooking]:
        bookings = await self.event_bookings(email=email, limit=limit)
        return [booking for booking in bookings if host_matches(booking, host)]

    async def booking_for_order(self, order_id: Union[int, str]) -> CanonicalBooking:
        order = await self.store.fetch_order(order_id)
        if not self.normalizer.qualifies(order):
            raise ResourceNotFoundError(
                f"Order {order_id} is not a bookable event order",
                detail={"order_id": str(order_id)},
            )
        return await self.normalizer.normalize(order)

    async def booking_for_cowlendar_id(self, cowlendar_id: str) -> CanonicalBooking:
        bookings = await self.event_bookings(limit=MAX_ORDER_LIMIT)
        for booking in bookings:
            if booking.cowlendar_id == cowlendar_id:
                return booking
        raise ResourceNotFoundError(
            f"No booking found with cowlendar ID: {cowlendar_id}",
            detail={"cowlendar_id": cowlendar_id},
        )

    async def hosts(self, *, limit: Optional[int] = MAX_ORDER_LIMIT) -> List[str]:
        return available_hosts(await self.event_bookings(limit=limit))

    async def providers(self, *, limit: Optional[int] = MAX_ORDER_LIMIT) -> List[str]:
        orders = await self.fetch_orders(limit=limit)
        bookings = await self.normalizer.normalize_many(orders)
        return available_providers(orders, bookings)
