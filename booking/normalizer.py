"""Raw order -> CanonicalBooking."""

from __future__ import annotations

from typing import List, Optional, Sequence

from config import DEFAULT_METADATA_PREFIX
from booking.extractor import extract_metadata, has_cowlendar_metadata
from booking.models import (
    BookingCustomer,
    CanonicalBooking,
    CowlendarMetadata,
    LineItemSummary,
    ParsedSchedule,
    ProviderResolution,
    RawOrder,
)
from booking.providers import ProviderResolver
from booking.schedule import parse_schedule
from observability.metrics import orders_normalized_total

UNKNOWN_EVENT = "Unknown Event"
PAID = "paid"


def event_name_of(order: RawOrder) -> str:
    item = order.first_line_item
    if item is None or not item.name:
        return UNKNOWN_EVENT
    return item.name


def booking_status(financial_status: Optional[str]) -> str:
    return "confirmed" if financial_status == PAID else "pending"


def build_booking(
    order: RawOrder,
    metadata: CowlendarMetadata,
    schedule: ParsedSchedule,
    resolution: ProviderResolution,
) -> CanonicalBooking:
    """Assemble the canonical record. Pure: same inputs, same booking."""
    customer = order.customer
    return CanonicalBooking(
        order_id=order.id,
        order_number=order.order_number,
        order_name=order.name,
        customer=BookingCustomer(
            first_name=(customer.first_name if customer else None) or "",
            last_name=(customer.last_name if customer else None) or "",
            email=(customer.email if customer else None) or "",
            phone=(customer.phone if customer else None) or "",
        ),
        event_name=event_name_of(order),
        host=resolution.host,
        vendor=resolution.vendor,
        provider=resolution.provider,
        event_date=schedule.event_date,
        start_time=schedule.start_time,
        end_time=schedule.end_time,
        timezone=schedule.timezone,
        start_datetime=schedule.start_datetime,
        end_datetime=schedule.end_datetime,
        cowlendar_id=metadata.internal_id,
        cowlendar_integrity=metadata.integrity_token,
        created_at=order.created_at,
        financial_status=order.financial_status,
        fulfillment_status=order.fulfillment_status,
        status=booking_status(order.financial_status),
        line_items=[
            LineItemSummary(
                name=item.name,
                quantity=item.quantity,
                price=item.price,
                vendor=item.vendor,
                product_id=item.product_id,
            )
            for item in order.line_items
        ],
    )


class OrderNormalizer:
    def __init__(self, resolver: ProviderResolver, prefix: str = DEFAULT_METADATA_PREFIX):
        self.resolver = resolver
        self.prefix = prefix

    def qualifies(self, order: RawOrder) -> bool:
        return has_cowlendar_metadata(order, self.prefix)

    async def normalize(self, order: RawOrder) -> CanonicalBooking:
        resolution = await self.resolver.resolve(order)
        metadata = extract_metadata(order)
        booking = build_booking(order, metadata, parse_schedule(metadata.event_schedule_text), resolution)
        orders_normalized_total.inc()
        return booking

    async def normalize_many(self, orders: Sequence[RawOrder]) -> List[CanonicalBooking]:
        """Normalize the qualifying orders, preserving input order."""
        eligible = [order for order in orders if self.qualifies(order)]
        resolutions = await self.resolver.resolve_many(eligible)
        bookings = []
        for order, resolution in zip(eligible, resolutions):
            metadata = extract_metadata(order)
            schedule = parse_schedule(metadata.event_schedule_text)
            bookings.append(build_booking(order, metadata, schedule, resolution))
        orders_normalized_total.inc(len(bookings))
        return bookings
