"""Order-to-booking normalization pipeline."""

from booking.extractor import extract_metadata, has_cowlendar_metadata
from booking.models import (
    BookingFilter,
    CanonicalBooking,
    CowlendarMetadata,
    ParsedSchedule,
    ProviderResolution,
    RawOrder,
)
from booking.normalizer import OrderNormalizer, build_booking
from booking.providers import ProviderResolver, serves_provider
from booking.query import clamp_limit, query_bookings
from booking.schedule import parse_schedule
from booking.service import BookingService

__all__ = [
    "BookingFilter",
    "BookingService",
    "CanonicalBooking",
    "CowlendarMetadata",
    "OrderNormalizer",
    "ParsedSchedule",
    "ProviderResolution",
    "ProviderResolver",
    "RawOrder",
    "build_booking",
    "clamp_limit",
    "extract_metadata",
    "has_cowlendar_metadata",
    "parse_schedule",
    "query_bookings",
    "serves_provider",
]
