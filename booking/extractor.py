"""Cowlendar metadata extraction from order attribute bags.

Shopify stores the booking widget's data in two places: order-level
note_attributes (older checkouts) and line item properties (current
checkouts). Both are flattened into one ordered sequence of entries, note
attributes first, so a single pass with last-write-wins semantics decides
every field.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Optional

from config import DEFAULT_METADATA_PREFIX
from booking.models import CowlendarMetadata, RawOrder

INTERNAL_ID_KEY = "__cow_internal_id"
INTEGRITY_KEY = "__cow_integrity"
DATE_KEY = "Date"

SOURCE_NOTE = "note_attribute"
SOURCE_LINE_ITEM = "line_item_property"


@dataclass(frozen=True)
class AttributeEntry:
    source: str
    key: Optional[str]
    value: Optional[str]


def iter_attributes(order: RawOrder) -> Iterator[AttributeEntry]:
    """Yield note attributes, then every line item's properties, in order."""
    for attr in order.note_attributes:
        yield AttributeEntry(SOURCE_NOTE, attr.name, attr.value)
    for item in order.line_items:
        for prop in item.properties:
            yield AttributeEntry(SOURCE_LINE_ITEM, prop.name, prop.value)


def _is_schedule_key(key: str) -> bool:
    # NOTE: any key containing "data" counts, which can pick up unrelated
    # attributes; the last one scanned wins.
    return key == DATE_KEY or "data" in key.lower()


def extract_metadata(order: RawOrder) -> CowlendarMetadata:
    schedule_text: Optional[str] = None
    internal_id: Optional[str] = None
    integrity: Optional[str] = None

    for entry in iter_attributes(order):
        if not entry.key:
            continue
        if entry.key == INTERNAL_ID_KEY:
            internal_id = entry.value
        elif entry.key == INTEGRITY_KEY:
            integrity = entry.value
        elif _is_schedule_key(entry.key):
            schedule_text = entry.value

    return CowlendarMetadata(
        event_schedule_text=schedule_text,
        internal_id=internal_id,
        integrity_token=integrity,
    )


def has_cowlendar_metadata(order: RawOrder, prefix: str = DEFAULT_METADATA_PREFIX) -> bool:
    """True iff any attribute key starts with the Cowlendar prefix."""
    return any(
        entry.key and entry.key.startswith(prefix)
        for entry in iter_attributes(order)
    )
