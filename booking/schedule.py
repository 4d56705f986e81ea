"""Parse Cowlendar schedule strings.

The widget writes schedules like::

    30 nov 2025, 17:00 - 18:30 (Europe/Rome)

`parse_schedule` is total: anything it cannot read collapses to an empty
ParsedSchedule in UTC instead of raising.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from booking.models import ParsedSchedule

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "UTC"

MONTH_ABBREVIATIONS = (
    "jan", "feb", "mar", "apr", "may", "jun",
    "jul", "aug", "sep", "oct", "nov", "dec",
)
_MONTH_NAMES = (
    "january", "february", "march", "april", "may", "june",
    "july", "august", "september", "october", "november", "december",
)

_TIMEZONE_RE = re.compile(r"\(([^)]+)\)$")
_SCHEDULE_RE = re.compile(r"^(.+?),\s*(\d{2}):(\d{2})\s*-\s*(\d{2}):(\d{2})")
_DATE_PART_RE = re.compile(r"^(\d{1,2})\s+([A-Za-z]+)\.?\s+(\d{4})$")

EMPTY_SCHEDULE = ParsedSchedule()


def month_number(token: str) -> Optional[int]:
    """Month number for a three-letter abbreviation or full English name."""
    lowered = token.lower()
    if lowered in MONTH_ABBREVIATIONS:
        return MONTH_ABBREVIATIONS.index(lowered) + 1
    if lowered in _MONTH_NAMES:
        return _MONTH_NAMES.index(lowered) + 1
    return None


def resolve_timezone(name: Optional[str]) -> str:
    """Return `name` if it is a known IANA zone, else UTC."""
    if not name:
        return DEFAULT_TIMEZONE
    candidate = name.strip()
    try:
        ZoneInfo(candidate)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        logger.debug("Unknown timezone %r, falling back to UTC", candidate)
        return DEFAULT_TIMEZONE
    return candidate


def parse_date_part(date_part: str) -> Optional[date]:
    match = _DATE_PART_RE.match(date_part.strip())
    if not match:
        return None
    day, month_token, year = match.groups()
    month = month_number(month_token)
    if month is None:
        return None
    try:
        return date(int(year), month, int(day))
    except ValueError:
        return None


def _to_instant(day: date, hours: int, minutes: int, tz: ZoneInfo) -> datetime:
    # Wall-clock arithmetic: 24:00 rolls into the next local day.
    local_midnight = datetime(day.year, day.month, day.day, tzinfo=tz)
    return (local_midnight + timedelta(hours=hours, minutes=minutes)).astimezone(timezone.utc)


def parse_schedule(text: Optional[str]) -> ParsedSchedule:
    if not text or not text.strip():
        return EMPTY_SCHEDULE

    text = text.strip()
    tz_match = _TIMEZONE_RE.search(text)
    tz_name = resolve_timezone(tz_match.group(1) if tz_match else None)

    match = _SCHEDULE_RE.match(text)
    if not match:
        logger.debug("Unable to parse event schedule %r", text)
        return EMPTY_SCHEDULE

    date_part, start_h, start_m, end_h, end_m = match.groups()
    event_day = parse_date_part(date_part)
    if event_day is None:
        logger.debug("Unable to parse event date %r", date_part)
        return EMPTY_SCHEDULE

    tz = ZoneInfo(tz_name)
    return ParsedSchedule(
        event_date=event_day.isoformat(),
        start_time=f"{start_h}:{start_m}",
        end_time=f"{end_h}:{end_m}",
        timezone=tz_name,
        start_datetime=_to_instant(event_day, int(start_h), int(start_m), tz),
        end_datetime=_to_instant(event_day, int(end_h), int(end_m), tz),
    )
