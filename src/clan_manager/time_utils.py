"""
Date and time helpers.

- War week ids (``YYWNN``) derived from the ISO-8601 week of a date
- Parsing of the stats API's compact timestamps (``20240105T123456.000Z``)
- Cycle day index (ISO weekday) in the clan's timezone
- Half-up rounding that matches the scoring formulas' integer outputs
"""

import math
import re
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Optional, Union

from dateutil import parser, tz

API_TIMESTAMP_PATTERN = re.compile(
    r"^(\d{4})(\d{2})(\d{2})T(\d{2})(\d{2})(\d{2})"
)
WEEK_ID_PATTERN = re.compile(r"^\d{2}W\d{2}$")

DAY = timedelta(days=1)


def get_timezone(name: str) -> tzinfo:
    """Resolve an IANA timezone name, falling back to UTC for unknown names."""
    zone = tz.gettz(name)
    return zone if zone is not None else timezone.utc


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves going up (``2.5 -> 3``, ``-2.5 -> -2``)."""
    return int(math.floor(value + 0.5))


def war_week_id(moment: Union[date, datetime], zone: Optional[tzinfo] = None) -> str:
    """
    Return the ``YYWNN`` id of the ISO week containing ``moment``.

    The two-digit year is the ISO year (the year of the week's Thursday),
    so lexicographic order of ids is chronological order.
    """
    if isinstance(moment, datetime):
        if zone is not None and moment.tzinfo is not None:
            moment = moment.astimezone(zone)
        day = moment.date()
    else:
        day = moment
    iso_year, iso_week, _ = day.isocalendar()
    return f"{iso_year % 100:02d}W{iso_week:02d}"


def is_week_id(value: str) -> bool:
    return isinstance(value, str) and bool(WEEK_ID_PATTERN.match(value))


def parse_api_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an API timestamp into an aware UTC datetime.

    Accepts the compact API format and ISO-8601 strings; returns None for
    missing or unparseable input.
    """
    if not value or not isinstance(value, str):
        return None

    match = API_TIMESTAMP_PATTERN.match(value.strip())
    if match:
        year, month, day, hour, minute, second = (int(g) for g in match.groups())
        try:
            return datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc)
        except ValueError:
            return None

    return parse_iso(value)


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 string into an aware UTC datetime."""
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = parser.isoparse(value.strip())
    except (ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def day_index(moment: datetime, zone: tzinfo) -> int:
    """ISO weekday (1=Monday .. 7=Sunday) of ``moment`` in ``zone``."""
    return moment.astimezone(zone).isoweekday()


def local_date(moment: datetime, zone: tzinfo) -> date:
    return moment.astimezone(zone).date()


def start_of_day(day: date, zone: tzinfo) -> datetime:
    """Aware datetime at local midnight of ``day``."""
    return datetime(day.year, day.month, day.day, tzinfo=zone)


def days_between(earlier: datetime, later: datetime) -> float:
    """Fractional number of days from ``earlier`` to ``later`` (may be negative)."""
    return (later - earlier) / DAY


def epoch_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def from_epoch_ms(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
