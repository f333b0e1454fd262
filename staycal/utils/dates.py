"""
Calendar date primitives.

All helpers are pure. Values may be ``datetime``, ``date`` or ISO strings
("2024-03-01", "2024-03-01T15:00:00Z"). When a target timezone is supplied
the result depends only on that zone, never on the host machine's zone:

- aware values are converted into the zone
- naive values are read as wall-clock time in the zone

Without a timezone everything is local wall-clock time: aware values are
converted to the host zone and returned naive, naive values stay as they are.
Callers that want an aware value's own zone pass its ``tzinfo``.
"""

import calendar
import re
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Iterator, Optional, Union
from zoneinfo import ZoneInfo

DateLike = Union[datetime, date, str]
TimezoneLike = Union[str, tzinfo, None]

_ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")


def resolve_timezone(tz: TimezoneLike) -> Optional[tzinfo]:
    """Turn an IANA name or tzinfo into a tzinfo (None passes through)."""
    if tz is None or isinstance(tz, tzinfo):
        return tz
    return ZoneInfo(tz)


def to_datetime(value: DateLike) -> datetime:
    """Coerce a date, datetime or ISO string into a datetime."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            raise ValueError("Empty date string")
        if raw[-1] in ("Z", "z"):
            raw = raw[:-1] + "+00:00"
        return datetime.fromisoformat(raw)
    raise TypeError(f"Unsupported date value: {value!r}")


def _in_zone(value: DateLike, tz: TimezoneLike) -> datetime:
    moment = to_datetime(value)
    zone = resolve_timezone(tz)
    if zone is None:
        if moment.tzinfo is None:
            return moment
        return moment.astimezone().replace(tzinfo=None)
    if moment.tzinfo is None:
        return moment.replace(tzinfo=zone)
    return moment.astimezone(zone)


def start_of_day(value: DateLike, tz: TimezoneLike = None) -> datetime:
    """Midnight (local to ``tz``) of the calendar day containing ``value``."""
    moment = _in_zone(value, tz)
    return datetime(moment.year, moment.month, moment.day, tzinfo=moment.tzinfo)


def day_key(value: DateLike, tz: TimezoneLike = None) -> date:
    """The calendar date of ``value`` in ``tz``."""
    return _in_zone(value, tz).date()


def add_days(value: Union[datetime, date], amount: int):
    """
    Shift by whole calendar days.

    Aware datetimes shift in wall-clock time, so 00:00 stays 00:00 across
    a DST change.
    """
    return value + timedelta(days=amount)


def add_minutes(value: datetime, amount: int) -> datetime:
    """Shift by elapsed minutes (absolute time, DST-safe)."""
    if value.tzinfo is None:
        return value + timedelta(minutes=amount)
    shifted = value.astimezone(timezone.utc) + timedelta(minutes=amount)
    return shifted.astimezone(value.tzinfo)


def add_months(value: Union[datetime, date], amount: int):
    """Shift by calendar months, clamping to the last day of the target month."""
    month_index = value.month - 1 + amount
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def diff_in_days(target: DateLike, base: DateLike, tz: TimezoneLike = None) -> int:
    """Signed number of calendar days from ``base`` to ``target``."""
    return (day_key(target, tz) - day_key(base, tz)).days


def format_iso_date(value: DateLike, tz: TimezoneLike = None) -> str:
    """YYYY-MM-DD of the calendar day containing ``value`` in ``tz``."""
    return day_key(value, tz).isoformat()


def parse_iso_date(value: str, tz: TimezoneLike = None) -> datetime:
    """
    Parse YYYY-MM-DD into midnight of that day in ``tz``.

    ``parse_iso_date(format_iso_date(d, tz), tz) == start_of_day(d, tz)``
    """
    match = _ISO_DATE_RE.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise ValueError(f"Invalid date format, expected YYYY-MM-DD: {value!r}")
    year, month, day = (int(part) for part in match.groups())
    return datetime(year, month, day, tzinfo=resolve_timezone(tz))


class DayRange:
    """
    Day starts from ``start`` to ``end`` inclusive.

    Iteration is lazy and can be repeated; ``len()`` is the number of days.
    """

    def __init__(self, start: DateLike, end: DateLike, tz: TimezoneLike = None):
        self.first = start_of_day(start, tz)
        self.last = start_of_day(end, tz)

    def __iter__(self) -> Iterator[datetime]:
        cursor = self.first
        while cursor.date() <= self.last.date():
            yield cursor
            cursor = add_days(cursor, 1)

    def __len__(self) -> int:
        return max(0, (self.last.date() - self.first.date()).days + 1)

    def __repr__(self) -> str:
        return f"<DayRange {self.first.date()}..{self.last.date()}>"


def range_to_dates(start: DateLike, end: DateLike, tz: TimezoneLike = None) -> DayRange:
    return DayRange(start, end, tz)
