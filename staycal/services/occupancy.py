"""
Occupancy Model

Normalizes bookings, manual blocks and externally synced blocks into one
``OccupancyInterval`` shape the timeline engine reasons about.

Rules:
- ``end`` is always exclusive (checkout day / end of last blocked minute)
- paid/confirmed bookings -> direct_confirmed, pending/awaiting payment -> direct_pending
- cancelled, declined and failed bookings never enter the occupancy set
- rows missing a listing, start or end are dropped and counted
"""

import enum
import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from pydantic import ValidationError

from ..schemas.occupancy import BlockRow, BookingRow
from ..utils.dates import (
    DayRange,
    TimezoneLike,
    add_days,
    add_minutes,
    day_key,
    diff_in_days,
    resolve_timezone,
    start_of_day,
    to_datetime,
)

logger = logging.getLogger(__name__)


class Channel(str, enum.Enum):
    """Where an occupancy interval came from"""
    DIRECT_CONFIRMED = "direct_confirmed"
    DIRECT_PENDING = "direct_pending"
    MANUAL = "manual"
    AIRBNB = "airbnb"
    VRBO = "vrbo"
    BOOKING_COM = "bookingcom"
    EXPEDIA = "expedia"
    OTHER = "other"

    @property
    def is_booking(self) -> bool:
        return self in (Channel.DIRECT_CONFIRMED, Channel.DIRECT_PENDING)

    @property
    def is_external(self) -> bool:
        return self in EXTERNAL_CHANNELS


EXTERNAL_CHANNELS = frozenset({
    Channel.AIRBNB, Channel.VRBO, Channel.BOOKING_COM, Channel.EXPEDIA, Channel.OTHER,
})


class Granularity(str, enum.Enum):
    DAY = "day"
    TIME = "time"


class DayState(str, enum.Enum):
    FREE = "free"
    DIRECT_CONFIRMED = "direct_confirmed"
    DIRECT_PENDING = "direct_pending"
    BLOCKED = "blocked"
    EXTERNAL = "external"
    CONFLICT = "conflict"


CHANNEL_COLORS = {
    "direct": "#0f172a",
    "manual": "#fb923c",
    "airbnb": "#ff385c",
    "vrbo": "#2563eb",
    "bookingcom": "#2563eb",
    "expedia": "#fcd34d",
    "other": "#7c3aed",
}

CHANNEL_TEXT = {
    "direct": "Direct booking",
    "manual": "Manual block",
    "airbnb": "Airbnb",
    "vrbo": "Vrbo",
    "bookingcom": "Booking.com",
    "expedia": "Expedia",
    "other": "External",
}

BLOCK_SOURCE_TEXT = {
    Channel.MANUAL: "Manual block",
    Channel.AIRBNB: "Airbnb iCal",
    Channel.VRBO: "Vrbo iCal",
    Channel.BOOKING_COM: "Booking.com",
    Channel.EXPEDIA: "Expedia",
    Channel.OTHER: "External block",
}

EXTERNAL_BLOCK_COLOR = "#e2e8f0"

CONFIRMED_STATUSES = frozenset({"paid", "confirmed"})
# "approved" is host-approved but unpaid; it still holds the dates
PENDING_STATUSES = frozenset({"pending", "awaiting_payment", "approved"})
HOURLY_STAY_TYPES = frozenset({"day_use", "split_rest"})

SOURCE_ALIASES = {
    "manual": Channel.MANUAL,
    "airbnb": Channel.AIRBNB,
    "vrbo": Channel.VRBO,
    "bookingcom": Channel.BOOKING_COM,
    "booking.com": Channel.BOOKING_COM,
    "booking_com": Channel.BOOKING_COM,
    "expedia": Channel.EXPEDIA,
    "other": Channel.OTHER,
}

# First match wins. The order is inherited from historical data and is
# arbitrary; it is not business logic.
LABEL_HINTS: Tuple[Tuple[str, Channel], ...] = (
    ("airbnb", Channel.AIRBNB),
    ("vrbo", Channel.VRBO),
    ("booking", Channel.BOOKING_COM),
    ("expedia", Channel.EXPEDIA),
)


@dataclass(frozen=True)
class OccupancyInterval:
    """A span during which a listing is unavailable. ``end`` is exclusive."""
    id: str
    resource_id: str
    start: datetime
    end: datetime
    channel: Channel
    granularity: Granularity = Granularity.DAY
    mutable: bool = False
    label: str = ""
    color: str = ""
    meta: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def __post_init__(self):
        if self.end < self.start:
            raise ValueError(f"Interval {self.id} ends before it starts")

    @property
    def is_zero_width(self) -> bool:
        return self.end <= self.start

    @property
    def display_end(self) -> datetime:
        """Last occupied instant, for labels only."""
        if self.is_zero_width:
            return self.end
        if self.granularity == Granularity.DAY:
            return add_days(self.end, -1)
        return add_minutes(self.end, -1)

    @property
    def first_day(self) -> date:
        return day_key(self.start, self.start.tzinfo)

    @property
    def last_day(self) -> date:
        return day_key(self.display_end, self.display_end.tzinfo)

    def covered_days(self) -> Union[DayRange, Tuple[()]]:
        """Calendar days occupied by the interval (none when zero-width)."""
        if self.is_zero_width:
            return ()
        return DayRange(self.start, self.display_end, self.start.tzinfo)

    def covers_day(self, day: date) -> bool:
        if self.is_zero_width:
            return False
        return self.first_day <= day <= self.last_day

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start < end and start < self.end

    def with_meta(self, **changes) -> "OccupancyInterval":
        meta = dict(self.meta)
        meta.update(changes)
        return replace(self, meta=meta)


@dataclass
class NormalizeResult:
    intervals: Tuple[OccupancyInterval, ...]
    dropped_bookings: int = 0
    dropped_blocks: int = 0
    excluded_bookings: int = 0

    @property
    def dropped(self) -> int:
        return self.dropped_bookings + self.dropped_blocks


# ================================
# CLASSIFICATION
# ================================

def _normalize_token(value: Optional[str]) -> str:
    return (value or "").strip().lower().replace("-", "_").replace(" ", "_")


def classify_booking_status(status: Optional[str]) -> Optional[Channel]:
    """Channel for a booking status, or None when the booking must not occupy."""
    token = _normalize_token(status)
    if token in CONFIRMED_STATUSES:
        return Channel.DIRECT_CONFIRMED
    if token in PENDING_STATUSES:
        return Channel.DIRECT_PENDING
    return None


def classify_label_heuristic(label: Optional[str]) -> Optional[Channel]:
    """
    Guess the channel from a block's free-text label.

    Historical rows predate the explicit ``source`` column; this fallback
    can go once they are backfilled.
    """
    text = (label or "").lower()
    for hint, channel in LABEL_HINTS:
        if hint in text:
            return channel
    return None


def classify_block_source(source: Optional[str], label: Optional[str]) -> Channel:
    """
    Explicit ``source`` first, then the label heuristic.

    Nothing matching, whether the source is absent or unrecognized, means a
    host-created manual block. Only an explicit "other" source is OTHER.
    """
    token = (source or "").strip().lower()
    if token in SOURCE_ALIASES:
        return SOURCE_ALIASES[token]

    return classify_label_heuristic(label) or Channel.MANUAL


def resolve_day_state(intervals: Iterable[OccupancyInterval]) -> DayState:
    """Summarize the intervals covering one day."""
    buckets = set()
    for interval in intervals:
        if interval.channel == Channel.DIRECT_CONFIRMED:
            buckets.add(DayState.DIRECT_CONFIRMED)
        elif interval.channel == Channel.DIRECT_PENDING:
            buckets.add(DayState.DIRECT_PENDING)
        elif interval.channel == Channel.MANUAL:
            buckets.add(DayState.BLOCKED)
        else:
            buckets.add(DayState.EXTERNAL)

    if not buckets:
        return DayState.FREE
    if len(buckets) > 1:
        return DayState.CONFLICT
    return buckets.pop()


# ================================
# NORMALIZATION
# ================================

def _is_date_only(value: Any) -> bool:
    if isinstance(value, datetime):
        return False
    if isinstance(value, date):
        return True
    return isinstance(value, str) and len(value.strip()) == 10


def _to_local(value: Any, tz: TimezoneLike) -> datetime:
    moment = to_datetime(value)
    zone = resolve_timezone(tz)
    if zone is None:
        return moment
    if moment.tzinfo is None:
        return moment.replace(tzinfo=zone)
    return moment.astimezone(zone)


def _coerce(model, row):
    if isinstance(row, model):
        return row
    if isinstance(row, Mapping):
        return model.model_validate(dict(row))
    return model.model_validate(row, from_attributes=True)


def booking_to_interval(
    row: BookingRow,
    channel: Channel,
    tz: TimezoneLike = None,
    listing_title: Optional[str] = None,
    default_currency: str = "GBP",
) -> OccupancyInterval:
    """Build the interval for an active booking. Raises ValueError on bad dates."""
    hourly = _normalize_token(row.stay_type) in HOURLY_STAY_TYPES
    granularity = Granularity.TIME if hourly else Granularity.DAY

    if _is_date_only(row.check_in):
        start = start_of_day(row.check_in, tz)
    else:
        start = _to_local(row.check_in, tz)
    if _is_date_only(row.check_out):
        end = start_of_day(row.check_out, tz)
    else:
        end = _to_local(row.check_out, tz)

    if end <= start:
        logger.warning(f"Booking {row.id} checks out before check-in, clamping to zero width")
        end = start

    booking_channel = (row.channel or "direct").strip().lower()
    label = (row.guest_name or "").strip() or (listing_title or "").strip() or "Booking"
    nights = max(0, diff_in_days(end, start, start.tzinfo)) if granularity == Granularity.DAY else None

    meta = {
        "kind": "booking",
        "status": row.status,
        "total": row.price_total,
        "currency": row.currency or default_currency,
        "guest_name": row.guest_name,
        "stay_type": row.stay_type,
        "booking_channel": booking_channel,
        "badge_label": CHANNEL_TEXT.get(booking_channel, "Booking"),
        "nights": nights,
        "is_hourly": hourly,
    }

    return OccupancyInterval(
        id=row.id or f"booking-{row.resource_id}-{start.isoformat()}",
        resource_id=row.resource_id,
        start=start,
        end=end,
        channel=channel,
        granularity=granularity,
        mutable=False,
        label=label,
        color=CHANNEL_COLORS.get(booking_channel, CHANNEL_COLORS["direct"]),
        meta=meta,
    )


def block_to_interval(row: BlockRow, tz: TimezoneLike = None) -> OccupancyInterval:
    """
    Build the interval for a calendar block.

    Day blocks store their last blocked day, so the exclusive end is one day
    later. Instant bounds are already exclusive.
    """
    channel = classify_block_source(row.source, row.label)

    if row.start_at and row.end_at:
        start_raw, end_raw = row.start_at, row.end_at
    else:
        start_raw, end_raw = row.start, row.end

    if _is_date_only(start_raw) and _is_date_only(end_raw):
        granularity = Granularity.DAY
        start = start_of_day(start_raw, tz)
        end = add_days(start_of_day(end_raw, tz), 1)
    else:
        granularity = Granularity.TIME
        start = _to_local(start_raw, tz)
        end = _to_local(end_raw, tz)

    if end <= start:
        logger.warning(f"Block {row.id} ends before it starts, clamping to zero width")
        end = start

    is_manual = channel == Channel.MANUAL
    label = (row.label or "").strip() or ("Manual block" if is_manual else "External block")
    if is_manual:
        color = row.color or CHANNEL_COLORS["manual"]
    else:
        color = EXTERNAL_BLOCK_COLOR

    nights = None
    if granularity == Granularity.DAY:
        nights = max(1, diff_in_days(end, start, start.tzinfo))

    meta = {
        "kind": "block",
        "source": channel.value,
        "badge_label": BLOCK_SOURCE_TEXT[channel],
        "notes": row.notes,
        "reason": row.notes,
        "nights": nights,
        "is_hourly": granularity == Granularity.TIME,
    }

    return OccupancyInterval(
        id=row.id or f"{channel.value}-{row.resource_id}-{start.isoformat()}",
        resource_id=row.resource_id,
        start=start,
        end=end,
        channel=channel,
        granularity=granularity,
        mutable=is_manual,
        label=label,
        color=color,
        meta=meta,
    )


def _zone_for(resource_id: str, timezones: Optional[Mapping[str, str]], default_tz: TimezoneLike):
    if timezones and timezones.get(resource_id):
        return timezones[resource_id]
    return default_tz


def normalize_bookings(
    rows: Iterable[Union[BookingRow, Mapping]],
    timezones: Optional[Mapping[str, str]] = None,
    default_tz: TimezoneLike = None,
    listing_titles: Optional[Mapping[str, str]] = None,
) -> NormalizeResult:
    intervals: List[OccupancyInterval] = []
    dropped = 0
    excluded = 0

    for raw in rows or ():
        try:
            row = _coerce(BookingRow, raw)
        except ValidationError:
            dropped += 1
            continue

        if not row.resource_id or not row.check_in or not row.check_out:
            dropped += 1
            continue

        channel = classify_booking_status(row.status)
        if channel is None:
            excluded += 1
            continue

        try:
            intervals.append(booking_to_interval(
                row,
                channel,
                tz=_zone_for(row.resource_id, timezones, default_tz),
                listing_title=(listing_titles or {}).get(row.resource_id),
            ))
        except (ValueError, TypeError) as e:
            logger.warning(f"Dropping booking {row.id}: {e}")
            dropped += 1

    return NormalizeResult(
        intervals=tuple(intervals),
        dropped_bookings=dropped,
        excluded_bookings=excluded,
    )


def normalize_blocks(
    rows: Iterable[Union[BlockRow, Mapping]],
    timezones: Optional[Mapping[str, str]] = None,
    default_tz: TimezoneLike = None,
) -> NormalizeResult:
    intervals: List[OccupancyInterval] = []
    dropped = 0

    for raw in rows or ():
        try:
            row = _coerce(BlockRow, raw)
        except ValidationError:
            dropped += 1
            continue

        has_days = row.start and row.end
        has_times = row.start_at and row.end_at
        if not row.resource_id or not (has_days or has_times):
            dropped += 1
            continue

        try:
            intervals.append(block_to_interval(row, tz=_zone_for(row.resource_id, timezones, default_tz)))
        except (ValueError, TypeError) as e:
            logger.warning(f"Dropping block {row.id}: {e}")
            dropped += 1

    return NormalizeResult(intervals=tuple(intervals), dropped_blocks=dropped)


def normalize(
    booking_rows: Iterable[Union[BookingRow, Mapping]],
    block_rows: Iterable[Union[BlockRow, Mapping]],
    timezones: Optional[Mapping[str, str]] = None,
    default_tz: TimezoneLike = None,
    listing_titles: Optional[Mapping[str, str]] = None,
) -> NormalizeResult:
    """
    Bookings and blocks -> occupancy intervals.

    Never raises on bad rows; they are counted in ``dropped_*``.
    """
    bookings = normalize_bookings(booking_rows, timezones, default_tz, listing_titles)
    blocks = normalize_blocks(block_rows, timezones, default_tz)

    result = NormalizeResult(
        intervals=bookings.intervals + blocks.intervals,
        dropped_bookings=bookings.dropped_bookings,
        dropped_blocks=blocks.dropped_blocks,
        excluded_bookings=bookings.excluded_bookings,
    )
    if result.dropped:
        logger.info(
            f"Normalization dropped {result.dropped_bookings} bookings and "
            f"{result.dropped_blocks} blocks with missing fields"
        )
    return result


def group_by_resource(intervals: Iterable[OccupancyInterval]) -> Dict[str, List[OccupancyInterval]]:
    """Intervals per listing, keeping input order."""
    groups: Dict[str, List[OccupancyInterval]] = {}
    for interval in intervals:
        groups.setdefault(interval.resource_id, []).append(interval)
    return groups


def intervals_for_resource(
    intervals: Sequence[OccupancyInterval],
    resource_id: str,
) -> List[OccupancyInterval]:
    return [interval for interval in intervals if interval.resource_id == resource_id]


def intervals_covering_day(
    intervals: Iterable[OccupancyInterval],
    resource_id: str,
    day: date,
) -> List[OccupancyInterval]:
    return [
        interval for interval in intervals
        if interval.resource_id == resource_id and interval.covers_day(day)
    ]
