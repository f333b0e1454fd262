"""
Guest Availability

Which nights of a window a guest cannot book. Uses the same occupancy
normalization as the host timeline, so both views always agree.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional, Set

from sqlalchemy.orm import Session

from ..config import settings
from ..exceptions import CalendarError, NotFound, ValidationFailure
from .occupancy import Granularity, normalize
from .occupancy_store import OccupancyStore

logger = logging.getLogger(__name__)


@dataclass
class NightAvailability:
    listing_id: str
    start: date
    end: date  # exclusive
    booked: List[date] = field(default_factory=list)
    blocked: List[date] = field(default_factory=list)


class AvailabilityService:
    def __init__(self, db: Session, max_days: Optional[int] = None):
        self.db = db
        self.store = OccupancyStore(db)
        self.max_days = max_days or settings.max_availability_days

    def nights_for_window(self, listing_id: str, start: date, end: date) -> NightAvailability:
        """
        Booked and blocked nights in ``[start, end)``, each sorted.

        Only nightly stays in an active status count as booked. Blocked nights
        never repeat a booked night.
        """
        if end <= start:
            raise ValidationFailure("`to` must be after `from`.")
        if (end - start).days > self.max_days:
            raise ValidationFailure("Date window too large.")

        listing = self.store.get_listing(listing_id)
        if listing is None:
            raise NotFound("Listing not found")

        fetch = self.store.fetch_occupancy([listing_id], window_start=start, window_end=end)
        if fetch.partial:
            raise CalendarError("Failed to load availability.", details=fetch.errors)

        result = normalize(
            fetch.bookings,
            fetch.blocks,
            default_tz=listing.timezone or settings.default_timezone,
        )

        booked: Set[date] = set()
        blocked: Set[date] = set()
        for interval in result.intervals:
            if interval.channel.is_booking and interval.granularity != Granularity.DAY:
                continue
            target = booked if interval.channel.is_booking else blocked
            for day_start in interval.covered_days():
                night = day_start.date()
                if start <= night < end:
                    target.add(night)

        return NightAvailability(
            listing_id=listing_id,
            start=start,
            end=end,
            booked=sorted(booked),
            blocked=sorted(blocked - booked),
        )

