# Models package
from .listing import Listing
from .booking import Booking, BookingStatus, StayType, ACTIVE_BOOKING_STATUSES, CANCELLATION_STATUSES
from .calendar_block import CalendarBlock
from .calendar_feed import CalendarFeed
from .nightly_rate import NightlyRate

__all__ = [
    "Listing",
    "Booking", "BookingStatus", "StayType", "ACTIVE_BOOKING_STATUSES", "CANCELLATION_STATUSES",
    "CalendarBlock",
    "CalendarFeed",
    "NightlyRate",
]
