import uuid
import enum
from datetime import datetime
from sqlalchemy import Column, String, Date, DateTime, Numeric, ForeignKey, Index
from sqlalchemy.orm import relationship
from ..database import Base


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    AWAITING_PAYMENT = "awaiting_payment"
    APPROVED = "approved"
    CONFIRMED = "confirmed"
    PAID = "paid"
    CANCELLED = "cancelled"
    DECLINED = "declined"
    PAYMENT_FAILED = "payment_failed"


# Statuses that hold the dates on the calendar
ACTIVE_BOOKING_STATUSES = (
    BookingStatus.PENDING.value,
    BookingStatus.AWAITING_PAYMENT.value,
    BookingStatus.APPROVED.value,
    BookingStatus.CONFIRMED.value,
    BookingStatus.PAID.value,
)

# The only statuses the calendar may set
CANCELLATION_STATUSES = (
    BookingStatus.CANCELLED.value,
    BookingStatus.DECLINED.value,
)


class StayType(str, enum.Enum):
    NIGHTLY = "nightly"
    DAY_USE = "day_use"
    SPLIT_REST = "split_rest"


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    listing_id = Column(String(36), ForeignKey("listings.id", ondelete="CASCADE"), nullable=False)
    guest_full_name = Column(String(200), nullable=True)

    # Nightly stays use the dates; hourly stays also carry UTC instants
    check_in = Column(Date, nullable=False)
    check_out = Column(Date, nullable=False)
    check_in_time = Column(DateTime, nullable=True)
    check_out_time = Column(DateTime, nullable=True)
    stay_type = Column(String(20), default=StayType.NIGHTLY.value)

    status = Column(String(30), default=BookingStatus.PENDING.value)
    channel = Column(String(30), default="direct")
    price_total = Column(Numeric(10, 2), nullable=True)
    currency = Column(String(3), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    listing = relationship("Listing", back_populates="bookings")

    __table_args__ = (
        Index("ix_booking_listing_dates", "listing_id", "check_in", "check_out"),
        Index("ix_booking_status", "status"),
    )

    def __repr__(self):
        return f"<Booking {self.id} {self.status}>"
