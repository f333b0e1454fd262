import uuid
from datetime import datetime
from sqlalchemy import Column, String, Numeric, DateTime, Boolean
from sqlalchemy.orm import relationship
from ..database import Base


class Listing(Base):
    __tablename__ = "listings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    host_id = Column(String(36), nullable=True, index=True)
    title = Column(String(200), nullable=False)
    timezone = Column(String(64), nullable=True)  # IANA name, falls back to DEFAULT_TIMEZONE
    base_price = Column(Numeric(10, 2), nullable=True)  # per night, major units
    currency = Column(String(3), default="GBP")
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    bookings = relationship("Booking", back_populates="listing", cascade="all, delete-orphan")
    calendar_blocks = relationship("CalendarBlock", back_populates="listing", cascade="all, delete-orphan")
    nightly_rates = relationship("NightlyRate", back_populates="listing", cascade="all, delete-orphan")
    calendar_feeds = relationship("CalendarFeed", back_populates="listing", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Listing {self.title}>"
