"""
Calendar Block Model

Host-created manual blocks and blocks imported from external iCal feeds.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, Date, DateTime, Text, ForeignKey, Index
from sqlalchemy.orm import relationship
from ..database import Base


class CalendarBlock(Base):
    """
    A blocked span on a listing's calendar.

    ``end_date`` is the last blocked day (inclusive). Hourly blocks also set
    ``start_at``/``end_at`` as naive UTC instants with an exclusive end.
    """
    __tablename__ = "listing_calendar_blocks"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    listing_id = Column(String(36), ForeignKey("listings.id", ondelete="CASCADE"), nullable=False)

    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    start_at = Column(DateTime, nullable=True)
    end_at = Column(DateTime, nullable=True)

    source = Column(String(30), default="manual")  # manual, airbnb, vrbo, bookingcom, expedia, other
    label = Column(String(200), nullable=True)
    color = Column(String(20), nullable=True)
    notes = Column(Text, nullable=True)
    created_by = Column(String(36), nullable=True)

    # Feed imports
    feed_url = Column(String(1000), nullable=True)
    external_uid = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    listing = relationship("Listing", back_populates="calendar_blocks")

    __table_args__ = (
        Index("ix_block_listing_dates", "listing_id", "start_date", "end_date"),
        Index("ix_block_feed", "listing_id", "feed_url"),
    )
