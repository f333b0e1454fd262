import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from ..database import Base


class CalendarFeed(Base):
    """An external iCal feed registered on a listing"""
    __tablename__ = "listing_calendar_feeds"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    listing_id = Column(String(36), ForeignKey("listings.id", ondelete="CASCADE"), nullable=False)
    label = Column(String(200), nullable=False, default="OTA Feed")
    url = Column(String(1000), nullable=False)
    source = Column(String(30), default="other")  # airbnb, vrbo, bookingcom, expedia, other
    color = Column(String(20), nullable=True)
    last_synced_at = Column(DateTime, nullable=True)  # naive UTC

    created_at = Column(DateTime, default=datetime.utcnow)

    listing = relationship("Listing", back_populates="calendar_feeds")

    __table_args__ = (
        Index("ix_feed_listing_url", "listing_id", "url"),
    )

    def __repr__(self):
        return f"<CalendarFeed {self.label} {self.url}>"
