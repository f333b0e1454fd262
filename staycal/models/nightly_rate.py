import uuid
from datetime import datetime
from sqlalchemy import Column, String, Date, DateTime, Numeric, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from ..database import Base


class NightlyRate(Base):
    """Per-date price override; dates without one use the listing base price"""
    __tablename__ = "nightly_rates"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    listing_id = Column(String(36), ForeignKey("listings.id", ondelete="CASCADE"), nullable=False)
    date = Column(Date, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    listing = relationship("Listing", back_populates="nightly_rates")

    __table_args__ = (
        UniqueConstraint("listing_id", "date", name="uq_nightly_rate_listing_date"),
    )
