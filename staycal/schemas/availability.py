from pydantic import BaseModel, ConfigDict, Field
from typing import List
from datetime import date, datetime


class AvailabilityResponse(BaseModel):
    """Nights in ``[from, to)`` that cannot be booked."""
    model_config = ConfigDict(populate_by_name=True)

    listing_id: str
    from_date: date = Field(..., alias="from")
    to_date: date = Field(..., alias="to")
    booked: List[date] = []
    blocked: List[date] = []
    generated_at: datetime
