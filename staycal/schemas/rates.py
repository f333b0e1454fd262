from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, Optional
from datetime import date
from decimal import Decimal


class RateEntry(BaseModel):
    price: float
    currency: str


class RatesResponse(BaseModel):
    rates: Dict[str, Dict[str, RateEntry]] = {}


class RatesUpdate(BaseModel):
    """One price for every night from ``start_date`` to ``end_date`` inclusive."""
    model_config = ConfigDict(populate_by_name=True)

    listing_id: str = Field(..., alias="listingId", min_length=1)
    start_date: date = Field(..., alias="startDate")
    end_date: date = Field(..., alias="endDate")
    price: Decimal
    currency: Optional[str] = Field(None, min_length=3, max_length=3)


class RatesUpdateResponse(BaseModel):
    ok: bool = True
    updated: int
