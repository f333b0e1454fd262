from pydantic import BaseModel, ConfigDict, Field
from typing import List
from datetime import date
from decimal import Decimal


class BookingStatusUpdate(BaseModel):
    status: str = Field(..., min_length=1, max_length=30)


class BookingStatusResponse(BaseModel):
    ok: bool = True
    id: str
    status: str


class QuoteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    listing_id: str = Field(..., alias="listingId", min_length=1)
    check_in: date = Field(..., alias="checkIn")
    check_out: date = Field(..., alias="checkOut")


class NightlyPriceResponse(BaseModel):
    date: date
    price: Decimal
    currency: str
    is_override: bool = False


class QuoteResponse(BaseModel):
    listing_id: str
    nights: int
    currency: str
    base_minor: int
    service_fee_minor: int
    card_fee_minor: int
    total_minor: int
    nightly: List[NightlyPriceResponse] = []
