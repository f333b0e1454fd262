"""
Bookings API Router

Ops cancellation of bookings and guest price quotes.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ..database import get_db
from ..schemas.booking import (
    BookingStatusResponse,
    BookingStatusUpdate,
    NightlyPriceResponse,
    QuoteRequest,
    QuoteResponse,
)
from ..services.calendar_service import CalendarService
from ..services.pricing_engine import PricingEngine
from ..utils.dependencies import CANCEL_BOOKINGS, get_calendar_service, require_capability
from ..utils.rate_limiter import limiter, get_rate_limit

router = APIRouter(prefix="/api/bookings", tags=["Bookings"])


@router.patch(
    "/{booking_id}/status",
    response_model=BookingStatusResponse,
    dependencies=[Depends(require_capability(CANCEL_BOOKINGS))],
)
@limiter.limit(get_rate_limit("booking_update"))
async def update_booking_status(
    request: Request,
    booking_id: str,
    body: BookingStatusUpdate,
    service: CalendarService = Depends(get_calendar_service),
):
    """Cancel or decline a booking."""
    status = body.status.strip().lower()
    service.cancel_booking(booking_id, status)
    return BookingStatusResponse(id=booking_id, status=status)


@router.post("/quote", response_model=QuoteResponse)
@limiter.limit(get_rate_limit("quote"))
async def quote_stay(
    request: Request,
    body: QuoteRequest,
    db: Session = Depends(get_db),
):
    quote = PricingEngine(db).quote(body.listing_id, body.check_in, body.check_out)
    breakdown = quote.breakdown
    return QuoteResponse(
        listing_id=quote.listing_id,
        nights=quote.nights,
        currency=quote.currency,
        base_minor=breakdown.base_minor,
        service_fee_minor=breakdown.service_fee_minor,
        card_fee_minor=breakdown.card_fee_minor,
        total_minor=breakdown.total_minor,
        nightly=[
            NightlyPriceResponse(
                date=night.date,
                price=night.price,
                currency=night.currency,
                is_override=night.is_override,
            )
            for night in quote.nightly
        ],
    )
