"""
Availability API Router

Public night-level availability for the booking widget.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from ..database import get_db
from ..exceptions import ValidationFailure
from ..schemas.availability import AvailabilityResponse
from ..services.availability_service import AvailabilityService
from ..utils.dates import parse_iso_date
from ..utils.rate_limiter import limiter, get_rate_limit

router = APIRouter(prefix="/api/listings", tags=["Availability"])


@router.get("/{listing_id}/availability", response_model=AvailabilityResponse, response_model_by_alias=True)
@limiter.limit(get_rate_limit("availability"))
async def get_availability(
    request: Request,
    listing_id: str,
    from_: str = Query(..., alias="from"),
    to: str = Query(...),
    db: Session = Depends(get_db),
):
    """
    Booked and blocked nights in ``[from, to)``.

    A blocked night that is also booked is listed only as booked.
    """
    try:
        start = parse_iso_date(from_).date()
        end = parse_iso_date(to).date()
    except ValueError:
        raise ValidationFailure("Invalid date range. Use YYYY-MM-DD.")

    nights = AvailabilityService(db).nights_for_window(listing_id, start, end)
    return AvailabilityResponse(
        listing_id=listing_id,
        from_date=nights.start,
        to_date=nights.end,
        booked=nights.booked,
        blocked=nights.blocked,
        generated_at=datetime.now(timezone.utc),
    )
