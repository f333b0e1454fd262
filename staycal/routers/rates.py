"""
Rates API Router

Per-night price overrides shown on the host calendar.
"""

from typing import List

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from ..database import get_db
from ..exceptions import ValidationFailure
from ..schemas.rates import RatesResponse, RatesUpdate, RatesUpdateResponse
from ..services.pricing_engine import PricingEngine
from ..utils.dates import parse_iso_date
from ..utils.dependencies import MANAGE_CALENDAR, require_capability
from ..utils.rate_limiter import limiter, get_rate_limit

router = APIRouter(prefix="/api/rates", tags=["Rates"])


@router.get("", response_model=RatesResponse)
@limiter.limit(get_rate_limit("timeline"))
async def get_rates(
    request: Request,
    listing_id: List[str] = Query(..., min_length=1),
    start: str = Query(...),
    end: str = Query(...),
    db: Session = Depends(get_db),
):
    """Stored rates keyed by listing, then ISO date. Missing dates use the base price."""
    try:
        first = parse_iso_date(start).date()
        last = parse_iso_date(end).date()
    except ValueError:
        raise ValidationFailure("Invalid date. Use YYYY-MM-DD.")
    return RatesResponse(rates=PricingEngine(db).rates_for_window(listing_id, first, last))


@router.put(
    "",
    response_model=RatesUpdateResponse,
    dependencies=[Depends(require_capability(MANAGE_CALENDAR))],
)
@limiter.limit(get_rate_limit("rate_write"))
async def set_rates(
    request: Request,
    body: RatesUpdate,
    db: Session = Depends(get_db),
):
    updated = PricingEngine(db).set_nightly_rates(
        body.listing_id, body.start_date, body.end_date, body.price, body.currency
    )
    return RatesUpdateResponse(updated=updated)
