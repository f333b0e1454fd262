"""
Pricing Engine Service

Nightly prices and guest quotes.

Pricing Formula (all amounts in minor units):
1. base = sum of nightly prices (per-date override, else listing base price)
2. service_fee = round(base * SERVICE_FEE_RATE)
3. total = ceil((base + service_fee + CARD_FIXED_FEE) / (1 - CARD_PERCENT_FEE))
4. card_fee = total - base - service_fee

The card fee is grossed up so the processor's cut is covered by the guest.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal, ROUND_CEILING, ROUND_HALF_UP
from typing import Dict, List, Optional, Sequence, Union

from sqlalchemy.orm import Session

from ..config import settings
from ..exceptions import NotFound, ValidationFailure
from ..models import Listing, NightlyRate

logger = logging.getLogger(__name__)

Amount = Union[Decimal, float, int, str]


@dataclass
class PricingBreakdown:
    """Quote amounts in minor units (pence)"""
    base_minor: int
    service_fee_minor: int
    card_fee_minor: int
    total_minor: int

    def to_major(self) -> Dict[str, Decimal]:
        cents = Decimal("0.01")
        return {
            "base": (Decimal(self.base_minor) / 100).quantize(cents),
            "service_fee": (Decimal(self.service_fee_minor) / 100).quantize(cents),
            "card_fee": (Decimal(self.card_fee_minor) / 100).quantize(cents),
            "total": (Decimal(self.total_minor) / 100).quantize(cents),
        }


@dataclass
class NightlyPrice:
    date: date
    price: Decimal
    currency: str
    is_override: bool = False


@dataclass
class Quote:
    listing_id: str
    check_in: date
    check_out: date
    nights: int
    currency: str
    breakdown: PricingBreakdown
    nightly: List[NightlyPrice] = field(default_factory=list)


def to_minor(amount: Amount) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_pricing_from_minor(
    base_minor: int,
    service_fee_rate: Optional[float] = None,
    card_percent_fee: Optional[float] = None,
    card_fixed_fee_minor: Optional[int] = None,
) -> PricingBreakdown:
    """Service fee and grossed-up card fee on top of ``base_minor``."""
    if base_minor < 0:
        raise ValidationFailure("Base amount cannot be negative")

    rate = Decimal(str(settings.service_fee_rate if service_fee_rate is None else service_fee_rate))
    percent = Decimal(str(settings.card_percent_fee if card_percent_fee is None else card_percent_fee))
    fixed = settings.card_fixed_fee_minor if card_fixed_fee_minor is None else card_fixed_fee_minor

    service_fee = int((Decimal(base_minor) * rate).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    net_after_service = base_minor + service_fee
    total = int(
        (Decimal(net_after_service + fixed) / (Decimal(1) - percent)).quantize(Decimal("1"), rounding=ROUND_CEILING)
    )

    return PricingBreakdown(
        base_minor=base_minor,
        service_fee_minor=service_fee,
        card_fee_minor=total - net_after_service,
        total_minor=total,
    )


def compute_pricing_from_major(base: Amount) -> PricingBreakdown:
    return compute_pricing_from_minor(to_minor(base))


def _days(start: date, end: date) -> List[date]:
    """Dates from start to end, both inclusive."""
    return [start + timedelta(days=offset) for offset in range((end - start).days + 1)]


class PricingEngine:
    def __init__(self, db: Session):
        self.db = db

    def _get_listing(self, listing_id: str) -> Listing:
        listing = self.db.query(Listing).filter(Listing.id == listing_id).first()
        if not listing:
            raise NotFound("Listing not found")
        return listing

    def nightly_prices(self, listing: Listing, first_night: date, last_night: date) -> List[NightlyPrice]:
        """Price for each night, falling back to the listing's base price."""
        overrides = {
            rate.date: rate
            for rate in self.db.query(NightlyRate).filter(
                NightlyRate.listing_id == listing.id,
                NightlyRate.date >= first_night,
                NightlyRate.date <= last_night,
            ).all()
        }

        currency = listing.currency or settings.default_currency
        prices = []
        for night in _days(first_night, last_night):
            override = overrides.get(night)
            if override is not None:
                prices.append(NightlyPrice(night, Decimal(str(override.price)), override.currency or currency, True))
            elif listing.base_price is not None:
                prices.append(NightlyPrice(night, Decimal(str(listing.base_price)), currency, False))
            else:
                raise ValidationFailure("Listing nightly price unavailable")
        return prices

    def quote(self, listing_id: str, check_in: date, check_out: date) -> Quote:
        """Guest quote for the nights ``[check_in, check_out)``."""
        if check_out <= check_in:
            raise ValidationFailure("check_out must be after check_in")
        nights = (check_out - check_in).days

        listing = self._get_listing(listing_id)
        nightly = self.nightly_prices(listing, check_in, check_out - timedelta(days=1))
        if any(price.price <= 0 for price in nightly):
            raise ValidationFailure("Listing nightly price unavailable")

        base_minor = sum(to_minor(price.price) for price in nightly)
        breakdown = compute_pricing_from_minor(base_minor)
        currency = nightly[0].currency if nightly else (listing.currency or settings.default_currency)

        return Quote(
            listing_id=listing_id,
            check_in=check_in,
            check_out=check_out,
            nights=nights,
            currency=currency,
            breakdown=breakdown,
            nightly=nightly,
        )

    def rates_for_window(
        self,
        listing_ids: Sequence[str],
        start: date,
        end: date,
    ) -> Dict[str, Dict[str, Dict]]:
        """
        Stored per-date rates for ``[start, end]`` keyed by listing then ISO date.
        Dates without an override are absent; callers show the base price.
        """
        if end < start:
            raise ValidationFailure("end must be on or after start")
        if not listing_ids:
            return {}

        rows = self.db.query(NightlyRate).filter(
            NightlyRate.listing_id.in_(list(listing_ids)),
            NightlyRate.date >= start,
            NightlyRate.date <= end,
        ).all()

        rates: Dict[str, Dict[str, Dict]] = {}
        for row in rows:
            if row.price is None:
                continue
            rates.setdefault(row.listing_id, {})[row.date.isoformat()] = {
                "price": float(row.price),
                "currency": row.currency or settings.default_currency,
            }
        return rates

    def set_nightly_rates(
        self,
        listing_id: str,
        first_night: date,
        last_night: date,
        price: Amount,
        currency: Optional[str] = None,
    ) -> int:
        """Upsert one price for every night in ``[first_night, last_night]``. Returns the count."""
        try:
            amount = Decimal(str(price)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        except ArithmeticError:
            raise ValidationFailure("Price must be a number")
        if amount <= 0:
            raise ValidationFailure("Price must be greater than 0")
        if last_night < first_night:
            raise ValidationFailure("End date must be on or after start date")

        listing = self._get_listing(listing_id)
        currency = currency or listing.currency or settings.default_currency
        nights = _days(first_night, last_night)

        existing = {
            rate.date: rate
            for rate in self.db.query(NightlyRate).filter(
                NightlyRate.listing_id == listing_id,
                NightlyRate.date >= first_night,
                NightlyRate.date <= last_night,
            ).all()
        }
        for night in nights:
            rate = existing.get(night)
            if rate is None:
                self.db.add(NightlyRate(listing_id=listing_id, date=night, price=amount, currency=currency))
            else:
                rate.price = amount
                rate.currency = currency

        self.db.commit()
        logger.info(f"Set {len(nights)} nightly rates on {listing_id} to {amount} {currency}")
        return len(nights)
