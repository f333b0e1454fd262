"""
Calendar Service

Ties the calendar together for one request:

    read:  store.fetch_occupancy -> normalize -> layout
    write: optimistic edit -> store write -> commit or rollback -> re-fetch

The service holds no state between requests; an ``OptimisticOccupancy``
passed in by the caller is the only thing it edits in place.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, Dict, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..exceptions import CalendarError, ExternalWriteError, ValidationFailure
from ..schemas.occupancy import BlockRow
from ..utils.dates import DateLike, add_days, start_of_day
from ..utils.logging_config import get_logger
from ..utils.metrics import (
    occupancy_partial_loads_total,
    optimistic_rollbacks_total,
    record_block_write,
    record_rows_dropped,
)
from .occupancy import NormalizeResult, OccupancyInterval, block_to_interval, normalize
from .occupancy_store import BlockSpan, OccupancyFetch, OccupancyStore
from .optimistic import Committed, OptimisticOccupancy
from .pricing_engine import PricingEngine
from .selection import CommittedSelection, SelectionStateMachine
from .timeline_layout import TimelineLayout, layout, layout_hourly

logger = logging.getLogger(__name__)
structured_logger = get_logger(__name__)

WRITE_FAILURES = {
    "create": "Unable to save block",
    "delete": "Unable to delete block",
    "update": "Unable to update block",
}


@dataclass
class CalendarView:
    """Everything needed to render one timeline window."""
    layout: TimelineLayout
    intervals: tuple
    partial: bool = False
    load_errors: Dict[str, str] = field(default_factory=dict)
    dropped_rows: int = 0


@dataclass
class BlockWriteResult:
    state: Committed
    row: Optional[dict] = None
    interval: Optional[OccupancyInterval] = None


def occupied_window(intervals) -> Tuple[date, date]:
    """Days spanned by ``intervals``, with one day of slack on each side."""
    intervals = list(intervals)
    first = min(i.first_day for i in intervals)
    last = max(i.last_day for i in intervals)
    return first - timedelta(days=1), last + timedelta(days=1)


def as_write_error(error: Exception, message: str) -> CalendarError:
    if isinstance(error, CalendarError):
        return error
    return ExternalWriteError(message)


class CalendarService:
    def __init__(
        self,
        db: Session,
        store: Optional[OccupancyStore] = None,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.store = store or OccupancyStore(db)
        self.now = now

    # ================================
    # READ
    # ================================

    def timezone_for(self, listing_ids: Sequence[str]) -> str:
        """Grid timezone: the first listing's own zone, else the default."""
        listings = self.store.get_listings(listing_ids)
        for listing_id in listing_ids:
            listing = listings.get(listing_id)
            if listing is not None and listing.timezone:
                return listing.timezone
        return settings.default_timezone

    def load_occupancy(
        self,
        listing_ids: Sequence[str],
        window_start: Optional[date] = None,
        window_end: Optional[date] = None,
    ):
        """Fetch and normalize. Returns ``(NormalizeResult, OccupancyFetch)``."""
        listings = self.store.get_listings(listing_ids)
        fetch: OccupancyFetch = self.store.fetch_occupancy(listing_ids, window_start, window_end)

        if fetch.partial:
            occupancy_partial_loads_total.inc()
            logger.warning(f"Partial occupancy load for {list(listing_ids)}: {fetch.errors}")

        result: NormalizeResult = normalize(
            fetch.bookings,
            fetch.blocks,
            timezones={lid: listing.timezone for lid, listing in listings.items() if listing.timezone},
            default_tz=settings.default_timezone,
            listing_titles={lid: listing.title for lid, listing in listings.items()},
        )

        if result.dropped:
            record_rows_dropped(result.dropped_bookings, result.dropped_blocks)
            structured_logger.rows_dropped(listing_ids, result.dropped_bookings, result.dropped_blocks)
        return result, fetch

    def _view(self, result: NormalizeResult, fetch: OccupancyFetch, timeline: TimelineLayout) -> CalendarView:
        return CalendarView(
            layout=timeline,
            intervals=result.intervals,
            partial=fetch.partial,
            load_errors=dict(fetch.errors),
            dropped_rows=result.dropped,
        )

    def timeline(self, listing_ids: Sequence[str], start: DateLike, days: int) -> CalendarView:
        """Day timeline for ``days`` days from ``start``, one row per listing."""
        tz = self.timezone_for(listing_ids)
        window_start = start_of_day(start, tz)
        # one day of slack on each side for rows stored in other zones
        result, fetch = self.load_occupancy(
            listing_ids,
            add_days(window_start, -1).date(),
            add_days(window_start, days).date(),
        )
        timeline = layout(result.intervals, window_start, days, resource_ids=list(listing_ids), tz=tz)
        return self._view(result, fetch, timeline)

    def hourly(self, listing_id: str, day: DateLike) -> CalendarView:
        tz = self.timezone_for([listing_id])
        day_start = start_of_day(day, tz)
        result, fetch = self.load_occupancy(
            [listing_id],
            add_days(day_start, -1).date(),
            add_days(day_start, 1).date(),
        )
        timeline = layout_hourly(
            result.intervals,
            day_start,
            tz=tz,
            slot_minutes=settings.timeline_slot_minutes,
            resource_ids=[listing_id],
        )
        return self._view(result, fetch, timeline)

    def selection_for(self, view: CalendarView, on_commit=None) -> SelectionStateMachine:
        """A selection machine over a rendered view's grid and occupancy."""
        return SelectionStateMachine(view.layout.grid, view.intervals, now=self.now, on_commit=on_commit)

    def refetch(
        self,
        optimistic: OptimisticOccupancy,
        listing_ids: Sequence[str],
        window: Optional[Tuple[date, date]] = None,
    ) -> None:
        """
        Reload the optimistic set after a write.

        Without ``window`` the reload covers the days the set already spans,
        never the listing's whole history.
        """
        if window is None:
            window = occupied_window(optimistic) if len(optimistic) else (None, None)
        result, _ = self.load_occupancy(listing_ids, *window)
        optimistic.replace_all(result.intervals)

    # ================================
    # WRITE
    # ================================

    def _block_interval(self, row: dict) -> OccupancyInterval:
        tz = self.timezone_for([row["listing_id"]])
        return block_to_interval(BlockRow.model_validate(row), tz=tz)

    def ensure_free(self, proposed: OccupancyInterval) -> None:
        """Refuse a block over days or slots something else already holds."""
        result, fetch = self.load_occupancy(
            [proposed.resource_id],
            proposed.first_day - timedelta(days=1),
            proposed.last_day + timedelta(days=1),
        )
        if fetch.partial:
            raise ExternalWriteError("Unable to check availability, try again")
        for interval in result.intervals:
            if interval.resource_id != proposed.resource_id or interval.is_zero_width:
                continue
            if interval.overlaps(proposed.start, proposed.end):
                raise ValidationFailure(
                    "Those dates are already occupied",
                    details={"conflict_id": interval.id},
                )

    def _write_failed(
        self,
        operation: str,
        cause: Exception,
        optimistic: Optional[OptimisticOccupancy],
        pending,
    ) -> CalendarError:
        """Undo the optimistic edit and return the error to raise."""
        error = as_write_error(cause, WRITE_FAILURES[operation])
        if error is not cause:
            self.db.rollback()
            logger.error(f"Block {operation} failed in the store: {cause}")
        record_block_write(operation, False)
        if pending is not None:
            optimistic.rollback(pending, error.message)
            optimistic_rollbacks_total.inc(operation=operation)
            structured_logger.write_rolled_back(operation, pending.interval_id, error.message)
        return error

    def create_manual_block(
        self,
        listing_id: str,
        span: BlockSpan,
        label: Optional[str] = None,
        notes: Optional[str] = None,
        color: Optional[str] = None,
        created_by: Optional[str] = None,
        optimistic: Optional[OptimisticOccupancy] = None,
        window: Optional[Tuple[date, date]] = None,
    ) -> BlockWriteResult:
        """
        Create a manual block.

        Days or slots already occupied on the listing are refused before any
        write. With ``optimistic`` the block shows immediately under a
        temporary id; it is swapped for the stored row on success and removed
        on failure, after which the error is re-raised. ``window`` bounds the
        re-fetch that follows a successful write.
        """
        if not listing_id:
            raise ValidationFailure("listing_id is required")
        span.validate()
        draft = self._block_interval({
            "id": "pending",
            "listing_id": listing_id,
            "start_date": span.start_date,
            "end_date": span.end_date,
            "start_at": span.start_at,
            "end_at": span.end_at,
            "source": "manual",
            "label": (label or "").strip() or "Manual block",
            "color": color,
            "notes": notes,
        })
        self.ensure_free(draft)

        pending = optimistic.begin_create(draft) if optimistic is not None else None
        try:
            row = self.store.create_manual_block(listing_id, span, label, notes, color, created_by)
        except (CalendarError, SQLAlchemyError) as e:
            error = self._write_failed("create", e, optimistic, pending)
            if error is e:
                raise
            raise error from e

        record_block_write("create", True)
        interval = self._block_interval(row)
        structured_logger.block_created(row["id"], listing_id, str(span.start_date), str(span.end_date))

        if pending is not None:
            state = optimistic.commit(pending, interval)
            listing_ids = list(dict.fromkeys([i.resource_id for i in optimistic] + [listing_id]))
            self.refetch(optimistic, listing_ids, window)
        else:
            state = Committed(row["id"], "create", row["id"])
        return BlockWriteResult(state=state, row=row, interval=interval)

    def create_block_from_selection(
        self,
        committed: CommittedSelection,
        label: Optional[str] = None,
        notes: Optional[str] = None,
        color: Optional[str] = None,
        created_by: Optional[str] = None,
        optimistic: Optional[OptimisticOccupancy] = None,
        window: Optional[Tuple[date, date]] = None,
    ) -> BlockWriteResult:
        return self.create_manual_block(
            committed.resource_id,
            BlockSpan.from_selection(committed.range),
            label=label,
            notes=notes,
            color=color,
            created_by=created_by,
            optimistic=optimistic,
            window=window,
        )

    def delete_manual_block(self, block_id: str, optimistic: Optional[OptimisticOccupancy] = None) -> None:
        pending = None
        if optimistic is not None and optimistic.get(block_id) is not None:
            pending = optimistic.begin_delete(block_id)

        try:
            self.store.delete_manual_block(block_id)
        except (CalendarError, SQLAlchemyError) as e:
            error = self._write_failed("delete", e, optimistic, pending)
            if error is e:
                raise
            raise error from e

        record_block_write("delete", True)
        if pending is not None:
            optimistic.commit(pending)
        logger.info(f"Manual block {block_id} deleted")

    def update_block(
        self,
        block_id: str,
        updates: Dict[str, Optional[str]],
        optimistic: Optional[OptimisticOccupancy] = None,
    ) -> Dict[str, Optional[str]]:
        """Patch notes, label or color; optimistic edits are restored on failure."""
        pending = None
        if optimistic is not None and optimistic.get(block_id) is not None:
            meta = {}
            if "notes" in updates:
                cleaned = (updates["notes"] or "").strip() or None
                meta = {"notes": cleaned, "reason": cleaned}
            label = None
            if "label" in updates:
                label = (updates["label"] or "").strip() or "Manual block"
            pending = optimistic.begin_update(block_id, label=label, color=updates.get("color"), **meta)

        try:
            stored = self.store.update_manual_block(block_id, updates)
        except (CalendarError, SQLAlchemyError) as e:
            error = self._write_failed("update", e, optimistic, pending)
            if error is e:
                raise
            raise error from e

        record_block_write("update", True)
        if pending is not None:
            optimistic.commit(pending)
        return stored

    def update_block_notes(
        self,
        block_id: str,
        notes: Optional[str],
        optimistic: Optional[OptimisticOccupancy] = None,
    ) -> Optional[str]:
        return self.update_block(block_id, {"notes": notes}, optimistic)["notes"]

    def cancel_booking(self, booking_id: str, status: str) -> None:
        self.store.update_booking_status(booking_id, status)
        logger.info(f"Booking {booking_id} set to {status}")

    def set_price_from_selection(
        self,
        committed: CommittedSelection,
        price,
        currency: Optional[str] = None,
    ) -> int:
        """Turn a committed day selection into a nightly rate for each selected night."""
        span = BlockSpan.from_selection(committed.range)
        if span.is_hourly:
            raise ValidationFailure("Hourly prices are not supported")
        return PricingEngine(self.db).set_nightly_rates(
            committed.resource_id, span.start_date, span.end_date, price, currency
        )

