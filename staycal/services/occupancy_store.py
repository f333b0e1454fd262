"""
Occupancy Store

Data-access object behind the calendar: reads bookings and blocks, writes
manual blocks, notes and booking cancellations. Constructed with a session,
never a module-level client, so tests can hand it any engine.

Schema drift:
Older deployments may lack optional columns (``notes``, ``start_at``/``end_at``,
``guest_full_name``...). A query failing with a missing-column signature is
retried once without the optional columns. This is the only automatic retry.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..exceptions import ExternalWriteError, NotFound, ValidationFailure
from ..models import Booking, CalendarBlock, CalendarFeed, Listing, CANCELLATION_STATUSES
from ..utils.dates import day_key
from .occupancy import Granularity

logger = logging.getLogger(__name__)

MISSING_COLUMN_CODES = {"42703", "PGRST204"}

BOOKING_COLUMNS = (
    Booking.id, Booking.listing_id, Booking.check_in, Booking.check_out,
    Booking.status, Booking.channel, Booking.price_total, Booking.currency,
)
BOOKING_OPTIONAL_COLUMNS = (
    Booking.guest_full_name, Booking.check_in_time, Booking.check_out_time, Booking.stay_type,
)

BLOCK_COLUMNS = (
    CalendarBlock.id, CalendarBlock.listing_id, CalendarBlock.start_date, CalendarBlock.end_date,
    CalendarBlock.source, CalendarBlock.label, CalendarBlock.color,
)
BLOCK_OPTIONAL_COLUMNS = (
    CalendarBlock.notes, CalendarBlock.start_at, CalendarBlock.end_at,
)

# Insert columns that can be left out on an older schema
BLOCK_OPTIONAL_WRITE_FIELDS = ("notes", "created_by")
HOURLY_FIELDS = ("start_at", "end_at")


def is_missing_column_error(error: BaseException, column: Optional[str] = None) -> bool:
    """
    True when ``error`` means an expected column is not in the schema.

    Matches the Postgres undefined-column code, the REST gateway's
    ``PGRST204``, SQLite's "no such column" and "schema cache" messages
    naming the column.
    """
    orig = getattr(error, "orig", None) or error
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None) or getattr(orig, "code", None)
    message = str(orig).lower()
    named = column is None or column.lower() in message

    if code in MISSING_COLUMN_CODES:
        return named
    if "no such column" in message or "has no column named" in message:
        return named
    if "column" in message and "does not exist" in message:
        return named
    if "schema cache" in message:
        return column.lower() in message if column else "column" in message
    return False


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    """Stored instants are naive UTC; hand them out aware."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _clean_notes(notes: Optional[str]) -> Optional[str]:
    if notes is None:
        return None
    notes = notes.strip()
    return notes or None


@dataclass
class BlockSpan:
    """
    Range of a manual block as stored.

    ``end_date`` is the last blocked day. Hourly spans also carry instants
    with an exclusive ``end_at``.
    """
    start_date: date
    end_date: date
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None

    @property
    def is_hourly(self) -> bool:
        return self.start_at is not None and self.end_at is not None

    @classmethod
    def days(cls, first: date, last: date) -> "BlockSpan":
        return cls(start_date=first, end_date=last)

    @classmethod
    def instants(cls, start_at: datetime, end_at: datetime) -> "BlockSpan":
        last_minute = end_at - timedelta(minutes=1) if end_at > start_at else end_at
        return cls(
            start_date=day_key(start_at, start_at.tzinfo),
            end_date=day_key(last_minute, last_minute.tzinfo),
            start_at=start_at,
            end_at=end_at,
        )

    @classmethod
    def from_selection(cls, selection_range) -> "BlockSpan":
        """Span for a committed ``SelectionRange``."""
        if selection_range.granularity == Granularity.TIME:
            return cls.instants(selection_range.start, selection_range.end_exclusive)
        start, end = selection_range.start, selection_range.end
        return cls.days(day_key(start, start.tzinfo), day_key(end, end.tzinfo))

    def validate(self) -> None:
        if self.is_hourly:
            if self.end_at <= self.start_at:
                raise ValidationFailure("End time must be after start time")
        elif self.end_date < self.start_date:
            raise ValidationFailure("End date must be on or after start date")


@dataclass
class FeedBlock:
    """One parsed feed event ready to be stored as a block."""
    span: BlockSpan
    label: Optional[str] = None
    external_uid: Optional[str] = None


@dataclass
class OccupancyFetch:
    """Result of one occupancy read. ``errors`` names the halves that failed."""
    bookings: List[Dict[str, Any]] = field(default_factory=list)
    blocks: List[Dict[str, Any]] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)
    reduced: Set[str] = field(default_factory=set)

    @property
    def partial(self) -> bool:
        return bool(self.errors)


class OccupancyStore:
    """Read and write interface to bookings and calendar blocks."""

    def __init__(self, db: Session):
        self.db = db

    # ================================
    # READ
    # ================================

    def get_listing(self, listing_id: str) -> Optional[Listing]:
        return self.db.query(Listing).filter(Listing.id == listing_id).first()

    def get_listings(self, listing_ids: Sequence[str]) -> Dict[str, Listing]:
        if not listing_ids:
            return {}
        rows = self.db.query(Listing).filter(Listing.id.in_(list(listing_ids))).all()
        return {row.id: row for row in rows}

    def _select_with_fallback(self, name: str, required, optional, where, fetch: OccupancyFetch):
        """Run the select; on a missing column retry once with required columns only."""
        try:
            return self.db.execute(select(*required, *optional).where(*where)).mappings().all()
        except SQLAlchemyError as e:
            self.db.rollback()
            if not is_missing_column_error(e):
                raise
            logger.warning(f"{name} select hit a missing column, retrying without optional columns: {e}")
            fetch.reduced.add(name)
            return self.db.execute(select(*required).where(*where)).mappings().all()

    def fetch_occupancy(
        self,
        resource_ids: Sequence[str],
        window_start: Optional[date] = None,
        window_end: Optional[date] = None,
    ) -> OccupancyFetch:
        """
        Bookings and blocks for the listings, optionally limited to rows
        touching ``[window_start, window_end]``.

        A failure in one half is recorded in ``errors``; the other half is
        still returned.
        """
        fetch = OccupancyFetch()
        ids = list(resource_ids)
        if not ids:
            return fetch

        booking_where = [Booking.listing_id.in_(ids)]
        block_where = [CalendarBlock.listing_id.in_(ids)]
        if window_start is not None:
            booking_where.append(Booking.check_out >= window_start)
            block_where.append(CalendarBlock.end_date >= window_start)
        if window_end is not None:
            booking_where.append(Booking.check_in <= window_end)
            block_where.append(CalendarBlock.start_date <= window_end)

        try:
            rows = self._select_with_fallback(
                "bookings", BOOKING_COLUMNS, BOOKING_OPTIONAL_COLUMNS, booking_where, fetch
            )
            fetch.bookings = [self._booking_row(row) for row in rows]
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to load bookings for {ids}: {e}")
            fetch.errors["bookings"] = "Unable to load bookings"

        try:
            rows = self._select_with_fallback(
                "blocks", BLOCK_COLUMNS, BLOCK_OPTIONAL_COLUMNS, block_where, fetch
            )
            fetch.blocks = [self._block_row(row) for row in rows]
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to load calendar blocks for {ids}: {e}")
            fetch.errors["blocks"] = "Unable to load calendar blocks"

        return fetch

    @staticmethod
    def _booking_row(row) -> Dict[str, Any]:
        check_in_time = _utc(row.get("check_in_time"))
        check_out_time = _utc(row.get("check_out_time"))
        total = row.get("price_total")
        return {
            "id": row["id"],
            "listing_id": row["listing_id"],
            "check_in": check_in_time or row["check_in"],
            "check_out": check_out_time or row["check_out"],
            "status": row["status"],
            "channel": row["channel"],
            "guest_full_name": row.get("guest_full_name"),
            "price_total": float(total) if total is not None else None,
            "currency": row["currency"],
            "stay_type": row.get("stay_type"),
        }

    @staticmethod
    def _block_row(row) -> Dict[str, Any]:
        return {
            "id": row["id"],
            "listing_id": row["listing_id"],
            "start_date": row["start_date"],
            "end_date": row["end_date"],
            "start_at": _utc(row.get("start_at")),
            "end_at": _utc(row.get("end_at")),
            "source": row["source"],
            "label": row["label"],
            "color": row["color"],
            "notes": row.get("notes"),
        }

    # ================================
    # WRITE
    # ================================

    def create_manual_block(
        self,
        resource_id: str,
        span: BlockSpan,
        label: Optional[str] = None,
        notes: Optional[str] = None,
        color: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Insert a manual block and return the stored row."""
        if not resource_id:
            raise ValidationFailure("listing_id is required")
        span.validate()
        if self.get_listing(resource_id) is None:
            raise NotFound("Listing not found")

        values = {
            "id": str(uuid.uuid4()),
            "listing_id": resource_id,
            "start_date": span.start_date,
            "end_date": span.end_date,
            "source": "manual",
            "label": (label or "").strip() or "Manual block",
            "color": color,
            "notes": _clean_notes(notes),
            "created_by": created_by,
        }
        if span.is_hourly:
            values["start_at"] = _naive_utc(span.start_at)
            values["end_at"] = _naive_utc(span.end_at)

        self._insert_block(values, hourly=span.is_hourly)
        logger.info(f"Manual block {values['id']} created on listing {resource_id}")

        row = dict(values)
        row["start_at"] = span.start_at
        row["end_at"] = span.end_at
        return row

    def _insert_block(self, values: Dict[str, Any], hourly: bool) -> None:
        table = CalendarBlock.__table__
        try:
            self.db.execute(insert(table).values(**values))
            self.db.commit()
            return
        except SQLAlchemyError as e:
            self.db.rollback()
            if hourly and any(is_missing_column_error(e, column) for column in HOURLY_FIELDS):
                raise ValidationFailure("Hourly blocks are not supported yet")
            if not any(is_missing_column_error(e, column) for column in BLOCK_OPTIONAL_WRITE_FIELDS):
                logger.error(f"Block insert failed: {e}")
                raise ExternalWriteError("Unable to save block")
            logger.warning(f"Block insert hit a missing column, retrying without optional fields: {e}")

        reduced = {k: v for k, v in values.items() if k not in BLOCK_OPTIONAL_WRITE_FIELDS}
        try:
            self.db.execute(insert(table).values(**reduced))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            if hourly and any(is_missing_column_error(e, column) for column in HOURLY_FIELDS):
                raise ValidationFailure("Hourly blocks are not supported yet")
            logger.error(f"Block insert failed after dropping optional fields: {e}")
            raise ExternalWriteError("Unable to save block")

    def delete_manual_block(self, block_id: str) -> None:
        if not block_id:
            raise ValidationFailure("id is required")
        try:
            result = self.db.execute(delete(CalendarBlock).where(CalendarBlock.id == block_id))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to delete block {block_id}: {e}")
            raise ExternalWriteError("Unable to delete block")
        if result.rowcount == 0:
            raise NotFound("Block not found")

    def update_manual_block(self, block_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        """
        Patch the display fields of a block (notes, label, color).
        Range changes are a delete and a new block. Returns the stored values.
        """
        if not block_id:
            raise ValidationFailure("id is required")

        values: Dict[str, Any] = {}
        if "notes" in updates:
            values["notes"] = _clean_notes(updates["notes"])
        if "label" in updates:
            values["label"] = (updates["label"] or "").strip() or "Manual block"
        if "color" in updates:
            values["color"] = updates["color"] or None
        if not values:
            raise ValidationFailure("No updates provided")

        try:
            result = self.db.execute(
                update(CalendarBlock).where(CalendarBlock.id == block_id).values(**values)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            if "notes" in values and is_missing_column_error(e, "notes"):
                raise ValidationFailure("Notes are not supported yet")
            logger.error(f"Failed to update block {block_id}: {e}")
            raise ExternalWriteError("Unable to update block")
        if result.rowcount == 0:
            raise NotFound("Block not found")
        return values

    def update_manual_block_notes(self, block_id: str, notes: Optional[str]) -> Optional[str]:
        """Store trimmed notes (blank clears them). Returns the stored value."""
        return self.update_manual_block(block_id, {"notes": notes})["notes"]

    def update_booking_status(self, booking_id: str, status: str) -> None:
        """Cancel or decline a booking. Other status changes belong to checkout."""
        normalized = (status or "").strip().lower()
        if normalized not in CANCELLATION_STATUSES:
            raise ValidationFailure(f"Status must be one of: {', '.join(CANCELLATION_STATUSES)}")
        try:
            result = self.db.execute(
                update(Booking)
                .where(Booking.id == booking_id)
                .values(status=normalized, updated_at=datetime.utcnow())
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to update booking {booking_id}: {e}")
            raise ExternalWriteError("Unable to update booking")
        if result.rowcount == 0:
            raise NotFound("Booking not found")

    def replace_feed_blocks(
        self,
        resource_id: str,
        feed_url: str,
        source: str,
        blocks: Iterable[FeedBlock],
    ) -> int:
        """
        Swap every block previously imported from ``feed_url`` for ``blocks``
        in one transaction. Nothing is applied if any insert fails.
        """
        rows = []
        for block in blocks:
            values = {
                "id": str(uuid.uuid4()),
                "listing_id": resource_id,
                "start_date": block.span.start_date,
                "end_date": block.span.end_date,
                "source": source,
                "label": block.label,
                "feed_url": feed_url,
                "external_uid": block.external_uid,
            }
            if block.span.is_hourly:
                values["start_at"] = _naive_utc(block.span.start_at)
                values["end_at"] = _naive_utc(block.span.end_at)
            rows.append(values)

        table = CalendarBlock.__table__
        try:
            self.db.execute(
                delete(table).where(table.c.listing_id == resource_id, table.c.feed_url == feed_url)
            )
            for values in rows:
                self.db.execute(insert(table).values(**values))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Feed block replace failed for listing {resource_id}: {e}")
            raise ExternalWriteError("Unable to save synced blocks")
        return len(rows)

    # ================================
    # FEED REGISTRY
    # ================================

    def list_feeds(self, resource_ids: Sequence[str]) -> List[CalendarFeed]:
        if not resource_ids:
            return []
        return (
            self.db.query(CalendarFeed)
            .filter(CalendarFeed.listing_id.in_(list(resource_ids)))
            .order_by(CalendarFeed.created_at, CalendarFeed.id)
            .all()
        )

    def get_feed(self, feed_id: str) -> Optional[CalendarFeed]:
        return self.db.query(CalendarFeed).filter(CalendarFeed.id == feed_id).first()

    def add_feed(
        self,
        resource_id: str,
        url: str,
        source: str,
        label: Optional[str] = None,
        color: Optional[str] = None,
    ) -> CalendarFeed:
        if self.get_listing(resource_id) is None:
            raise NotFound("Listing not found")

        feed = CalendarFeed(
            listing_id=resource_id,
            url=url,
            source=source,
            label=(label or "").strip() or "OTA Feed",
            color=color,
        )
        try:
            self.db.add(feed)
            self.db.commit()
            self.db.refresh(feed)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to save feed for listing {resource_id}: {e}")
            raise ExternalWriteError("Unable to save this feed")
        logger.info(f"Feed {feed.id} registered on listing {resource_id}")
        return feed

    def delete_feed(self, feed_id: str) -> None:
        """Remove a feed from the registry. Blocks it already imported stay."""
        try:
            result = self.db.execute(delete(CalendarFeed).where(CalendarFeed.id == feed_id))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to delete feed {feed_id}: {e}")
            raise ExternalWriteError("Unable to delete this feed")
        if result.rowcount == 0:
            raise NotFound("Feed not found")

    def mark_feed_synced(self, resource_id: str, url: str, synced_at: Optional[datetime] = None) -> int:
        """Stamp ``last_synced_at`` on every registry entry for this feed."""
        synced_at = _naive_utc(synced_at or datetime.now(timezone.utc))
        try:
            result = self.db.execute(
                update(CalendarFeed)
                .where(CalendarFeed.listing_id == resource_id, CalendarFeed.url == url)
                .values(last_synced_at=synced_at)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to stamp feed sync for listing {resource_id}: {e}")
            raise ExternalWriteError("Unable to save sync time")
        return result.rowcount
