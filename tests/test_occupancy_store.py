"""
Tests for the occupancy store

Runs against in-memory SQLite. Legacy-schema tests replace the blocks
table with one that predates the notes and hourly columns.
"""

from datetime import date, datetime, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy import text

from staycal.exceptions import ExternalWriteError, NotFound, ValidationFailure
from staycal.models import Booking, CalendarBlock
from staycal.services.occupancy_store import (
    BlockSpan,
    FeedBlock,
    OccupancyStore,
    is_missing_column_error,
)

LEGACY_BLOCKS_TABLE = """
CREATE TABLE listing_calendar_blocks (
    id VARCHAR(36) PRIMARY KEY,
    listing_id VARCHAR(36) NOT NULL,
    start_date DATE NOT NULL,
    end_date DATE NOT NULL,
    source VARCHAR(30),
    label VARCHAR(200),
    color VARCHAR(20),
    created_at DATETIME
)
"""


@pytest.fixture
def store(db):
    return OccupancyStore(db)


@pytest.fixture
def legacy_blocks(db, listing):
    """Blocks table without notes, created_by, start_at/end_at or feed columns."""
    db.execute(text("DROP TABLE listing_calendar_blocks"))
    db.execute(text(LEGACY_BLOCKS_TABLE))
    db.execute(text(
        "INSERT INTO listing_calendar_blocks (id, listing_id, start_date, end_date, source, label) "
        "VALUES ('old-1', 'listing-1', '2024-03-10', '2024-03-11', 'manual', 'Old block')"
    ))
    db.commit()
    yield
    # restore the full table so drop_all in teardown matches
    db.execute(text("DROP TABLE listing_calendar_blocks"))
    db.commit()
    CalendarBlock.__table__.create(bind=db.get_bind())


class TestMissingColumnSignature:
    @pytest.mark.parametrize("message", [
        'column "notes" does not exist',
        "no such column: listing_calendar_blocks.notes",
        "table listing_calendar_blocks has no column named notes",
        "Could not find the 'notes' column of 'listing_calendar_blocks' in the schema cache",
    ])
    def test_known_messages(self, message):
        assert is_missing_column_error(Exception(message), "notes")

    def test_postgres_code(self):
        error = SimpleNamespace(orig=SimpleNamespace(pgcode="42703"))
        assert is_missing_column_error(error)

    def test_other_column_named(self):
        assert not is_missing_column_error(Exception("no such column: label"), "notes")

    def test_unrelated_error(self):
        assert not is_missing_column_error(Exception("connection reset"))


class TestFetch:
    def test_fetch_returns_both_halves(self, store, confirmed_booking, manual_block):
        fetch = store.fetch_occupancy(["listing-1"])
        assert not fetch.partial
        assert [row["id"] for row in fetch.bookings] == ["booking-1"]
        assert fetch.bookings[0]["check_in"] == date(2024, 3, 1)
        assert fetch.blocks[0]["notes"] == "Decorators in"

    def test_window_filters_rows(self, store, confirmed_booking, manual_block):
        fetch = store.fetch_occupancy(["listing-1"], date(2024, 3, 5), date(2024, 3, 20))
        assert fetch.bookings == []
        assert [row["id"] for row in fetch.blocks] == ["block-1"]

    def test_instants_come_back_utc_aware(self, db, store, listing):
        db.add(Booking(
            id="day-use",
            listing_id=listing.id,
            check_in=date(2024, 3, 5),
            check_out=date(2024, 3, 5),
            check_in_time=datetime(2024, 3, 5, 10, 0),
            check_out_time=datetime(2024, 3, 5, 14, 0),
            stay_type="day_use",
            status="paid",
        ))
        db.commit()
        row = store.fetch_occupancy([listing.id]).bookings[0]
        assert row["check_in"] == datetime(2024, 3, 5, 10, 0, tzinfo=timezone.utc)

    def test_partial_load_keeps_the_half_that_worked(self, db, store, confirmed_booking):
        db.execute(text("ALTER TABLE listing_calendar_blocks RENAME TO blocks_elsewhere"))
        db.commit()
        try:
            fetch = store.fetch_occupancy(["listing-1"])
        finally:
            db.execute(text("ALTER TABLE blocks_elsewhere RENAME TO listing_calendar_blocks"))
            db.commit()

        assert fetch.partial
        assert "blocks" in fetch.errors
        assert [row["id"] for row in fetch.bookings] == ["booking-1"]

    def test_empty_ids(self, store):
        fetch = store.fetch_occupancy([])
        assert fetch.bookings == [] and fetch.blocks == []


class TestSchemaDrift:
    def test_read_retries_without_optional_columns(self, store, legacy_blocks):
        fetch = store.fetch_occupancy(["listing-1"])
        assert not fetch.partial
        assert "blocks" in fetch.reduced
        assert fetch.blocks[0]["id"] == "old-1"
        assert fetch.blocks[0]["notes"] is None

    def test_insert_retries_without_notes(self, db, store, legacy_blocks):
        row = store.create_manual_block(
            "listing-1", BlockSpan.days(date(2024, 4, 1), date(2024, 4, 2)), notes="Keys with neighbour"
        )
        stored = db.execute(
            text("SELECT label FROM listing_calendar_blocks WHERE id = :id"), {"id": row["id"]}
        ).scalar()
        assert stored == "Manual block"

    def test_hourly_insert_is_rejected(self, store, legacy_blocks):
        span = BlockSpan.instants(
            datetime(2024, 4, 1, 9, 0, tzinfo=timezone.utc),
            datetime(2024, 4, 1, 11, 0, tzinfo=timezone.utc),
        )
        with pytest.raises(ValidationFailure, match="Hourly blocks are not supported yet"):
            store.create_manual_block("listing-1", span)

    def test_notes_update_is_rejected(self, store, legacy_blocks):
        with pytest.raises(ValidationFailure, match="Notes are not supported yet"):
            store.update_manual_block_notes("old-1", "hello")


class TestWrites:
    def test_create_defaults(self, db, store, listing):
        row = store.create_manual_block(
            listing.id, BlockSpan.days(date(2024, 4, 1), date(2024, 4, 3)), label="  ", notes="   "
        )
        block = db.query(CalendarBlock).filter(CalendarBlock.id == row["id"]).one()
        assert block.label == "Manual block"
        assert block.notes is None
        assert block.source == "manual"

    def test_hourly_block_stored_naive_utc(self, db, store, listing):
        span = BlockSpan.instants(
            datetime(2024, 4, 1, 10, 0, tzinfo=timezone.utc),
            datetime(2024, 4, 1, 12, 0, tzinfo=timezone.utc),
        )
        row = store.create_manual_block(listing.id, span)
        block = db.query(CalendarBlock).filter(CalendarBlock.id == row["id"]).one()
        assert block.start_at == datetime(2024, 4, 1, 10, 0)
        assert block.end_date == date(2024, 4, 1)

    def test_inverted_range_rejected(self, store, listing):
        with pytest.raises(ValidationFailure):
            store.create_manual_block(listing.id, BlockSpan.days(date(2024, 4, 3), date(2024, 4, 1)))

    def test_unknown_listing(self, store):
        with pytest.raises(NotFound):
            store.create_manual_block("nope", BlockSpan.days(date(2024, 4, 1), date(2024, 4, 1)))

    def test_delete_missing_block(self, store):
        with pytest.raises(NotFound, match="Block not found"):
            store.delete_manual_block("missing")

    def test_update_notes_trims(self, store, manual_block):
        assert store.update_manual_block_notes("block-1", "  Keys under mat  ") == "Keys under mat"
        assert store.update_manual_block_notes("block-1", "   ") is None

    def test_update_without_fields(self, store, manual_block):
        with pytest.raises(ValidationFailure, match="No updates provided"):
            store.update_manual_block("block-1", {})

    def test_booking_status_only_cancellation(self, db, store, confirmed_booking):
        with pytest.raises(ValidationFailure):
            store.update_booking_status("booking-1", "paid")
        store.update_booking_status("booking-1", "Cancelled")
        db.expire_all()
        assert db.get(Booking, "booking-1").status == "cancelled"

    def test_replace_feed_blocks(self, db, store, listing):
        url = "https://example.com/feed.ics"
        first = [FeedBlock(BlockSpan.days(date(2024, 5, 1), date(2024, 5, 2)), "Airbnb", "uid-1")]
        second = [
            FeedBlock(BlockSpan.days(date(2024, 6, 1), date(2024, 6, 1)), "Airbnb", "uid-2"),
            FeedBlock(BlockSpan.days(date(2024, 6, 5), date(2024, 6, 6)), "Airbnb", "uid-3"),
        ]
        store.replace_feed_blocks(listing.id, url, "airbnb", first)
        assert store.replace_feed_blocks(listing.id, url, "airbnb", second) == 2

        uids = sorted(b.external_uid for b in db.query(CalendarBlock).filter(CalendarBlock.feed_url == url))
        assert uids == ["uid-2", "uid-3"]

    def test_failed_write_raises_external_error(self, db, store, listing):
        db.execute(text("DROP TABLE listing_calendar_blocks"))
        db.commit()
        try:
            with pytest.raises(ExternalWriteError):
                store.create_manual_block(listing.id, BlockSpan.days(date(2024, 4, 1), date(2024, 4, 1)))
        finally:
            CalendarBlock.__table__.create(bind=db.get_bind())
