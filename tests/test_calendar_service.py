"""
Tests for the Calendar Service

Read path (fetch -> normalize -> layout) and optimistic writes with
rollback when the store rejects them.
"""

from datetime import date, datetime
from decimal import Decimal
from unittest.mock import patch
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy.exc import OperationalError

from staycal.exceptions import ExternalWriteError, ValidationFailure
from staycal.models import CalendarBlock, NightlyRate
from staycal.services.calendar_service import CalendarService
from staycal.services.occupancy import Channel
from staycal.services.occupancy_store import BlockSpan
from staycal.services.optimistic import Committed, OptimisticOccupancy, RolledBack, is_temp_id
from staycal.utils.metrics import manual_block_writes_total, optimistic_rollbacks_total

LONDON = ZoneInfo("Europe/London")


@pytest.fixture
def service(db):
    return CalendarService(db, now=lambda: datetime(2024, 3, 1, 9, 0, tzinfo=LONDON))


class TestTimeline:
    def test_timeline_lays_out_bookings_and_blocks(self, service, confirmed_booking, manual_block):
        view = service.timeline(["listing-1"], date(2024, 3, 1), 14)

        assert not view.partial
        booking = view.layout.find("booking-1")
        block = view.layout.find("block-1")
        assert (booking.start_index, booking.end_index) == (0, 3)
        # stored end_date Mar 11 is the last blocked day
        assert (block.start_index, block.end_index) == (9, 11)
        assert booking.interval.channel == Channel.DIRECT_CONFIRMED
        assert block.interval.meta["notes"] == "Decorators in"
        assert view.layout.grid.tz == LONDON

    def test_unknown_listing_still_gets_a_row(self, service):
        view = service.timeline(["ghost"], date(2024, 3, 1), 7)
        assert view.layout.lane_count == {"ghost": 1}

    def test_cancelled_bookings_do_not_render(self, db, service, confirmed_booking):
        confirmed_booking.status = "cancelled"
        db.commit()
        view = service.timeline(["listing-1"], date(2024, 3, 1), 7)
        assert view.layout.find("booking-1") is None

    def test_partial_load_still_renders(self, service, confirmed_booking):
        original = service.store._select_with_fallback

        def fail_blocks(name, *args):
            if name == "blocks":
                raise OperationalError("SELECT", {}, Exception("database is locked"))
            return original(name, *args)

        with patch.object(service.store, "_select_with_fallback", side_effect=fail_blocks):
            view = service.timeline(["listing-1"], date(2024, 3, 1), 7)

        assert view.partial
        assert "blocks" in view.load_errors
        assert view.layout.find("booking-1") is not None

    def test_hourly_view(self, service, listing):
        view = service.hourly("listing-1", date(2024, 3, 1))
        assert view.layout.grid.cells == 48


class TestOptimisticCreate:
    def test_rejected_write_rolls_back(self, service, confirmed_booking, manual_block):
        """The draft disappears, the error surfaces, nothing is duplicated"""
        view = service.timeline(["listing-1"], date(2024, 3, 1), 14)
        occupancy = OptimisticOccupancy(view.intervals)
        before = occupancy.intervals

        with patch.object(
            service.store, "create_manual_block", side_effect=ExternalWriteError("Unable to save block")
        ):
            with pytest.raises(ExternalWriteError, match="Unable to save block"):
                service.create_manual_block(
                    "listing-1", BlockSpan.days(date(2024, 3, 20), date(2024, 3, 21)), optimistic=occupancy
                )

        assert occupancy.intervals == before
        assert not any(is_temp_id(i.id) for i in occupancy)
        states = list(occupancy.writes.values())
        assert len(states) == 1 and isinstance(states[0], RolledBack)
        assert optimistic_rollbacks_total.get(operation="create") == 1
        assert manual_block_writes_total.get(operation="create", status="error") == 1

    def test_store_crash_rolls_back(self, service, confirmed_booking):
        """A raw database error still undoes the draft"""
        view = service.timeline(["listing-1"], date(2024, 3, 1), 14)
        occupancy = OptimisticOccupancy(view.intervals)
        before = occupancy.intervals
        locked = OperationalError("SELECT", {}, Exception("database is locked"))

        with patch.object(service.store, "get_listing", side_effect=locked):
            with pytest.raises(ExternalWriteError, match="Unable to save block"):
                service.create_manual_block(
                    "listing-1", BlockSpan.days(date(2024, 3, 20), date(2024, 3, 21)), optimistic=occupancy
                )

        assert occupancy.intervals == before
        assert not any(is_temp_id(i.id) for i in occupancy)
        states = list(occupancy.writes.values())
        assert len(states) == 1 and isinstance(states[0], RolledBack)
        assert states[0].error == "Unable to save block"
        assert optimistic_rollbacks_total.get(operation="create") == 1

    def test_overlapping_block_is_refused(self, service, confirmed_booking, manual_block):
        occupancy = OptimisticOccupancy(service.timeline(["listing-1"], date(2024, 3, 1), 14).intervals)
        with pytest.raises(ValidationFailure, match="already occupied") as excinfo:
            service.create_manual_block(
                "listing-1", BlockSpan.days(date(2024, 3, 11), date(2024, 3, 12)), optimistic=occupancy
            )
        assert excinfo.value.details == {"conflict_id": "block-1"}
        assert occupancy.writes == {}
        assert len(service.store.fetch_occupancy(["listing-1"]).blocks) == 1

    def test_checkout_day_is_free(self, service, confirmed_booking):
        """The booking's check-out morning can be blocked"""
        result = service.create_manual_block("listing-1", BlockSpan.days(date(2024, 3, 4), date(2024, 3, 4)))
        assert result.row["start_date"] == date(2024, 3, 4)

    def test_refetch_stays_inside_the_visible_window(self, db, service, confirmed_booking):
        db.add(CalendarBlock(
            id="old-block",
            listing_id="listing-1",
            start_date=date(2021, 6, 1),
            end_date=date(2021, 6, 3),
            source="manual",
        ))
        db.commit()
        occupancy = OptimisticOccupancy(service.timeline(["listing-1"], date(2024, 3, 1), 14).intervals)

        with patch.object(service, "load_occupancy", wraps=service.load_occupancy) as load:
            service.create_manual_block(
                "listing-1", BlockSpan.days(date(2024, 3, 20), date(2024, 3, 21)), optimistic=occupancy
            )

        _, window_start, window_end = load.call_args.args
        assert (window_start, window_end) == (date(2024, 2, 29), date(2024, 3, 22))
        assert occupancy.get("old-block") is None
        assert occupancy.get("booking-1") is not None

    def test_explicit_refetch_window(self, service, confirmed_booking):
        occupancy = OptimisticOccupancy(service.timeline(["listing-1"], date(2024, 3, 1), 14).intervals)
        with patch.object(service, "load_occupancy", wraps=service.load_occupancy) as load:
            service.create_manual_block(
                "listing-1",
                BlockSpan.days(date(2024, 3, 20), date(2024, 3, 21)),
                optimistic=occupancy,
                window=(date(2024, 3, 15), date(2024, 3, 31)),
            )
        assert load.call_args.args[1:] == (date(2024, 3, 15), date(2024, 3, 31))
        assert occupancy.get("booking-1") is None

    def test_successful_write_is_refetched(self, service, confirmed_booking):
        view = service.timeline(["listing-1"], date(2024, 3, 1), 14)
        occupancy = OptimisticOccupancy(view.intervals)

        result = service.create_manual_block(
            "listing-1",
            BlockSpan.days(date(2024, 3, 20), date(2024, 3, 21)),
            notes="Boiler service",
            optimistic=occupancy,
        )

        assert isinstance(result.state, Committed)
        new_id = result.row["id"]
        assert result.state.real_id == new_id
        assert [i.id for i in occupancy].count(new_id) == 1
        assert occupancy.get("booking-1") is not None
        assert not any(is_temp_id(i.id) for i in occupancy)
        assert occupancy.get(new_id).meta["notes"] == "Boiler service"

    def test_invalid_range_fails_before_any_edit(self, service, listing):
        occupancy = OptimisticOccupancy()
        with pytest.raises(ValidationFailure):
            service.create_manual_block(
                "listing-1", BlockSpan.days(date(2024, 3, 5), date(2024, 3, 1)), optimistic=occupancy
            )
        assert occupancy.writes == {}

    def test_block_from_selection(self, service, listing):
        view = service.timeline(["listing-1"], date(2024, 3, 1), 14)
        machine = service.selection_for(view)
        machine.pointer_down("listing-1", 9)
        machine.pointer_move("listing-1", 7)
        committed = machine.pointer_up()

        result = service.create_block_from_selection(committed, label="Family visit")
        assert result.row["start_date"] == date(2024, 3, 8)
        assert result.row["end_date"] == date(2024, 3, 10)
        assert result.interval.end == datetime(2024, 3, 11, tzinfo=LONDON)


class TestOptimisticDeleteAndNotes:
    def test_failed_delete_restores_block(self, service, manual_block):
        occupancy = OptimisticOccupancy(service.timeline(["listing-1"], date(2024, 3, 1), 14).intervals)
        with patch.object(
            service.store, "delete_manual_block", side_effect=ExternalWriteError("Unable to delete block")
        ):
            with pytest.raises(ExternalWriteError):
                service.delete_manual_block("block-1", optimistic=occupancy)
        assert occupancy.get("block-1") is not None

    def test_store_crash_on_delete_restores_block(self, service, manual_block):
        occupancy = OptimisticOccupancy(service.timeline(["listing-1"], date(2024, 3, 1), 14).intervals)
        locked = OperationalError("DELETE", {}, Exception("database is locked"))
        with patch.object(service.store, "delete_manual_block", side_effect=locked):
            with pytest.raises(ExternalWriteError, match="Unable to delete block"):
                service.delete_manual_block("block-1", optimistic=occupancy)
        assert occupancy.get("block-1") is not None
        assert optimistic_rollbacks_total.get(operation="delete") == 1

    def test_delete(self, db, service, manual_block):
        occupancy = OptimisticOccupancy(service.timeline(["listing-1"], date(2024, 3, 1), 14).intervals)
        service.delete_manual_block("block-1", optimistic=occupancy)
        assert occupancy.get("block-1") is None
        assert service.store.fetch_occupancy(["listing-1"]).blocks == []

    def test_notes_update(self, service, manual_block):
        occupancy = OptimisticOccupancy(service.timeline(["listing-1"], date(2024, 3, 1), 14).intervals)
        assert service.update_block_notes("block-1", "  New keys  ", optimistic=occupancy) == "New keys"
        assert occupancy.get("block-1").meta["notes"] == "New keys"

    def test_failed_notes_update_restores_old_notes(self, service, manual_block):
        occupancy = OptimisticOccupancy(service.timeline(["listing-1"], date(2024, 3, 1), 14).intervals)
        with patch.object(
            service.store, "update_manual_block", side_effect=ValidationFailure("Notes are not supported yet")
        ):
            with pytest.raises(ValidationFailure):
                service.update_block_notes("block-1", "New keys", optimistic=occupancy)
        assert occupancy.get("block-1").meta["notes"] == "Decorators in"


class TestPriceFromSelection:
    def test_sets_a_rate_per_selected_night(self, db, service, listing):
        view = service.timeline(["listing-1"], date(2024, 3, 1), 14)
        machine = service.selection_for(view)
        machine.click("listing-1", 4)
        committed = machine.click("listing-1", 6)

        assert service.set_price_from_selection(committed, Decimal("150")) == 3
        rates = db.query(NightlyRate).order_by(NightlyRate.date).all()
        assert [r.date for r in rates] == [date(2024, 3, 5), date(2024, 3, 6), date(2024, 3, 7)]
        assert all(r.price == Decimal("150.00") for r in rates)

    def test_rejects_non_positive_price(self, service, listing):
        view = service.timeline(["listing-1"], date(2024, 3, 1), 14)
        machine = service.selection_for(view)
        machine.click("listing-1", 4)
        committed = machine.click("listing-1", 5)
        with pytest.raises(ValidationFailure):
            service.set_price_from_selection(committed, 0)
