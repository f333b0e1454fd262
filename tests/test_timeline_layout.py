"""
Tests for the timeline layout engine

Lane assignment, window clipping and per-day conflict detection.
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from staycal.exceptions import ValidationFailure
from staycal.services.occupancy import Channel, Granularity, OccupancyInterval
from staycal.services.timeline_layout import (
    TimelineGrid,
    assign_lanes,
    layout,
    layout_hourly,
)

UTC = timezone.utc


def day(d: int, month: int = 3) -> datetime:
    return datetime(2024, month, d, tzinfo=UTC)


def interval(interval_id, start, end, channel=Channel.MANUAL, resource_id="L1", granularity=Granularity.DAY):
    return OccupancyInterval(
        id=interval_id,
        resource_id=resource_id,
        start=start,
        end=end,
        channel=channel,
        granularity=granularity,
    )


class TestLaneAssignment:
    def test_disjoint_blocks_share_lane_zero(self):
        """[Mar 5, Mar 7) and [Mar 10, Mar 12) in an 8-day window from Mar 3"""
        intervals = [interval("a", day(5), day(7)), interval("b", day(10), day(12))]
        result = layout(intervals, day(3), 8, tz="UTC")

        assignments = result.assignments_for("L1")
        assert [a.lane_index for a in assignments] == [0, 0]
        assert result.lane_count["L1"] == 1

    def test_pairwise_overlapping_need_one_lane_each(self):
        intervals = [interval(str(n), day(1), day(10)) for n in range(4)]
        result = layout(intervals, day(1), 14, tz="UTC")
        assert result.lane_count["L1"] == 4
        assert sorted(a.lane_index for a in result.assignments_for("L1")) == [0, 1, 2, 3]

    def test_pairwise_disjoint_use_one_lane(self):
        intervals = [interval(str(n), day(1 + 2 * n), day(2 + 2 * n)) for n in range(5)]
        result = layout(intervals, day(1), 14, tz="UTC")
        assert result.lane_count["L1"] == 1

    def test_back_to_back_intervals_reuse_a_lane(self):
        """Checkout day is free for the next check-in"""
        intervals = [interval("a", day(1), day(4)), interval("b", day(4), day(6))]
        result = layout(intervals, day(1), 7, tz="UTC")
        assert result.lane_count["L1"] == 1
        assert result.conflicting() == []

    def test_ties_keep_insertion_order(self):
        intervals = [interval("first", day(2), day(4)), interval("second", day(2), day(4))]
        result = layout(intervals, day(1), 7, tz="UTC")
        assert [(a.interval.id, a.lane_index) for a in result.assignments_for("L1")] == [
            ("first", 0), ("second", 1),
        ]

    def test_assign_lanes_empty_reserves_one_lane(self):
        assert assign_lanes([]) == ([], 1)


class TestWindow:
    def test_empty_resource_still_gets_a_lane(self):
        result = layout([], day(1), 7, resource_ids=["L1", "L2"], tz="UTC")
        assert result.resource_ids == ["L1", "L2"]
        assert result.lane_count == {"L1": 1, "L2": 1}

    def test_interval_outside_window_is_omitted(self):
        intervals = [interval("inside", day(3), day(4)), interval("outside", day(20), day(25))]
        result = layout(intervals, day(1), 7, tz="UTC")
        assert [a.interval.id for a in result.assignments_for("L1")] == ["inside"]
        assert result.lane_count["L1"] == 1

    def test_clipping_records_overflow(self):
        long_stay = interval("long", day(25, 2), day(10))
        result = layout([long_stay], day(1), 5, tz="UTC")
        placed = result.find("long")
        assert (placed.start_index, placed.end_index) == (0, 5)
        assert placed.extends_before and placed.extends_after
        # the interval itself is untouched
        assert placed.interval.start == day(25, 2)

    def test_zero_width_interval_never_has_negative_width(self):
        result = layout([interval("z", day(3), day(3))], day(1), 7, tz="UTC")
        placed = result.find("z")
        assert placed.width == 0
        assert not placed.is_conflicting

    def test_window_must_have_cells(self):
        with pytest.raises(ValidationFailure):
            layout([], day(1), 0, tz="UTC")


class TestConflicts:
    def test_overlap_flags_both_on_shared_days_only(self):
        """Manual [Mar 5, Mar 8) vs Airbnb [Mar 6, Mar 9): Mar 6 and 7 conflict"""
        intervals = [
            interval("manual", day(5), day(8), Channel.MANUAL),
            interval("airbnb", day(6), day(9), Channel.AIRBNB),
        ]
        result = layout(intervals, day(1), 14, tz="UTC")

        for interval_id in ("manual", "airbnb"):
            assert result.find(interval_id).conflict_days == [date(2024, 3, 6), date(2024, 3, 7)]

    def test_single_cover_is_not_conflicting(self):
        result = layout([interval("solo", day(5), day(8))], day(1), 14, tz="UTC")
        assert result.find("solo").conflicts == ()

    def test_conflicts_are_per_resource(self):
        intervals = [
            interval("a", day(5), day(8), resource_id="L1"),
            interval("b", day(5), day(8), resource_id="L2"),
        ]
        result = layout(intervals, day(1), 14, tz="UTC")
        assert result.conflicting() == []

    def test_duplicate_ids_count_once(self):
        """The same row fetched twice is not a conflict with itself"""
        intervals = [interval("dup", day(5), day(8)), interval("dup", day(5), day(8))]
        result = layout(intervals, day(1), 14, tz="UTC")
        assert result.conflicting() == []

    def test_conflicts_outside_window_are_ignored(self):
        intervals = [interval("a", day(1), day(10)), interval("b", day(1), day(10))]
        result = layout(intervals, day(8), 7, tz="UTC")
        assert result.find("a").conflict_days == [date(2024, 3, 8), date(2024, 3, 9)]


class TestHourly:
    def test_hourly_grid_has_48_slots(self):
        result = layout_hourly([], date(2024, 3, 5), tz="UTC", resource_ids=["L1"])
        grid = result.grid
        assert grid.cells == 48
        assert grid.granularity == Granularity.TIME
        assert grid.cell_start(1) - grid.cell_start(0) == timedelta(minutes=30)

    def test_partial_slots_round_outwards(self):
        visit = interval(
            "visit",
            datetime(2024, 3, 5, 10, 15, tzinfo=UTC),
            datetime(2024, 3, 5, 11, 10, tzinfo=UTC),
            granularity=Granularity.TIME,
        )
        result = layout_hourly([visit], date(2024, 3, 5), tz="UTC")
        placed = result.find("visit")
        assert (placed.start_index, placed.end_index) == (20, 23)

    def test_hourly_conflicts_per_slot(self):
        a = interval("a", datetime(2024, 3, 5, 9, tzinfo=UTC), datetime(2024, 3, 5, 11, tzinfo=UTC),
                     granularity=Granularity.TIME)
        b = interval("b", datetime(2024, 3, 5, 10, tzinfo=UTC), datetime(2024, 3, 5, 12, tzinfo=UTC),
                     granularity=Granularity.TIME)
        result = layout_hourly([a, b], date(2024, 3, 5), tz="UTC")
        assert result.find("a").conflicts == (
            datetime(2024, 3, 5, 10, tzinfo=UTC),
            datetime(2024, 3, 5, 10, 30, tzinfo=UTC),
        )
        assert result.lane_count["L1"] == 2

    def test_slot_length_must_divide_day(self):
        with pytest.raises(ValidationFailure):
            TimelineGrid(day(1), 10, Granularity.TIME, slot_minutes=7)
