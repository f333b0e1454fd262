"""
Tests for the selection state machine and pan gesture.
"""

from datetime import date, datetime, timezone

import pytest

from staycal.services.occupancy import Channel, Granularity, OccupancyInterval
from staycal.services.selection import PanGesture, SelectionState, SelectionStateMachine
from staycal.services.timeline_layout import TimelineGrid

UTC = timezone.utc
WINDOW_START = datetime(2024, 3, 1, tzinfo=UTC)


def day(d: int) -> datetime:
    return datetime(2024, 3, d, tzinfo=UTC)


def confirmed_booking(start, end, resource_id="L1"):
    return OccupancyInterval(
        id="booking-1",
        resource_id=resource_id,
        start=start,
        end=end,
        channel=Channel.DIRECT_CONFIRMED,
    )


@pytest.fixture
def commits():
    return []


@pytest.fixture
def machine(commits):
    grid = TimelineGrid(WINDOW_START, 14)
    return SelectionStateMachine(
        grid,
        [confirmed_booking(day(1), day(4))],  # Mar 1-3
        now=lambda: datetime(2024, 3, 1, 12, 0, tzinfo=UTC),
        on_commit=commits.append,
    )


class TestDrag:
    def test_backwards_drag_commits_normalized_range(self, machine, commits):
        """Anchor Mar 10, drag to Mar 8 -> Mar 8..Mar 10"""
        assert machine.pointer_down("L1", 9) is True
        machine.pointer_move("L1", 8)
        machine.pointer_move("L1", 7)
        assert machine.state == SelectionState.DRAGGING

        committed = machine.pointer_up()

        assert committed.resource_id == "L1"
        assert committed.range.start == day(8)
        assert committed.range.end == day(10)
        assert committed.range.end_exclusive == day(11)
        assert committed.range.start <= committed.range.end
        assert commits == [committed]
        assert machine.state == SelectionState.IDLE
        assert machine.last_outcome == SelectionState.COMMITTED

    def test_click_after_drag_release_is_suppressed(self, machine, commits):
        machine.pointer_down("L1", 5)
        machine.pointer_move("L1", 6)
        machine.pointer_up()

        # the browser fires a click on the release cell
        assert machine.click("L1", 6) is None
        assert machine.draft is None
        assert machine.state == SelectionState.IDLE
        assert len(commits) == 1

    def test_second_commit_needs_a_fresh_anchor(self, machine, commits):
        machine.pointer_down("L1", 5)
        machine.pointer_move("L1", 6)
        machine.pointer_up()
        machine.click("L1", 6)

        # a double click lands after the suppressed one
        assert machine.pointer_up() is None
        assert machine.click("L1", 6) is None
        assert machine.state == SelectionState.ANCHORING
        assert len(commits) == 1

    def test_move_without_button_does_nothing(self, machine):
        machine.pointer_move("L1", 6)
        assert machine.draft is None
        assert machine.state == SelectionState.IDLE

    def test_drag_does_not_extend_over_occupancy(self, machine):
        machine.update_occupancy([
            OccupancyInterval("blk", "L1", day(7), day(9), Channel.AIRBNB),
        ])
        machine.pointer_down("L1", 4)
        machine.pointer_move("L1", 9)
        assert machine.draft.current == 4
        machine.pointer_move("L1", 5)
        assert machine.draft.current == 5


class TestClick:
    def test_click_then_click_commits(self, machine, commits):
        machine.pointer_down("L1", 4)
        machine.pointer_up()
        assert machine.click("L1", 4) is None  # opening click
        assert machine.state == SelectionState.ANCHORING

        machine.pointer_down("L1", 6)
        machine.pointer_up()
        committed = machine.click("L1", 6)

        assert committed.range.start_day == date(2024, 3, 5)
        assert committed.range.end_day == date(2024, 3, 7)
        assert committed.range.cells == 3
        assert commits == [committed]

    def test_clicking_anchor_again_cancels(self, machine, commits):
        machine.click("L1", 4)
        machine.click("L1", 4)
        assert machine.draft is None
        assert machine.state == SelectionState.IDLE
        assert machine.last_outcome == SelectionState.CANCELLED
        assert commits == []

    def test_other_resource_discards_open_draft(self, machine):
        machine.click("L1", 4)
        machine.click("L2", 6)
        assert machine.draft.resource_id == "L2"
        assert machine.draft.anchor == 6

    def test_escape_cancels(self, machine):
        machine.pointer_down("L1", 4)
        machine.escape()
        assert machine.draft is None
        assert machine.last_outcome == SelectionState.CANCELLED

    def test_commit_over_occupied_cells_is_refused(self, machine, commits):
        machine.click("L1", 9)
        machine.update_occupancy([
            OccupancyInterval("blk", "L1", day(11), day(12), Channel.MANUAL),
        ])
        assert machine.click("L1", 12) is None
        assert commits == []


class TestSelectability:
    def test_cannot_anchor_on_booked_day(self, machine):
        """Mar 2 is inside the confirmed booking"""
        assert machine.pointer_down("L1", 1) is False
        assert machine.draft is None
        assert machine.state == SelectionState.IDLE

    def test_checkout_day_is_selectable(self, machine):
        assert machine.is_selectable("L1", 3)

    def test_today_selectable_past_not(self):
        grid = TimelineGrid(WINDOW_START, 14)
        machine = SelectionStateMachine(grid, now=lambda: datetime(2024, 3, 5, 18, 0, tzinfo=UTC))
        assert not machine.is_selectable("L1", 3)
        assert machine.is_selectable("L1", 4)

    def test_past_slots_today_not_selectable(self):
        grid = TimelineGrid(WINDOW_START, 48, Granularity.TIME)
        machine = SelectionStateMachine(grid, now=lambda: datetime(2024, 3, 1, 10, 15, tzinfo=UTC))
        assert not machine.is_selectable("L1", 19)  # 09:30-10:00
        assert machine.is_selectable("L1", 20)  # 10:00-10:30, still running

    def test_outside_grid_not_selectable(self, machine):
        assert not machine.is_selectable("L1", -1)
        assert not machine.is_selectable("L1", 14)

    def test_hourly_commit_end_is_slot_end(self):
        grid = TimelineGrid(WINDOW_START, 48, Granularity.TIME)
        machine = SelectionStateMachine(grid, now=lambda: datetime(2024, 3, 1, 8, 0, tzinfo=UTC))
        machine.pointer_down("L1", 20)
        machine.pointer_move("L1", 21)
        committed = machine.pointer_up()
        assert committed.range.start == datetime(2024, 3, 1, 10, 0, tzinfo=UTC)
        assert committed.range.end_exclusive == datetime(2024, 3, 1, 11, 0, tzinfo=UTC)


class TestPanGesture:
    def test_one_step_per_threshold_crossing(self):
        shifts = []
        pan = PanGesture(threshold=72, on_shift=shifts.append)

        assert pan.wheel(50) == 0
        assert pan.wheel(30) == 1
        assert pan.accumulated == 0
        assert pan.wheel(-150) == -2
        assert shifts == [1, -1, -1]

    def test_vertical_wheel_needs_shift(self):
        pan = PanGesture()
        assert pan.wheel(0, 200) == 0
        assert pan.wheel(0, 200, shift=True) == 2

    def test_swipe(self):
        shifts = []
        pan = PanGesture(threshold=72, on_shift=shifts.append)
        pan.touch_start(1, 300)
        assert pan.touch_move(1, 260) == 0
        assert pan.touch_move(1, 200) == 1
        pan.touch_end(1)
        assert pan.accumulated == 0
        assert shifts == [1]

    def test_threshold_must_be_positive(self):
        with pytest.raises(ValueError):
            PanGesture(threshold=0)
