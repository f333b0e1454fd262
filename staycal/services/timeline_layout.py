"""
Timeline Layout Engine

Stacks occupancy intervals into non-overlapping lanes per listing for a
visible window and flags days claimed by more than one interval.

All math runs on grid cell indices with an exclusive end:
- day grid: one cell per calendar day in the listing's timezone
- hourly grid: one cell per slot (30 minutes by default) of a single day

Layout is pure and recomputed on every request; nothing is cached.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..exceptions import ValidationFailure
from ..utils.dates import DateLike, TimezoneLike, add_days, add_minutes, day_key, start_of_day, to_datetime
from .occupancy import Granularity, OccupancyInterval, group_by_resource

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60


class TimelineGrid:
    """A run of equally sized cells starting at ``start``."""

    def __init__(
        self,
        start: datetime,
        cells: int,
        granularity: Granularity = Granularity.DAY,
        slot_minutes: int = 30,
    ):
        if cells < 1:
            raise ValidationFailure("Timeline window must contain at least one cell")
        if granularity == Granularity.TIME and (slot_minutes < 1 or MINUTES_PER_DAY % slot_minutes):
            raise ValidationFailure("Slot length must divide a day evenly")
        self.start = start
        self.cells = cells
        self.granularity = granularity
        self.slot_minutes = slot_minutes

    @property
    def tz(self):
        return self.start.tzinfo

    @property
    def end(self) -> datetime:
        return self.cell_start(self.cells)

    def cell_start(self, index: int) -> datetime:
        if self.granularity == Granularity.DAY:
            return add_days(self.start, index)
        return add_minutes(self.start, index * self.slot_minutes)

    def cell_end(self, index: int) -> datetime:
        return self.cell_start(index + 1)

    def cell_day(self, index: int) -> date:
        return day_key(self.cell_start(index), self.tz)

    def _offset_slots(self, moment: DateLike) -> float:
        seconds = (to_datetime(moment) - self.start).total_seconds()
        return seconds / (self.slot_minutes * 60)

    def cell_index(self, moment: DateLike) -> int:
        """Index of the cell containing ``moment`` (may fall outside the grid)."""
        if self.granularity == Granularity.DAY:
            return (day_key(moment, self.tz) - self.start.date()).days
        return math.floor(self._offset_slots(moment))

    def span_of(self, interval: OccupancyInterval) -> Tuple[int, int]:
        """Unclipped ``[start, end)`` cell span of an interval."""
        start_index = self.cell_index(interval.start)
        if interval.is_zero_width:
            return start_index, start_index
        if self.granularity == Granularity.DAY:
            return start_index, self.cell_index(interval.display_end) + 1
        return start_index, math.ceil(self._offset_slots(interval.end))

    def in_window(self, span: Tuple[int, int]) -> bool:
        start_index, end_index = span
        if start_index == end_index:
            return 0 <= start_index < self.cells
        return start_index < self.cells and end_index > 0

    def __repr__(self) -> str:
        return f"<TimelineGrid {self.granularity.value} {self.start.isoformat()} x{self.cells}>"


@dataclass(frozen=True)
class LaneAssignment:
    """An interval placed on a lane, with its span clipped to the window."""
    interval: OccupancyInterval
    lane_index: int
    start_index: int
    end_index: int
    extends_before: bool = False
    extends_after: bool = False
    conflicts: Tuple[datetime, ...] = ()

    @property
    def width(self) -> int:
        return self.end_index - self.start_index

    @property
    def is_conflicting(self) -> bool:
        return bool(self.conflicts)

    @property
    def conflict_days(self) -> List[date]:
        return sorted({day_key(moment, moment.tzinfo) for moment in self.conflicts})


@dataclass
class TimelineLayout:
    grid: TimelineGrid
    lanes: Dict[str, List[LaneAssignment]] = field(default_factory=dict)
    lane_count: Dict[str, int] = field(default_factory=dict)

    @property
    def resource_ids(self) -> List[str]:
        return list(self.lane_count)

    def assignments_for(self, resource_id: str) -> List[LaneAssignment]:
        return self.lanes.get(resource_id, [])

    def find(self, interval_id: str) -> Optional[LaneAssignment]:
        for assignments in self.lanes.values():
            for assignment in assignments:
                if assignment.interval.id == interval_id:
                    return assignment
        return None

    def conflicting(self) -> List[LaneAssignment]:
        return [a for assignments in self.lanes.values() for a in assignments if a.is_conflicting]


def assign_lanes(spans: Sequence[Tuple[int, int]]) -> Tuple[List[int], int]:
    """
    Greedy interval-graph colouring.

    ``spans`` must already be sorted by start. Each span takes the lowest
    lane whose last occupant ends at or before its start. Returns the lane
    per span and the lane count (at least 1).
    """
    lane_ends: List[int] = []
    result: List[int] = []
    for start_index, end_index in spans:
        for lane, lane_end in enumerate(lane_ends):
            if lane_end <= start_index:
                lane_ends[lane] = max(lane_end, end_index)
                result.append(lane)
                break
        else:
            lane_ends.append(end_index)
            result.append(len(lane_ends) - 1)
    return result, max(len(lane_ends), 1)


def detect_conflicts(
    grid: TimelineGrid,
    placed: Sequence[Tuple[OccupancyInterval, Tuple[int, int]]],
) -> Dict[str, Tuple[datetime, ...]]:
    """
    Cells of the window claimed by more than one distinct interval.

    Returns interval id -> conflicting cell starts. Intervals sharing an id
    count once.
    """
    conflicts: Dict[str, List[datetime]] = {}
    for cell in range(grid.cells):
        covering: Dict[str, OccupancyInterval] = {}
        for interval, (start_index, end_index) in placed:
            if start_index <= cell < end_index:
                covering.setdefault(interval.id, interval)
        if len(covering) > 1:
            cell_start = grid.cell_start(cell)
            for interval_id in covering:
                conflicts.setdefault(interval_id, []).append(cell_start)
    return {interval_id: tuple(cells) for interval_id, cells in conflicts.items()}


def _layout_resource(grid: TimelineGrid, intervals: Sequence[OccupancyInterval]):
    spans = [(interval, grid.span_of(interval)) for interval in intervals]
    visible = [(interval, span) for interval, span in spans if grid.in_window(span)]
    # sorted() is stable, so ties keep insertion order
    visible = sorted(visible, key=lambda item: item[1][0])

    lanes, lane_count = assign_lanes([span for _, span in visible])
    conflicts = detect_conflicts(grid, visible)

    assignments = []
    for (interval, (start_index, end_index)), lane in zip(visible, lanes):
        clipped_start = min(max(start_index, 0), grid.cells)
        clipped_end = max(min(end_index, grid.cells), clipped_start)
        assignments.append(LaneAssignment(
            interval=interval,
            lane_index=lane,
            start_index=clipped_start,
            end_index=clipped_end,
            extends_before=interval.start < grid.start,
            extends_after=interval.end > grid.end,
            conflicts=conflicts.get(interval.id, ()),
        ))
    return assignments, lane_count


def layout_grid(
    intervals: Iterable[OccupancyInterval],
    grid: TimelineGrid,
    resource_ids: Optional[Sequence[str]] = None,
) -> TimelineLayout:
    """Lay out intervals on an explicit grid, one lane group per listing."""
    groups = group_by_resource(intervals)
    ordered = list(resource_ids) if resource_ids is not None else list(groups)

    result = TimelineLayout(grid=grid)
    for resource_id in ordered:
        assignments, lane_count = _layout_resource(grid, groups.get(resource_id, []))
        result.lanes[resource_id] = assignments
        result.lane_count[resource_id] = lane_count
    return result


def layout(
    intervals: Iterable[OccupancyInterval],
    window_start: DateLike,
    window_days: int,
    resource_ids: Optional[Sequence[str]] = None,
    tz: TimezoneLike = None,
) -> TimelineLayout:
    """
    Day timeline for ``[window_start, window_start + window_days)``.

    Listings passed in ``resource_ids`` always get a row (one empty lane when
    nothing overlaps the window).
    """
    grid = TimelineGrid(start_of_day(window_start, tz), window_days, Granularity.DAY)
    return layout_grid(intervals, grid, resource_ids)


def layout_hourly(
    intervals: Iterable[OccupancyInterval],
    day: DateLike,
    tz: TimezoneLike = None,
    slot_minutes: int = 30,
    resource_ids: Optional[Sequence[str]] = None,
) -> TimelineLayout:
    """Slot timeline for one local day (48 half-hour slots by default)."""
    if slot_minutes < 1:
        raise ValidationFailure("Slot length must be positive")
    grid = TimelineGrid(
        start_of_day(day, tz),
        MINUTES_PER_DAY // slot_minutes,
        Granularity.TIME,
        slot_minutes=slot_minutes,
    )
    return layout_grid(intervals, grid, resource_ids)
