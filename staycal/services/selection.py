"""
Selection State Machine

Turns pointer, touch and keyboard events over a timeline grid into a
committed range for one listing. The machine never writes anything; the
caller persists the committed range (manual block or price edit).

Flow:
    IDLE -> ANCHORING (pointer down on a selectable cell)
         -> DRAGGING  (pointer moved to another cell while held)
         -> COMMITTED (released while dragging, or second click elsewhere)
       or   CANCELLED (second click on the anchor cell, escape)

After a commit or cancel the machine is back in IDLE; the outcome is kept
in ``last_outcome``.
"""

import enum
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from ..utils.dates import day_key
from .occupancy import Granularity, OccupancyInterval, group_by_resource
from .timeline_layout import TimelineGrid

logger = logging.getLogger(__name__)


class SelectionState(str, enum.Enum):
    IDLE = "idle"
    ANCHORING = "anchoring"
    DRAGGING = "dragging"
    COMMITTED = "committed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class SelectionDraft:
    resource_id: str
    anchor: int
    current: int

    @property
    def low(self) -> int:
        return min(self.anchor, self.current)

    @property
    def high(self) -> int:
        return max(self.anchor, self.current)

    def contains(self, cell: int) -> bool:
        return self.low <= cell <= self.high


@dataclass(frozen=True)
class SelectionRange:
    """
    A normalized selection, ``start <= end``.

    ``start`` and ``end`` are the first and last selected cells (inclusive,
    so a day selection reads Mar 8 - Mar 10). ``end_exclusive`` is the bound
    to store on an occupancy interval.
    """
    start: datetime
    end: datetime
    end_exclusive: datetime
    granularity: Granularity
    start_index: int
    end_index: int

    @property
    def cells(self) -> int:
        return self.end_index - self.start_index + 1

    @property
    def start_day(self) -> date:
        return day_key(self.start, self.start.tzinfo)

    @property
    def end_day(self) -> date:
        return day_key(self.end, self.end.tzinfo)


@dataclass(frozen=True)
class CommittedSelection:
    resource_id: str
    range: SelectionRange


class SelectionStateMachine:
    """
    One open draft at a time, across all listings on the grid.

    ``now`` is injectable for tests; by default it is the current time in
    the grid's timezone.
    """

    def __init__(
        self,
        grid: TimelineGrid,
        intervals: Iterable[OccupancyInterval] = (),
        now: Optional[Callable[[], datetime]] = None,
        on_commit: Optional[Callable[[CommittedSelection], None]] = None,
    ):
        self.grid = grid
        self._now = now or (lambda: datetime.now(grid.tz))
        self.on_commit = on_commit

        self.state = SelectionState.IDLE
        self.draft: Optional[SelectionDraft] = None
        self.last_outcome: Optional[SelectionState] = None
        self.last_commit: Optional[CommittedSelection] = None

        self._pointer_held = False
        self._selection_started = False
        self._suppress_next_click = False
        self._occupied: Dict[str, List[Tuple[int, int]]] = {}
        self.update_occupancy(intervals)

    # ================================
    # OCCUPANCY
    # ================================

    def update_occupancy(self, intervals: Iterable[OccupancyInterval]) -> None:
        """Swap in a freshly fetched interval set."""
        self._occupied = {
            resource_id: [self.grid.span_of(interval) for interval in group]
            for resource_id, group in group_by_resource(intervals).items()
        }

    def is_occupied(self, resource_id: str, cell: int) -> bool:
        for start_index, end_index in self._occupied.get(resource_id, ()):
            if start_index <= cell < end_index:
                return True
        return False

    def is_past(self, cell: int) -> bool:
        now = self._now()
        if self.grid.granularity == Granularity.DAY:
            return self.grid.cell_day(cell) < day_key(now, self.grid.tz)
        return self.grid.cell_end(cell) <= now

    def is_selectable(self, resource_id: str, cell: int) -> bool:
        if cell < 0 or cell >= self.grid.cells:
            return False
        if self.is_past(cell):
            return False
        return not self.is_occupied(resource_id, cell)

    def is_range_selectable(self, resource_id: str, first: int, last: int) -> bool:
        low, high = min(first, last), max(first, last)
        return all(self.is_selectable(resource_id, cell) for cell in range(low, high + 1))

    # ================================
    # EVENTS
    # ================================

    def pointer_down(self, resource_id: str, cell: int) -> bool:
        """
        Primary button or touch pressed on a cell.

        Returns True when a new draft was anchored. A press inside an open
        draft's listing keeps that draft so the following click can finish it.
        """
        self._pointer_held = True
        if self.draft is not None and self.draft.resource_id == resource_id:
            return False
        started = self._begin(resource_id, cell)
        self._selection_started = started
        return started

    def pointer_move(self, resource_id: str, cell: int) -> None:
        """Pointer entered a cell. Only extends while the button is held."""
        if not self._pointer_held or self.draft is None:
            return
        if resource_id != self.draft.resource_id or cell == self.draft.current:
            return

        self.state = SelectionState.DRAGGING
        if self.is_range_selectable(resource_id, self.draft.anchor, cell):
            self.draft = SelectionDraft(resource_id, self.draft.anchor, cell)

    def pointer_up(self) -> Optional[CommittedSelection]:
        """Release. Commits only a real drag; a plain press waits for the click."""
        self._pointer_held = False
        if self.state != SelectionState.DRAGGING:
            return None
        self._suppress_next_click = True
        return self._commit()

    def click(self, resource_id: str, cell: int) -> Optional[CommittedSelection]:
        """
        Click (or tap, or keyboard activation) on a cell.

        First click anchors, a click on another cell of the same listing
        commits, a click on the anchor cell again cancels.
        """
        if self._suppress_next_click:
            self._suppress_next_click = False
            return None

        if self.draft is None or self.draft.resource_id != resource_id:
            self._begin(resource_id, cell)
            return None

        if self._selection_started:
            # the press that opened this draft
            self._selection_started = False
            return None

        if cell == self.draft.anchor:
            self.cancel()
            return None

        if not self.is_range_selectable(resource_id, self.draft.anchor, cell):
            return None
        self.draft = SelectionDraft(resource_id, self.draft.anchor, cell)
        return self._commit()

    def escape(self) -> None:
        self.cancel()

    def cancel(self) -> None:
        if self.draft is not None:
            self.last_outcome = SelectionState.CANCELLED
        self._reset()

    # ================================
    # INTERNALS
    # ================================

    def _begin(self, resource_id: str, cell: int) -> bool:
        # any open draft, on any listing, is discarded
        self._reset(keep_pointer=True)
        if not self.is_selectable(resource_id, cell):
            return False
        self.draft = SelectionDraft(resource_id, cell, cell)
        self.state = SelectionState.ANCHORING
        return True

    def _reset(self, keep_pointer: bool = False) -> None:
        self.state = SelectionState.IDLE
        self.draft = None
        self._selection_started = False
        if not keep_pointer:
            self._pointer_held = False

    def preview(self) -> Optional[SelectionRange]:
        """The range the open draft would commit, for highlighting."""
        if self.draft is None:
            return None
        return self._range(self.draft)

    def _range(self, draft: SelectionDraft) -> SelectionRange:
        return SelectionRange(
            start=self.grid.cell_start(draft.low),
            end=self.grid.cell_start(draft.high),
            end_exclusive=self.grid.cell_end(draft.high),
            granularity=self.grid.granularity,
            start_index=draft.low,
            end_index=draft.high,
        )

    def _commit(self) -> Optional[CommittedSelection]:
        draft = self.draft
        if draft is None:
            return None

        if not self.is_range_selectable(draft.resource_id, draft.low, draft.high):
            # occupancy changed under the draft
            logger.info(f"Discarding selection on {draft.resource_id}: range no longer free")
            self.cancel()
            return None

        committed = CommittedSelection(resource_id=draft.resource_id, range=self._range(draft))
        self._reset()
        self.last_outcome = SelectionState.COMMITTED
        self.last_commit = committed

        if self.on_commit is not None:
            self.on_commit(committed)
        return committed


class PanGesture:
    """
    Wheel / swipe panning of the visible window.

    Scroll distance accumulates until it crosses ``threshold`` pixels, then
    one step per crossing is emitted and the accumulator resets.
    """

    def __init__(self, threshold: float = 72, on_shift: Optional[Callable[[int], None]] = None):
        if threshold <= 0:
            raise ValueError("threshold must be positive")
        self.threshold = threshold
        self.on_shift = on_shift
        self.accumulated = 0.0
        self._touches: Dict[int, float] = {}

    def reset(self) -> None:
        self.accumulated = 0.0

    def wheel(self, delta_x: float, delta_y: float = 0.0, shift: bool = False) -> int:
        """Horizontal wheel, or shift + vertical wheel. Returns the signed step count."""
        if abs(delta_x) >= abs(delta_y):
            delta = delta_x
        elif shift:
            delta = delta_y
        else:
            return 0
        return self._accumulate(delta)

    def touch_start(self, pointer_id: int, x: float) -> None:
        self._touches[pointer_id] = x

    def touch_move(self, pointer_id: int, x: float) -> int:
        if pointer_id not in self._touches:
            return 0
        delta = self._touches[pointer_id] - x
        self._touches[pointer_id] = x
        return self._accumulate(delta)

    def touch_end(self, pointer_id: int) -> None:
        self._touches.pop(pointer_id, None)
        if not self._touches:
            self.reset()

    def _accumulate(self, delta: float) -> int:
        if not delta:
            return 0
        self.accumulated += delta
        crossings = int(abs(self.accumulated) // self.threshold)
        if not crossings:
            return 0

        step = 1 if self.accumulated > 0 else -1
        self.reset()
        if self.on_shift is not None:
            for _ in range(crossings):
                self.on_shift(step)
        return step * crossings
