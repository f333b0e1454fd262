"""
Optimistic occupancy edits.

Each in-flight write is tracked as a tagged state:

    Pending(temp_id) -> Committed(real_id)
                     -> RolledBack(error)

The interval set itself is an immutable tuple; every edit produces a new
tuple so a render pass holding the old one never sees a half-applied change.
"""

import logging
import uuid
from dataclasses import dataclass, replace
from typing import Dict, Iterable, Optional, Tuple, Union

from .occupancy import OccupancyInterval

logger = logging.getLogger(__name__)

TEMP_PREFIX = "temp-"


@dataclass(frozen=True)
class Pending:
    write_id: str
    operation: str  # create | delete | update
    interval_id: str


@dataclass(frozen=True)
class Committed:
    write_id: str
    operation: str
    real_id: str


@dataclass(frozen=True)
class RolledBack:
    write_id: str
    operation: str
    error: str


WriteState = Union[Pending, Committed, RolledBack]


@dataclass(frozen=True)
class _Undo:
    position: int
    previous: Optional[OccupancyInterval]


def temp_id() -> str:
    return f"{TEMP_PREFIX}{uuid.uuid4()}"


def is_temp_id(interval_id: str) -> bool:
    return interval_id.startswith(TEMP_PREFIX)


class OptimisticOccupancy:
    """Rendered interval set plus the writes not yet confirmed by the store."""

    def __init__(self, intervals: Iterable[OccupancyInterval] = ()):
        self.intervals: Tuple[OccupancyInterval, ...] = tuple(intervals)
        self.writes: Dict[str, WriteState] = {}
        self._undo: Dict[str, _Undo] = {}

    def __iter__(self):
        return iter(self.intervals)

    def __len__(self) -> int:
        return len(self.intervals)

    def get(self, interval_id: str) -> Optional[OccupancyInterval]:
        for interval in self.intervals:
            if interval.id == interval_id:
                return interval
        return None

    def _position(self, interval_id: str) -> int:
        for index, interval in enumerate(self.intervals):
            if interval.id == interval_id:
                return index
        raise KeyError(interval_id)

    def replace_all(self, intervals: Iterable[OccupancyInterval]) -> None:
        """Swap in a re-fetched set. Pending edits are dropped from the view."""
        self.intervals = tuple(intervals)

    @property
    def pending(self) -> Tuple[Pending, ...]:
        return tuple(state for state in self.writes.values() if isinstance(state, Pending))

    # ================================
    # BEGIN
    # ================================

    def begin_create(self, interval: OccupancyInterval) -> Pending:
        """Show a new interval under a temporary id until the store answers."""
        write_id = temp_id()
        draft = replace(interval, id=write_id)
        self.intervals = self.intervals + (draft,)
        self._undo[write_id] = _Undo(position=len(self.intervals) - 1, previous=None)
        return self._track(Pending(write_id, "create", write_id))

    def begin_delete(self, interval_id: str) -> Pending:
        position = self._position(interval_id)
        previous = self.intervals[position]
        self.intervals = self.intervals[:position] + self.intervals[position + 1:]
        write_id = str(uuid.uuid4())
        self._undo[write_id] = _Undo(position=position, previous=previous)
        return self._track(Pending(write_id, "delete", interval_id))

    def begin_update(
        self,
        interval_id: str,
        label: Optional[str] = None,
        color: Optional[str] = None,
        **meta,
    ) -> Pending:
        """Patch label, color or display metadata (notes) in place of the old interval."""
        position = self._position(interval_id)
        previous = self.intervals[position]
        patched = previous.with_meta(**meta) if meta else previous
        if label is not None:
            patched = replace(patched, label=label)
        if color is not None:
            patched = replace(patched, color=color)
        self.intervals = self.intervals[:position] + (patched,) + self.intervals[position + 1:]
        write_id = str(uuid.uuid4())
        self._undo[write_id] = _Undo(position=position, previous=previous)
        return self._track(Pending(write_id, "update", interval_id))

    def _track(self, state: Pending) -> Pending:
        self.writes[state.write_id] = state
        return state

    # ================================
    # RESOLVE
    # ================================

    def commit(self, pending: Pending, stored: Optional[OccupancyInterval] = None) -> Committed:
        """
        Confirm a write. For creates, ``stored`` replaces the temporary
        interval; if a re-fetch already brought it in, the temporary one is
        just removed.
        """
        self._require_pending(pending)
        self._undo.pop(pending.write_id, None)
        real_id = pending.interval_id

        if pending.operation == "create":
            remaining = tuple(i for i in self.intervals if i.id != pending.write_id)
            if stored is not None:
                real_id = stored.id
                if not any(i.id == stored.id for i in remaining):
                    remaining = remaining + (stored,)
            self.intervals = remaining
        elif pending.operation == "update" and stored is not None:
            self.intervals = tuple(stored if i.id == stored.id else i for i in self.intervals)

        state = Committed(pending.write_id, pending.operation, real_id)
        self.writes[pending.write_id] = state
        return state

    def rollback(self, pending: Pending, error: Union[Exception, str]) -> RolledBack:
        """Undo the optimistic edit. The interval set ends as if it never happened."""
        self._require_pending(pending)
        undo = self._undo.pop(pending.write_id)

        if pending.operation == "create":
            self.intervals = tuple(i for i in self.intervals if i.id != pending.write_id)
        elif pending.operation == "delete":
            if self.get(undo.previous.id) is None:
                position = min(undo.position, len(self.intervals))
                self.intervals = self.intervals[:position] + (undo.previous,) + self.intervals[position:]
        else:
            self.intervals = tuple(
                undo.previous if i.id == undo.previous.id else i for i in self.intervals
            )

        message = str(error)
        logger.warning(f"Rolled back optimistic {pending.operation} of {pending.interval_id}: {message}")
        state = RolledBack(pending.write_id, pending.operation, message)
        self.writes[pending.write_id] = state
        return state

    def _require_pending(self, pending: Pending) -> None:
        current = self.writes.get(pending.write_id)
        if not isinstance(current, Pending):
            raise ValueError(f"Write {pending.write_id} is not pending")
