"""
Tests for optimistic occupancy edits and their rollback.
"""

from datetime import datetime, timezone

import pytest

from staycal.services.occupancy import Channel, OccupancyInterval
from staycal.services.optimistic import (
    Committed,
    OptimisticOccupancy,
    Pending,
    RolledBack,
    is_temp_id,
)

UTC = timezone.utc


def block(block_id, d, label="Manual block", notes=None):
    return OccupancyInterval(
        id=block_id,
        resource_id="L1",
        start=datetime(2024, 3, d, tzinfo=UTC),
        end=datetime(2024, 3, d + 1, tzinfo=UTC),
        channel=Channel.MANUAL,
        mutable=True,
        label=label,
        meta={"notes": notes},
    )


@pytest.fixture
def occupancy():
    return OptimisticOccupancy([block("a", 1), block("b", 3), block("c", 5)])


class TestCreate:
    def test_create_shows_under_temp_id(self, occupancy):
        pending = occupancy.begin_create(block("ignored", 8))
        assert isinstance(pending, Pending)
        assert is_temp_id(pending.interval_id)
        assert occupancy.get(pending.interval_id) is not None
        assert len(occupancy) == 4

    def test_commit_swaps_in_stored_row(self, occupancy):
        pending = occupancy.begin_create(block("ignored", 8))
        state = occupancy.commit(pending, block("real-id", 8))

        assert state == Committed(pending.write_id, "create", "real-id")
        assert occupancy.get(pending.interval_id) is None
        assert occupancy.get("real-id") is not None
        assert len(occupancy) == 4

    def test_commit_after_refetch_does_not_duplicate(self, occupancy):
        pending = occupancy.begin_create(block("ignored", 8))
        occupancy.replace_all(list(occupancy) + [block("real-id", 8)])
        occupancy.commit(pending, block("real-id", 8))
        assert [i.id for i in occupancy].count("real-id") == 1

    def test_rollback_removes_the_draft(self, occupancy):
        before = occupancy.intervals
        pending = occupancy.begin_create(block("ignored", 8))

        state = occupancy.rollback(pending, "Unable to save block")

        assert isinstance(state, RolledBack)
        assert state.error == "Unable to save block"
        assert occupancy.intervals == before

    def test_resolving_twice_is_an_error(self, occupancy):
        pending = occupancy.begin_create(block("ignored", 8))
        occupancy.rollback(pending, "boom")
        with pytest.raises(ValueError):
            occupancy.commit(pending)


class TestDeleteAndUpdate:
    def test_delete_rollback_restores_position(self, occupancy):
        pending = occupancy.begin_delete("b")
        assert [i.id for i in occupancy] == ["a", "c"]

        occupancy.rollback(pending, "Unable to delete block")
        assert [i.id for i in occupancy] == ["a", "b", "c"]

    def test_delete_commit(self, occupancy):
        pending = occupancy.begin_delete("b")
        occupancy.commit(pending)
        assert occupancy.get("b") is None
        assert occupancy.pending == ()

    def test_update_notes_and_rollback(self, occupancy):
        original = occupancy.get("a")
        pending = occupancy.begin_update("a", label="Painting", notes="Decorators in")

        assert occupancy.get("a").label == "Painting"
        assert occupancy.get("a").meta["notes"] == "Decorators in"

        occupancy.rollback(pending, "Notes are not supported yet")
        assert occupancy.get("a").label == original.label
        assert occupancy.get("a").meta["notes"] is None

    def test_edits_produce_new_tuples(self, occupancy):
        snapshot = occupancy.intervals
        occupancy.begin_delete("a")
        assert [i.id for i in snapshot] == ["a", "b", "c"]

    def test_unknown_interval(self, occupancy):
        with pytest.raises(KeyError):
            occupancy.begin_delete("missing")
