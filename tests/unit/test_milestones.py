"""Tests for MilestoneTracker."""

import pytest

from course_player.sync.milestones import MilestoneTracker


class TestMilestoneTracker:
    def test_fires_in_order(self) -> None:
        tracker = MilestoneTracker()
        assert tracker.update(2000, 10_000) == []
        assert tracker.update(2500, 10_000) == [25]
        assert tracker.update(8000, 10_000) == [50, 75]
        assert tracker.fired == frozenset({25, 50, 75})

    def test_never_refires_after_backward_seek(self) -> None:
        """Seeking back and forward again does not repeat milestones."""
        tracker = MilestoneTracker()
        tracker.update(5000, 10_000)
        tracker.update(1000, 10_000)
        assert tracker.update(6000, 10_000) == []

    def test_unknown_duration(self) -> None:
        assert MilestoneTracker().update(5000, 0) == []

    def test_custom_milestones_deduplicated(self) -> None:
        tracker = MilestoneTracker([90, 10, 10])
        assert tracker.update(9500, 10_000) == [10, 90]

    @pytest.mark.parametrize("bad", [[0], [100], [-5, 50]])
    def test_out_of_range_rejected(self, bad: list[int]) -> None:
        with pytest.raises(ValueError):
            MilestoneTracker(bad)
