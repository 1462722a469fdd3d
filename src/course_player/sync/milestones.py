"""Progress milestones (25/50/75 %) fired once per session."""

from __future__ import annotations

from collections.abc import Iterable

DEFAULT_MILESTONES: tuple[int, ...] = (25, 50, 75)


class MilestoneTracker:
    """Reports each milestone the first time the position reaches it.

    A milestone never fires twice in one session, also after a
    backward seek followed by playing past it again.
    """

    def __init__(self, milestones: Iterable[int] = DEFAULT_MILESTONES) -> None:
        values = sorted(set(milestones))
        if any(not 0 < m < 100 for m in values):
            raise ValueError(f"milestones must be within (0, 100): {values}")
        self._milestones = tuple(values)
        self._fired: set[int] = set()

    @property
    def fired(self) -> frozenset[int]:
        return frozenset(self._fired)

    def update(self, position_ms: int, duration_ms: int) -> list[int]:
        """Milestones newly reached at ``position_ms``, ascending."""
        if duration_ms <= 0:
            return []
        percent = position_ms * 100 / duration_ms
        reached = [m for m in self._milestones if m not in self._fired and percent >= m]
        self._fired.update(reached)
        return reached
