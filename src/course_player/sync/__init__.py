"""Progress sync with the course backend."""

from course_player.sync.milestones import MilestoneTracker
from course_player.sync.progress import ProgressSyncClient, PushResult

__all__ = ["MilestoneTracker", "ProgressSyncClient", "PushResult"]
