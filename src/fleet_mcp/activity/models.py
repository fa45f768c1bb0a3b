"""Activity metrics tracked per agent worktree."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum


class ActivityStatus(str, Enum):
    WORKING = "working"
    IDLE = "idle"
    STUCK = "stuck"

    def __str__(self) -> str:
        return self.value


@dataclass(slots=True)
class ActivityMetrics:
    """Git activity for one session.

    ``last_commit_at`` is ``None`` until a commit has been observed.
    """

    commits: int = 0
    insertions: int = 0
    deletions: int = 0
    files_changed: int = 0
    last_commit_at: datetime | None = None
    status: ActivityStatus = ActivityStatus.IDLE

    def is_active(self, now: datetime | None = None) -> bool:
        if self.status is ActivityStatus.WORKING:
            return True
        if self.last_commit_at is None:
            return False
        current = now or datetime.now(timezone.utc)
        return current - self.last_commit_at < timedelta(minutes=5)

    def has_commits(self) -> bool:
        return self.commits > 0

    def total_changes(self) -> int:
        return self.insertions + self.deletions

    def to_dict(self) -> dict[str, object]:
        return {
            "commits": self.commits,
            "insertions": self.insertions,
            "deletions": self.deletions,
            "files_changed": self.files_changed,
            "last_commit_at": self.last_commit_at.isoformat() if self.last_commit_at else None,
            "status": self.status.value,
        }


__all__ = ["ActivityMetrics", "ActivityStatus"]
