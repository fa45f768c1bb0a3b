"""Records describing live tmux topology."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

ACTIVITY_ATTACHED = "attached"
ACTIVITY_ACTIVE = "active"
ACTIVITY_INACTIVE = "inactive"

_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


@dataclass(slots=True)
class MultiplexerSession:
    """One tmux session as seen during a single discovery cycle."""

    name: str
    windows: int = 0
    panes: int = 0
    attached: bool = False
    created: datetime = _EPOCH
    last_used: datetime = _EPOCH
    window_names: list[str] = field(default_factory=list)
    activity: str = ACTIVITY_INACTIVE

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "windows": self.windows,
            "panes": self.panes,
            "attached": self.attached,
            "created": self.created.isoformat(),
            "last_used": self.last_used.isoformat(),
            "window_names": list(self.window_names),
            "activity": self.activity,
        }


__all__ = [
    "ACTIVITY_ACTIVE",
    "ACTIVITY_ATTACHED",
    "ACTIVITY_INACTIVE",
    "MultiplexerSession",
]
