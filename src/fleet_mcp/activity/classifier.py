"""Working/idle/stuck classification rules.

Two independent policies live here. :func:`classify` looks at git metrics
and commit age. :func:`classify_recency` looks at the wall-clock age of a
session's last update together with its diff stats. They use different
thresholds and are not expected to agree.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

from .models import ActivityMetrics, ActivityStatus

WORKING_WINDOW = timedelta(hours=1)
STUCK_AFTER = timedelta(hours=2)

RECENT_UPDATE_WINDOW = timedelta(seconds=90)
STALE_UPDATE_AFTER = timedelta(minutes=3)
STATUS_UNKNOWN = "unknown"

_FILES_RE = re.compile(r"(\d+) files? changed")
_INSERTIONS_RE = re.compile(r"(\d+) insertions?\(\+\)")
_DELETIONS_RE = re.compile(r"(\d+) deletions?\(-\)")

_TIMESTAMP_FORMATS = ("%Y-%m-%dT%H:%M:%SZ",)


def classify(metrics: ActivityMetrics | None, now: datetime | None = None) -> ActivityStatus:
    """Classify git metrics: working, idle or stuck."""

    if metrics is None:
        return ActivityStatus.IDLE

    if metrics.insertions > 0 or metrics.deletions > 0 or metrics.files_changed > 0:
        return ActivityStatus.WORKING

    if metrics.last_commit_at is None:
        return ActivityStatus.IDLE

    age = (now or datetime.now(timezone.utc)) - metrics.last_commit_at
    if age <= WORKING_WINDOW:
        return ActivityStatus.WORKING
    if age >= STUCK_AFTER:
        return ActivityStatus.STUCK
    return ActivityStatus.IDLE


def _first_int(pattern: re.Pattern[str], text: str) -> int:
    match = pattern.search(text)
    return int(match.group(1)) if match else 0


def parse_shortstat(output: str) -> tuple[int, int, int]:
    """Parse ``git diff --shortstat`` into (insertions, deletions, files_changed)."""

    text = output.strip()
    if not text:
        return 0, 0, 0
    return (
        _first_int(_INSERTIONS_RE, text),
        _first_int(_DELETIONS_RE, text),
        _first_int(_FILES_RE, text),
    )


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an RFC 3339 or ``YYYY-MM-DDTHH:MM:SSZ`` timestamp, else None."""

    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        parsed = None
        for fmt in _TIMESTAMP_FORMATS:
            try:
                parsed = datetime.strptime(value, fmt)
                break
            except ValueError:
                continue
        if parsed is None:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def classify_recency(
    updated_at: str | None,
    created_at: str | None,
    insertions: int,
    deletions: int,
    files_changed: int = 0,
    now: datetime | None = None,
) -> str:
    """Classify a listed session by how recently it was updated.

    Any diff or an update within 90s is working. More than 3 minutes without
    an update and without a diff is stuck. Everything else is idle.
    """

    last_update = parse_timestamp(updated_at) or parse_timestamp(created_at)
    if last_update is None:
        return STATUS_UNKNOWN

    if insertions > 0 or deletions > 0 or files_changed > 0:
        return ActivityStatus.WORKING.value

    elapsed = (now or datetime.now(timezone.utc)) - last_update
    if elapsed <= RECENT_UPDATE_WINDOW:
        return ActivityStatus.WORKING.value
    if elapsed > STALE_UPDATE_AFTER:
        return ActivityStatus.STUCK.value
    return ActivityStatus.IDLE.value


__all__ = [
    "STATUS_UNKNOWN",
    "classify",
    "classify_recency",
    "parse_shortstat",
    "parse_timestamp",
]
