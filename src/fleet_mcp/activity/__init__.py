"""Agent activity classification and monitoring."""

from .classifier import (
    STATUS_UNKNOWN,
    classify,
    classify_recency,
    parse_shortstat,
    parse_timestamp,
)
from .models import ActivityMetrics, ActivityStatus
from .monitor import ActivityMonitor

__all__ = [
    "STATUS_UNKNOWN",
    "ActivityMetrics",
    "ActivityMonitor",
    "ActivityStatus",
    "classify",
    "classify_recency",
    "parse_shortstat",
    "parse_timestamp",
]
