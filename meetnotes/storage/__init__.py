"""Meeting persistence."""

from .meeting_store import (
    MeetingRecord,
    MeetingStore,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PROCESSING,
    STATUS_RECORDING,
)

__all__ = [
    "MeetingRecord",
    "MeetingStore",
    "STATUS_RECORDING",
    "STATUS_PROCESSING",
    "STATUS_COMPLETED",
    "STATUS_FAILED",
]
