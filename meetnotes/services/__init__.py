"""Services layer for MeetNotes application logic."""

from .publisher import SessionEventPublisher, SESSION_EVENTS_TOPIC, LIVE_TRANSCRIPT_TOPIC
from .recording_service import RecordingSession
from .meeting_detector import (
    AutoRecorder,
    MeetingDetector,
    MeetingInfo,
    MEETING_DETECTION_TOPIC,
    parse_zoom_windows,
    query_zoom_meeting,
)

__all__ = [
    "SessionEventPublisher",
    "SESSION_EVENTS_TOPIC",
    "LIVE_TRANSCRIPT_TOPIC",
    "RecordingSession",
    "AutoRecorder",
    "MeetingDetector",
    "MeetingInfo",
    "MEETING_DETECTION_TOPIC",
    "parse_zoom_windows",
    "query_zoom_meeting",
]
