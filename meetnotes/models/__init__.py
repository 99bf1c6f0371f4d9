"""Data models for the MeetNotes application."""

from .session import Session, SessionState, PausedInterval
from .transcription import (
    TranscriptSegment,
    TranscriptionResult,
    TranscriptLine,
    FinalTranscript,
    format_timestamp,
)
from .events import LiveUpdate, LiveUpdateKind, MeetingEvent, SessionEvent
from .summary import MeetingSummary, SummarySection, SummaryPoint, ActionItem, placeholder_summary

__all__ = [
    "Session",
    "SessionState",
    "PausedInterval",
    "TranscriptSegment",
    "TranscriptionResult",
    "TranscriptLine",
    "FinalTranscript",
    "format_timestamp",
    "LiveUpdate",
    "LiveUpdateKind",
    "SessionEvent",
    "MeetingEvent",
    "MeetingSummary",
    "SummarySection",
    "SummaryPoint",
    "ActionItem",
    "placeholder_summary",
]
