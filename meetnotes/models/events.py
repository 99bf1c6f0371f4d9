"""Event models published on the session event channel."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Any, Dict


LISTENING_PLACEHOLDER = "Listening... speak to see your words appear here."
NOT_CONFIGURED_PLACEHOLDER = (
    "No speech API key configured. Add one to meetnotes.yaml to enable live transcription."
)


class LiveUpdateKind(Enum):
    """The three mutually exclusive kinds of live-update message."""
    LISTENING = "listening"
    NOT_CONFIGURED = "not_configured"
    TRANSCRIPT = "transcript"


@dataclass
class LiveUpdate:
    """A live transcript message.

    For ``TRANSCRIPT`` messages ``text`` is the whole buffer so far, so
    listeners replace what they display rather than appending.
    """
    kind: LiveUpdateKind
    text: str
    session_id: Optional[str] = None

    @property
    def is_transcript(self) -> bool:
        return self.kind is LiveUpdateKind.TRANSCRIPT

    @classmethod
    def listening(cls, session_id: Optional[str] = None) -> "LiveUpdate":
        return cls(LiveUpdateKind.LISTENING, LISTENING_PLACEHOLDER, session_id)

    @classmethod
    def not_configured(cls, session_id: Optional[str] = None) -> "LiveUpdate":
        return cls(LiveUpdateKind.NOT_CONFIGURED, NOT_CONFIGURED_PLACEHOLDER, session_id)

    @classmethod
    def transcript(cls, text: str, session_id: Optional[str] = None) -> "LiveUpdate":
        return cls(LiveUpdateKind.TRANSCRIPT, text, session_id)


@dataclass
class SessionEvent:
    """Session lifecycle event."""
    event_type: str  # "started", "stopped", "processing", "completed", "failed", ...
    session_id: str
    timestamp: datetime = field(default_factory=datetime.now)
    reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class MeetingEvent:
    """A meeting appearing in or leaving a conferencing app."""
    event_type: str  # "meeting_started" or "meeting_ended"
    title: str
    source: str = "zoom"
    timestamp: datetime = field(default_factory=datetime.now)
