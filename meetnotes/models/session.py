"""Session-related data models."""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


class SessionState(Enum):
    """Lifecycle state of a recording session."""
    IDLE = "idle"
    RECORDING = "recording"
    STOPPING = "stopping"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.COMPLETED, SessionState.FAILED)


@dataclass
class PausedInterval:
    """A span during which the user-facing timer was paused."""
    pause_start: datetime
    resume_start: Optional[datetime] = None

    def duration_seconds(self, now: datetime) -> float:
        end = self.resume_start or now
        return max(0.0, (end - self.pause_start).total_seconds())


@dataclass
class Session:
    """One recording session, owned by the recording state machine."""
    session_id: str
    started_at: datetime = field(default_factory=datetime.now)
    state: SessionState = SessionState.IDLE
    paused_intervals: List[PausedInterval] = field(default_factory=list)
    capture_available: bool = True
    audio_path: Optional[str] = None
    ended_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    ended_early: bool = False
    # Set once the session reaches Completed or Failed.
    finished: threading.Event = field(default_factory=threading.Event, repr=False, compare=False)

    @property
    def is_paused(self) -> bool:
        return bool(self.paused_intervals) and self.paused_intervals[-1].resume_start is None

    def pause(self, now: Optional[datetime] = None) -> bool:
        """Open a pause interval. Returns False when already paused."""
        if self.is_paused:
            return False
        self.paused_intervals.append(PausedInterval(pause_start=now or datetime.now()))
        return True

    def resume(self, now: Optional[datetime] = None) -> bool:
        """Close the open pause interval. Returns False when not paused."""
        if not self.is_paused:
            return False
        self.paused_intervals[-1].resume_start = now or datetime.now()
        return True

    def elapsed_seconds(self, now: Optional[datetime] = None) -> float:
        """Wall-clock time since start minus time spent paused."""
        now = now or self.ended_at or datetime.now()
        wall = (now - self.started_at).total_seconds()
        paused = sum(interval.duration_seconds(now) for interval in self.paused_intervals)
        return max(0.0, wall - paused)
