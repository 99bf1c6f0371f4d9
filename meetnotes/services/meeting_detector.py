"""Meeting detection: watch a conferencing app and record its meetings."""

import logging
import re
import subprocess
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from pubsub import pub

from ..errors import MeetNotesError
from ..models.events import MeetingEvent
from .recording_service import RecordingSession

logger = logging.getLogger(__name__)

MEETING_DETECTION_TOPIC = "meeting_detection"

ZOOM_PROCESS = "zoom.us"
DEFAULT_MEETING_TITLE = "Zoom Meeting"
ZOOM_WINDOWS_SCRIPT = (
    'tell application "System Events"\n'
    f'  if exists (process "{ZOOM_PROCESS}") then\n'
    f'    tell process "{ZOOM_PROCESS}" to return (name of every window) as string\n'
    '  end if\n'
    'end tell\n'
    'return ""'
)

_PARTICIPANTS = re.compile(r"\d+ Participants?")
_MEETING_MARKERS = ("Zoom Meeting", "zoom share", "Meeting Controls")


@dataclass
class MeetingInfo:
    """A meeting found in a conferencing app."""
    title: str
    source: str = "zoom"
    detected_at: datetime = field(default_factory=datetime.now)


def parse_zoom_windows(windows: str) -> Optional[MeetingInfo]:
    """Decide from Zoom's comma-separated window names whether a meeting is open.

    The first window name becomes the title unless it is the generic
    meeting window.
    """
    windows = windows.strip()
    if not windows:
        return None
    in_meeting = any(marker in windows for marker in _MEETING_MARKERS) or _PARTICIPANTS.search(windows)
    if not in_meeting:
        return None

    title = DEFAULT_MEETING_TITLE
    first = windows.split(",", 1)[0].strip()
    if first and DEFAULT_MEETING_TITLE not in first:
        title = first
    return MeetingInfo(title=title)


def query_zoom_meeting(run: Callable[..., subprocess.CompletedProcess] = subprocess.run,
                       timeout: float = 5.0) -> Optional[MeetingInfo]:
    """Return the open Zoom meeting, or None.

    Any failure to query (Zoom not running, no osascript, a timeout)
    counts as no meeting.
    """
    try:
        running = run(["pgrep", "-x", ZOOM_PROCESS], capture_output=True, text=True, timeout=timeout)
        if running.returncode != 0 or not running.stdout.strip():
            return None
        result = run(["osascript", "-e", ZOOM_WINDOWS_SCRIPT], capture_output=True, text=True, timeout=timeout)
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug(f"Zoom query failed: {e}")
        return None

    if result.returncode != 0:
        logger.debug(f"osascript exited with {result.returncode}: {result.stderr.strip()}")
        return None
    return parse_zoom_windows(result.stdout)


class MeetingDetector:
    """Polls for a meeting on a daemon thread and publishes transitions.

    ``meeting_started`` and ``meeting_ended`` events go out on
    ``MEETING_DETECTION_TOPIC`` as ``event=MeetingEvent``.
    """

    def __init__(self,
                 query: Callable[[], Optional[MeetingInfo]] = query_zoom_meeting,
                 interval: float = 3.0,
                 topic: str = MEETING_DETECTION_TOPIC):
        self.query = query
        self.interval = interval
        self.topic = topic
        self.current: Optional[MeetingInfo] = None

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def from_config(cls, config) -> "MeetingDetector":
        timeout = config.get('detection.query_timeout_seconds', 5.0)
        return cls(
            query=lambda: query_zoom_meeting(timeout=timeout),
            interval=config.get('detection.poll_interval_seconds', 3.0),
        )

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="MeetingDetector", daemon=True)
        self._thread.start()
        logger.info(f"Meeting detection started (every {self.interval}s)")

    def stop(self, timeout: float = 2.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("Meeting detection stopped")

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.check_once()
            except Exception as e:
                logger.error(f"Error checking for a meeting: {e}", exc_info=True)
            self._stop_event.wait(self.interval)

    def check_once(self) -> Optional[MeetingEvent]:
        """Query once and publish the transition, if any."""
        info = self.query()
        if info is not None and self.current is None:
            self.current = info
            return self._publish("meeting_started", info)
        if info is None and self.current is not None:
            ended, self.current = self.current, None
            return self._publish("meeting_ended", ended)
        return None

    def _publish(self, event_type: str, info: MeetingInfo) -> MeetingEvent:
        event = MeetingEvent(event_type=event_type, title=info.title, source=info.source)
        logger.info(f"Meeting event: {event_type} ({info.title})")
        try:
            pub.sendMessage(self.topic, event=event)
        except Exception as e:
            logger.error(f"Listener failed on {event_type} event: {e}", exc_info=True)
        return event


class AutoRecorder:
    """Starts a recording when a meeting begins and stops it when the meeting ends.

    ``confirm`` is asked before each start; a refusal skips that meeting.
    Only a recording this object started is stopped on meeting end.
    """

    def __init__(self,
                 recorder: RecordingSession,
                 confirm: Optional[Callable[[MeetingEvent], bool]] = None,
                 topic: str = MEETING_DETECTION_TOPIC):
        self.recorder = recorder
        self.confirm = confirm or (lambda event: True)
        self.topic = topic
        self.session_ids: List[str] = []
        self._active_id: Optional[str] = None

    def attach(self) -> None:
        pub.subscribe(self.on_meeting_event, self.topic)

    def detach(self) -> None:
        pub.unsubscribe(self.on_meeting_event, self.topic)

    def on_meeting_event(self, event: MeetingEvent) -> None:
        if event.event_type == "meeting_started":
            self._meeting_started(event)
        elif event.event_type == "meeting_ended":
            self._meeting_ended(event)

    def _meeting_started(self, event: MeetingEvent) -> None:
        if self.recorder.is_recording:
            logger.info(f"Already recording, ignoring meeting '{event.title}'")
            return
        if not self.confirm(event):
            logger.info(f"Recording declined for meeting '{event.title}'")
            return
        try:
            session = self.recorder.start(title=event.title)
        except MeetNotesError as e:
            logger.error(f"Could not record meeting '{event.title}': {e}")
            return
        self._active_id = session.session_id
        self.session_ids.append(session.session_id)

    def _meeting_ended(self, event: MeetingEvent) -> None:
        session = self.recorder.session
        if self._active_id is None or session is None or session.session_id != self._active_id:
            return
        self._active_id = None
        if self.recorder.is_recording:
            logger.info(f"Meeting '{event.title}' ended, stopping session {session.session_id}")
            self.recorder.stop()
