"""Terminal recording screen with the live transcript."""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional

from pubsub import pub
from rich.align import Align
from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.text import Text

from ..models.events import LiveUpdate, LiveUpdateKind, SessionEvent
from ..models.transcription import format_timestamp
from ..services import LIVE_TRANSCRIPT_TOPIC, SESSION_EVENTS_TOPIC, RecordingSession
from .keyboard_input import KeyboardInputHandler

logger = logging.getLogger(__name__)


@dataclass
class ScreenStatus:
    """What the screen currently shows."""
    state: str = "idle"
    session_id: Optional[str] = None
    elapsed: float = 0.0
    is_paused: bool = False
    live_text: str = ""
    live_kind: LiveUpdateKind = LiveUpdateKind.LISTENING
    message: str = ""


class RecordingScreen:
    """Runs one recording session under a rich Live display.

    Keys: ``p`` pauses or resumes the timer, ``s`` stops and waits for
    processing, ``q`` does the same and leaves.
    """

    def __init__(self, recorder: RecordingSession, console: Optional[Console] = None,
                 duration: Optional[float] = None):
        self.recorder = recorder
        self.console = console or Console()
        self.duration = duration
        self.status = ScreenStatus()
        self._stop_requested = threading.Event()
        self._lock = threading.Lock()

        pub.subscribe(self.on_session_event, SESSION_EVENTS_TOPIC)
        pub.subscribe(self.on_live_update, LIVE_TRANSCRIPT_TOPIC)

    def on_session_event(self, event: SessionEvent) -> None:
        with self._lock:
            self.status.state = event.event_type
            self.status.session_id = event.session_id
            if event.event_type == "failed":
                self.status.message = f"Failed: {event.reason}"
            elif event.event_type == "processing":
                self.status.message = "Transcribing full recording..."
            elif event.event_type == "completed":
                self.status.message = "Done."

    def on_live_update(self, update: LiveUpdate) -> None:
        # Transcript updates carry the whole buffer; replace, never append.
        with self._lock:
            self.status.live_kind = update.kind
            self.status.live_text = update.text

    def render(self) -> Layout:
        layout = Layout()
        layout.split_column(
            Layout(name="header", size=3),
            Layout(name="transcript", ratio=1),
            Layout(name="footer", size=3),
        )
        with self._lock:
            status = ScreenStatus(**vars(self.status))

        recording = status.state in ("started", "resumed", "paused")
        label = "PAUSED" if status.is_paused else ("RECORDING" if recording else status.state.upper())
        header = Text.assemble(
            ("MeetNotes", "bold blue"), "  |  ",
            (label, "bold red" if recording and not status.is_paused else "bold yellow"), "  |  ",
            format_timestamp(status.elapsed), "  |  ",
            f"Session: {status.session_id or 'None'}",
        )
        layout["header"].update(Panel(Align.center(header), style="bright_blue"))

        style = "white" if status.live_kind is LiveUpdateKind.TRANSCRIPT else "dim white italic"
        body = Text(status.live_text or "", style=style)
        if status.message:
            body.append(f"\n\n{status.message}", style="yellow")
        layout["transcript"].update(Panel(body, title="Live transcript", border_style="blue"))

        controls = Text.assemble(
            ("P", "bold green"), " Pause/Resume  ",
            ("S", "bold yellow"), " Stop  ",
            ("Q", "bold red"), " Stop and quit",
        )
        layout["footer"].update(Panel(Align.center(controls), style="bright_black"))
        return layout

    def handle_key(self, key: str) -> bool:
        if key == 'p':
            if not self.recorder.pause():
                self.recorder.resume()
            return True
        if key in ('s', 'q'):
            self._stop_requested.set()
            return False
        return True

    def _refresh_status(self) -> None:
        current = self.recorder.get_status()
        with self._lock:
            self.status.elapsed = current["elapsed"]
            self.status.is_paused = current["is_paused"]

    def run(self, title: Optional[str] = None) -> Optional[str]:
        """Record until a stop key, Ctrl+C or ``duration``. Returns the session id."""
        session = self.recorder.start(title=title)
        if not session.capture_available:
            self.console.print("No audio capture tool found (ffmpeg or sox); recording without audio",
                               style="bold yellow")

        input_handler = KeyboardInputHandler(self.handle_key)
        input_handler.start()
        started = time.monotonic()
        try:
            with Live(self.render(), console=self.console, refresh_per_second=4) as live:
                while not self._stop_requested.is_set() and self.recorder.is_recording:
                    if self.duration and time.monotonic() - started >= self.duration:
                        break
                    self._refresh_status()
                    live.update(self.render())
                    self._stop_requested.wait(0.25)

                self.recorder.stop()
                while not self.recorder.wait_for_processing(timeout=0.25):
                    self._refresh_status()
                    live.update(self.render())
                live.update(self.render())
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received, stopping session")
            self.recorder.stop()
            self.recorder.wait_for_processing()
        finally:
            input_handler.stop()
            pub.unsubscribe(self.on_session_event, SESSION_EVENTS_TOPIC)
            pub.unsubscribe(self.on_live_update, LIVE_TRANSCRIPT_TOPIC)

        return session.session_id
