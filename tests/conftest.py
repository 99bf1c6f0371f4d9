"""Pytest configuration and fixtures for MeetNotes tests."""

import logging
import shutil
import tempfile
import threading
import wave
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import numpy as np
import pytest

from meetnotes.audio.capture import CaptureBackend, CaptureSupervisor
from meetnotes.audio.media import MediaTools, wav_duration
from meetnotes.config import MeetNotesConfig
from meetnotes.models.transcription import TranscriptionResult, TranscriptSegment
from meetnotes.transcription.base import AbstractSpeechBackend


# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests with no external tools")
    config.addinivalue_line("markers", "integration: tests wiring several components together")
    config.addinivalue_line("markers", "slow: tests that wait on real timers")


def write_wav(path: Path, seconds: float, sample_rate: int = 16000, pattern: str = "sine") -> Path:
    """Write a mono 16-bit WAV file of ``seconds`` length."""
    samples = int(seconds * sample_rate)
    if pattern == "sine":
        t = np.linspace(0, seconds, samples, False)
        wave_data = 0.3 * np.sin(2 * np.pi * 440 * t)
    elif pattern == "silence":
        wave_data = np.zeros(samples)
    else:
        raise ValueError(f"Unknown pattern: {pattern}")

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with wave.open(str(path), 'wb') as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes((wave_data * 32767).astype(np.int16).tobytes())
    return path


class WaveMediaTools(MediaTools):
    """MediaTools that works on WAV files with the wave module instead of ffmpeg."""

    def __init__(self):
        super().__init__(ffmpeg_path="ffmpeg-not-used", ffprobe_path="ffprobe-not-used")
        self.extract_calls: List[tuple] = []
        self.copy_calls = 0

    def stream_copy(self, source: Path, target: Path, timeout: float) -> bool:
        self.copy_calls += 1
        shutil.copyfile(source, target)
        return True

    def extract_region(self, source: Path, target: Path, start: float, duration: float) -> bool:
        self.extract_calls.append((start, duration))
        with wave.open(str(source), 'rb') as src:
            rate = src.getframerate()
            src.setpos(min(int(start * rate), src.getnframes()))
            frames = src.readframes(int(duration * rate))
            with wave.open(str(target), 'wb') as dst:
                dst.setnchannels(src.getnchannels())
                dst.setsampwidth(src.getsampwidth())
                dst.setframerate(rate)
                dst.writeframes(frames)
        return True

    def convert(self, source: Path, target: Path) -> bool:
        shutil.copyfile(source, target)
        return True

    def probe_duration(self, path: Path) -> Optional[float]:
        return wav_duration(path)


class ScriptedSpeechBackend(AbstractSpeechBackend):
    """Speech backend that answers from a script.

    Each script entry is a string (plain text), a list of
    ``(start, end, text)`` tuples (segments), or an exception instance
    to raise. Once the script runs out the last entry repeats.
    """

    service_name = "Scripted"

    def __init__(self, script=None, max_request_bytes: int = 25 * 1024 * 1024):
        super().__init__("en")
        self.script = list(script or ["hello world"])
        self.max_request_bytes = max_request_bytes
        self.calls: List[dict] = []
        self._lock = threading.Lock()

    def initialize(self) -> bool:
        return True

    def transcribe_file(self, chunk_id: str, audio_path: Path, with_segments: bool = False) -> TranscriptionResult:
        with self._lock:
            self.calls.append({
                "chunk_id": chunk_id,
                "path": Path(audio_path),
                "with_segments": with_segments,
                "duration": wav_duration(audio_path),
            })
            entry = self.script.pop(0) if len(self.script) > 1 else self.script[0]

        if isinstance(entry, Exception):
            raise entry
        segments = []
        if isinstance(entry, list):
            segments = [TranscriptSegment(start=s, end=e, text=t) for s, e, t in entry]
            text = " ".join(t for _, _, t in entry)
        else:
            text = entry
        return TranscriptionResult(
            text=text,
            processing_time=0.0,
            timestamp=datetime.now(),
            service=self.service_name,
            chunk_id=chunk_id,
            segments=segments,
        )


class FakeCaptureBackend(CaptureBackend):
    """Capture backend that writes a WAV file instead of recording.

    ``responsive=False`` simulates a process that ignores quit and
    interrupt requests and only dies when killed.
    """

    name = "fake"

    def __init__(self, seconds: float = 3.0, responsive: bool = True, fail_to_launch: bool = False):
        self.seconds = seconds
        self.responsive = responsive
        self.fail_to_launch = fail_to_launch
        self.output_path: Optional[Path] = None
        self._exited = threading.Event()
        self._code: Optional[int] = None
        self.graceful_requests = 0
        self.interrupts = 0
        self.killed = False
        self.kill_timeout: Optional[float] = None

    def start(self, output_path: Path) -> None:
        if self.fail_to_launch:
            raise FileNotFoundError("fake tool not installed")
        self.output_path = Path(output_path)
        if self.seconds > 0:
            write_wav(self.output_path, self.seconds)

    def request_graceful_stop(self) -> None:
        self.graceful_requests += 1
        if self.responsive:
            self.exit(0)

    def interrupt(self) -> None:
        self.interrupts += 1
        if self.responsive:
            self.exit(255)

    def force_stop(self, timeout: float = 1.0) -> None:
        self.killed = True
        self.kill_timeout = timeout
        self.exit(-9)

    def exit(self, code: int) -> None:
        self._code = code
        self._exited.set()

    def is_alive(self) -> bool:
        return not self._exited.is_set()

    def wait(self, timeout: Optional[float]) -> bool:
        return self._exited.wait(timeout)

    @property
    def exit_code(self) -> Optional[int]:
        return self._code


@pytest.fixture
def temp_data_dir():
    """Create temporary directory for test data."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield temp_dir


@pytest.fixture
def config(temp_data_dir):
    """Configuration rooted in a temporary data directory with no credentials."""
    return MeetNotesConfig.from_dict({
        "storage": {"data_directory": "data"},
        "logging": {"file_path": "data/logs/test.log"},
        "speech": {"api_key": None, "api_key_env": None},
    }, base_dir=temp_data_dir)


@pytest.fixture
def media():
    return WaveMediaTools()


@pytest.fixture
def sample_wav(temp_data_dir):
    """A 6 second WAV file."""
    return write_wav(Path(temp_data_dir) / "sample.wav", 6.0)


@pytest.fixture
def make_supervisor(temp_data_dir, media):
    """Build a CaptureSupervisor around FakeCaptureBackend instances."""
    def build(*backends: FakeCaptureBackend, **kwargs) -> CaptureSupervisor:
        queue = list(backends) or [FakeCaptureBackend()]
        factories = [(lambda b=b: b) for b in queue]
        kwargs.setdefault("stop_settle", 0.0)
        return CaptureSupervisor(
            recordings_dir=Path(temp_data_dir) / "recordings",
            chunks_dir=Path(temp_data_dir) / "chunks",
            media=media,
            backend_factories=factories,
            **kwargs,
        )
    return build


class PublishedEvents:
    """Collects everything published on the session and live transcript topics."""

    def __init__(self):
        self.events = []
        self.live_updates = []

    def on_event(self, event):
        self.events.append(event)

    def on_live(self, update):
        self.live_updates.append(update)

    def types(self, session_id: Optional[str] = None) -> List[str]:
        return [e.event_type for e in self.events if session_id is None or e.session_id == session_id]

    def of_type(self, event_type: str):
        return [e for e in self.events if e.event_type == event_type]


@pytest.fixture
def published():
    """Subscribe a PublishedEvents collector for the duration of a test."""
    from pubsub import pub
    from meetnotes.services.publisher import LIVE_TRANSCRIPT_TOPIC, SESSION_EVENTS_TOPIC

    collector = PublishedEvents()
    pub.subscribe(collector.on_event, SESSION_EVENTS_TOPIC)
    pub.subscribe(collector.on_live, LIVE_TRANSCRIPT_TOPIC)
    yield collector
    pub.unsubscribe(collector.on_event, SESSION_EVENTS_TOPIC)
    pub.unsubscribe(collector.on_live, LIVE_TRANSCRIPT_TOPIC)
