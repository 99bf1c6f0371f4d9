"""Live transcription of a recording that is still being written.

Every poll takes a snapshot of the growing recording, cuts out the audio
after the cursor (the duration already transcribed) and sends only that
region to the speech service. The cursor moves forward only after the
service has answered for the region it covers.
"""

import logging
import math
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from ..audio.capture import CaptureSupervisor
from ..audio.media import MediaTools, remove_quietly
from ..errors import SpeechServiceAuthError
from ..models.events import LiveUpdate
from .base import AbstractSpeechBackend

logger = logging.getLogger(__name__)

LiveUpdateCallback = Callable[[LiveUpdate], None]


class LiveTranscriptionEngine:
    """Polls one session's recording on a fixed schedule and keeps a live transcript."""

    def __init__(self,
                 capture: CaptureSupervisor,
                 backend: Optional[AbstractSpeechBackend],
                 media: MediaTools,
                 temp_dir: Path,
                 poll_interval: float = 12.0,
                 early_probes: Sequence[float] = (5.0, 10.0),
                 min_delta_seconds: float = 5.0,
                 min_artifact_bytes: int = 32000,
                 min_chunk_bytes: int = 8000):
        self.capture = capture
        self.backend = backend
        self.media = media
        self.temp_dir = Path(temp_dir)
        self.poll_interval = poll_interval
        self.early_probes = sorted(early_probes)
        self.min_delta_seconds = min_delta_seconds
        self.min_artifact_bytes = min_artifact_bytes
        self.min_chunk_bytes = min_chunk_bytes

        # One poll at a time; never two snapshots of the same recording.
        self._poll_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._scheduler_thread: Optional[threading.Thread] = None
        self._generation = 0

        self.session_id: Optional[str] = None
        self.cursor = 0.0
        self._fragments: List[str] = []
        self._on_update: Optional[LiveUpdateCallback] = None
        self.polls_completed = 0

        self.temp_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_config(cls, config, capture: CaptureSupervisor,
                    backend: Optional[AbstractSpeechBackend], media: MediaTools) -> "LiveTranscriptionEngine":
        return cls(
            capture=capture,
            backend=backend,
            media=media,
            temp_dir=config.get_temp_directory(),
            poll_interval=config.get('live.poll_interval_seconds', 12.0),
            early_probes=config.get('live.early_probe_seconds', [5.0, 10.0]),
            min_delta_seconds=config.get('live.min_delta_seconds', 5.0),
            min_artifact_bytes=config.get('live.min_artifact_bytes', 32000),
            min_chunk_bytes=config.get('live.min_chunk_bytes', 8000),
        )

    @property
    def is_running(self) -> bool:
        return self.session_id is not None and not self._stop_event.is_set()

    @property
    def transcript(self) -> str:
        """The live transcript so far, fragments joined by single spaces."""
        with self._state_lock:
            return " ".join(self._fragments)

    def start_live(self, session_id: str, on_update: LiveUpdateCallback) -> None:
        """Begin polling ``session_id``'s recording.

        ``on_update`` first receives a placeholder (listening, or not
        configured when there is no speech backend), then the whole
        accumulated transcript after each successful poll.
        """
        if self.session_id is not None:
            self.stop_live(self.session_id)

        with self._state_lock:
            self._generation += 1
            self.session_id = session_id
            self.cursor = 0.0
            self._fragments = []
            self._on_update = on_update
            self.polls_completed = 0
        self._stop_event = threading.Event()

        logger.info(f"=== Starting live transcription for session: {session_id}")
        if self.backend is None:
            logger.warning("No speech backend configured, live transcription disabled")
            self._deliver(LiveUpdate.not_configured(session_id))
            return

        self._deliver(LiveUpdate.listening(session_id))
        self._scheduler_thread = threading.Thread(
            target=self._schedule_loop,
            args=(session_id, self._generation, self._stop_event),
            name=f"LiveTranscription-{session_id}",
            daemon=True,
        )
        self._scheduler_thread.start()

    def stop_live(self, session_id: str) -> None:
        """Cancel polling, reset cursor and transcript, and delete temporary files."""
        if self.session_id != session_id:
            logger.debug(f"stop_live for {session_id} ignored; active session is {self.session_id}")
            return

        logger.info(f"Stopping live transcription for session: {session_id}")
        self._stop_event.set()
        with self._state_lock:
            self._generation += 1
            self.session_id = None
            self.cursor = 0.0
            self._fragments = []
            self._on_update = None
        self._scheduler_thread = None
        self._remove_temp_files(session_id)

    def _schedule_loop(self, session_id: str, generation: int, stop_event: threading.Event) -> None:
        """Fire the early probes, then a poll every ``poll_interval`` seconds.

        Ticks missed while a slow poll was running are dropped, not queued.
        """
        started = time.monotonic()
        last_fired = 0.0
        while not stop_event.is_set():
            elapsed = time.monotonic() - started
            next_regular = (math.floor(elapsed / self.poll_interval) + 1) * self.poll_interval
            pending_probes = [p for p in self.early_probes if p > last_fired and p >= elapsed]

            is_probe = bool(pending_probes) and pending_probes[0] < next_regular
            target = pending_probes[0] if is_probe else next_regular
            if stop_event.wait(max(0.0, started + target - time.monotonic())):
                break
            last_fired = target

            # Later probes only matter while nothing has been heard yet.
            if is_probe and target != self.early_probes[0] and self.transcript:
                continue
            if generation != self._generation:
                break
            self.poll_once(session_id)

    def poll_once(self, session_id: str) -> bool:
        """Run one poll cycle. Returns True when new text was transcribed.

        Errors are logged and swallowed; the next cycle retries naturally.
        """
        with self._poll_lock:
            generation = self._generation
            if session_id != self.session_id:
                return False
            try:
                return self._poll(session_id, generation)
            except SpeechServiceAuthError as e:
                logger.error(f"Live transcription stopped, speech service rejected credentials: {e}")
                self._stop_event.set()
                return False
            except Exception as e:
                logger.error(f"Live transcription error: {e}", exc_info=True)
                return False

    def _poll(self, session_id: str, generation: int) -> bool:
        artifact = self.capture.artifact_path(session_id)
        try:
            size = artifact.stat().st_size
        except FileNotFoundError:
            logger.debug(f"Recording file not found yet at: {artifact}")
            return False
        if size < self.min_artifact_bytes:
            logger.debug(f"Recording file too small ({size} bytes), waiting...")
            return False

        snapshot = self.capture.snapshot(session_id)
        if snapshot is None:
            logger.debug("Snapshot not available this cycle")
            return False

        chunk_path = None
        try:
            duration = self.media.probe_duration(snapshot)
            if duration is None:
                logger.debug(f"Could not measure snapshot {snapshot.name}")
                return False

            chunk_start = self.cursor
            chunk_duration = duration - chunk_start
            logger.debug(f"Duration: {duration:.1f}s, last processed: {chunk_start:.1f}s")
            if chunk_duration < self.min_delta_seconds:
                return False

            chunk_path = self.temp_dir / f"realtime_{session_id}_{int(time.time() * 1000)}.wav"
            logger.debug(f"Extracting chunk: {chunk_start:.1f}s to {duration:.1f}s ({chunk_duration:.1f}s)")
            if not self.media.extract_region(snapshot, chunk_path, chunk_start, chunk_duration):
                logger.debug("Chunk file not created")
                return False

            chunk_size = chunk_path.stat().st_size
            if chunk_size < self.min_chunk_bytes:
                logger.debug(f"Chunk too small ({chunk_size} bytes), skipping")
                return False

            chunk_id = f"live.{session_id}.{chunk_start:.1f}-{duration:.1f}"
            result = self.backend.transcribe_file(chunk_id, chunk_path, with_segments=False)
            text = result.text.strip()

            with self._state_lock:
                if generation != self._generation:
                    logger.debug(f"Discarding result for {chunk_id}; session stopped")
                    return False
                if text:
                    self._fragments.append(text)
                self.cursor = max(self.cursor, duration)
                self.polls_completed += 1
                full_text = " ".join(self._fragments)

            if text:
                logger.info(f">>> Live transcript update: {text[:80]}")
                self._deliver(LiveUpdate.transcript(full_text, session_id))
            else:
                logger.debug("No text in transcription response")
            return bool(text)
        finally:
            remove_quietly(snapshot)
            if chunk_path is not None:
                remove_quietly(chunk_path)

    def _deliver(self, update: LiveUpdate) -> None:
        callback = self._on_update
        if callback is None:
            return
        try:
            callback(update)
        except Exception as e:
            logger.error(f"Error in live update callback: {e}", exc_info=True)

    def _remove_temp_files(self, session_id: str) -> None:
        if not self.temp_dir.exists():
            return
        for path in self.temp_dir.glob(f"realtime_{session_id}_*"):
            remove_quietly(path)
