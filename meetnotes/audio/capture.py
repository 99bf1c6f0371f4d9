"""Audio capture through an external recording process.

The capture tool (ffmpeg, or sox as a fallback) writes one continuously
growing file per session. Readers never open that file directly: they
ask the supervisor for a snapshot, a stream copy taken at a point in
time, which is safe to slice while recording continues.
"""

import logging
import signal
import subprocess
import sys
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from ..errors import CaptureUnavailable
from .media import MediaTools, remove_quietly

logger = logging.getLogger(__name__)

EarlyExitCallback = Callable[[str, Optional[int]], None]

# Part of the stop budget held back for killing an unresponsive process.
KILL_WAIT_SECONDS = 0.5


class CaptureBackend(ABC):
    """A capture tool recording the default input device into a file."""

    name = "capture"

    @abstractmethod
    def start(self, output_path: Path) -> None:
        """Launch the tool. Raises OSError when it cannot be started."""

    @abstractmethod
    def request_graceful_stop(self) -> None:
        """Ask the tool to finish writing and exit."""

    @abstractmethod
    def interrupt(self) -> None:
        """Send an interrupt signal."""

    @abstractmethod
    def force_stop(self, timeout: float = 1.0) -> None:
        """Kill the tool, waiting at most ``timeout`` seconds for it to go."""

    @abstractmethod
    def is_alive(self) -> bool:
        pass

    @abstractmethod
    def wait(self, timeout: Optional[float]) -> bool:
        """Wait up to ``timeout`` seconds for exit. Returns True once exited."""

    @property
    def exit_code(self) -> Optional[int]:
        return None


class SubprocessCaptureBackend(CaptureBackend):
    """Runs a recording command as a child process."""

    def __init__(self, executable: str, sample_rate: int = 44100):
        self.executable = executable
        self.sample_rate = sample_rate
        self.process: Optional[subprocess.Popen] = None
        self._stderr_tail = ""
        self._stderr_thread: Optional[threading.Thread] = None

    @abstractmethod
    def build_command(self, output_path: Path) -> List[str]:
        pass

    def start(self, output_path: Path) -> None:
        command = self.build_command(output_path)
        logger.info(f"Starting {self.name} capture: {' '.join(command)}")
        self.process = subprocess.Popen(
            command,
            stdin=subprocess.PIPE,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
        )
        self._stderr_thread = threading.Thread(
            target=self._drain_stderr, name=f"{self.name}Stderr", daemon=True
        )
        self._stderr_thread.start()

    def _drain_stderr(self) -> None:
        stream = self.process.stderr if self.process else None
        if stream is None:
            return
        for raw_line in iter(stream.readline, b""):
            line = raw_line.decode("utf-8", errors="replace")
            self._stderr_tail = (self._stderr_tail + line)[-500:]
            lowered = line.lower()
            if "error" in lowered or "permission" in lowered:
                logger.error(f"{self.name} stderr: {line.rstrip()}")
            elif "input #0" in lowered:
                logger.info(f"{self.name} detected audio input")
        stream.close()

    @property
    def stderr_tail(self) -> str:
        return self._stderr_tail

    def request_graceful_stop(self) -> None:
        if not self.process or not self.process.stdin:
            return
        try:
            self.process.stdin.write(b"q")
            self.process.stdin.flush()
        except (BrokenPipeError, OSError, ValueError):
            pass

    def interrupt(self) -> None:
        if not self.is_alive():
            return
        try:
            if sys.platform == "win32":
                self.process.terminate()
            else:
                self.process.send_signal(signal.SIGINT)
        except OSError:
            pass

    def force_stop(self, timeout: float = 1.0) -> None:
        if not self.is_alive():
            return
        try:
            self.process.kill()
            self.process.wait(timeout=timeout)
        except (OSError, subprocess.TimeoutExpired):
            pass

    def is_alive(self) -> bool:
        return self.process is not None and self.process.poll() is None

    def wait(self, timeout: Optional[float]) -> bool:
        if self.process is None:
            return True
        try:
            self.process.wait(timeout=timeout)
            return True
        except subprocess.TimeoutExpired:
            return False

    @property
    def exit_code(self) -> Optional[int]:
        return self.process.returncode if self.process else None


class FFmpegCaptureBackend(SubprocessCaptureBackend):
    """Primary capture tool: ffmpeg writing 16-bit mono PCM with immediate flushes."""

    name = "ffmpeg"

    def __init__(self,
                 executable: str = "ffmpeg",
                 sample_rate: int = 44100,
                 input_format: Optional[str] = None,
                 input_device: Optional[str] = None):
        super().__init__(executable, sample_rate)
        default_format, default_device = self.platform_input()
        self.input_format = input_format or default_format
        self.input_device = input_device or default_device

    @staticmethod
    def platform_input():
        if sys.platform == "darwin":
            return "avfoundation", ":0"
        if sys.platform == "win32":
            return "dshow", "audio=Microphone"
        return "pulse", "default"

    def build_command(self, output_path: Path) -> List[str]:
        return [
            self.executable,
            "-f", self.input_format,
            "-i", self.input_device,
            "-ar", str(self.sample_rate),
            "-ac", "1",
            "-acodec", "pcm_s16le",
            "-flush_packets", "1",
            "-fflags", "+genpts",
            "-y",
            str(output_path),
        ]


class SoxCaptureBackend(SubprocessCaptureBackend):
    """Fallback capture tool: sox's ``rec``."""

    name = "sox"

    def __init__(self, executable: str = "rec", sample_rate: int = 44100):
        super().__init__(executable, sample_rate)

    def build_command(self, output_path: Path) -> List[str]:
        return [
            self.executable,
            "-c", "1",
            "-r", str(self.sample_rate),
            "-b", "16",
            "-e", "signed-integer",
            str(output_path),
        ]


@dataclass
class _ActiveCapture:
    session_id: str
    backend: CaptureBackend
    output_path: Path
    stopping: bool = False


class CaptureSupervisor:
    """Owns at most one capture process and the file it writes."""

    def __init__(self,
                 recordings_dir: Path,
                 chunks_dir: Path,
                 media: MediaTools,
                 backend_factories: Optional[List[Callable[[], CaptureBackend]]] = None,
                 extension: str = "wav",
                 snapshot_min_bytes: int = 10000,
                 snapshot_timeout: float = 5.0,
                 stop_grace: float = 0.5,
                 stop_settle: float = 1.0,
                 stop_timeout: float = 5.0,
                 final_min_bytes: int = 1000,
                 sleep: Callable[[float], None] = time.sleep):
        self.recordings_dir = Path(recordings_dir)
        self.chunks_dir = Path(chunks_dir)
        self.media = media
        self.backend_factories = backend_factories or [FFmpegCaptureBackend, SoxCaptureBackend]
        self.extension = extension
        self.snapshot_min_bytes = snapshot_min_bytes
        self.snapshot_timeout = snapshot_timeout
        self.stop_grace = stop_grace
        self.stop_settle = stop_settle
        self.stop_timeout = stop_timeout
        self.final_min_bytes = final_min_bytes
        self._sleep = sleep

        self._lock = threading.Lock()
        self._active: Optional[_ActiveCapture] = None

        self.recordings_dir.mkdir(parents=True, exist_ok=True)
        self.chunks_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_config(cls, config, media: MediaTools) -> "CaptureSupervisor":
        sample_rate = config.get('capture.sample_rate', 44100)
        ffmpeg_path = config.get('capture.ffmpeg_path', 'ffmpeg')
        sox_path = config.get('capture.sox_path', 'rec')
        input_format = config.get('capture.input_format')
        input_device = config.get('capture.input_device')

        factories = [
            lambda: FFmpegCaptureBackend(ffmpeg_path, sample_rate, input_format, input_device),
            lambda: SoxCaptureBackend(sox_path, sample_rate),
        ]
        return cls(
            recordings_dir=config.get_recordings_directory(),
            chunks_dir=config.get_chunks_directory(),
            media=media,
            backend_factories=factories,
            extension=config.get('capture.extension', 'wav'),
            snapshot_min_bytes=config.get('capture.snapshot_min_bytes', 10000),
            snapshot_timeout=config.get('capture.snapshot_timeout_seconds', 5.0),
            stop_grace=config.get('capture.stop_grace_seconds', 0.5),
            stop_settle=config.get('capture.stop_settle_seconds', 1.0),
            stop_timeout=config.get('capture.stop_timeout_seconds', 5.0),
            final_min_bytes=config.get('capture.final_min_bytes', 1000),
        )

    def artifact_path(self, session_id: str) -> Path:
        """Well-known location of a session's recording."""
        return self.recordings_dir / f"{session_id}.{self.extension}"

    def is_recording(self, session_id: Optional[str] = None) -> bool:
        with self._lock:
            active = self._active
        if active is None or active.stopping:
            return False
        if session_id is not None and active.session_id != session_id:
            return False
        return active.backend.is_alive()

    def start(self, session_id: str, on_early_exit: Optional[EarlyExitCallback] = None) -> Path:
        """Launch the capture process for ``session_id``.

        Tries each backend in order. Raises CaptureUnavailable when none
        can be launched; the caller decides whether to go on without audio.
        """
        with self._lock:
            stale = self._active
            self._active = None
        if stale is not None:
            logger.warning(f"Capture for session {stale.session_id} still held, killing it")
            stale.stopping = True
            stale.backend.force_stop()

        self.cleanup_chunks()
        output_path = self.artifact_path(session_id)
        logger.info(f"Starting audio capture to: {output_path}")

        for factory in self.backend_factories:
            backend = factory()
            try:
                backend.start(output_path)
            except OSError as e:
                logger.warning(f"{backend.name} failed to launch: {e}")
                continue

            active = _ActiveCapture(session_id=session_id, backend=backend, output_path=output_path)
            with self._lock:
                self._active = active
            watcher = threading.Thread(
                target=self._watch_process,
                args=(active, on_early_exit),
                name=f"CaptureWatcher-{session_id}",
                daemon=True,
            )
            watcher.start()
            logger.info(f"{backend.name} capture started for session {session_id}")
            return output_path

        raise CaptureUnavailable("No audio capture tool could be started (tried ffmpeg and sox)")

    def _watch_process(self, active: _ActiveCapture, on_early_exit: Optional[EarlyExitCallback]) -> None:
        """Report a capture process that exits without being asked to."""
        active.backend.wait(None)
        code = active.backend.exit_code
        if active.stopping:
            logger.debug(f"{active.backend.name} process closed with code {code}")
            return

        tail = getattr(active.backend, "stderr_tail", "")
        logger.error(f"{active.backend.name} exited early for session {active.session_id} "
                     f"with code {code}. Last stderr: {tail}")
        with self._lock:
            if self._active is active:
                self._active = None
        if on_early_exit:
            try:
                on_early_exit(active.session_id, code)
            except Exception as e:
                logger.error(f"Error in early-exit handler: {e}", exc_info=True)

    def snapshot(self, session_id: str) -> Optional[Path]:
        """Copy the live recording to a new file that is safe to read.

        Returns None when the recording does not exist yet, is too small
        to be meaningful, or the copy does not finish in time.
        """
        live_path = self.artifact_path(session_id)
        try:
            size = live_path.stat().st_size
        except FileNotFoundError:
            return None
        if size < self.snapshot_min_bytes:
            return None

        self.chunks_dir.mkdir(parents=True, exist_ok=True)
        snapshot_path = self.chunks_dir / f"snapshot_{session_id}_{int(time.time() * 1000)}.{self.extension}"
        if self.media.stream_copy(live_path, snapshot_path, timeout=self.snapshot_timeout):
            return snapshot_path
        return None

    def stop(self, session_id: str) -> Optional[Path]:
        """Stop capture and return the finished recording, or None.

        Sends a quit keystroke, then an interrupt after a grace delay. The
        whole call is bounded by ``stop_timeout``: if the process has not
        exited by then it is killed and whatever is on disk is returned.
        """
        with self._lock:
            active = self._active
            if active is not None and active.session_id == session_id:
                active.stopping = True
                self._active = None
            else:
                active = None

        if active is None:
            output_path = self.artifact_path(session_id)
            logger.info(f"No capture process for {session_id}, checking {output_path}")
            self.cleanup_chunks()
            return self._final_artifact(output_path)

        deadline = time.monotonic() + self.stop_timeout
        kill_deadline = deadline - min(KILL_WAIT_SECONDS, self.stop_timeout / 2)
        backend = active.backend
        output_path = active.output_path

        backend.request_graceful_stop()
        exited = backend.wait(min(self.stop_grace, self._remaining(kill_deadline)))
        if not exited:
            backend.interrupt()
            exited = backend.wait(self._remaining(kill_deadline))

        if exited:
            self._sleep(min(self.stop_settle, self._remaining(deadline)))
            result = self._final_artifact(output_path)
        else:
            logger.warning(f"Stop timeout reached for session {session_id}, killing {backend.name}")
            backend.force_stop(self._remaining(deadline))
            result = output_path if output_path.exists() else None
            logger.info(f"Recording found via timeout: {result}")

        self.cleanup_chunks()
        return result

    @staticmethod
    def _remaining(deadline: float) -> float:
        return max(0.0, deadline - time.monotonic())

    def _final_artifact(self, output_path: Path) -> Optional[Path]:
        if not output_path.exists():
            logger.warning(f"Recording file not found after close: {output_path}")
            return None
        size = output_path.stat().st_size
        logger.info(f"Recording saved: {output_path} ({size} bytes)")
        if size > self.final_min_bytes:
            return output_path
        logger.warning("Recording file too small")
        return None

    def cleanup_chunks(self) -> None:
        """Delete leftover snapshot and chunk files."""
        if not self.chunks_dir.exists():
            return
        for path in self.chunks_dir.iterdir():
            if path.is_file():
                remove_quietly(path)
