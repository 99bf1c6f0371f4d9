"""ffmpeg/ffprobe helpers for copying, slicing and probing audio files."""

import logging
import subprocess
import wave
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)


class MediaTools:
    """Thin wrappers around the ffmpeg and ffprobe command line tools.

    Every call has an explicit timeout; a tool that does not finish in
    time is killed and the call reports failure instead of hanging.
    """

    def __init__(self,
                 ffmpeg_path: str = "ffmpeg",
                 ffprobe_path: str = "ffprobe",
                 extract_timeout: float = 30.0,
                 probe_timeout: float = 5.0):
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.extract_timeout = extract_timeout
        self.probe_timeout = probe_timeout

    @classmethod
    def from_config(cls, config) -> "MediaTools":
        return cls(
            ffmpeg_path=config.get('capture.ffmpeg_path', 'ffmpeg'),
            ffprobe_path=config.get('capture.ffprobe_path', 'ffprobe'),
            extract_timeout=config.get('final.extract_timeout_seconds', 30.0),
            probe_timeout=config.get('final.probe_timeout_seconds', 5.0),
        )

    def _run(self, args: List[str], timeout: float) -> subprocess.CompletedProcess:
        return subprocess.run(
            args,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            timeout=timeout,
        )

    def stream_copy(self, source: Path, target: Path, timeout: float) -> bool:
        """Copy ``source`` into ``target`` without re-encoding.

        Used to take a consistent snapshot of a file that is still being
        written. Returns True when ``target`` exists afterwards.
        """
        args = [self.ffmpeg_path, "-i", str(source), "-acodec", "copy", "-y", str(target)]
        try:
            completed = self._run(args, timeout)
        except subprocess.TimeoutExpired:
            logger.warning(f"ffmpeg copy timed out after {timeout}s: {source}")
            remove_quietly(target)
            return False
        except OSError as e:
            logger.error(f"Could not run ffmpeg for copy: {e}")
            return False

        if completed.returncode != 0:
            stderr = completed.stderr.decode("utf-8", errors="replace")
            logger.debug(f"ffmpeg copy failed ({completed.returncode}): {stderr[-200:]}")
            remove_quietly(target)
            return False
        return target.exists()

    def extract_region(self, source: Path, target: Path, start: float, duration: float) -> bool:
        """Write ``duration`` seconds of ``source`` beginning at ``start`` as 16kHz mono."""
        args = [
            self.ffmpeg_path,
            "-i", str(source),
            "-ss", f"{start:.3f}",
            "-t", f"{duration:.3f}",
            "-ar", "16000",
            "-ac", "1",
            "-y", str(target),
        ]
        try:
            completed = self._run(args, self.extract_timeout)
        except subprocess.TimeoutExpired:
            logger.warning(f"ffmpeg extract timed out: {source} [{start:.1f}s +{duration:.1f}s]")
            remove_quietly(target)
            return False
        except OSError as e:
            logger.error(f"Could not run ffmpeg for extract: {e}")
            return False

        if completed.returncode != 0:
            logger.debug(f"ffmpeg extract exited with code {completed.returncode}")
            remove_quietly(target)
            return False
        return target.exists()

    def convert(self, source: Path, target: Path) -> bool:
        """Re-encode ``source`` to a 16kHz mono file at ``target``."""
        args = [self.ffmpeg_path, "-i", str(source), "-ar", "16000", "-ac", "1", "-y", str(target)]
        try:
            completed = self._run(args, self.extract_timeout)
        except (subprocess.TimeoutExpired, OSError) as e:
            logger.error(f"ffmpeg conversion of {source} failed: {e}")
            remove_quietly(target)
            return False
        return completed.returncode == 0 and target.exists()

    def probe_duration(self, path: Path) -> Optional[float]:
        """Return the duration of ``path`` in seconds, or None if it cannot be read."""
        args = [
            self.ffprobe_path,
            "-v", "quiet",
            "-show_entries", "format=duration",
            "-of", "default=noprint_wrappers=1:nokey=1",
            str(path),
        ]
        try:
            completed = self._run(args, self.probe_timeout)
            output = completed.stdout.decode("utf-8", errors="replace").strip()
            if completed.returncode == 0 and output:
                return float(output)
        except subprocess.TimeoutExpired:
            logger.warning(f"ffprobe timed out for {path}")
        except (OSError, ValueError) as e:
            logger.debug(f"ffprobe could not read {path}: {e}")

        return wav_duration(path)


def wav_duration(path: Path) -> Optional[float]:
    """Duration from a WAV header, or None for other or damaged files."""
    try:
        with wave.open(str(path), "rb") as wf:
            rate = wf.getframerate()
            if rate <= 0:
                return None
            return wf.getnframes() / float(rate)
    except (wave.Error, EOFError, OSError):
        return None


def remove_quietly(path: Path) -> None:
    try:
        Path(path).unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.debug(f"Could not delete {path}: {e}")
