"""Recording ingress for audio produced outside the capture process.

A browser-side recorder delivers encoded audio in chunks. They are
appended to ``recordings/{session_id}.webm`` and converted to the same
WAV artifact the capture process would have written once the recorder
finishes.
"""

import logging
import threading
from pathlib import Path
from typing import BinaryIO, Dict, Optional

from .media import MediaTools, remove_quietly

logger = logging.getLogger(__name__)


class ChunkIngress:
    """Accumulates pushed audio chunks into per-session files."""

    def __init__(self, recordings_dir: Path, media: MediaTools):
        self.recordings_dir = Path(recordings_dir)
        self.media = media
        self._streams: Dict[str, BinaryIO] = {}
        self._lock = threading.Lock()
        self.recordings_dir.mkdir(parents=True, exist_ok=True)

    def raw_path(self, session_id: str) -> Path:
        return self.recordings_dir / f"{session_id}.webm"

    def write_chunk(self, session_id: str, data: bytes) -> None:
        with self._lock:
            stream = self._streams.get(session_id)
            if stream is None:
                path = self.raw_path(session_id)
                stream = open(path, "ab")
                self._streams[session_id] = stream
                logger.info(f"Started chunk ingress recording to: {path}")
            stream.write(data)

    def finish(self, session_id: str) -> Optional[Path]:
        """Close the session's stream and convert it to WAV.

        Returns the WAV path on success, the raw file if conversion failed,
        or None when nothing was received for the session.
        """
        with self._lock:
            stream = self._streams.pop(session_id, None)
        if stream is None:
            return None
        stream.close()

        raw_path = self.raw_path(session_id)
        wav_path = raw_path.with_suffix(".wav")
        if self.media.convert(raw_path, wav_path):
            logger.info(f"Converted to WAV: {wav_path}")
            remove_quietly(raw_path)
            return wav_path

        logger.error(f"Conversion failed, keeping raw recording: {raw_path}")
        return raw_path
