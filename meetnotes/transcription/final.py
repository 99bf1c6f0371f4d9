"""Whole-recording transcription after a session has stopped."""

import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Dict, List, Optional

from ..audio.media import MediaTools, remove_quietly
from ..errors import (
    ArtifactNotFound,
    EmptyTranscript,
    SpeechServiceAuthError,
    SpeechServiceError,
    SpeechServiceNotConfigured,
    SpeechServiceSizeLimitExceeded,
    TranscriptionError,
)
from ..models.transcription import FinalTranscript, TranscriptionResult, TranscriptLine
from .base import AbstractSpeechBackend
from .retry import RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)

# Extracted chunks are 16 kHz mono 16-bit PCM.
EXTRACTED_BYTES_PER_SECOND = 32000


class FinalTranscriptionEngine:
    """Transcribes a finished recording, splitting it when it is too large for one request.

    Files within the request limit go to the speech service in one call
    and keep its segment timestamps. Larger files are cut into fixed
    duration chunks; each chunk's timestamps are shifted by the chunk's
    start offset so the assembled transcript is ordered by time. A chunk
    that keeps failing is skipped rather than failing the whole run.
    """

    def __init__(self,
                 backend: AbstractSpeechBackend,
                 media: MediaTools,
                 temp_dir: Path,
                 max_request_bytes: Optional[int] = None,
                 chunk_duration: float = 600.0,
                 retry_policy: Optional[RetryPolicy] = None,
                 min_transcript_chars: int = 10,
                 max_workers: int = 1,
                 sleep: Callable[[float], None] = time.sleep):
        self.backend = backend
        self.media = media
        self.temp_dir = Path(temp_dir)
        limits = [backend.max_request_bytes]
        if max_request_bytes:
            limits.append(max_request_bytes)
        self.max_request_bytes = min(limits)
        # A chunk must fit in one request after extraction.
        fitting_seconds = self.max_request_bytes * 0.95 / EXTRACTED_BYTES_PER_SECOND
        self.chunk_duration = min(chunk_duration, fitting_seconds)
        self.retry_policy = retry_policy or RetryPolicy()
        self.min_transcript_chars = min_transcript_chars
        self.max_workers = max(1, max_workers)
        self.sleep = sleep

        self.temp_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_config(cls, config, backend: AbstractSpeechBackend, media: MediaTools) -> "FinalTranscriptionEngine":
        return cls(
            backend=backend,
            media=media,
            temp_dir=config.get_temp_directory(),
            max_request_bytes=config.get('final.max_request_bytes'),
            chunk_duration=config.get('final.chunk_duration_seconds', 600.0),
            retry_policy=RetryPolicy(
                max_attempts=config.get('final.max_attempts', 3),
                backoff_seconds=config.get('final.backoff_seconds', 2.0),
                rate_limit_backoff_seconds=config.get('final.rate_limit_backoff_seconds', 5.0),
            ),
            min_transcript_chars=config.get('final.min_transcript_chars', 10),
            max_workers=config.get('final.max_workers', 1),
        )

    def transcribe_final(self, artifact_path: Path) -> FinalTranscript:
        """Transcribe a finished recording.

        Args:
            artifact_path: Path to the recording

        Returns:
            FinalTranscript with one line per segment, ``[mm:ss]`` stamped
            when the service reported timings

        Raises:
            ArtifactNotFound: If the recording does not exist
            SpeechServiceAuthError: If the service rejected the credential
            SpeechServiceTransient: If a single-request transcription kept failing
            TranscriptionError: If a large recording could not be measured
            EmptyTranscript: If the result is too short to be speech
        """
        artifact_path = Path(artifact_path)
        if not artifact_path.exists():
            raise ArtifactNotFound(f"Recording not found: {artifact_path}")

        size = artifact_path.stat().st_size
        size_mb = size / 1024 / 1024
        logger.info(f"Final transcription of {artifact_path.name}: {size_mb:.2f} MB")

        if size <= self.max_request_bytes:
            try:
                transcript = self._transcribe_direct(artifact_path)
            except SpeechServiceSizeLimitExceeded as e:
                logger.warning(f"Service refused single request ({e}), falling back to chunks")
                transcript = self._transcribe_chunked(artifact_path)
        else:
            logger.info(f"File exceeds {self.max_request_bytes / 1024 / 1024:.0f} MB limit, "
                        f"splitting into chunks...")
            transcript = self._transcribe_chunked(artifact_path)

        text = transcript.text.strip()
        if len(text) < self.min_transcript_chars:
            raise EmptyTranscript(f"Transcription produced no usable text ({len(text)} chars)")

        logger.info(f"Final transcription complete: {len(transcript.lines)} lines, "
                    f"{transcript.chunk_count} chunk(s), {len(transcript.skipped_chunks)} skipped")
        return transcript

    def _request(self, chunk_id: str, path: Path) -> TranscriptionResult:
        return call_with_retry(
            lambda: self.backend.transcribe_file(chunk_id, path, with_segments=True),
            self.retry_policy,
            description=f"Transcribing {chunk_id}",
            sleep=self.sleep,
        )

    def _transcribe_direct(self, artifact_path: Path) -> FinalTranscript:
        result = self._request(f"final.{artifact_path.stem}", artifact_path)
        return FinalTranscript(lines=self._lines_from_result(result, offset=None), chunk_count=1)

    def _transcribe_chunked(self, artifact_path: Path) -> FinalTranscript:
        duration = self.media.probe_duration(artifact_path)
        if duration is None:
            raise TranscriptionError(f"Could not determine duration of {artifact_path.name}")

        num_chunks = max(1, math.ceil(duration / self.chunk_duration))
        logger.info(f"Duration: {duration / 60:.1f} min, splitting into {num_chunks} chunks "
                    f"of {self.chunk_duration:.0f}s")

        by_index: Dict[int, List[TranscriptLine]] = {}
        skipped: List[int] = []
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="FinalChunk") as executor:
            futures = {
                executor.submit(self._transcribe_chunk, artifact_path, index): index
                for index in range(num_chunks)
            }
            for future, index in futures.items():
                lines = future.result()
                if lines is None:
                    skipped.append(index)
                else:
                    by_index[index] = lines

        ordered: List[TranscriptLine] = []
        for index in sorted(by_index):
            ordered.extend(by_index[index])
        return FinalTranscript(lines=ordered, chunk_count=num_chunks, skipped_chunks=sorted(skipped))

    def _transcribe_chunk(self, artifact_path: Path, index: int) -> Optional[List[TranscriptLine]]:
        """Transcribe chunk ``index``. Returns None when the chunk is skipped."""
        offset = index * self.chunk_duration
        chunk_path = self.temp_dir / f"{artifact_path.stem}_chunk_{index}.wav"
        try:
            if not self.media.extract_region(artifact_path, chunk_path, offset, self.chunk_duration):
                logger.error(f"Failed to extract chunk {index + 1}, skipping")
                return None
            result = self._request(f"final.{artifact_path.stem}.{index}", chunk_path)
            lines = self._lines_from_result(result, offset=offset)
            logger.info(f"Chunk {index + 1} transcribed: {sum(len(l.text) for l in lines)} chars")
            return lines
        except (SpeechServiceAuthError, SpeechServiceNotConfigured):
            raise
        except SpeechServiceError as e:
            logger.error(f"Chunk {index + 1} failed after {self.retry_policy.max_attempts} attempts, "
                         f"skipping: {e}")
            return None
        finally:
            remove_quietly(chunk_path)

    @staticmethod
    def _lines_from_result(result: TranscriptionResult, offset: Optional[float]) -> List[TranscriptLine]:
        if result.segments:
            base = offset or 0.0
            return [TranscriptLine(timestamp=seg.start + base, text=seg.text) for seg in result.segments]
        text = result.text.strip()
        if not text:
            return []
        # Flat text keeps the chunk offset as its only timing.
        return [TranscriptLine(timestamp=offset, text=text)]

