"""Google Speech-to-Text transcription backend."""

import time
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .base import AbstractSpeechBackend
from ..audio.media import wav_duration
from ..errors import (
    SpeechServiceAuthError,
    SpeechServiceRateLimited,
    SpeechServiceSizeLimitExceeded,
    SpeechServiceTransient,
)
from ..models.transcription import TranscriptionResult, TranscriptSegment

from google.cloud import speech
from google.api_core import exceptions as gax_exceptions
from google.oauth2 import service_account

logger = logging.getLogger(__name__)

# Synchronous recognize only accepts about a minute of audio.
SYNC_MAX_SECONDS = 55.0


class GoogleSpeechBackend(AbstractSpeechBackend):
    """Transcribes recorded files with Google Speech-to-Text, long files via long-running recognition."""

    service_name = "Google Speech-to-Text"
    max_request_bytes = 10 * 1024 * 1024

    def __init__(self,
                 credentials_path: Optional[str] = None,
                 language: str = "en-US",
                 use_enhanced: bool = True,
                 enable_automatic_punctuation: bool = True,
                 operation_timeout: float = 900.0):
        """Initialize Google Speech backend.

        Args:
            credentials_path: Path to Google Cloud service account JSON file
            language: Language code (e.g., 'en-US', 'es-ES')
            use_enhanced: Request the enhanced recognition model
            enable_automatic_punctuation: Enable automatic punctuation
            operation_timeout: Seconds to wait for a long-running recognition
        """
        super().__init__(language)
        self.credentials_path = credentials_path
        if not self.credentials_path:
            raise ValueError("GoogleSpeechBackend needs a service account credentials path")
        self.use_enhanced = use_enhanced
        self.enable_automatic_punctuation = enable_automatic_punctuation
        self.operation_timeout = operation_timeout
        self.client = None
        self.project_id = None

    def _recognition_config(self, with_segments: bool) -> speech.RecognitionConfig:
        # Encoding and sample rate are read from the WAV header.
        return speech.RecognitionConfig(
            language_code=self.language,
            use_enhanced=self.use_enhanced,
            enable_automatic_punctuation=self.enable_automatic_punctuation,
            enable_word_time_offsets=with_segments,
            audio_channel_count=1,
        )

    def initialize(self) -> bool:
        """Create the Speech client from the service account file."""
        logger.info(f"Loading Google credentials from: {self.credentials_path}")
        credentials = service_account.Credentials.from_service_account_file(self.credentials_path)

        self.client = speech.SpeechClient(credentials=credentials)
        self.project_id = credentials.project_id
        logger.info(f"Using Google Cloud project: {self.project_id}")
        return True

    def transcribe_file(self, chunk_id: str, audio_path: Path, with_segments: bool = False) -> TranscriptionResult:
        """Transcribe an audio file using Google Speech-to-Text."""
        if self.client is None:
            self.initialize()

        start_time = time.time()
        audio_path = Path(audio_path)
        content = audio_path.read_bytes()
        if len(content) > self.max_request_bytes:
            raise SpeechServiceSizeLimitExceeded(
                f"{audio_path.name} is {len(content)} bytes, limit is {self.max_request_bytes}")

        config = self._recognition_config(with_segments)
        audio = speech.RecognitionAudio(content=content)
        duration = wav_duration(audio_path) or 0.0
        logger.debug(f"Chunk ID: {chunk_id}; size: {len(content)} bytes; duration: {duration:.1f}s; "
                     f"language: {self.language}")

        try:
            if duration > SYNC_MAX_SECONDS:
                operation = self.client.long_running_recognize(config=config, audio=audio)
                response = operation.result(timeout=self.operation_timeout)
            else:
                response = self.client.recognize(config=config, audio=audio, timeout=30.0)
        except (gax_exceptions.Unauthenticated, gax_exceptions.PermissionDenied) as e:
            raise SpeechServiceAuthError(f"Google Speech rejected credentials: {e}") from e
        except gax_exceptions.ResourceExhausted as e:
            raise SpeechServiceRateLimited(f"Google Speech quota exceeded (chunk={chunk_id}): {e}") from e
        except gax_exceptions.InvalidArgument as e:
            if "too long" in str(e).lower() or "payload size" in str(e).lower():
                raise SpeechServiceSizeLimitExceeded(f"Google Speech request too large: {e}") from e
            raise SpeechServiceTransient(f"Google Speech rejected request (chunk={chunk_id}): {e}") from e
        except gax_exceptions.DeadlineExceeded as e:
            logger.error("Google STT recognize deadline exceeded for chunk %s", chunk_id)
            raise SpeechServiceTransient(f"Google Speech recognize timeout (chunk={chunk_id}): {e}") from e
        except gax_exceptions.GoogleAPICallError as e:
            logger.error("Google STT API call error for chunk %s: %s", chunk_id, e)
            raise SpeechServiceTransient(f"Google Speech API error (chunk={chunk_id}): {e}") from e
        processing_time = time.time() - start_time

        texts = []
        segments: List[TranscriptSegment] = []
        for result in response.results:
            if not result.alternatives:
                continue
            alternative = result.alternatives[0]
            text = alternative.transcript.strip()
            if not text:
                continue
            texts.append(text)
            if with_segments and alternative.words:
                segments.append(TranscriptSegment(
                    start=alternative.words[0].start_time.total_seconds(),
                    end=alternative.words[-1].end_time.total_seconds(),
                    text=text,
                ))

        if not texts:
            logger.debug("--- NO SPEECH DETECTED ---")

        return TranscriptionResult(
            text=" ".join(texts),
            processing_time=processing_time,
            timestamp=datetime.now(),
            service=self.service_name,
            language=self.language,
            chunk_id=chunk_id,
            segments=segments,
        )
