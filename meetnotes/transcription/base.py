"""Abstract base classes for speech-to-text backends."""

from abc import ABC, abstractmethod
from pathlib import Path
import logging

from ..models.transcription import TranscriptionResult

logger = logging.getLogger(__name__)


class AbstractSpeechBackend(ABC):
    """Abstract base class for speech-to-text backends."""

    service_name = "speech"
    max_request_bytes = 25 * 1024 * 1024

    def __init__(self, language: str = "en"):
        """Initialize backend with language preference."""
        self.language = language

    @abstractmethod
    def transcribe_file(self, chunk_id: str, audio_path: Path, with_segments: bool = False) -> TranscriptionResult:
        """Transcribe an audio file and return the result.

        Args:
            chunk_id: Identifier used in logs and on the result
            audio_path: File to submit
            with_segments: Request timed segments instead of plain text

        Returns:
            TranscriptionResult; ``segments`` is empty when the service
            returned no breakdown

        Raises:
            SpeechServiceAuthError, SpeechServiceRateLimited,
            SpeechServiceTransient, SpeechServiceSizeLimitExceeded
        """
        pass

    @abstractmethod
    def initialize(self) -> bool:
        """Initialize backend resources and verify configuration.

        Returns:
            True if initialization successful, False otherwise
        """
        pass

    def cleanup(self) -> None:
        """Clean up backend resources."""
        pass
