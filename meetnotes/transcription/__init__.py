"""Speech-to-text backends and the live and final transcription engines."""

from .base import AbstractSpeechBackend
from ..models.transcription import TranscriptionResult, FinalTranscript
from .whisper_backend import WhisperAPIBackend
from .google_backend import GoogleSpeechBackend
from .retry import RetryPolicy, call_with_retry
from .live import LiveTranscriptionEngine
from .final import FinalTranscriptionEngine
from .factory import create_speech_backend

__all__ = [
    "AbstractSpeechBackend",
    "TranscriptionResult",
    "FinalTranscript",
    "WhisperAPIBackend",
    "GoogleSpeechBackend",
    "RetryPolicy",
    "call_with_retry",
    "LiveTranscriptionEngine",
    "FinalTranscriptionEngine",
    "create_speech_backend",
]
