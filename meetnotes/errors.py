"""Exception hierarchy for MeetNotes."""


class MeetNotesError(Exception):
    """Base class for all MeetNotes errors."""


class CaptureError(MeetNotesError):
    """Audio capture failed."""


class CapturePermissionDenied(CaptureError):
    """Microphone access was refused; a session cannot start."""


class CaptureUnavailable(CaptureError):
    """No capture tool could be launched; the session runs without audio."""


class ArtifactNotFound(MeetNotesError):
    """No usable audio file exists for a session."""


class TranscriptionError(MeetNotesError):
    """Final transcription could not produce a transcript."""


class EmptyTranscript(TranscriptionError):
    """Transcription succeeded but produced too little text to be useful."""


class SpeechServiceError(MeetNotesError):
    """Base class for speech-to-text service failures."""

    def __init__(self, message: str, status: int = None):
        super().__init__(message)
        self.status = status


class SpeechServiceNotConfigured(SpeechServiceError):
    """No credential is configured for the speech service."""


class SpeechServiceAuthError(SpeechServiceError):
    """The speech service rejected our credential. Never retried."""


class SpeechServiceSizeLimitExceeded(SpeechServiceError):
    """The request body was larger than the service accepts."""


class SpeechServiceTransient(SpeechServiceError):
    """A retryable speech service failure."""


class SpeechServiceRateLimited(SpeechServiceTransient):
    """The speech service asked us to slow down."""


class SummarizationError(MeetNotesError):
    """Summary generation failed. Never fatal to a session."""
