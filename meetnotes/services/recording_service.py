"""Recording session state machine: capture, live transcription, finalization."""

import logging
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..audio.capture import CaptureSupervisor
from ..audio.ingress import ChunkIngress
from ..audio.media import MediaTools
from ..errors import (
    ArtifactNotFound,
    CaptureUnavailable,
    EmptyTranscript,
    MeetNotesError,
    SpeechServiceNotConfigured,
    SummarizationError,
)
from ..models.events import LiveUpdate
from ..models.session import Session, SessionState
from ..models.transcription import FinalTranscript
from ..storage import (
    MeetingStore,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PROCESSING,
    STATUS_RECORDING,
)
from ..summarization import SummarizationEngine
from ..transcription import FinalTranscriptionEngine, LiveTranscriptionEngine, create_speech_backend
from .publisher import SessionEventPublisher

logger = logging.getLogger(__name__)

REASON_NO_AUDIO = "no audio recorded"
REASON_NO_SPEECH = "no speech detected in recording"
REASON_NOT_CONFIGURED = "speech service not configured"


def _default_permission_check() -> None:
    from ..audio.permissions import check_microphone_permission
    check_microphone_permission()


class RecordingSession:
    """Drives one session at a time from Recording through Completed or Failed.

    Stopping hands processing to a background thread (or runs it inline
    when ``background_processing`` is False) so ``stop`` returns as soon
    as capture has been shut down.
    """

    def __init__(self,
                 store: MeetingStore,
                 capture: CaptureSupervisor,
                 live_engine: LiveTranscriptionEngine,
                 final_engine: Optional[FinalTranscriptionEngine] = None,
                 summarizer: Optional[SummarizationEngine] = None,
                 publisher: Optional[SessionEventPublisher] = None,
                 ingress: Optional[ChunkIngress] = None,
                 permission_check: Optional[Callable[[], None]] = None,
                 processing_settle_seconds: float = 3.0,
                 artifact_retry_wait_seconds: float = 2.0,
                 candidate_extensions: Optional[List[str]] = None,
                 background_processing: bool = True,
                 sleep: Callable[[float], None] = time.sleep):
        self.store = store
        self.capture = capture
        self.live_engine = live_engine
        self.final_engine = final_engine
        self.summarizer = summarizer
        self.publisher = publisher or SessionEventPublisher()
        self.ingress = ingress
        self.permission_check = permission_check or _default_permission_check
        self.processing_settle_seconds = processing_settle_seconds
        self.artifact_retry_wait_seconds = artifact_retry_wait_seconds
        self.candidate_extensions = candidate_extensions or ["wav", "webm"]
        self.background_processing = background_processing
        self._sleep = sleep

        self._lock = threading.Lock()
        self.session: Optional[Session] = None

    @classmethod
    def from_config(cls, config, permission_check: Optional[Callable[[], None]] = None,
                    publisher: Optional[SessionEventPublisher] = None) -> "RecordingSession":
        """Wire every collaborator from configuration."""
        media = MediaTools.from_config(config)
        capture = CaptureSupervisor.from_config(config, media)
        backend = create_speech_backend(config)
        live_engine = LiveTranscriptionEngine.from_config(config, capture, backend, media)
        final_engine = FinalTranscriptionEngine.from_config(config, backend, media) if backend else None
        summarizer = SummarizationEngine.from_config(config) if config.get('summary.enabled', True) else None

        return cls(
            store=MeetingStore(config.get_data_directory()),
            capture=capture,
            live_engine=live_engine,
            final_engine=final_engine,
            summarizer=summarizer,
            publisher=publisher,
            ingress=ChunkIngress(capture.recordings_dir, media),
            permission_check=permission_check,
            processing_settle_seconds=config.get('session.processing_settle_seconds', 3.0),
            artifact_retry_wait_seconds=config.get('session.artifact_retry_wait_seconds', 2.0),
        )

    @property
    def is_recording(self) -> bool:
        session = self.session
        return session is not None and session.state is SessionState.RECORDING

    def start(self, title: Optional[str] = None) -> Session:
        """Start a new session.

        Returns the already active session unchanged when one is recording.

        Raises:
            CapturePermissionDenied: If the microphone cannot be used
        """
        with self._lock:
            current = self.session
            if current is not None and current.state in (SessionState.RECORDING, SessionState.STOPPING):
                logger.warning(f"Session {current.session_id} already active, ignoring start")
                return current

            self.permission_check()

            record = self.store.create_meeting(title=title, status=STATUS_RECORDING, source="recording")
            session = Session(session_id=record.id, state=SessionState.RECORDING)
            self.session = session

        try:
            self.capture.start(session.session_id, on_early_exit=self._on_capture_exit)
        except CaptureUnavailable as e:
            logger.warning(f"Recording without audio: {e}")
            session.capture_available = False

        logger.info(f"Started session {session.session_id}")
        self.publisher.publish("started", session.session_id, capture_available=session.capture_available)
        self.live_engine.start_live(session.session_id, self._on_live_update)
        return session

    def _on_live_update(self, update: LiveUpdate) -> None:
        if update.is_transcript and update.session_id:
            self.store.update_meeting(update.session_id, live_transcript=update.text)
        self.publisher.publish_live(update)

    def _on_capture_exit(self, session_id: str, exit_code: Optional[int]) -> None:
        session = self.session
        if session is None or session.session_id != session_id or session.state is not SessionState.RECORDING:
            return
        logger.warning(f"Capture ended on its own (code {exit_code}), stopping session {session_id}")
        session.ended_early = True
        self.stop()

    def stop(self) -> Optional[Session]:
        """Stop the active session and begin processing it.

        A second call while the first is still running does nothing.
        """
        with self._lock:
            session = self.session
            if session is None or session.state is not SessionState.RECORDING:
                logger.debug("stop() called with no recording session")
                return session
            session.state = SessionState.STOPPING
            now = datetime.now()
            session.resume(now)
            session.ended_at = now

        session_id = session.session_id
        logger.info(f"Stopping session {session_id}")
        audio_path = None
        try:
            self.live_engine.stop_live(session_id)
            audio_path = self.capture.stop(session_id)
        except Exception as e:
            logger.error(f"Error shutting down capture for session {session_id}: {e}", exc_info=True)
        session.audio_path = str(audio_path) if audio_path else None

        self._update_record(
            session_id,
            status=STATUS_PROCESSING,
            duration=round(session.elapsed_seconds(), 1),
            audio_path=session.audio_path,
        )
        self.publisher.publish("stopped", session_id, audio_path=session.audio_path,
                               ended_early=session.ended_early)

        session.state = SessionState.PROCESSING
        self.publisher.publish("processing", session_id)

        if self.background_processing:
            threading.Thread(
                target=self._settle_and_process,
                args=(session,),
                name=f"Processing-{session_id}",
                daemon=True,
            ).start()
        else:
            self._settle_and_process(session)
        return session

    def _settle_and_process(self, session: Session) -> None:
        try:
            # Buffered audio from the capture tool may still be reaching disk.
            self._sleep(self.processing_settle_seconds)
            self.process_recording(session, session.audio_path)
        except Exception as e:
            logger.error(f"Processing thread error for session {session.session_id}: {e}", exc_info=True)
        finally:
            if not session.state.is_terminal:
                self._fail(session, "processing interrupted")

    def wait_for_processing(self, timeout: Optional[float] = None) -> bool:
        """Block until the current session is Completed or Failed. Returns False on timeout.

        Returns True straight away when there is no session or it is
        still recording.
        """
        session = self.session
        if session is None or session.state is SessionState.RECORDING:
            return True
        return session.finished.wait(timeout)

    def process_recording(self, session: Session, audio_path: Optional[str] = None) -> SessionState:
        """Transcribe and summarize a stopped session; always ends Completed or Failed."""
        session_id = session.session_id
        session.state = SessionState.PROCESSING
        logger.info(f"Processing recording for session {session_id}")

        try:
            artifact = self._locate_artifact(session_id, audio_path)
            if self.final_engine is None:
                raise SpeechServiceNotConfigured(REASON_NOT_CONFIGURED)
            transcript = self.final_engine.transcribe_final(artifact)
        except ArtifactNotFound as e:
            logger.error(f"No recording for session {session_id}: {e}")
            return self._fail(session, REASON_NO_AUDIO)
        except EmptyTranscript as e:
            logger.error(f"Empty transcript for session {session_id}: {e}")
            return self._fail(session, REASON_NO_SPEECH)
        except SpeechServiceNotConfigured:
            return self._fail(session, REASON_NOT_CONFIGURED)
        except MeetNotesError as e:
            logger.error(f"Transcription failed for session {session_id}: {e}")
            return self._fail(session, f"transcription failed: {e}")
        except Exception as e:
            logger.error(f"Unexpected error processing session {session_id}: {e}", exc_info=True)
            return self._fail(session, f"unexpected error: {e}")

        try:
            return self._complete(session, artifact, transcript)
        except Exception as e:
            logger.error(f"Could not save results for session {session_id}: {e}", exc_info=True)
            return self._fail(session, f"unexpected error: {e}")

    def _complete(self, session: Session, artifact: Path, transcript: FinalTranscript) -> SessionState:
        session_id = session.session_id
        session.audio_path = str(artifact)
        for line in transcript.lines:
            self.store.append_transcript_line(session_id, line.format())
        text = transcript.text
        self.store.update_meeting(session_id, audio_path=session.audio_path)
        self.publisher.publish("transcript", session_id, text=text,
                               skipped_chunks=list(transcript.skipped_chunks))

        self._summarize(session_id, text)

        self.store.update_meeting(session_id, status=STATUS_COMPLETED)
        session.state = SessionState.COMPLETED
        self.publisher.publish("completed", session_id)
        logger.info(f"Session {session_id} completed")
        session.finished.set()
        return session.state

    def _summarize(self, session_id: str, text: str) -> None:
        if self.summarizer is None:
            return
        try:
            summary = self.summarizer.generate_summary(text)
            self.store.update_meeting(session_id, summary=summary.to_dict(), title=summary.title)
        except SummarizationError as e:
            logger.warning(f"Summary skipped for session {session_id}: {e}")
        except Exception as e:
            logger.error(f"Summary failed for session {session_id}: {e}", exc_info=True)

    def _locate_artifact(self, session_id: str, reported: Optional[str]) -> Path:
        candidates: List[Path] = []
        if reported:
            candidates.append(Path(reported))
        candidates.extend(self.capture.recordings_dir / f"{session_id}.{ext}" for ext in self.candidate_extensions)

        for attempt in range(2):
            for candidate in candidates:
                if candidate.exists() and candidate.stat().st_size > self.capture.final_min_bytes:
                    logger.info(f"Found recording: {candidate}")
                    return candidate
            if attempt == 0:
                logger.info(f"No recording yet for {session_id}, retrying in "
                            f"{self.artifact_retry_wait_seconds}s")
                self._sleep(self.artifact_retry_wait_seconds)

        raise ArtifactNotFound(f"No recording found for session {session_id}")

    def _fail(self, session: Session, reason: str) -> SessionState:
        session.state = SessionState.FAILED
        session.failure_reason = reason
        self._update_record(session.session_id, status=STATUS_FAILED, failure_reason=reason)
        self.publisher.publish("failed", session.session_id, reason=reason)
        logger.warning(f"Session {session.session_id} failed: {reason}")
        session.finished.set()
        return session.state

    def _update_record(self, session_id: str, **changes: Any) -> None:
        """Store write on a lifecycle transition; a failure is logged, not raised."""
        try:
            self.store.update_meeting(session_id, **changes)
        except Exception as e:
            logger.error(f"Could not update meeting {session_id}: {e}", exc_info=True)

    def import_audio(self, chunks: Iterable[bytes], title: Optional[str] = None) -> Session:
        """Process audio recorded elsewhere and delivered as encoded chunks.

        The chunks go through the same artifact lookup and finalization as
        a captured recording. Processing runs inline.
        """
        if self.ingress is None:
            raise MeetNotesError("No chunk ingress configured")

        record = self.store.create_meeting(title=title, status=STATUS_PROCESSING, source="import")
        session = Session(session_id=record.id, state=SessionState.PROCESSING)
        for chunk in chunks:
            self.ingress.write_chunk(session.session_id, chunk)
        audio_path = self.ingress.finish(session.session_id)
        session.ended_at = datetime.now()

        self.publisher.publish("processing", session.session_id, source="import")
        self.process_recording(session, str(audio_path) if audio_path else None)
        return session

    def pause(self) -> bool:
        """Pause the session timer. Capture and live transcription keep running."""
        session = self.session
        if session is None or session.state is not SessionState.RECORDING:
            return False
        if session.pause():
            self.publisher.publish("paused", session.session_id)
            return True
        return False

    def resume(self) -> bool:
        session = self.session
        if session is None or session.state is not SessionState.RECORDING:
            return False
        if session.resume():
            self.publisher.publish("resumed", session.session_id)
            return True
        return False

    def get_status(self) -> Dict[str, Any]:
        session = self.session
        if session is None:
            return {
                "is_recording": False,
                "is_paused": False,
                "session_id": None,
                "state": SessionState.IDLE.value,
                "elapsed": 0.0,
            }
        return {
            "is_recording": session.state is SessionState.RECORDING,
            "is_paused": session.is_paused,
            "session_id": session.session_id,
            "state": session.state.value,
            "elapsed": session.elapsed_seconds(),
            "capture_available": session.capture_available,
            "failure_reason": session.failure_reason,
        }
