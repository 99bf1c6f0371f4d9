"""Unit tests for the RecordingSession state machine."""

import time
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from pubsub import pub

from meetnotes.audio.ingress import ChunkIngress
from meetnotes.errors import CapturePermissionDenied
from meetnotes.models.events import LiveUpdate, LiveUpdateKind
from meetnotes.models.session import SessionState
from meetnotes.models.summary import MeetingSummary
from meetnotes.services.recording_service import (
    REASON_NO_AUDIO,
    REASON_NO_SPEECH,
    REASON_NOT_CONFIGURED,
    RecordingSession,
)
from meetnotes.services.publisher import SESSION_EVENTS_TOPIC
from meetnotes.storage import MeetingStore, STATUS_COMPLETED, STATUS_FAILED, STATUS_RECORDING
from meetnotes.summarization import ChatAPIError, SummarizationEngine
from meetnotes.transcription.final import FinalTranscriptionEngine
from meetnotes.transcription.live import LiveTranscriptionEngine
from tests.conftest import FakeCaptureBackend, ScriptedSpeechBackend, write_wav

SEGMENTS = [(0.0, 2.0, "Welcome everyone"), (65.0, 70.0, "Next item is the budget")]


class StaticSummarizer:
    def __init__(self, summary=None, error=None):
        self.summary = summary
        self.error = error
        self.transcripts = []

    def generate_summary(self, transcript):
        self.transcripts.append(transcript)
        if self.error:
            raise self.error
        return self.summary


def wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


@pytest.fixture
def make_recorder(make_supervisor, media, temp_data_dir):
    """Build a RecordingSession from fakes; processing runs inline by default."""
    def build(capture_backend=None, speech=None, summarizer=None, with_final=True, **kwargs):
        speech = speech if speech is not None else ScriptedSpeechBackend([SEGMENTS])
        supervisor = make_supervisor(capture_backend or FakeCaptureBackend())
        temp_dir = Path(temp_data_dir) / "temp"
        live = LiveTranscriptionEngine(supervisor, speech, media, temp_dir,
                                       poll_interval=1000.0, early_probes=())
        final = None
        if with_final:
            final = FinalTranscriptionEngine(speech, media, temp_dir, sleep=lambda s: None)
        kwargs.setdefault("permission_check", lambda: None)
        kwargs.setdefault("background_processing", False)
        kwargs.setdefault("sleep", lambda s: None)
        return RecordingSession(
            store=MeetingStore(str(Path(temp_data_dir) / "data")),
            capture=supervisor,
            live_engine=live,
            final_engine=final,
            summarizer=summarizer,
            ingress=ChunkIngress(supervisor.recordings_dir, media),
            **kwargs,
        )
    return build


@pytest.mark.unit
class TestRecordingSessionStart:
    """Starting sessions."""

    def test_start_creates_meeting_and_publishes(self, make_recorder, published):
        recorder = make_recorder()

        session = recorder.start(title="Design review")

        record = recorder.store.get_meeting(session.session_id)
        assert record.status == STATUS_RECORDING
        assert record.title == "Design review"
        assert record.source == "recording"
        assert recorder.is_recording
        assert published.types() == ["started"]
        assert published.events[0].metadata["capture_available"] is True
        assert [u.kind for u in published.live_updates] == [LiveUpdateKind.LISTENING]
        recorder.stop()

    def test_start_while_recording_returns_same_session(self, make_recorder, published):
        recorder = make_recorder()
        first = recorder.start()

        second = recorder.start()

        assert second is first
        assert len(recorder.store.list_meetings()) == 1
        assert published.types() == ["started"]
        recorder.stop()

    def test_permission_denied_creates_nothing(self, make_recorder, published):
        def deny():
            raise CapturePermissionDenied("Microphone access denied")

        recorder = make_recorder(permission_check=deny)

        with pytest.raises(CapturePermissionDenied):
            recorder.start()

        assert recorder.store.list_meetings() == []
        assert published.events == []
        assert recorder.session is None

    def test_missing_capture_tools_degrade_to_no_audio(self, make_recorder, published):
        recorder = make_recorder(FakeCaptureBackend(fail_to_launch=True))

        session = recorder.start()
        assert session.capture_available is False
        assert published.events[0].metadata["capture_available"] is False

        recorder.stop()

        assert session.state is SessionState.FAILED
        assert session.failure_reason == REASON_NO_AUDIO
        assert recorder.store.get_meeting(session.session_id).failure_reason == REASON_NO_AUDIO


@pytest.mark.unit
class TestRecordingSessionProcessing:
    """Stopping and finalizing sessions."""

    def test_stop_transcribes_and_completes(self, make_recorder, published):
        recorder = make_recorder()
        session = recorder.start()

        recorder.stop()

        record = recorder.store.get_meeting(session.session_id)
        assert session.state is SessionState.COMPLETED
        assert record.status == STATUS_COMPLETED
        assert record.transcript_lines == ["[00:00] Welcome everyone", "[01:05] Next item is the budget"]
        assert record.transcript == "[00:00] Welcome everyone\n[01:05] Next item is the budget"
        assert record.audio_path == str(recorder.capture.artifact_path(session.session_id))
        assert record.duration is not None
        assert published.types() == ["started", "stopped", "processing", "transcript", "completed"]

    def test_stop_twice_is_harmless(self, make_recorder, published):
        recorder = make_recorder()
        recorder.start()

        first = recorder.stop()
        second = recorder.stop()

        assert second is first
        assert published.types().count("stopped") == 1
        assert published.types().count("completed") == 1

    def test_stop_without_session(self, make_recorder, published):
        assert make_recorder().stop() is None
        assert published.events == []

    def test_no_speech_fails_session(self, make_recorder, published):
        recorder = make_recorder(speech=ScriptedSpeechBackend([""]))
        session = recorder.start()

        recorder.stop()

        assert session.state is SessionState.FAILED
        assert recorder.store.get_meeting(session.session_id).status == STATUS_FAILED
        failed = published.of_type("failed")
        assert [e.reason for e in failed] == [REASON_NO_SPEECH]

    def test_missing_speech_service_fails_session(self, make_recorder, published):
        recorder = make_recorder(with_final=False)
        session = recorder.start()

        recorder.stop()

        assert session.failure_reason == REASON_NOT_CONFIGURED
        assert published.types()[-1] == "failed"

    def test_tiny_recording_counts_as_no_audio(self, make_recorder):
        recorder = make_recorder(FakeCaptureBackend(seconds=0.01))
        session = recorder.start()

        recorder.stop()

        assert session.failure_reason == REASON_NO_AUDIO

    def test_summary_is_stored(self, make_recorder):
        summarizer = StaticSummarizer(MeetingSummary(title="Budget Planning"))
        recorder = make_recorder(summarizer=summarizer)
        session = recorder.start()

        recorder.stop()

        record = recorder.store.get_meeting(session.session_id)
        assert record.title == "Budget Planning"
        assert record.summary["title"] == "Budget Planning"
        assert summarizer.transcripts == ["[00:00] Welcome everyone\n[01:05] Next item is the budget\n"]

    def test_summary_failure_still_completes(self, make_recorder):
        recorder = make_recorder(summarizer=StaticSummarizer(error=RuntimeError("model offline")))
        session = recorder.start(title="Kept title")

        recorder.stop()

        record = recorder.store.get_meeting(session.session_id)
        assert record.status == STATUS_COMPLETED
        assert record.title == "Kept title"
        assert record.summary is None

    def test_placeholder_summary_after_chat_errors(self, make_recorder):
        engine = SummarizationEngine(api_key="key", sleep=lambda s: None)
        recorder = make_recorder(summarizer=engine)
        session = recorder.start()

        with patch.object(engine, "send_prompt", new=AsyncMock(side_effect=ChatAPIError("down", 500))):
            recorder.stop()

        record = recorder.store.get_meeting(session.session_id)
        assert record.status == STATUS_COMPLETED
        assert record.summary["title"] == "Meeting Summary"

    def test_background_processing(self, make_recorder, published):
        settle_waits = []
        recorder = make_recorder(background_processing=True, sleep=settle_waits.append,
                                 processing_settle_seconds=3.0)
        session = recorder.start()

        recorder.stop()

        assert recorder.wait_for_processing(timeout=10)
        assert session.state is SessionState.COMPLETED
        assert settle_waits[0] == 3.0

    def test_capture_exit_stops_session(self, make_recorder, published):
        capture = FakeCaptureBackend()
        recorder = make_recorder(capture)
        session = recorder.start()

        capture.exit(1)

        assert wait_until(lambda: session.state.is_terminal)
        assert session.ended_early
        assert session.state is SessionState.COMPLETED
        assert published.of_type("stopped")[0].metadata["ended_early"] is True

    def test_live_update_is_stored_and_forwarded(self, make_recorder, published):
        recorder = make_recorder()
        session = recorder.start()

        recorder._on_live_update(LiveUpdate.transcript("so far so good", session.session_id))

        assert recorder.store.get_meeting(session.session_id).live_transcript == "so far so good"
        assert published.live_updates[-1].text == "so far so good"
        recorder.stop()


@pytest.mark.unit
class TestRecordingSessionControls:
    """Pause, resume, status and imports."""

    def test_pause_and_resume(self, make_recorder, published):
        recorder = make_recorder()
        recorder.start()

        assert recorder.pause()
        assert not recorder.pause()
        assert recorder.get_status()["is_paused"]
        assert recorder.resume()
        assert not recorder.resume()

        assert published.types() == ["started", "paused", "resumed"]
        recorder.stop()
        assert not recorder.pause()

    def test_status_when_idle(self, make_recorder):
        status = make_recorder().get_status()
        assert status["state"] == "idle"
        assert status["is_recording"] is False

    def test_status_while_recording(self, make_recorder):
        recorder = make_recorder()
        session = recorder.start()

        status = recorder.get_status()

        assert status["session_id"] == session.session_id
        assert status["state"] == "recording"
        assert status["elapsed"] >= 0.0
        recorder.stop()

    def test_import_audio(self, make_recorder, published, temp_data_dir):
        recorder = make_recorder()
        source = write_wav(Path(temp_data_dir) / "upload.wav", 2.0).read_bytes()
        chunks = [source[i:i + 4096] for i in range(0, len(source), 4096)]

        session = recorder.import_audio(chunks, title="Uploaded call")

        record = recorder.store.get_meeting(session.session_id)
        assert record.source == "import"
        assert record.status == STATUS_COMPLETED
        assert record.audio_path.endswith(f"{session.session_id}.wav")
        assert published.types() == ["processing", "transcript", "completed"]


@pytest.mark.unit
class TestRecordingSessionFromConfig:
    """Wiring from configuration."""

    def test_without_credentials(self, config):
        recorder = RecordingSession.from_config(config, permission_check=lambda: None)

        assert recorder.final_engine is None
        assert recorder.live_engine.backend is None
        assert recorder.capture.recordings_dir == config.get_recordings_directory()
        assert recorder.store.data_dir == Path(config.get_data_directory())

    def test_with_api_key(self, config):
        config.set("speech.api_key", "test-key")
        config.set("summary.enabled", False)

        recorder = RecordingSession.from_config(config, permission_check=lambda: None)

        assert recorder.final_engine is not None
        assert recorder.final_engine.backend is recorder.live_engine.backend
        assert recorder.summarizer is None


class RaisingListener:
    """Session event listener that blows up on one event type."""

    def __init__(self, event_type):
        self.event_type = event_type
        self.calls = 0

    def on_event(self, event):
        if event.event_type == self.event_type:
            self.calls += 1
            raise RuntimeError("listener bug")


@pytest.mark.unit
class TestRecordingSessionResilience:
    """A session always reaches Completed or Failed."""

    @pytest.mark.parametrize("event_type", ["stopped", "processing", "transcript", "completed"])
    def test_raising_listener_does_not_strand_session(self, make_recorder, event_type):
        listener = RaisingListener(event_type)
        pub.subscribe(listener.on_event, SESSION_EVENTS_TOPIC)
        try:
            recorder = make_recorder()
            first = recorder.start()

            recorder.stop()
            second = recorder.start()
        finally:
            pub.unsubscribe(listener.on_event, SESSION_EVENTS_TOPIC)

        assert listener.calls >= 1
        assert first.state is SessionState.COMPLETED
        assert first.finished.is_set()
        assert second is not first
        assert second.state is SessionState.RECORDING
        recorder.stop()

    def test_store_failure_after_transcription_fails_session(self, make_recorder, published):
        recorder = make_recorder()
        session = recorder.start()

        with patch.object(recorder.store, "append_transcript_line", side_effect=OSError("disk full")):
            recorder.stop()

        assert session.state is SessionState.FAILED
        assert session.failure_reason == "unexpected error: disk full"
        assert published.types()[-1] == "failed"

    def test_store_failure_while_stopping(self, make_recorder):
        recorder = make_recorder()
        session = recorder.start()
        real_update = recorder.store.update_meeting

        def flaky_update(meeting_id, **changes):
            if changes.get("status") == "processing":
                raise OSError("disk full")
            return real_update(meeting_id, **changes)

        with patch.object(recorder.store, "update_meeting", side_effect=flaky_update):
            recorder.stop()

        assert session.state is SessionState.COMPLETED
        assert recorder.store.get_meeting(session.session_id).status == STATUS_COMPLETED

    def test_settle_failure_still_ends_session(self, make_recorder):
        def broken_sleep(seconds):
            raise RuntimeError("interrupted")

        recorder = make_recorder(background_processing=True, sleep=broken_sleep)
        session = recorder.start()

        recorder.stop()

        assert recorder.wait_for_processing(timeout=5)
        assert session.state is SessionState.FAILED
        assert session.failure_reason == "processing interrupted"

    def test_wait_covers_stop_started_by_capture_exit(self, make_recorder):
        capture = FakeCaptureBackend()
        recorder = make_recorder(capture, background_processing=True)
        real_stop = recorder.capture.stop

        def slow_stop(session_id):
            time.sleep(0.3)
            return real_stop(session_id)

        recorder.capture.stop = slow_stop
        session = recorder.start()
        capture.exit(1)
        assert wait_until(lambda: session.state is not SessionState.RECORDING)

        recorder.stop()
        assert recorder.wait_for_processing(timeout=5)

        assert session.state.is_terminal
        assert recorder.store.get_meeting(session.session_id).status == STATUS_COMPLETED

    def test_wait_returns_when_idle_or_recording(self, make_recorder):
        recorder = make_recorder()
        assert recorder.wait_for_processing(timeout=0)

        recorder.start()
        assert recorder.wait_for_processing(timeout=0)
        recorder.stop()
