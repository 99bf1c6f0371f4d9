"""Unit tests for meeting detection and automatic recording."""

import subprocess
import time
from types import SimpleNamespace

import pytest
from pubsub import pub

from meetnotes.errors import CapturePermissionDenied
from meetnotes.models.events import MeetingEvent
from meetnotes.services.meeting_detector import (
    DEFAULT_MEETING_TITLE,
    AutoRecorder,
    MeetingDetector,
    MeetingInfo,
    parse_zoom_windows,
    query_zoom_meeting,
)


class FakeRecorder:
    """Stands in for RecordingSession with the calls AutoRecorder makes."""

    def __init__(self, fail_with=None):
        self.fail_with = fail_with
        self.session = None
        self.started_titles = []
        self.stops = 0

    @property
    def is_recording(self):
        return self.session is not None and self.session.recording

    def start(self, title=None):
        if self.fail_with:
            raise self.fail_with
        self.started_titles.append(title)
        self.session = SimpleNamespace(session_id=f"s{len(self.started_titles)}", recording=True)
        return self.session

    def stop(self):
        self.stops += 1
        self.session.recording = False
        return self.session


class EventCollector:
    def __init__(self):
        self.events = []

    def on_event(self, event):
        self.events.append(event)


def completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


@pytest.mark.unit
class TestParseZoomWindows:
    """Recognising a meeting from window names."""

    @pytest.mark.parametrize("windows", [
        "Zoom Meeting, Zoom",
        "Weekly sync, 5 Participants",
        "Standup, 1 Participant",
        "zoom share toolbar",
        "Meeting Controls",
    ])
    def test_meeting_windows(self, windows):
        assert parse_zoom_windows(windows) is not None

    @pytest.mark.parametrize("windows", ["", "  ", "Zoom, Settings", "Zoom Workplace"])
    def test_no_meeting(self, windows):
        assert parse_zoom_windows(windows) is None

    def test_title_from_first_window(self):
        info = parse_zoom_windows("Weekly sync, 5 Participants")
        assert info.title == "Weekly sync"
        assert info.source == "zoom"

    def test_generic_window_gets_default_title(self):
        assert parse_zoom_windows("Zoom Meeting, 3 Participants").title == DEFAULT_MEETING_TITLE


@pytest.mark.unit
class TestQueryZoomMeeting:
    """Asking the operating system about Zoom."""

    def test_zoom_not_running(self):
        calls = []

        def run(cmd, **kwargs):
            calls.append(cmd)
            return completed(returncode=1)

        assert query_zoom_meeting(run=run) is None
        assert calls == [["pgrep", "-x", "zoom.us"]]

    def test_meeting_open(self):
        outputs = iter([completed(stdout="4242\n"), completed(stdout="Design review, 4 Participants\n")])

        info = query_zoom_meeting(run=lambda cmd, **kwargs: next(outputs))

        assert info.title == "Design review"

    def test_window_query_failure_means_no_meeting(self):
        outputs = iter([completed(stdout="4242\n"), completed(returncode=1, stderr="not allowed")])

        assert query_zoom_meeting(run=lambda cmd, **kwargs: next(outputs)) is None

    @pytest.mark.parametrize("error", [FileNotFoundError("pgrep"), subprocess.TimeoutExpired("pgrep", 5)])
    def test_query_errors_mean_no_meeting(self, error):
        def run(cmd, **kwargs):
            raise error

        assert query_zoom_meeting(run=run) is None

    def test_timeout_passed_through(self):
        seen = []

        def run(cmd, **kwargs):
            seen.append(kwargs["timeout"])
            return completed(returncode=1)

        query_zoom_meeting(run=run, timeout=1.5)
        assert seen == [1.5]


@pytest.mark.unit
class TestMeetingDetector:
    """Publishing meeting transitions."""

    @pytest.fixture
    def collector(self):
        collector = EventCollector()
        pub.subscribe(collector.on_event, "test_meetings")
        yield collector
        pub.unsubscribe(collector.on_event, "test_meetings")

    def test_publishes_start_and_end_once(self, collector):
        results = iter([None, MeetingInfo("Sync"), MeetingInfo("Sync"), None, None])
        detector = MeetingDetector(query=lambda: next(results), topic="test_meetings")

        for _ in range(5):
            detector.check_once()

        assert [e.event_type for e in collector.events] == ["meeting_started", "meeting_ended"]
        assert all(e.title == "Sync" for e in collector.events)
        assert detector.current is None

    def test_raising_listener_does_not_stop_detection(self):
        def broken(event):
            raise RuntimeError("listener bug")

        pub.subscribe(broken, "test_broken_meetings")
        try:
            detector = MeetingDetector(query=lambda: MeetingInfo("Sync"), topic="test_broken_meetings")
            event = detector.check_once()
        finally:
            pub.unsubscribe(broken, "test_broken_meetings")

        assert event.event_type == "meeting_started"
        assert detector.current is not None

    def test_background_polling(self, collector):
        calls = []

        def query():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("flaky")
            return MeetingInfo("Sync") if len(calls) < 4 else None

        detector = MeetingDetector(query=query, interval=0.01, topic="test_meetings")
        detector.start()
        try:
            deadline = time.time() + 2.0
            while len(collector.events) < 2 and time.time() < deadline:
                time.sleep(0.01)
        finally:
            detector.stop()

        assert [e.event_type for e in collector.events] == ["meeting_started", "meeting_ended"]
        assert not detector.is_running

    def test_from_config(self, config):
        config.set('detection.poll_interval_seconds', 7.0)

        detector = MeetingDetector.from_config(config)

        assert detector.interval == 7.0


@pytest.mark.unit
class TestAutoRecorder:
    """Starting and stopping recordings from meeting events."""

    def started(self, title="Sync"):
        return MeetingEvent(event_type="meeting_started", title=title)

    def ended(self, title="Sync"):
        return MeetingEvent(event_type="meeting_ended", title=title)

    def test_records_meeting_with_its_title(self):
        recorder = FakeRecorder()
        auto = AutoRecorder(recorder)

        auto.on_meeting_event(self.started("Design review"))
        auto.on_meeting_event(self.ended("Design review"))

        assert recorder.started_titles == ["Design review"]
        assert recorder.stops == 1
        assert auto.session_ids == ["s1"]

    def test_declined_meeting_is_not_recorded(self):
        recorder = FakeRecorder()
        auto = AutoRecorder(recorder, confirm=lambda event: False)

        auto.on_meeting_event(self.started())
        auto.on_meeting_event(self.ended())

        assert recorder.started_titles == []
        assert recorder.stops == 0

    def test_existing_recording_left_alone(self):
        recorder = FakeRecorder()
        recorder.start(title="Manual")
        auto = AutoRecorder(recorder)

        auto.on_meeting_event(self.started())
        auto.on_meeting_event(self.ended())

        assert recorder.started_titles == ["Manual"]
        assert recorder.stops == 0
        assert recorder.is_recording

    def test_start_failure_is_logged(self):
        recorder = FakeRecorder(fail_with=CapturePermissionDenied("no microphone"))
        auto = AutoRecorder(recorder)

        auto.on_meeting_event(self.started())
        auto.on_meeting_event(self.ended())

        assert auto.session_ids == []

    def test_attached_to_detector(self):
        recorder = FakeRecorder()
        auto = AutoRecorder(recorder, topic="test_auto_meetings")
        results = iter([MeetingInfo("Planning"), None])
        detector = MeetingDetector(query=lambda: next(results), topic="test_auto_meetings")

        auto.attach()
        try:
            detector.check_once()
            detector.check_once()
        finally:
            auto.detach()

        assert recorder.started_titles == ["Planning"]
        assert recorder.stops == 1
