"""Unit tests for MeetingStore."""

import json
import threading

import pytest

from meetnotes.storage import MeetingStore, STATUS_COMPLETED, STATUS_RECORDING


@pytest.mark.unit
class TestMeetingStore:
    """Test cases for MeetingStore."""

    def test_create_assigns_id_and_order(self, temp_data_dir):
        store = MeetingStore(temp_data_dir)

        first = store.create_meeting(title="Standup")
        second = store.create_meeting()

        assert first.id != second.id
        assert first.status == STATUS_RECORDING
        assert second.title == "Untitled Meeting"
        assert (first.order, second.order) == (1, 2)
        assert [m.id for m in store.list_meetings()] == [second.id, first.id]

    def test_records_survive_reopen(self, temp_data_dir):
        record = MeetingStore(temp_data_dir).create_meeting(title="Retro")

        reopened = MeetingStore(temp_data_dir)

        assert reopened.get_meeting(record.id).title == "Retro"
        data = json.loads((reopened.meetings_file).read_text())
        assert record.id in data["meetings"]

    def test_update_is_partial(self, temp_data_dir):
        store = MeetingStore(temp_data_dir)
        record = store.create_meeting(title="Planning")

        updated = store.update_meeting(record.id, status=STATUS_COMPLETED, duration=61.5)

        assert updated.status == STATUS_COMPLETED
        assert updated.duration == 61.5
        assert updated.title == "Planning"
        assert updated.updated_at >= record.updated_at

    def test_update_unknown_meeting(self, temp_data_dir):
        assert MeetingStore(temp_data_dir).update_meeting("missing", status="failed") is None

    def test_update_rejects_unknown_fields(self, temp_data_dir):
        store = MeetingStore(temp_data_dir)
        record = store.create_meeting()
        with pytest.raises(ValueError):
            store.update_meeting(record.id, colour="blue")

    def test_append_transcript_line(self, temp_data_dir):
        store = MeetingStore(temp_data_dir)
        record = store.create_meeting()

        store.append_transcript_line(record.id, "[00:00] Hello")
        updated = store.append_transcript_line(record.id, "[00:04] World")

        assert updated.transcript_lines == ["[00:00] Hello", "[00:04] World"]
        assert updated.transcript == "[00:00] Hello\n[00:04] World"

    def test_concurrent_updates_do_not_lose_records(self, temp_data_dir):
        store = MeetingStore(temp_data_dir)
        record = store.create_meeting()

        def append(n):
            store.append_transcript_line(record.id, f"line {n}")

        threads = [threading.Thread(target=append, args=(n,)) for n in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(store.get_meeting(record.id).transcript_lines) == 10

    def test_delete_reorder_and_search(self, temp_data_dir):
        store = MeetingStore(temp_data_dir)
        a = store.create_meeting(title="Budget review")
        b = store.create_meeting(title="Hiring sync")
        store.update_meeting(a.id, transcript="we discussed the Q3 forecast")

        assert [m.id for m in store.reorder_meetings([a.id, b.id])] == [a.id, b.id]
        assert [m.id for m in store.search_meetings("forecast")] == [a.id]
        assert [m.id for m in store.search_meetings("HIRING")] == [b.id]

        assert store.delete_meeting(a.id).id == a.id
        assert store.get_meeting(a.id) is None
        assert store.delete_meeting(a.id) is None
