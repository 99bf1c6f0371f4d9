"""JSON-file storage for meeting records."""

import json
import logging
import os
import threading
import uuid
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

STATUS_RECORDING = "recording"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"


def _now_iso() -> str:
    return datetime.now().isoformat()


@dataclass
class MeetingRecord:
    """One stored meeting."""
    id: str
    title: str = "Untitled Meeting"
    date: str = field(default_factory=_now_iso)
    duration: Optional[float] = None
    transcript: Optional[str] = None
    transcript_lines: List[str] = field(default_factory=list)
    live_transcript: Optional[str] = None
    summary: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None
    audio_path: Optional[str] = None
    status: str = STATUS_RECORDING
    source: str = "manual"
    failure_reason: Optional[str] = None
    order: int = 0
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MeetingRecord":
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})


UPDATABLE_FIELDS = {f.name for f in fields(MeetingRecord)} - {"id", "created_at", "updated_at"}


class MeetingStore:
    """Stores meeting records in ``{data_dir}/meetings.json``.

    Every call reads the file, so several processes see each other's
    writes; concurrent updates to one meeting are last-write-wins.
    """

    def __init__(self, data_dir: str = "./data"):
        """Initialize the store.

        Args:
            data_dir: Base directory for storing all data
        """
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.meetings_file = self.data_dir / "meetings.json"
        self._lock = threading.RLock()

        logger.info(f"MeetingStore initialized with data_dir: {self.data_dir}")

    def _read(self) -> Dict[str, Dict[str, Any]]:
        if not self.meetings_file.exists():
            return {}
        try:
            with open(self.meetings_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Meetings file is corrupt, refusing to overwrite: {e}")
            raise
        return data.get("meetings", {})

    def _write(self, meetings: Dict[str, Dict[str, Any]]) -> None:
        tmp_path = self.meetings_file.with_suffix(".json.tmp")
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump({"meetings": meetings}, f, indent=2)
        os.replace(tmp_path, self.meetings_file)

    def create_meeting(self, title: Optional[str] = None, status: str = STATUS_RECORDING,
                       source: str = "manual", date: Optional[str] = None,
                       meeting_id: Optional[str] = None) -> MeetingRecord:
        """Create and persist a new meeting.

        Args:
            title: Meeting title, "Untitled Meeting" when omitted
            status: Initial status
            source: Where the meeting came from
            date: ISO timestamp of the meeting, now when omitted
            meeting_id: Explicit id; a fresh uuid4 when omitted

        Returns:
            The stored MeetingRecord
        """
        with self._lock:
            meetings = self._read()
            max_order = max((m.get("order") or 0 for m in meetings.values()), default=0)
            record = MeetingRecord(
                id=meeting_id or str(uuid.uuid4()),
                title=title or "Untitled Meeting",
                date=date or _now_iso(),
                status=status,
                source=source,
                order=max_order + 1,
            )
            meetings[record.id] = record.to_dict()
            self._write(meetings)

        logger.info(f"Created meeting {record.id} ({record.title})")
        return record

    def get_meeting(self, meeting_id: str) -> Optional[MeetingRecord]:
        with self._lock:
            data = self._read().get(meeting_id)
        return MeetingRecord.from_dict(data) if data else None

    def list_meetings(self) -> List[MeetingRecord]:
        """All meetings, highest ``order`` first."""
        with self._lock:
            meetings = self._read()
        records = [MeetingRecord.from_dict(m) for m in meetings.values()]
        records.sort(key=lambda r: r.order, reverse=True)
        return records

    def update_meeting(self, meeting_id: str, **changes: Any) -> Optional[MeetingRecord]:
        """Apply ``changes`` to a meeting. Returns None for an unknown id."""
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown meeting fields: {', '.join(sorted(unknown))}")

        with self._lock:
            meetings = self._read()
            data = meetings.get(meeting_id)
            if data is None:
                logger.warning(f"Update for unknown meeting: {meeting_id}")
                return None
            data.update(changes)
            data["updated_at"] = _now_iso()
            meetings[meeting_id] = data
            self._write(meetings)

        logger.debug(f"Updated meeting {meeting_id}: {', '.join(sorted(changes))}")
        return MeetingRecord.from_dict(data)

    def append_transcript_line(self, meeting_id: str, text: str) -> Optional[MeetingRecord]:
        """Append one final transcript line and refresh the joined transcript."""
        with self._lock:
            record = self.get_meeting(meeting_id)
            if record is None:
                return None
            lines = record.transcript_lines + [text]
            return self.update_meeting(meeting_id, transcript_lines=lines, transcript="\n".join(lines))

    def delete_meeting(self, meeting_id: str) -> Optional[MeetingRecord]:
        with self._lock:
            meetings = self._read()
            data = meetings.pop(meeting_id, None)
            if data is not None:
                self._write(meetings)
                logger.info(f"Deleted meeting {meeting_id}")
        return MeetingRecord.from_dict(data) if data else None

    def reorder_meetings(self, ordered_ids: List[str]) -> List[MeetingRecord]:
        """Give ``ordered_ids`` descending order values, first id on top."""
        with self._lock:
            meetings = self._read()
            for index, meeting_id in enumerate(ordered_ids):
                if meeting_id in meetings:
                    meetings[meeting_id]["order"] = len(ordered_ids) - index
            self._write(meetings)
        return self.list_meetings()

    def search_meetings(self, query: str) -> List[MeetingRecord]:
        """Meetings whose title or transcript contains ``query``, case-insensitively."""
        term = query.lower()
        return [r for r in self.list_meetings()
                if term in r.title.lower() or (r.transcript and term in r.transcript.lower())]
