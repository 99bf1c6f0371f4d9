"""Transcription-related data models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


def format_timestamp(seconds: float) -> str:
    """Format seconds as ``mm:ss``; minutes keep growing past an hour."""
    total = int(max(0.0, seconds))
    return f"{total // 60:02d}:{total % 60:02d}"


@dataclass
class TranscriptSegment:
    """A timed piece of text returned by a speech service."""
    start: float
    end: float
    text: str

    def shifted(self, offset: float) -> "TranscriptSegment":
        return TranscriptSegment(start=self.start + offset, end=self.end + offset, text=self.text)


@dataclass
class TranscriptionResult:
    """Result of a transcription operation."""
    text: str
    processing_time: float
    timestamp: datetime
    service: str
    language: str = "en"
    confidence: Optional[float] = None
    chunk_id: Optional[str] = None
    segments: List[TranscriptSegment] = field(default_factory=list)
    audio_start_time: Optional[float] = None  # Offset within the artifact (seconds)
    audio_end_time: Optional[float] = None
    transcription_mode: str = "live"          # "live" | "final"


@dataclass
class TranscriptLine:
    """One line of a final transcript."""
    timestamp: Optional[float]
    text: str

    def format(self) -> str:
        if self.timestamp is None:
            return self.text
        return f"[{format_timestamp(self.timestamp)}] {self.text}"


@dataclass
class FinalTranscript:
    """The complete transcript assembled after recording ends."""
    lines: List[TranscriptLine] = field(default_factory=list)
    chunk_count: int = 1
    skipped_chunks: List[int] = field(default_factory=list)

    @property
    def text(self) -> str:
        rendered = [line.format() for line in self.lines]
        if all(line.timestamp is not None for line in self.lines):
            return "".join(f"{line}\n" for line in rendered)
        return "\n".join(rendered)

    def __str__(self) -> str:
        return self.text
