"""MeetNotes - meeting recording with live and final transcription."""

__version__ = "0.1.0"
