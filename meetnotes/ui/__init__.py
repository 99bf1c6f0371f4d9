"""Terminal user interface."""

from .recording_screen import RecordingScreen
from .keyboard_input import KeyboardInputHandler

__all__ = ["RecordingScreen", "KeyboardInputHandler"]
