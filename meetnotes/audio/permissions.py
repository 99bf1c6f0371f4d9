"""Microphone availability check."""

import logging

import pyaudio

from ..errors import CapturePermissionDenied

logger = logging.getLogger(__name__)


def check_microphone_permission() -> None:
    """Raise CapturePermissionDenied unless a default input device can be queried.

    On macOS the query itself triggers the system permission prompt the
    first time; a refusal surfaces as an error from PortAudio.
    """
    pyaudio_instance = None
    try:
        pyaudio_instance = pyaudio.PyAudio()
        device = pyaudio_instance.get_default_input_device_info()
        if int(device.get("maxInputChannels", 0)) < 1:
            raise CapturePermissionDenied(f"Default input device has no channels: {device.get('name')}")
        logger.debug(f"Default microphone: {device.get('name')}")
    except (IOError, OSError) as e:
        raise CapturePermissionDenied(f"Microphone not available: {e}") from e
    finally:
        if pyaudio_instance is not None:
            pyaudio_instance.terminate()
