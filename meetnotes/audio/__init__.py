"""Audio capture and media handling."""

from .capture import (
    CaptureBackend,
    SubprocessCaptureBackend,
    FFmpegCaptureBackend,
    SoxCaptureBackend,
    CaptureSupervisor,
)
from .media import MediaTools, wav_duration, remove_quietly
from .ingress import ChunkIngress

__all__ = [
    'CaptureBackend',
    'SubprocessCaptureBackend',
    'FFmpegCaptureBackend',
    'SoxCaptureBackend',
    'CaptureSupervisor',
    'MediaTools',
    'wav_duration',
    'remove_quietly',
    'ChunkIngress',
]
