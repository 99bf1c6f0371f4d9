"""Whisper transcription over an OpenAI-compatible HTTP API (Groq by default)."""

import asyncio
import json
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiohttp

from .base import AbstractSpeechBackend
from ..errors import (
    SpeechServiceAuthError,
    SpeechServiceNotConfigured,
    SpeechServiceRateLimited,
    SpeechServiceSizeLimitExceeded,
    SpeechServiceTransient,
)
from ..models.transcription import TranscriptionResult, TranscriptSegment

logger = logging.getLogger(__name__)


def raise_for_status(status: int, body: str, service: str) -> None:
    """Translate a non-2xx response into the speech service error taxonomy."""
    if 200 <= status < 300:
        return
    detail = body[:300]
    if status in (401, 403) or "invalid api" in body.lower():
        raise SpeechServiceAuthError(f"{service} rejected the API key: {status} - {detail}", status)
    if status == 413:
        raise SpeechServiceSizeLimitExceeded(f"{service} request too large: {detail}", status)
    if status == 429:
        raise SpeechServiceRateLimited(f"{service} rate limit: {detail}", status)
    raise SpeechServiceTransient(f"{service} error: {status} - {detail}", status)


class WhisperAPIBackend(AbstractSpeechBackend):
    """Sends audio files to ``{base_url}/audio/transcriptions``."""

    service_name = "Whisper API"
    max_request_bytes = 25 * 1024 * 1024

    def __init__(self,
                 api_key: Optional[str],
                 base_url: str = "https://api.groq.com/openai/v1",
                 model: str = "whisper-large-v3",
                 language: str = "en",
                 request_timeout: float = 120.0):
        """Initialize the Whisper API backend.

        Args:
            api_key: Bearer token for the service
            base_url: API root, without the ``/audio/transcriptions`` suffix
            model: Whisper model name
            language: Language hint sent with every request
            request_timeout: Total timeout per HTTP request in seconds
        """
        super().__init__(language)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.request_timeout = request_timeout

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/audio/transcriptions"

    def initialize(self) -> bool:
        if not self.api_key:
            logger.warning("Whisper API backend has no API key")
            return False
        logger.info(f"Whisper API backend ready: {self.endpoint} ({self.model})")
        return True

    def transcribe_file(self, chunk_id: str, audio_path: Path, with_segments: bool = False) -> TranscriptionResult:
        if not self.api_key:
            raise SpeechServiceNotConfigured("Speech API key not configured")

        start_time = time.time()
        audio_path = Path(audio_path)
        audio_bytes = audio_path.read_bytes()
        logger.debug(f"Chunk ID: {chunk_id}; file: {audio_path.name}; size: {len(audio_bytes)} bytes; "
                     f"segments: {with_segments}")

        payload = asyncio.run(self._post(audio_bytes, audio_path.name, with_segments))
        processing_time = time.time() - start_time

        text = (payload.get("text") or "").strip()
        segments = self._parse_segments(payload.get("segments")) if with_segments else []

        logger.debug(f"Transcribed {chunk_id} in {processing_time:.2f}s: {len(text)} chars, "
                     f"{len(segments)} segments")
        return TranscriptionResult(
            text=text,
            processing_time=processing_time,
            timestamp=datetime.now(),
            service=self.service_name,
            language=self.language,
            chunk_id=chunk_id,
            segments=segments,
        )

    async def _post(self, audio_bytes: bytes, filename: str, with_segments: bool) -> Dict[str, Any]:
        form = aiohttp.FormData()
        form.add_field("file", audio_bytes, filename=filename, content_type="application/octet-stream")
        form.add_field("model", self.model)
        form.add_field("language", self.language)
        if with_segments:
            form.add_field("response_format", "verbose_json")
        else:
            form.add_field("response_format", "text")
            form.add_field("temperature", "0")

        headers = {"Authorization": f"Bearer {self.api_key}"}
        timeout = aiohttp.ClientTimeout(total=self.request_timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.endpoint, headers=headers, data=form) as response:
                    body = await response.text()
                    raise_for_status(response.status, body, self.service_name)
                    if with_segments:
                        return json.loads(body)
                    return {"text": body}
        except aiohttp.ClientError as e:
            raise SpeechServiceTransient(f"{self.service_name} connection error: {e}") from e
        except asyncio.TimeoutError as e:
            raise SpeechServiceTransient(f"{self.service_name} timed out after {self.request_timeout}s") from e
        except ValueError as e:
            raise SpeechServiceTransient(f"{self.service_name} returned malformed JSON: {e}") from e

    @staticmethod
    def _parse_segments(raw_segments: Any) -> List[TranscriptSegment]:
        segments = []
        for raw in raw_segments or []:
            text = (raw.get("text") or "").strip()
            if not text:
                continue
            start = float(raw.get("start", 0.0))
            segments.append(TranscriptSegment(start=start, end=float(raw.get("end", start)), text=text))
        return segments
