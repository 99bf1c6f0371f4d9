"""Builds the configured speech backend."""

import logging
from typing import Optional

from .base import AbstractSpeechBackend
from .google_backend import GoogleSpeechBackend
from .whisper_backend import WhisperAPIBackend

logger = logging.getLogger(__name__)


def create_speech_backend(config) -> Optional[AbstractSpeechBackend]:
    """Create the backend named by ``speech.provider``.

    Returns None when the provider has no credential configured; callers
    treat that as "speech service not configured".
    """
    provider = (config.get('speech.provider') or 'whisper').lower()

    if provider == 'google':
        credentials_path = config.get_google_credentials_path()
        if not credentials_path:
            logger.warning("Google provider selected but google_cloud.credentials_path is not set")
            return None
        return GoogleSpeechBackend(
            credentials_path=credentials_path,
            language=config.get('google_cloud.language', 'en-US'),
            use_enhanced=config.get('google_cloud.use_enhanced_model', True),
            enable_automatic_punctuation=config.get('google_cloud.enable_automatic_punctuation', True),
        )

    if provider == 'whisper':
        api_key = config.get_speech_api_key()
        if not api_key:
            logger.warning(f"No speech API key (set speech.api_key or ${config.get('speech.api_key_env')})")
            return None
        return WhisperAPIBackend(
            api_key=api_key,
            base_url=config.get('speech.base_url'),
            model=config.get('speech.model', 'whisper-large-v3'),
            language=config.get('speech.language', 'en'),
            request_timeout=config.get('speech.request_timeout_seconds', 120.0),
        )

    raise ValueError(f"Unknown speech provider: {provider}")
