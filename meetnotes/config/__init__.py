"""Simple YAML configuration loader for MeetNotes."""

import copy
import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
import logging

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "meetnotes.yaml"

DEFAULT_CONFIG: Dict[str, Any] = {
    "storage": {
        "data_directory": "data",
    },
    "logging": {
        "level": "INFO",
        "file_path": "data/logs/meetnotes.log",
        "console_output": True,
    },
    "capture": {
        "extension": "wav",
        "sample_rate": 44100,
        "ffmpeg_path": "ffmpeg",
        "ffprobe_path": "ffprobe",
        "sox_path": "rec",
        "input_format": None,   # platform default when None
        "input_device": None,   # platform default when None
        "snapshot_min_bytes": 10000,
        "snapshot_timeout_seconds": 5.0,
        "stop_grace_seconds": 0.5,
        "stop_settle_seconds": 1.0,
        "stop_timeout_seconds": 5.0,
        "final_min_bytes": 1000,
    },
    "speech": {
        "provider": "whisper",
        "api_key": None,
        "api_key_env": "GROQ_API_KEY",
        "base_url": "https://api.groq.com/openai/v1",
        "model": "whisper-large-v3",
        "language": "en",
        "request_timeout_seconds": 120.0,
    },
    "google_cloud": {
        "credentials_path": None,
        "language": "en-US",
        "use_enhanced_model": True,
        "enable_automatic_punctuation": True,
    },
    "live": {
        "poll_interval_seconds": 12.0,
        "early_probe_seconds": [5.0, 10.0],
        "min_delta_seconds": 5.0,
        "min_artifact_bytes": 32000,
        "min_chunk_bytes": 8000,
    },
    "final": {
        "max_request_bytes": 25 * 1024 * 1024,
        "chunk_duration_seconds": 600,
        "max_attempts": 3,
        "backoff_seconds": 2.0,
        "rate_limit_backoff_seconds": 5.0,
        "min_transcript_chars": 10,
        "extract_timeout_seconds": 30.0,
        "probe_timeout_seconds": 5.0,
        "max_workers": 1,
    },
    "session": {
        "processing_settle_seconds": 3.0,
        "artifact_retry_wait_seconds": 2.0,
    },
    "summary": {
        "enabled": True,
        "api_key": None,   # falls back to the speech API key
        "base_url": "https://api.groq.com/openai/v1",
        "model": "llama-3.3-70b-versatile",
        "temperature": 0.3,
        "max_tokens": 4000,
        "max_attempts": 3,
        "backoff_seconds": 1.5,
        "rate_limit_backoff_seconds": 3.0,
    },
    "detection": {
        "poll_interval_seconds": 3.0,
        "query_timeout_seconds": 5.0,
    },
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def find_config_file(start: Optional[Path] = None) -> Optional[Path]:
    """Look for meetnotes.yaml in ``start`` and its parent directories."""
    directory = (start or Path.cwd()).resolve()
    for candidate_dir in [directory, *directory.parents]:
        candidate = candidate_dir / CONFIG_FILENAME
        if candidate.exists():
            return candidate
    return None


class MeetNotesConfig:
    """MeetNotes configuration loader."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration loader.

        Args:
            config_path: Path to YAML config file. If None, looks for meetnotes.yaml
                        in current directory and parent directories, falling back
                        to built-in defaults when none is found.
        """
        if config_path is None:
            found = find_config_file()
            if found is None:
                logger.info("No configuration file found, using defaults")
                self.config_file = None
                self.config = copy.deepcopy(DEFAULT_CONFIG)
                self._resolve_paths(self.config, Path.cwd())
                return
            config_path = str(found)

        self.config_file = Path(config_path)

        if not self.config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_file}")

        logger.info(f"Loading configuration from: {self.config_file}")
        self.config = self._load_config()

    @classmethod
    def from_dict(cls, values: Dict[str, Any], base_dir: Optional[str] = None) -> "MeetNotesConfig":
        """Build a configuration from an in-memory mapping merged over the defaults."""
        instance = cls.__new__(cls)
        instance.config_file = None
        instance.config = _deep_merge(DEFAULT_CONFIG, values or {})
        instance._resolve_paths(instance.config, Path(base_dir) if base_dir else Path.cwd())
        return instance

    def _load_config(self) -> Dict[str, Any]:
        """Load and parse YAML configuration file."""
        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file: {e}")

        if not loaded:
            raise ValueError("Configuration file is empty")
        if not isinstance(loaded, dict):
            raise ValueError("Configuration file must contain a mapping at the top level")

        config = _deep_merge(DEFAULT_CONFIG, loaded)
        self._resolve_paths(config, self.config_file.parent)

        logger.info("Configuration loaded successfully")
        return config

    def _resolve_paths(self, config: Dict[str, Any], config_dir: Path) -> None:
        """Resolve relative paths in configuration relative to config file location."""
        for section, key in (("storage", "data_directory"),
                             ("logging", "file_path"),
                             ("google_cloud", "credentials_path")):
            value = config.get(section, {}).get(key)
            if value and not os.path.isabs(value):
                config[section][key] = str(config_dir / value)

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'live.poll_interval_seconds').

        Args:
            key_path: Dot-separated key path
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        keys = key_path.split('.')
        value = self.config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    def set(self, key_path: str, value: Any) -> None:
        """Set configuration value using dot notation."""
        keys = key_path.split('.')
        config_dict = self.config

        for key in keys[:-1]:
            if key not in config_dict:
                config_dict[key] = {}
            config_dict = config_dict[key]

        config_dict[keys[-1]] = value
        logger.debug(f"Configuration key '{key_path}' set to: {value}")

    def get_speech_api_key(self) -> Optional[str]:
        """Return the speech API key from the file or the configured environment variable."""
        api_key = self.get('speech.api_key')
        if api_key:
            return api_key
        env_name = self.get('speech.api_key_env')
        if env_name:
            return os.environ.get(env_name) or None
        return None

    def get_summary_api_key(self) -> Optional[str]:
        """Return the chat API key, reusing the speech key when none is set."""
        return self.get('summary.api_key') or self.get_speech_api_key()

    def get_google_credentials_path(self) -> Optional[str]:
        """Get Google credentials path, or None when not configured."""
        creds_path = self.get('google_cloud.credentials_path')
        if not creds_path:
            return None

        creds_file = Path(creds_path)
        if not creds_file.exists():
            raise FileNotFoundError(f"Google credentials file not found: {creds_path}")

        return str(creds_file.absolute())

    def get_data_directory(self) -> str:
        """Get data directory path."""
        data_dir = self.get('storage.data_directory', 'data')
        return str(Path(data_dir).absolute())

    def get_recordings_directory(self) -> Path:
        return Path(self.get_data_directory()) / "recordings"

    def get_chunks_directory(self) -> Path:
        return Path(self.get_data_directory()) / "chunks"

    def get_temp_directory(self) -> Path:
        return Path(self.get_data_directory()) / "temp"


def write_default_config(path: str) -> Path:
    """Write the default configuration to ``path`` as YAML."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    with open(target, 'w', encoding='utf-8') as f:
        f.write("# MeetNotes configuration\n")
        f.write("# Set speech.api_key here or export the variable named in speech.api_key_env.\n")
        yaml.safe_dump(DEFAULT_CONFIG, f, default_flow_style=False, sort_keys=False)
    logger.info(f"Wrote default configuration to {target}")
    return target
