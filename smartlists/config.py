"""
Configuration for the SmartLists engine.
Loads defaults, then the JSON settings file, then environment overrides.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

logger = logging.getLogger("smartlists.config")


__all__ = ["Config", "config"]


def _default_settings_file() -> Path:
    env_path = os.getenv("SMARTLISTS_SETTINGS_FILE")
    if env_path:
        return Path(env_path)
    return Path.home() / ".config" / "smartlists" / "settings.json"


# settings.json key -> (attribute, type)
_SETTINGS_KEYS: dict[str, tuple[str, type]] = {
    "processing_batch_size": ("PROCESSING_BATCH_SIZE", int),
    "worker_count": ("WORKER_COUNT", int),
    "regex_timeout_ms": ("REGEX_TIMEOUT_MS", int),
    "max_regex_pattern_length": ("MAX_REGEX_PATTERN_LENGTH", int),
    "max_expression_sets": ("MAX_EXPRESSION_SETS", int),
    "max_expressions_per_set": ("MAX_EXPRESSIONS_PER_SET", int),
    "http_timeout": ("HTTP_TIMEOUT", int),
    "mdblist_api_key": ("MDBLIST_API_KEY", str),
    "tmdb_api_key": ("TMDB_API_KEY", str),
    "trakt_client_id": ("TRAKT_CLIENT_ID", str),
}

# Environment variable -> (attribute, type)
_ENV_KEYS: dict[str, tuple[str, type]] = {
    "SMARTLISTS_BATCH_SIZE": ("PROCESSING_BATCH_SIZE", int),
    "SMARTLISTS_WORKERS": ("WORKER_COUNT", int),
    "SMARTLISTS_REGEX_TIMEOUT_MS": ("REGEX_TIMEOUT_MS", int),
    "MDBLIST_API_KEY": ("MDBLIST_API_KEY", str),
    "TMDB_API_KEY": ("TMDB_API_KEY", str),
    "TRAKT_CLIENT_ID": ("TRAKT_CLIENT_ID", str),
}


@dataclass
class Config:
    """
    Central configuration for evaluation runs.
    Manages batching, worker pool size, regex limits and external list API keys.
    """

    SETTINGS_FILE: Path = field(default_factory=_default_settings_file)

    # Pipeline
    PROCESSING_BATCH_SIZE: int = 300
    WORKER_COUNT: int = 4

    # Validation limits
    REGEX_TIMEOUT_MS: int = 100
    MAX_REGEX_PATTERN_LENGTH: int = 1000
    MAX_EXPRESSION_SETS: int = 100
    MAX_EXPRESSIONS_PER_SET: int = 100

    # External lists
    HTTP_TIMEOUT: int = 10
    MDBLIST_API_KEY: str | None = None
    TMDB_API_KEY: str | None = None
    TRAKT_CLIENT_ID: str | None = None

    LOG_LEVEL: str = "INFO"

    def __post_init__(self):
        """Load settings file and environment overrides after instantiation."""
        self._load_settings()

        load_dotenv()
        for env_name, (attr, cast) in _ENV_KEYS.items():
            raw = os.getenv(env_name)
            if not raw:
                continue
            try:
                setattr(self, attr, cast(raw))
            except ValueError:
                logger.warning("Ignoring invalid value for %s: %r", env_name, raw)

        env_level = os.getenv("SMARTLISTS_LOG_LEVEL")
        if env_level:
            self.LOG_LEVEL = env_level.upper()

    def _load_settings(self) -> None:
        """Load settings from JSON file."""
        if not self.SETTINGS_FILE.exists():
            return

        try:
            with open(self.SETTINGS_FILE, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Failed to load settings from %s: %s", self.SETTINGS_FILE, e)
            return

        if not isinstance(data, dict):
            logger.error("Settings file %s does not contain an object", self.SETTINGS_FILE)
            return

        for key, (attr, cast) in _SETTINGS_KEYS.items():
            if key not in data or data[key] is None:
                continue
            try:
                setattr(self, attr, cast(data[key]))
            except (TypeError, ValueError):
                logger.warning("Ignoring invalid setting %s: %r", key, data[key])

        self.LOG_LEVEL = str(data.get("log_level", self.LOG_LEVEL)).upper()

    def save(self) -> None:
        """Save current configuration to JSON file."""
        data = {key: getattr(self, attr) for key, (attr, _) in _SETTINGS_KEYS.items()}
        data["log_level"] = self.LOG_LEVEL

        try:
            self.SETTINGS_FILE.parent.mkdir(parents=True, exist_ok=True)
            with open(self.SETTINGS_FILE, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
        except OSError as e:
            logger.error("Failed to save settings to %s: %s", self.SETTINGS_FILE, e)


# Global instance
config = Config()
