"""Configuration management for media_ingest"""

import json
import os
import tomllib
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

# Base directory for the project
BASE_DIR = Path(__file__).resolve().parent.parent

# Load environment variables from .env file
ENV_FILE = BASE_DIR / ".env"
load_dotenv(ENV_FILE)

# Settings file paths
SETTINGS_FILE = BASE_DIR / "settings.json"
SETTINGS_DEFAULT_FILE = BASE_DIR / "settings.default.json"
PYPROJECT_FILE = BASE_DIR / "pyproject.toml"

# Environment variable names for configuration
ENV_PREFIX = "MEDIA_INGEST_"
ENV_SETTINGS_FILE = "MEDIA_INGEST_SETTINGS_FILE"

DEFAULT_SETTINGS: dict[str, Any] = {
    "display_name": "Media Ingest",
    "storage_backend": "s3",
    "aws_profile": "default",
    "aws_region": "us-west-2",
    "s3_bucket": "",
    "public_url_base": "",
    "storage_root": "storage",
    "max_video_size_mb": 50,
    "max_images_per_batch": 10,
    "log_directory": "logs",
    "database_path": "media_ingest.db",
    "review_timeout_seconds": 600,
    "ffmpeg_path": "ffmpeg",
    "ffprobe_path": "ffprobe",
}

# Keys whose environment overrides must be converted from strings
_INT_KEYS = {"max_video_size_mb", "max_images_per_batch", "review_timeout_seconds"}


def get_package_version() -> str:
    """Get the package version from pyproject.toml."""
    try:
        with open(PYPROJECT_FILE, "rb") as f:
            pyproject = tomllib.load(f)
        return str(pyproject.get("project", {}).get("version", "0.0.0"))
    except Exception:
        return "0.0.0"


def get_package_name() -> str:
    """Get the package name from pyproject.toml."""
    try:
        with open(PYPROJECT_FILE, "rb") as f:
            pyproject = tomllib.load(f)
        return str(pyproject.get("project", {}).get("name", "media-ingest"))
    except Exception:
        return "media-ingest"


def _settings_file() -> Path:
    override = os.environ.get(ENV_SETTINGS_FILE)
    return Path(override) if override else SETTINGS_FILE


class Settings:
    """Manages application settings stored in JSON format."""

    _instance: "Settings | None" = None
    _settings: dict[str, Any]

    def __new__(cls) -> "Settings":
        """Singleton pattern to ensure only one settings instance exists."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._load_settings()
        return cls._instance

    def _load_settings(self) -> None:
        """Load settings from file, with environment variables taking precedence.

        Priority order (highest to lowest):
        1. Environment variables (MEDIA_INGEST_<KEY>, from .env file or system)
        2. settings.json (user-saved settings)
        3. settings.default.json (template defaults)
        4. Hardcoded defaults
        """
        defaults = dict(DEFAULT_SETTINGS)

        if SETTINGS_DEFAULT_FILE.exists():
            with open(SETTINGS_DEFAULT_FILE, encoding="utf-8") as f:
                defaults.update(json.load(f))

        settings_file = _settings_file()
        if settings_file.exists():
            with open(settings_file, encoding="utf-8") as f:
                defaults.update(json.load(f))

        # Only apply environment values that are actually set
        for key in DEFAULT_SETTINGS:
            value = os.environ.get(f"{ENV_PREFIX}{key.upper()}")
            if value is None:
                continue
            if key in _INT_KEYS:
                try:
                    defaults[key] = int(value)
                except ValueError:
                    continue
            else:
                defaults[key] = value

        self._settings = defaults

        if not settings_file.exists():
            self._save_settings()

    def _save_settings(self) -> None:
        """Save current settings to file."""
        with open(_settings_file(), "w", encoding="utf-8") as f:
            json.dump(self._settings, f, indent=4)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a setting value by key."""
        return self._settings.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set a setting value and save to file."""
        self._settings[key] = value
        self._save_settings()

    def update(self, data: dict[str, Any]) -> None:
        """Update multiple settings at once."""
        self._settings.update(data)
        self._save_settings()

    def all(self) -> dict[str, Any]:
        """Get all settings as a dictionary."""
        return self._settings.copy()

    def reload(self) -> None:
        """Reload settings from file."""
        self._load_settings()

    def _resolve_path(self, key: str) -> Path:
        path = Path(str(self._settings.get(key, DEFAULT_SETTINGS[key])))
        if not path.is_absolute():
            path = BASE_DIR / path
        return path

    @property
    def display_name(self) -> str:
        """Get the display name shown by the driving UI."""
        return str(self._settings.get("display_name", "Media Ingest"))

    @property
    def storage_backend(self) -> str:
        """Get the storage backend name (s3 or filesystem)."""
        return str(self._settings.get("storage_backend", "s3")).lower()

    @property
    def aws_profile(self) -> str:
        """Get the AWS profile name."""
        return str(self._settings.get("aws_profile", "default"))

    @property
    def aws_region(self) -> str:
        """Get the AWS region."""
        return str(self._settings.get("aws_region", "us-west-2"))

    @property
    def s3_bucket(self) -> str:
        """Get the S3 bucket name."""
        return str(self._settings.get("s3_bucket", ""))

    @property
    def public_url_base(self) -> str:
        """Get the base URL that stored objects are served from (may be empty)."""
        return str(self._settings.get("public_url_base", "")).rstrip("/")

    @property
    def storage_root(self) -> Path:
        """Get the root directory for the filesystem storage backend."""
        return self._resolve_path("storage_root")

    @property
    def max_video_size_bytes(self) -> int:
        """Get the video size ceiling in bytes."""
        return int(self._settings.get("max_video_size_mb", 50)) * 1024 * 1024

    @property
    def max_images_per_batch(self) -> int:
        """Get the maximum number of images accepted in one batch."""
        return int(self._settings.get("max_images_per_batch", 10))

    @property
    def log_directory(self) -> Path:
        """Get the directory for JSONL event logs."""
        return self._resolve_path("log_directory")

    @property
    def database_path(self) -> Path:
        """Get the SQLite database path for the room store."""
        return self._resolve_path("database_path")

    @property
    def review_timeout_seconds(self) -> float:
        """Get how long a gated edit waits for a decision before abandoning the batch."""
        return float(self._settings.get("review_timeout_seconds", 600))

    @property
    def ffmpeg_path(self) -> str:
        """Get the ffmpeg executable."""
        return str(self._settings.get("ffmpeg_path", "ffmpeg"))

    @property
    def ffprobe_path(self) -> str:
        """Get the ffprobe executable."""
        return str(self._settings.get("ffprobe_path", "ffprobe"))


def get_settings() -> Settings:
    """Get the singleton Settings instance."""
    return Settings()
