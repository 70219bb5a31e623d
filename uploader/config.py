"""Configuration management for the multi-file uploader"""

import json
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from uploader.exceptions import ConfigurationError

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
ENV_URL = "UPLOADER_URL"
ENV_TRANSPORT = "UPLOADER_TRANSPORT"
ENV_CONCURRENCY_LIMIT = "UPLOADER_CONCURRENCY_LIMIT"
ENV_MAX_FILES = "UPLOADER_MAX_FILES"
ENV_LOG_DIRECTORY = "UPLOADER_LOG_DIRECTORY"
ENV_S3_BUCKET = "UPLOADER_S3_BUCKET"
ENV_AWS_PROFILE = "UPLOADER_AWS_PROFILE"
ENV_AWS_REGION = "UPLOADER_AWS_REGION"

TRANSPORTS = ("streaming", "form", "s3")

DEFAULT_MESSAGES: dict[str, str] = {
    "invalid_type": (
        "The file '{{fileName}}' is not valid. "
        "Please upload only files with the following extensions: {{allowedExtensions}}."
    ),
    "size_too_small": (
        "The file '{{fileName}}' is too small. "
        "Please upload only files bigger than {{allowedMinSize}}."
    ),
    "size_too_large": (
        "The file '{{fileName}}' is too large. "
        "Please upload only files smaller than {{allowedMaxSize}}."
    ),
    "too_many_files": (
        "Can not upload the file '{{fileName}}', "
        "because you can upload only {{maxFiles}} file(s)."
    ),
    "network_error": (
        "There was a problem uploading the file '{{fileName}}'. "
        "Please try uploading that file again."
    ),
}


def get_package_version() -> str:
    """Get the package version from pyproject.toml."""
    try:
        with open(PYPROJECT_FILE, "rb") as f:
            pyproject = tomllib.load(f)
        return str(pyproject.get("project", {}).get("version", "0.0.0"))
    except Exception:
        return "0.0.0"


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


@dataclass
class UploaderOptions:
    """Options recognised by the uploader.

    Size limits are given in KiB; messages are templates with {{placeholder}}
    tokens (see ``uploader.services.utils.render_message``).
    """

    url: str = ""
    method: str = "POST"
    field_name: str = "file"
    concurrency_limit: int = 3
    max_files: int | None = None
    auto_start: bool = True
    remove_on_fail: bool = True
    accepted_extensions: list[str] | None = None
    accepted_size_range_kib: tuple[int | None, int | None] = (None, None)
    extra_headers: dict[str, str] = field(default_factory=dict)
    extra_form_fields: dict[str, str] = field(default_factory=dict)
    id_prefix: str = "upload_"
    messages: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_MESSAGES))
    transport: str = "streaming"
    request_timeout: float = 300.0
    s3_bucket: str = ""
    s3_prefix: str = ""
    aws_profile: str = "default"
    aws_region: str = "us-west-2"

    def __post_init__(self) -> None:
        if self.concurrency_limit < 1:
            raise ConfigurationError(
                f"concurrency_limit must be at least 1, got {self.concurrency_limit}"
            )
        if self.max_files is not None and self.max_files < 0:
            raise ConfigurationError(f"max_files must not be negative, got {self.max_files}")
        if self.transport not in TRANSPORTS:
            raise ConfigurationError(
                f"Unknown transport '{self.transport}', expected one of {', '.join(TRANSPORTS)}"
            )
        if self.transport == "s3" and not self.s3_bucket:
            raise ConfigurationError("The s3 transport requires s3_bucket to be set")
        self.method = self.method.upper()
        size_range = tuple(self.accepted_size_range_kib)
        self.accepted_size_range_kib = size_range  # type: ignore[assignment]
        # Custom templates override the defaults key by key
        self.messages = {**DEFAULT_MESSAGES, **self.messages}

    @property
    def min_size_bytes(self) -> int | None:
        minimum = self.accepted_size_range_kib[0]
        return minimum * 1024 if minimum is not None else None

    @property
    def max_size_bytes(self) -> int | None:
        maximum = self.accepted_size_range_kib[1]
        return maximum * 1024 if maximum is not None else None

    @classmethod
    def from_mapping(cls, values: dict[str, Any]) -> "UploaderOptions":
        """Build options from a settings dictionary.

        Raises:
            ConfigurationError: If a value is missing its expected type or the
                resulting options are inconsistent
        """
        size_range = values.get("accepted_size_range_kib") or [None, None]
        try:
            return cls(
                url=str(values.get("url", "")),
                method=str(values.get("method", "POST")),
                field_name=str(values.get("field_name", "file")),
                concurrency_limit=int(values.get("concurrency_limit", 3)),
                max_files=_optional_int(values.get("max_files")),
                auto_start=bool(values.get("auto_start", True)),
                remove_on_fail=bool(values.get("remove_on_fail", True)),
                accepted_extensions=values.get("accepted_extensions"),
                accepted_size_range_kib=(
                    _optional_int(size_range[0]),
                    _optional_int(size_range[1]),
                ),
                extra_headers=dict(values.get("extra_headers") or {}),
                extra_form_fields=dict(values.get("extra_form_fields") or {}),
                id_prefix=str(values.get("id_prefix", "upload_")),
                messages=dict(values.get("messages") or {}),
                transport=str(values.get("transport", "streaming")),
                request_timeout=float(values.get("request_timeout", 300.0)),
                s3_bucket=str(values.get("s3_bucket", "")),
                s3_prefix=str(values.get("s3_prefix", "")),
                aws_profile=str(values.get("aws_profile", "default")),
                aws_region=str(values.get("aws_region", "us-west-2")),
            )
        except (TypeError, ValueError, IndexError) as e:
            raise ConfigurationError(f"Invalid uploader settings: {e}") from e

    @classmethod
    def from_settings(cls, settings: "Settings") -> "UploaderOptions":
        """Build options from the application settings."""
        return cls.from_mapping(settings.all())


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
        1. Environment variables (from .env file or system)
        2. settings.json (user-saved settings)
        3. settings.default.json (template defaults)
        4. Hardcoded defaults
        """
        defaults: dict[str, Any] = {
            "url": "",
            "method": "POST",
            "field_name": "file",
            "transport": "streaming",
            "concurrency_limit": 3,
            "max_files": None,
            "auto_start": True,
            "remove_on_fail": True,
            "accepted_extensions": None,
            "accepted_size_range_kib": [None, None],
            "extra_headers": {},
            "extra_form_fields": {},
            "id_prefix": "upload_",
            "messages": {},
            "request_timeout": 300.0,
            "s3_bucket": "",
            "s3_prefix": "",
            "aws_profile": "default",
            "aws_region": "us-west-2",
            "log_directory": "logs",
        }

        if SETTINGS_DEFAULT_FILE.exists():
            with open(SETTINGS_DEFAULT_FILE, encoding="utf-8") as f:
                defaults.update(json.load(f))

        if SETTINGS_FILE.exists():
            with open(SETTINGS_FILE, encoding="utf-8") as f:
                defaults.update(json.load(f))

        env_overrides = {
            "url": os.environ.get(ENV_URL),
            "transport": os.environ.get(ENV_TRANSPORT),
            "concurrency_limit": os.environ.get(ENV_CONCURRENCY_LIMIT),
            "max_files": os.environ.get(ENV_MAX_FILES),
            "log_directory": os.environ.get(ENV_LOG_DIRECTORY),
            "s3_bucket": os.environ.get(ENV_S3_BUCKET),
            "aws_profile": os.environ.get(ENV_AWS_PROFILE),
            "aws_region": os.environ.get(ENV_AWS_REGION),
        }

        # Only apply non-None environment values
        for key, value in env_overrides.items():
            if value is not None:
                defaults[key] = value

        self._settings = defaults

        if not SETTINGS_FILE.exists():
            self._save_settings()

    def _save_settings(self) -> None:
        """Save current settings to file."""
        with open(SETTINGS_FILE, "w", encoding="utf-8") as f:
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

    @property
    def s3_bucket(self) -> str:
        """Get the S3 bucket name."""
        return str(self._settings.get("s3_bucket", ""))

    @property
    def aws_profile(self) -> str:
        """Get the AWS profile name."""
        return str(self._settings.get("aws_profile", "default"))

    @property
    def aws_region(self) -> str:
        """Get the AWS region."""
        return str(self._settings.get("aws_region", "us-west-2"))

    @property
    def log_directory(self) -> Path:
        """Get the log directory, relative paths resolved against the project root."""
        log_dir = Path(str(self._settings.get("log_directory", "logs")))
        if not log_dir.is_absolute():
            log_dir = BASE_DIR / log_dir
        return log_dir


def get_settings() -> Settings:
    """Get the singleton Settings instance."""
    return Settings()


def get_uploader_options() -> UploaderOptions:
    """Build uploader options from the current settings."""
    return UploaderOptions.from_settings(get_settings())
