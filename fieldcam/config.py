# =============================================================================
# DISCLAIMER: This software is a proof of concept for educational purposes
# only. It records and uploads photos and video of people; obtain consent
# before capturing anyone and protect the upload credentials.
# =============================================================================
"""Configuration management for the capture client.

Uses Pydantic Settings for environment variable and .env file support, with
an optional YAML file layered on top (``${VAR}`` references are substituted
from the environment).
"""

import logging
import os
import re
from dataclasses import dataclass
from fractions import Fraction
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Default config file locations (in order of priority)
CONFIG_PATHS = [
    "fieldcam.local.yaml",  # Local overrides (not in git)
    "fieldcam.yaml",  # Default config
]


class CameraSettings(BaseSettings):
    """Camera device and stream request settings."""

    model_config = SettingsConfigDict(env_prefix="FIELDCAM_CAMERA_")

    front_device_index: int = Field(
        default=0,
        description="OpenCV device index used for the front-facing camera"
    )
    back_device_index: int = Field(
        default=1,
        description="OpenCV device index used for the rear-facing camera"
    )
    request_width: int = Field(
        default=720,
        description="Requested stream width (portrait, near 9:16)"
    )
    request_height: int = Field(
        default=1280,
        description="Requested stream height (portrait, near 9:16)"
    )
    fps: float = Field(
        default=30.0,
        description="Requested stream frame rate"
    )
    open_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout for opening the camera device"
    )
    rotation_policy: str = Field(
        default="metadata",
        description="When to rotate landscape streams: none, metadata or handheld"
    )
    handheld: bool = Field(
        default=False,
        description="Device is handheld (only used by the handheld rotation policy)"
    )


class FrameSettings(BaseSettings):
    """Canonical portrait frame geometry."""

    model_config = SettingsConfigDict(env_prefix="FIELDCAM_FRAME_")

    width: int = Field(default=480, description="Canonical video frame width")
    height: int = Field(default=848, description="Canonical video frame height")
    aspect_width: int = Field(default=9, description="Canonical aspect ratio numerator")
    aspect_height: int = Field(default=16, description="Canonical aspect ratio denominator")
    photo_width: int = Field(default=720, description="Still photo output width")
    photo_height: int = Field(default=1280, description="Still photo output height")
    jpeg_quality: int = Field(default=92, description="JPEG quality for stills (0-100)")

    @property
    def aspect(self) -> Fraction:
        """Canonical aspect ratio as width / height."""
        return Fraction(self.aspect_width, self.aspect_height)


class RecordingSettings(BaseSettings):
    """Recording, encoding and normalization settings."""

    model_config = SettingsConfigDict(env_prefix="FIELDCAM_RECORDING_")

    max_duration_ms: int = Field(
        default=40_000,
        description="Recording is force-stopped at this duration"
    )
    codecs: List[str] = Field(
        default_factory=lambda: ["VP90", "VP80", "avc1", "mp4v", "MJPG"],
        description="Codec fallback chain, most preferred first"
    )
    audio_enabled: bool = Field(
        default=True,
        description="Record the microphone track alongside video"
    )
    audio_sample_rate: int = Field(default=48_000, description="Microphone sample rate")
    audio_channels: int = Field(default=1, description="Microphone channel count")
    ffmpeg_path: str = Field(
        default="ffmpeg",
        description="ffmpeg binary used to mux audio into the video container"
    )
    mux_timeout_seconds: float = Field(
        default=60.0,
        description="Maximum time to wait for ffmpeg"
    )
    auto_normalize: bool = Field(
        default=True,
        description="Re-crop recordings whose intrinsic aspect is not 9:16"
    )
    normalize_tolerance: float = Field(
        default=0.02,
        description="Relative aspect difference tolerated before normalizing"
    )


class UploadSettings(BaseSettings):
    """Media backend settings."""

    model_config = SettingsConfigDict(env_prefix="FIELDCAM_UPLOAD_")

    base_url: str = Field(
        default="https://cipla-backend.virtualspheretechnologies.in/api",
        description="Media backend API base URL"
    )
    image_endpoint: str = Field(default="/capture-image", description="Image upload path")
    video_endpoint: str = Field(
        default="/merge-with-intro-outro",
        description="Video upload path"
    )
    image_media_path: str = Field(default="/image", description="Image download path")
    video_media_path: str = Field(default="/video", description="Video download path")
    subject_field: str = Field(default="doctor_id", description="Subject id form field")
    uploaded_by_field: str = Field(default="uploaded_by", description="Uploader id form field")
    timeout_seconds: float = Field(default=120.0, description="Request timeout")
    close_delay_seconds: float = Field(
        default=3.0,
        description="Delay before closing the session after a successful upload"
    )


class LogSettings(BaseSettings):
    """Logging settings."""

    model_config = SettingsConfigDict(env_prefix="FIELDCAM_LOG_")

    level: str = Field(default="INFO", description="Logging level")


class Settings(BaseSettings):
    """Root settings for the capture client.

    Settings are loaded from environment variables with FIELDCAM_ prefix,
    or from a .env file in the working directory.

    Example environment variables:
        FIELDCAM_RECORDING_MAX_DURATION_MS=40000
        FIELDCAM_UPLOAD_BASE_URL=https://media.example.org/api
        FIELDCAM_CAMERA__ROTATION_POLICY=none
    """

    model_config = SettingsConfigDict(
        env_prefix="FIELDCAM_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    camera: CameraSettings = Field(default_factory=CameraSettings)
    frame: FrameSettings = Field(default_factory=FrameSettings)
    recording: RecordingSettings = Field(default_factory=RecordingSettings)
    upload: UploadSettings = Field(default_factory=UploadSettings)
    log: LogSettings = Field(default_factory=LogSettings)


@dataclass
class ClientContext:
    """Caller identity attached to every upload.

    Supplied by the surrounding application (login, doctor listing) instead
    of being read from shared module state.
    """

    auth_token: str = ""
    uploaded_by: Optional[str] = None

    def auth_headers(self) -> Dict[str, str]:
        """Authorization header as the backend expects it (raw token)."""
        if not self.auth_token:
            return {}
        return {"Authorization": self.auth_token}


def _substitute_env_vars(value: Any) -> Any:
    """Recursively substitute ${VAR} patterns with environment variables.

    Args:
        value: Value to process (can be str, dict, list, or other)

    Returns:
        Value with environment variables substituted
    """
    if isinstance(value, str):
        pattern = r'\$\{([^}]+)\}'

        def replace_env(match):
            var_name = match.group(1)
            env_value = os.environ.get(var_name, "")
            if not env_value:
                logger.warning(f"Environment variable {var_name} not set")
            return env_value

        return re.sub(pattern, replace_env, value)

    elif isinstance(value, dict):
        return {k: _substitute_env_vars(v) for k, v in value.items()}

    elif isinstance(value, list):
        return [_substitute_env_vars(item) for item in value]

    return value


def load_settings(
    config_path: Optional[str] = None,
    base_path: Optional[Path] = None,
) -> Settings:
    """Load settings from environment, .env and an optional YAML file.

    YAML values override environment values.

    Args:
        config_path: Path to YAML file. If None, searches default locations.
        base_path: Base path for .env and default locations. Defaults to cwd.

    Returns:
        Settings instance

    Raises:
        FileNotFoundError: If an explicit config_path does not exist
        yaml.YAMLError: If the config file is invalid YAML
        pydantic.ValidationError: If a config value has the wrong type
    """
    base = Path(base_path or Path.cwd())

    env_path = base / ".env"
    if env_path.exists():
        load_dotenv(env_path)
        logger.debug(f"Loaded environment from {env_path}")

    config_file: Optional[Path] = None
    if config_path:
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        for path in CONFIG_PATHS:
            candidate = base / path
            if candidate.exists():
                config_file = candidate
                break

    if config_file is None:
        logger.debug("No config file found, using environment and defaults")
        return Settings()

    logger.info(f"Loading config from {config_file}")

    with open(config_file, "r") as f:
        raw_config = yaml.safe_load(f) or {}

    config_data = _substitute_env_vars(raw_config)

    # Nested sections are merged over env-derived sections, not replacing them
    defaults = Settings()
    merged: Dict[str, Any] = {}
    for section, values in config_data.items():
        current = getattr(defaults, section, None)
        if isinstance(values, dict) and isinstance(current, BaseSettings):
            # Re-validate so YAML scalars are coerced and checked like env values
            merged[section] = type(current).model_validate({**current.model_dump(), **values})
        else:
            merged[section] = values

    return Settings(**merged)


# Global settings instance (lazy loaded)
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
