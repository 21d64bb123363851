# =============================================================================
# DISCLAIMER: This software is a proof of concept for educational purposes
# only. It records and uploads photos and video of people; obtain consent
# before capturing anyone and protect the upload credentials.
# =============================================================================
"""Tests for settings defaults, environment overrides and YAML loading."""

from fractions import Fraction

import pytest
from pydantic import ValidationError

from fieldcam.config import RecordingSettings, Settings, load_settings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "FIELDCAM_RECORDING_MAX_DURATION_MS",
        "FIELDCAM_UPLOAD_BASE_URL",
        "FIELDCAM_CAMERA_ROTATION_POLICY",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    settings = Settings()

    assert (settings.frame.width, settings.frame.height) == (480, 848)
    assert settings.frame.aspect == Fraction(9, 16)
    assert (settings.frame.photo_width, settings.frame.photo_height) == (720, 1280)
    assert settings.recording.max_duration_ms == 40_000
    assert settings.recording.codecs[0] == "VP90"
    assert settings.upload.subject_field == "doctor_id"
    assert settings.upload.close_delay_seconds == 3.0
    assert settings.camera.rotation_policy == "metadata"


def test_env_override(monkeypatch):
    monkeypatch.setenv("FIELDCAM_RECORDING_MAX_DURATION_MS", "15000")
    assert RecordingSettings().max_duration_ms == 15_000


def test_yaml_with_env_substitution(tmp_path, monkeypatch):
    monkeypatch.setenv("FIELDCAM_TEST_BACKEND", "https://media.example.org")
    (tmp_path / "fieldcam.yaml").write_text(
        "upload:\n"
        "  base_url: ${FIELDCAM_TEST_BACKEND}/api\n"
        "recording:\n"
        "  max_duration_ms: 1000\n"
        "camera:\n"
        "  rotation_policy: none\n"
    )

    settings = load_settings(base_path=tmp_path)

    assert settings.upload.base_url == "https://media.example.org/api"
    assert settings.recording.max_duration_ms == 1000
    assert settings.camera.rotation_policy == "none"
    # Untouched keys of a section keep their defaults
    assert settings.upload.video_endpoint == "/merge-with-intro-outro"


def test_local_yaml_takes_priority(tmp_path):
    (tmp_path / "fieldcam.yaml").write_text("log:\n  level: INFO\n")
    (tmp_path / "fieldcam.local.yaml").write_text("log:\n  level: DEBUG\n")

    assert load_settings(base_path=tmp_path).log.level == "DEBUG"


def test_dotenv_feeds_substitution(tmp_path, monkeypatch):
    # Register the variable with monkeypatch so the value loaded from .env
    # is removed again on teardown
    monkeypatch.setenv("FIELDCAM_TEST_HOST", "placeholder")
    monkeypatch.delenv("FIELDCAM_TEST_HOST")

    (tmp_path / ".env").write_text("FIELDCAM_TEST_HOST=http://10.0.0.5\n")
    (tmp_path / "fieldcam.yaml").write_text("upload:\n  base_url: ${FIELDCAM_TEST_HOST}/api\n")

    settings = load_settings(base_path=tmp_path)

    assert settings.upload.base_url == "http://10.0.0.5/api"


def test_missing_explicit_config(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_settings(str(tmp_path / "nope.yaml"), base_path=tmp_path)


def test_no_config_file_uses_defaults(tmp_path):
    settings = load_settings(base_path=tmp_path)
    assert settings.upload.image_endpoint == "/capture-image"


def test_yaml_values_are_coerced(tmp_path):
    (tmp_path / "fieldcam.yaml").write_text(
        "camera:\n  fps: '15'\nrecording:\n  max_duration_ms: '60000'\n"
    )

    settings = load_settings(base_path=tmp_path)

    assert isinstance(settings.camera.fps, float)
    assert settings.camera.fps == 15.0
    assert settings.recording.max_duration_ms == 60_000
    assert settings.camera.front_device_index == 0


def test_yaml_wrong_type_rejected(tmp_path):
    (tmp_path / "fieldcam.yaml").write_text("recording:\n  max_duration_ms: abc\n")

    with pytest.raises(ValidationError):
        load_settings(base_path=tmp_path)
