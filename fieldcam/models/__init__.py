# =============================================================================
# DISCLAIMER: This software is a proof of concept for educational purposes
# only. It records and uploads photos and video of people; obtain consent
# before capturing anyone and protect the upload credentials.
# =============================================================================
"""Data models for capture sessions, frames and media."""

from fieldcam.models.capture import (
    CanonicalFrame,
    CaptureMode,
    CaptureSession,
    CropRect,
    FacingMode,
    Rotation,
    SessionStatus,
)
from fieldcam.models.media import ArtifactKind, RecordedArtifact, UploadResult

__all__ = [
    "ArtifactKind",
    "CanonicalFrame",
    "CaptureMode",
    "CaptureSession",
    "CropRect",
    "FacingMode",
    "RecordedArtifact",
    "Rotation",
    "SessionStatus",
    "UploadResult",
]
