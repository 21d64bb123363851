# =============================================================================
# DISCLAIMER: This software is a proof of concept for educational purposes
# only. It records and uploads photos and video of people; obtain consent
# before capturing anyone and protect the upload credentials.
# =============================================================================
"""Data models for capture sessions and the canonical portrait frame."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

import numpy as np


class CaptureMode(Enum):
    """What the operator is doing in the capture dialog."""

    UPLOAD = "upload"  # Pick an existing file from disk
    PHOTO = "photo"  # Capture a still from the camera
    VIDEO = "video"  # Record a bounded-length clip

    @property
    def uses_camera(self) -> bool:
        return self in (CaptureMode.PHOTO, CaptureMode.VIDEO)


class FacingMode(Enum):
    """Front- vs. rear-facing camera selection."""

    FRONT = "user"
    BACK = "environment"

    @property
    def opposite(self) -> "FacingMode":
        return FacingMode.BACK if self == FacingMode.FRONT else FacingMode.FRONT


class SessionStatus(Enum):
    """Capture session lifecycle states."""

    IDLE = "idle"  # No camera, mode selector interactive
    PREVIEWING = "previewing"  # Camera live, frame loop running
    RECORDING = "recording"  # Encoder bound to the frame buffer
    READY = "ready"  # Artifact available for upload
    UPLOADING = "uploading"  # Submission in flight
    UPLOADED = "uploaded"  # Upload succeeded, closing after display delay
    CLOSED = "closed"


class Rotation(Enum):
    """Rotation applied to the raw frame before cropping."""

    NONE = 0
    CW_90 = 90
    CCW_90 = 270


@dataclass(frozen=True)
class CropRect:
    """Source-space crop rectangle (x, y, width, height)."""

    x: int
    y: int
    width: int
    height: int

    @property
    def aspect(self) -> float:
        return self.width / self.height if self.height else 0.0

    def as_tuple(self):
        return (self.x, self.y, self.width, self.height)


@dataclass
class CanonicalFrame:
    """Fixed-size portrait frame buffer plus its current transform.

    The buffer dimensions never change after creation; only the crop and
    rotation follow the source stream.
    """

    width: int = 480
    height: int = 848
    crop: Optional[CropRect] = None
    rotation: Rotation = Rotation.NONE
    buffer: np.ndarray = field(default=None, repr=False)
    frames_drawn: int = 0

    def __post_init__(self):
        if self.buffer is None:
            self.buffer = np.zeros((self.height, self.width, 3), dtype=np.uint8)

    @property
    def size(self):
        return (self.width, self.height)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dictionary (buffer omitted)."""
        return {
            "width": self.width,
            "height": self.height,
            "crop": self.crop.as_tuple() if self.crop else None,
            "rotation": self.rotation.value,
            "frames_drawn": self.frames_drawn,
        }


@dataclass
class CaptureSession:
    """State of one open capture dialog."""

    subject_id: str = ""
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    mode: CaptureMode = CaptureMode.UPLOAD
    facing_mode: FacingMode = FacingMode.FRONT
    status: SessionStatus = SessionStatus.IDLE
    status_changed_at: datetime = field(default_factory=datetime.now)
    last_error: Optional[str] = None

    @property
    def is_closed(self) -> bool:
        return self.status == SessionStatus.CLOSED

    def transition_to(self, new_status: SessionStatus) -> bool:
        """Transition to a new status, updating timestamp.

        A closed session stays closed. Returns False when the transition
        was refused.
        """
        if self.is_closed and new_status != SessionStatus.CLOSED:
            return False
        if new_status != self.status:
            self.status = new_status
            self.status_changed_at = datetime.now()
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "subject_id": self.subject_id,
            "mode": self.mode.value,
            "facing_mode": self.facing_mode.value,
            "status": self.status.value,
            "status_changed_at": self.status_changed_at.isoformat(),
            "last_error": self.last_error,
        }
