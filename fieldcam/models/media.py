# =============================================================================
# DISCLAIMER: This software is a proof of concept for educational purposes
# only. It records and uploads photos and video of people; obtain consent
# before capturing anyone and protect the upload credentials.
# =============================================================================
"""Recorded artifacts and upload results."""

import mimetypes
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional


class ArtifactKind(Enum):
    """Artifact kind, selects both the upload field and the endpoint."""

    IMAGE = "image"
    VIDEO = "video"

    @classmethod
    def from_mime_type(cls, mime_type: str) -> "ArtifactKind":
        """Image for image/* types, Video for everything else."""
        if mime_type and mime_type.lower().startswith("image/"):
            return cls.IMAGE
        return cls.VIDEO


@dataclass
class RecordedArtifact:
    """A captured, recorded or loaded media payload."""

    payload: bytes
    mime_type: str
    kind: ArtifactKind
    filename: str = ""
    created_at: datetime = field(default_factory=datetime.now)
    width: int = 0
    height: int = 0
    duration_seconds: Optional[float] = None
    normalized: bool = False

    def __post_init__(self):
        if not self.filename:
            ext = mimetypes.guess_extension(self.mime_type) or ".bin"
            prefix = "photo" if self.kind == ArtifactKind.IMAGE else "portrait"
            self.filename = f"{prefix}_{int(self.created_at.timestamp() * 1000)}{ext}"

    @property
    def size_bytes(self) -> int:
        return len(self.payload)

    @classmethod
    def from_file(cls, path: Path) -> "RecordedArtifact":
        """Build an artifact from a file picked in Upload mode."""
        path = Path(path)
        mime_type, _ = mimetypes.guess_type(path.name)
        mime_type = mime_type or "application/octet-stream"
        return cls(
            payload=path.read_bytes(),
            mime_type=mime_type,
            kind=ArtifactKind.from_mime_type(mime_type),
            filename=path.name,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dictionary (payload omitted)."""
        return {
            "filename": self.filename,
            "mime_type": self.mime_type,
            "kind": self.kind.value,
            "size_bytes": self.size_bytes,
            "created_at": self.created_at.isoformat(),
            "width": self.width,
            "height": self.height,
            "duration_seconds": self.duration_seconds,
            "normalized": self.normalized,
        }


@dataclass
class UploadResult:
    """Resolved outcome of one upload submission."""

    resolved: Optional[str] = None  # Download URL or local file URI
    message: Optional[str] = None
    succeeded: bool = False
    content_type: Optional[str] = None
    local_path: Optional[Path] = None

    @property
    def is_local(self) -> bool:
        return self.local_path is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resolved": self.resolved,
            "message": self.message,
            "succeeded": self.succeeded,
            "content_type": self.content_type,
        }
