# =============================================================================
# DISCLAIMER: This software is a proof of concept for educational purposes
# only. It records and uploads photos and video of people; obtain consent
# before capturing anyone and protect the upload credentials.
# =============================================================================
"""Exception types raised by the capture and upload pipeline.

Recovery policy:
    CameraPermissionError - fatal to the current mode, operator must grant access
    DeviceError           - fatal to the current mode, no matching camera
    EncodingError         - only raised once every codec in the fallback chain failed
    NetworkError          - upload transport failure, operator may resubmit
    ProtocolError         - unexpected upload response, artifact is kept for retry
"""

from typing import Optional


class CaptureError(Exception):
    """Base class for all capture pipeline errors."""


class CameraPermissionError(CaptureError):
    """Camera or microphone access was denied by the platform."""


class DeviceError(CaptureError):
    """No camera device matches the requested facing mode."""


class EncodingError(CaptureError):
    """No supported encoder could be opened, or a payload failed to decode."""


class NetworkError(CaptureError):
    """Transport failure (or non-success status) during upload."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class ProtocolError(CaptureError):
    """Upload response matched neither a JSON descriptor nor binary media."""

    def __init__(self, message: str, content_type: Optional[str] = None):
        super().__init__(message)
        self.content_type = content_type


class InvalidStateError(CaptureError):
    """Operation not allowed in the current state."""


class UploadInProgressError(CaptureError):
    """A submission is already in flight for this session."""
