# =============================================================================
# DISCLAIMER: This software is a proof of concept for educational purposes
# only. It records and uploads photos and video of people; obtain consent
# before capturing anyone and protect the upload credentials.
# =============================================================================
"""Camera acquisition and the live portrait frame transform."""

from fieldcam.capture.camera_session import CameraHandle, CameraSessionManager
from fieldcam.capture.frame_transform import (
    FrameTransformPipeline,
    choose_rotation,
    compute_center_crop,
    render_canonical,
)
from fieldcam.capture.microphone import MicrophoneTrack
from fieldcam.capture.preview import PreviewSurface, WindowPreview

__all__ = [
    "CameraHandle",
    "CameraSessionManager",
    "FrameTransformPipeline",
    "MicrophoneTrack",
    "PreviewSurface",
    "WindowPreview",
    "choose_rotation",
    "compute_center_crop",
    "render_canonical",
]
