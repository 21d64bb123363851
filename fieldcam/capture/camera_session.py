# =============================================================================
# DISCLAIMER: This software is a proof of concept for educational purposes
# only. It records and uploads photos and video of people; obtain consent
# before capturing anyone and protect the upload credentials.
# =============================================================================
"""Camera stream lifecycle.

CameraSessionManager is the only component that opens or stops camera and
microphone tracks. It owns at most one live CameraHandle at a time.
"""

import asyncio
import logging
import os
import sys
import threading
import time
from pathlib import Path
from typing import Callable, Optional

import cv2
import numpy as np

from fieldcam.capture.microphone import MicrophoneTrack
from fieldcam.capture.preview import PreviewSurface
from fieldcam.config import Settings, get_settings
from fieldcam.errors import CameraPermissionError, DeviceError
from fieldcam.models.capture import FacingMode

logger = logging.getLogger(__name__)


def probe_video_device(index: int) -> None:
    """Check that a camera device exists and is accessible.

    Only Linux exposes enough through the filesystem to tell a missing
    device from a denied one; elsewhere the open attempt decides.

    Raises:
        DeviceError: No device node for this index
        CameraPermissionError: Device node exists but is not accessible
    """
    if not sys.platform.startswith("linux"):
        return

    path = Path(f"/dev/video{index}")
    if not path.exists():
        raise DeviceError(f"No camera device at {path}")
    if not os.access(path, os.R_OK | os.W_OK):
        raise CameraPermissionError(
            f"Access to {path} denied (is the user in the 'video' group?)"
        )


class CameraHandle:
    """Exclusive ownership of one open camera stream plus optional audio.

    Reads and release are serialized so a frame read running in a worker
    thread never races the release of the underlying capture.
    """

    def __init__(
        self,
        capture: cv2.VideoCapture,
        facing_mode: FacingMode,
        device_index: int,
        microphone: Optional[MicrophoneTrack] = None,
    ):
        self.facing_mode = facing_mode
        self.device_index = device_index
        self.microphone = microphone
        self.opened_at = time.time()

        self._capture = capture
        self._lock = threading.Lock()

        self.width = int(capture.get(cv2.CAP_PROP_FRAME_WIDTH))
        self.height = int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT))
        self.fps = capture.get(cv2.CAP_PROP_FPS) or 0.0
        self.orientation_meta = int(capture.get(cv2.CAP_PROP_ORIENTATION_META) or 0) % 360

    @property
    def is_live(self) -> bool:
        return self._capture is not None

    @property
    def has_audio(self) -> bool:
        return self.microphone is not None and self.microphone.is_live

    @property
    def is_landscape(self) -> bool:
        return self.width > self.height

    def read(self) -> Optional[np.ndarray]:
        """Read the latest frame. Returns None once released or on failure."""
        with self._lock:
            if self._capture is None:
                return None
            ret, frame = self._capture.read()

        if not ret or frame is None:
            return None

        height, width = frame.shape[:2]
        if (width, height) != (self.width, self.height):
            # Some backends only report the real size after the first frame
            self.width, self.height = width, height
        return frame

    def stop(self) -> None:
        """Stop every track. Idempotent."""
        with self._lock:
            capture, self._capture = self._capture, None
        if capture is not None:
            capture.release()
        if self.microphone is not None:
            self.microphone.stop()

    def describe(self) -> str:
        audio = "audio" if self.has_audio else "no audio"
        return (
            f"{self.facing_mode.name.lower()} camera #{self.device_index} "
            f"{self.width}x{self.height}@{self.fps:.0f}fps, {audio}"
        )


class CameraSessionManager:
    """Acquires and releases the camera for one capture session.

    Usage:
        manager = CameraSessionManager(settings, preview=WindowPreview())
        handle = await manager.acquire(FacingMode.FRONT)
        handle = await manager.switch()
        manager.release()
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        preview: Optional[PreviewSurface] = None,
        capture_factory: Optional[Callable[[int], cv2.VideoCapture]] = None,
        microphone_factory: Optional[Callable[[], MicrophoneTrack]] = None,
        device_probe: Optional[Callable[[int], None]] = None,
    ):
        """Initialize camera session manager.

        Args:
            settings: Client settings (uses global if not provided)
            preview: Surface the live handle is attached to
            capture_factory: Opens a device index (defaults to cv2.VideoCapture)
            microphone_factory: Creates the audio track (None uses settings)
            device_probe: Access check run before opening a device
        """
        self.settings = settings or get_settings()
        self.preview = preview or PreviewSurface()
        self._capture_factory = capture_factory or cv2.VideoCapture
        self._microphone_factory = microphone_factory or self._default_microphone
        self._device_probe = device_probe or probe_video_device

        self._handle: Optional[CameraHandle] = None
        self._facing_mode = FacingMode.FRONT
        self._lock = asyncio.Lock()

    @property
    def handle(self) -> Optional[CameraHandle]:
        """The live handle, if any."""
        if self._handle is not None and not self._handle.is_live:
            self._handle = None
        return self._handle

    @property
    def facing_mode(self) -> FacingMode:
        return self._facing_mode

    def _default_microphone(self) -> Optional[MicrophoneTrack]:
        rec = self.settings.recording
        if not rec.audio_enabled:
            return None
        return MicrophoneTrack(sample_rate=rec.audio_sample_rate, channels=rec.audio_channels)

    def _device_index(self, facing_mode: FacingMode) -> int:
        if facing_mode == FacingMode.FRONT:
            return self.settings.camera.front_device_index
        return self.settings.camera.back_device_index

    def _open_capture(self, index: int) -> cv2.VideoCapture:
        """Open and configure the device (blocking)."""
        cam = self.settings.camera

        self._device_probe(index)

        try:
            capture = self._capture_factory(index)
        except cv2.error as e:
            raise DeviceError(f"OpenCV failed to open camera #{index}: {e}") from e

        if not capture.isOpened():
            capture.release()
            raise DeviceError(f"Camera #{index} could not be opened")

        capture.set(cv2.CAP_PROP_OPEN_TIMEOUT_MSEC, int(cam.open_timeout_seconds * 1000))
        capture.set(cv2.CAP_PROP_FRAME_WIDTH, cam.request_width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, cam.request_height)
        capture.set(cv2.CAP_PROP_FPS, cam.fps)
        # Keep the freshest frame only
        capture.set(cv2.CAP_PROP_BUFFERSIZE, 1)
        return capture

    def _open_microphone(self) -> Optional[MicrophoneTrack]:
        """Open the audio track. Failure leaves the handle video-only."""
        track = self._microphone_factory()
        if track is None:
            return None
        try:
            track.open()
        except Exception as e:
            logger.warning(f"Microphone unavailable, recording without audio: {e}")
            track.stop()
            return None
        return track

    async def acquire(self, facing_mode: FacingMode) -> CameraHandle:
        """Open the camera for a facing mode.

        Any previously live handle is released first.

        Raises:
            CameraPermissionError: Access denied by the platform
            DeviceError: No matching camera
        """
        async with self._lock:
            self._release_locked()

            index = self._device_index(facing_mode)
            logger.info(f"Acquiring {facing_mode.name.lower()} camera (device #{index})")

            capture = await asyncio.to_thread(self._open_capture, index)
            microphone = await asyncio.to_thread(self._open_microphone)

            handle = CameraHandle(capture, facing_mode, index, microphone=microphone)
            self._handle = handle
            self._facing_mode = facing_mode

            try:
                self.preview.attach(handle)
            except Exception as e:
                logger.warning(f"Preview attach failed: {e}")

            logger.info(f"Camera live: {handle.describe()}")
            return handle

    def release(self) -> None:
        """Stop every track of the current handle and clear it. Idempotent."""
        self._release_locked()

    def _release_locked(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            self.preview.detach()
        except Exception as e:
            logger.warning(f"Preview detach failed: {e}")
        handle.stop()
        logger.info(f"Released {handle.facing_mode.name.lower()} camera")

    async def switch(self) -> CameraHandle:
        """Release the current camera and acquire the opposite facing mode."""
        target = self._facing_mode.opposite
        self.release()
        return await self.acquire(target)
