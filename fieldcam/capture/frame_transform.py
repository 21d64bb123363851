# =============================================================================
# DISCLAIMER: This software is a proof of concept for educational purposes
# only. It records and uploads photos and video of people; obtain consent
# before capturing anyone and protect the upload credentials.
# =============================================================================
"""Continuous transform of camera frames into the canonical portrait buffer.

Every tick the latest source frame is optionally rotated, center-cropped to
the canonical 9:16 aspect ratio and resized into a fixed-size buffer. The
buffer is then handed to every registered sink (preview, encoder).

The redraw loop is a single asyncio task; the task object is the one
cancellation token and every exit path goes through stop().
"""

import asyncio
import logging
from fractions import Fraction
from typing import Callable, List, Optional, Tuple

import cv2
import numpy as np

from fieldcam.config import Settings, get_settings
from fieldcam.errors import InvalidStateError
from fieldcam.models.capture import CanonicalFrame, CropRect, Rotation

logger = logging.getLogger(__name__)

FrameSink = Callable[[np.ndarray], None]

_CV_ROTATIONS = {
    Rotation.CW_90: cv2.ROTATE_90_CLOCKWISE,
    Rotation.CCW_90: cv2.ROTATE_90_COUNTERCLOCKWISE,
}


def compute_center_crop(src_width: int, src_height: int, aspect: Fraction) -> CropRect:
    """Centered crop of a source frame matching the target aspect ratio.

    Wider sources lose width (height-constrained), taller sources lose
    height (width-constrained).

    Args:
        src_width: Source frame width
        src_height: Source frame height
        aspect: Target width / height (9/16 for portrait)

    Returns:
        CropRect in source coordinates
    """
    if src_width <= 0 or src_height <= 0:
        raise ValueError(f"Invalid source size {src_width}x{src_height}")

    if Fraction(src_width, src_height) > aspect:
        crop_width = min(src_width, max(1, round(src_height * aspect)))
        x = (src_width - crop_width) // 2
        return CropRect(x, 0, crop_width, src_height)

    crop_height = min(src_height, max(1, round(src_width / aspect)))
    y = (src_height - crop_height) // 2
    return CropRect(0, y, src_width, crop_height)


def choose_rotation(
    width: int,
    height: int,
    orientation_meta: int = 0,
    policy: str = "metadata",
    handheld: bool = False,
) -> Rotation:
    """Decide whether the raw stream needs a quarter turn.

    Policies:
        none     - never rotate, cropping alone produces the portrait frame
        metadata - follow the stream's orientation metadata (90 / 270)
        handheld - rotate landscape streams when the device is handheld
    """
    if policy == "none":
        return Rotation.NONE

    if policy == "metadata":
        if orientation_meta == 90:
            return Rotation.CW_90
        if orientation_meta == 270:
            return Rotation.CCW_90
        return Rotation.NONE

    if policy == "handheld":
        if handheld and width > height:
            return Rotation.CW_90
        return Rotation.NONE

    logger.warning(f"Unknown rotation policy '{policy}', not rotating")
    return Rotation.NONE


def render_canonical(
    frame: np.ndarray,
    size: Tuple[int, int],
    aspect: Fraction,
    rotation: Rotation = Rotation.NONE,
    out: Optional[np.ndarray] = None,
) -> Tuple[np.ndarray, CropRect]:
    """Rotate, center-crop and resize a frame into a portrait target.

    Args:
        frame: BGR image (OpenCV format)
        size: Output (width, height)
        aspect: Target aspect ratio used for the crop
        rotation: Rotation applied before cropping
        out: Optional preallocated buffer of shape (height, width, 3)

    Returns:
        Tuple of (output frame, crop rectangle in rotated-source coordinates)
    """
    if frame.ndim == 2:
        frame = cv2.cvtColor(frame, cv2.COLOR_GRAY2BGR)
    elif frame.shape[2] == 4:
        frame = cv2.cvtColor(frame, cv2.COLOR_BGRA2BGR)

    if rotation in _CV_ROTATIONS:
        frame = cv2.rotate(frame, _CV_ROTATIONS[rotation])

    src_height, src_width = frame.shape[:2]
    crop = compute_center_crop(src_width, src_height, aspect)
    region = frame[crop.y:crop.y + crop.height, crop.x:crop.x + crop.width]

    resized = cv2.resize(region, size, interpolation=cv2.INTER_AREA)
    if out is None:
        return resized, crop

    out[:] = resized
    return out, crop


class FrameTransformPipeline:
    """Redraws the live camera stream into the canonical frame buffer.

    Usage:
        pipeline = FrameTransformPipeline(settings)
        pipeline.add_sink(preview.show)
        pipeline.start(handle)
        ...
        await pipeline.stop()
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

        frame_cfg = self.settings.frame
        self.frame = CanonicalFrame(width=frame_cfg.width, height=frame_cfg.height)
        self.aspect = frame_cfg.aspect

        self._task: Optional[asyncio.Task] = None
        self._handle = None
        self._sinks: List[FrameSink] = []

        # Last raw frame, kept for native-resolution stills
        self.last_raw: Optional[np.ndarray] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def fps(self) -> float:
        return self.settings.camera.fps

    def add_sink(self, sink: FrameSink) -> None:
        """Register a consumer of every canonical frame."""
        if sink not in self._sinks:
            self._sinks.append(sink)

    def remove_sink(self, sink: FrameSink) -> None:
        if sink in self._sinks:
            self._sinks.remove(sink)

    def rotation_for(self, handle) -> Rotation:
        cam = self.settings.camera
        return choose_rotation(
            handle.width,
            handle.height,
            orientation_meta=handle.orientation_meta,
            policy=cam.rotation_policy,
            handheld=cam.handheld,
        )

    def start(self, handle) -> None:
        """Start the redraw loop on a live handle."""
        if self.is_running:
            raise InvalidStateError("Frame transform loop already running")
        if handle is None or not handle.is_live:
            raise InvalidStateError("Cannot start frame transform without a live camera")

        self._handle = handle
        self.last_raw = None
        self._task = asyncio.create_task(self._run(handle), name="frame-transform")
        logger.debug(f"Frame transform started ({self.frame.width}x{self.frame.height})")

    async def stop(self) -> None:
        """Cancel the redraw loop. Idempotent."""
        task, self._task = self._task, None
        self._handle = None
        if task is None:
            return

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug(f"Frame transform stopped after {self.frame.frames_drawn} frames")

    def draw(self, raw: np.ndarray, rotation: Rotation = Rotation.NONE) -> np.ndarray:
        """Draw one raw frame into the canonical buffer and notify sinks."""
        _, crop = render_canonical(
            raw,
            self.frame.size,
            self.aspect,
            rotation=rotation,
            out=self.frame.buffer,
        )
        self.frame.crop = crop
        self.frame.rotation = rotation
        self.frame.frames_drawn += 1
        self.last_raw = raw

        for sink in list(self._sinks):
            try:
                sink(self.frame.buffer)
            except Exception as e:
                logger.error(f"Frame sink error: {e}")

        return self.frame.buffer

    async def _run(self, handle) -> None:
        """Redraw loop, paced at the configured frame rate."""
        loop = asyncio.get_running_loop()
        interval = 1.0 / max(self.fps, 1.0)
        next_tick = loop.time()

        while handle.is_live:
            raw = await asyncio.to_thread(handle.read)
            if raw is None:
                if not handle.is_live:
                    break
                await asyncio.sleep(interval)
                continue

            self.draw(raw, self.rotation_for(handle))

            next_tick += interval
            delay = next_tick - loop.time()
            if delay < 0:
                # Fell behind, resync instead of bursting
                next_tick = loop.time()
                delay = 0
            await asyncio.sleep(delay)

        logger.debug("Camera released, frame transform loop exiting")
        if self._task is asyncio.current_task():
            self._task = None
            self._handle = None
