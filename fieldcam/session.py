# =============================================================================
# DISCLAIMER: This software is a proof of concept for educational purposes
# only. It records and uploads photos and video of people; obtain consent
# before capturing anyone and protect the upload credentials.
# =============================================================================
"""Capture session orchestration (one open capture dialog).

Coordinates the camera, the frame transform loop, the recorder, the
normalizer and the upload negotiator for a single subject.

Transitions:
    IDLE -> PREVIEWING: Photo/Video mode selected and camera acquired
    PREVIEWING -> RECORDING: start_recording()
    RECORDING -> READY: manual stop or max-duration timeout
    PREVIEWING -> READY: photo captured
    IDLE -> READY: file loaded in Upload mode
    READY -> UPLOADING -> UPLOADED -> CLOSED (after display delay)
    UPLOADING -> READY: upload failed, artifact kept for retry

Every path that leaves the camera (stop, switch, mode change, close) stops
the frame transform loop before the camera is released.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

from fieldcam.capture.camera_session import CameraSessionManager
from fieldcam.capture.frame_transform import FrameTransformPipeline
from fieldcam.capture.preview import PreviewSurface
from fieldcam.config import ClientContext, Settings, get_settings
from fieldcam.errors import (
    CameraPermissionError,
    CaptureError,
    DeviceError,
    EncodingError,
    InvalidStateError,
    NetworkError,
    ProtocolError,
    UploadInProgressError,
)
from fieldcam.models.capture import CaptureMode, CaptureSession, FacingMode, SessionStatus
from fieldcam.models.media import RecordedArtifact, UploadResult
from fieldcam.recording.controller import RecordingController
from fieldcam.recording.normalizer import PortraitNormalizer
from fieldcam.upload.negotiator import UploadNegotiator

logger = logging.getLogger(__name__)


class Notifier:
    """Operator-visible notifications. Logs by default."""

    def success(self, message: str) -> None:
        logger.info(message)

    def error(self, message: str) -> None:
        logger.error(message)


class CaptureSessionController:
    """Runs one capture session from mode selection to upload.

    Usage:
        controller = CaptureSessionController("42", ClientContext(auth_token=token))
        await controller.set_mode(CaptureMode.VIDEO)
        await controller.start_recording()
        await controller.stop_recording()
        result = await controller.submit()
    """

    def __init__(
        self,
        subject_id: str,
        context: ClientContext,
        settings: Optional[Settings] = None,
        camera: Optional[CameraSessionManager] = None,
        pipeline: Optional[FrameTransformPipeline] = None,
        recorder: Optional[RecordingController] = None,
        normalizer: Optional[PortraitNormalizer] = None,
        negotiator: Optional[UploadNegotiator] = None,
        notifier: Optional[Notifier] = None,
        preview: Optional[PreviewSurface] = None,
    ):
        self.settings = settings or get_settings()
        self.session = CaptureSession(subject_id=str(subject_id))
        self.notifier = notifier or Notifier()

        self.preview = preview or PreviewSurface()
        self.camera = camera or CameraSessionManager(self.settings, preview=self.preview)
        self.pipeline = pipeline or FrameTransformPipeline(self.settings)
        self.recorder = recorder or RecordingController(self.pipeline, self.settings)
        self.normalizer = normalizer or PortraitNormalizer(self.settings)
        self.negotiator = negotiator or UploadNegotiator(context, self.settings)

        self.pipeline.add_sink(self.preview.show)
        self.recorder.add_auto_stop_callback(self._on_auto_stop)
        self.recorder.add_auto_stop_error_callback(self._on_auto_stop_failed)

        self._artifact: Optional[RecordedArtifact] = None
        self.upload_result: Optional[UploadResult] = None
        self._close_task: Optional[asyncio.Task] = None
        self.closed = asyncio.Event()

    # ==================== Properties ====================

    @property
    def status(self) -> SessionStatus:
        return self.session.status

    @property
    def mode(self) -> CaptureMode:
        return self.session.mode

    @property
    def artifact(self) -> Optional[RecordedArtifact]:
        return self._artifact

    @property
    def can_submit(self) -> bool:
        """Whether the upload control is enabled."""
        return (
            self._artifact is not None
            and self.status == SessionStatus.READY
            and not self.negotiator.busy
        )

    @property
    def can_change_mode(self) -> bool:
        """Whether the mode selector is enabled."""
        return self.status in (
            SessionStatus.IDLE,
            SessionStatus.PREVIEWING,
            SessionStatus.READY,
        )

    def _ensure_open(self) -> None:
        if self.session.is_closed:
            raise InvalidStateError("Capture session is closed")

    def _set_status(self, status: SessionStatus) -> None:
        old = self.session.status
        if self.session.transition_to(status) and old != status:
            logger.debug(f"Session {self.session.id}: {old.value} -> {status.value}")

    # ==================== Camera ====================

    async def _start_camera(self, facing_mode: FacingMode) -> None:
        try:
            handle = await self.camera.acquire(facing_mode)
        except (CameraPermissionError, DeviceError) as e:
            self.session.last_error = str(e)
            self._set_status(SessionStatus.READY if self._artifact else SessionStatus.IDLE)
            logger.error(f"Camera error: {e}")
            self.notifier.error("Camera access failed")
            raise

        self.pipeline.start(handle)
        self.session.facing_mode = handle.facing_mode
        self.session.last_error = None
        self._set_status(SessionStatus.READY if self._artifact else SessionStatus.PREVIEWING)

    async def _stop_camera(self) -> None:
        """Cancel any recording, stop the frame loop, release the camera."""
        if self.recorder.is_recording:
            await self.recorder.cancel()
        await self.pipeline.stop()
        self.camera.release()

    async def open(
        self,
        mode: CaptureMode = CaptureMode.UPLOAD,
        facing_mode: Optional[FacingMode] = None,
    ) -> None:
        """Open the dialog in a mode. Upload mode needs no camera."""
        self._ensure_open()
        if facing_mode is not None:
            self.session.facing_mode = facing_mode
        logger.info(
            f"Opening capture session {self.session.id} "
            f"for subject {self.session.subject_id}"
        )
        await self.set_mode(mode)

    async def set_mode(self, mode: CaptureMode) -> None:
        """Select Upload, Photo or Video mode. Discards the current artifact."""
        self._ensure_open()
        if not self.can_change_mode:
            raise InvalidStateError(f"Cannot change mode while {self.status.value}")

        await self._stop_camera()
        self._artifact = None
        self.recorder.reset()
        self.session.mode = mode
        self.session.last_error = None
        self._set_status(SessionStatus.IDLE)
        logger.info(f"Session {self.session.id}: mode {mode.value}")

        if mode.uses_camera:
            await self._start_camera(self.session.facing_mode)

    async def switch_camera(self) -> None:
        """Flip between front and rear camera.

        An in-progress recording is cancelled; the frame loop is stopped
        before the old camera is released and restarted on the new one.
        """
        self._ensure_open()
        if not self.mode.uses_camera:
            raise InvalidStateError("No camera in upload mode")

        if self.recorder.is_recording:
            await self.recorder.cancel()
            self.notifier.error("Recording cancelled by camera switch")
        await self.pipeline.stop()

        target = self.session.facing_mode.opposite
        self.camera.release()
        await self._start_camera(target)

    # ==================== Capture ====================

    async def capture_photo(self) -> RecordedArtifact:
        """Capture a still in Photo mode."""
        self._ensure_open()
        if self.mode != CaptureMode.PHOTO:
            raise InvalidStateError("Photo capture requires photo mode")
        if not self.pipeline.is_running:
            raise InvalidStateError("Camera is not running")

        artifact = await self.recorder.capture_photo()
        return await self._accept(artifact)

    async def start_recording(self) -> None:
        """Start recording in Video mode, reacquiring the camera if needed."""
        self._ensure_open()
        if self.mode != CaptureMode.VIDEO:
            raise InvalidStateError("Recording requires video mode")
        if self.recorder.is_recording:
            raise InvalidStateError("Already recording")

        if self.camera.handle is None or not self.pipeline.is_running:
            await self._stop_camera()
            await self._start_camera(self.session.facing_mode)

        self.recorder.arm(self.camera.handle)
        try:
            self.recorder.start()
        except EncodingError as e:
            logger.error(f"Cannot start recording: {e}")
            self.notifier.error("Recording is not supported on this device")
            self.session.last_error = str(e)
            self.recorder.reset()
            raise

        self._artifact = None
        self._set_status(SessionStatus.RECORDING)

    async def stop_recording(self) -> RecordedArtifact:
        """Stop recording (operator action)."""
        self._ensure_open()
        try:
            artifact = await self.recorder.stop(manual=True)
        except EncodingError as e:
            await self._recording_failed(e)
            raise
        return await self._finish_recording(artifact)

    async def _on_auto_stop(self, artifact: RecordedArtifact) -> None:
        if self.session.is_closed:
            return
        seconds = self.settings.recording.max_duration_ms / 1000.0
        self.notifier.success(f"Recording auto-stopped after {seconds:g}s")
        await self._finish_recording(artifact)

    async def _on_auto_stop_failed(self, error: EncodingError) -> None:
        if self.session.is_closed:
            return
        await self._recording_failed(error)

    async def _recording_failed(self, error: EncodingError) -> None:
        """Drop back to IDLE with the camera released after a failed finalize."""
        if self.session.is_closed:
            return
        self.session.last_error = str(error)
        self.notifier.error("Recording failed")
        await self._stop_camera()
        self._set_status(SessionStatus.IDLE)

    async def _finish_recording(self, artifact: RecordedArtifact) -> RecordedArtifact:
        if self.session.is_closed:
            # close() already released the camera; the artifact is discarded
            return artifact
        await self.pipeline.stop()
        self.camera.release()
        return await self._accept(artifact)

    async def _accept(self, artifact: RecordedArtifact) -> RecordedArtifact:
        """Normalize if needed and make the artifact current."""
        if self.settings.recording.auto_normalize:
            try:
                if await self.normalizer.needs_normalization(artifact):
                    artifact = await self.normalizer.normalize(artifact)
            except EncodingError as e:
                logger.warning(f"Portrait normalization failed, keeping original: {e}")

        if self.session.is_closed:
            logger.info(f"Session {self.session.id} closed, discarding {artifact.kind.value}")
            return artifact
        self._artifact = artifact
        self._set_status(SessionStatus.READY)
        return artifact

    async def load_file(self, path: Path) -> RecordedArtifact:
        """Use an existing photo or video file in Upload mode."""
        self._ensure_open()
        if self.mode != CaptureMode.UPLOAD:
            raise InvalidStateError("Loading a file requires upload mode")

        artifact = RecordedArtifact.from_file(Path(path))
        logger.info(
            f"Loaded {artifact.kind.value} {artifact.filename} "
            f"({artifact.size_bytes / 1024:.1f} KB)"
        )
        self._artifact = artifact
        self._set_status(SessionStatus.READY)
        return artifact

    # ==================== Upload ====================

    async def submit(self) -> UploadResult:
        """Upload the current artifact.

        On failure the session returns to READY with the artifact intact.
        On success the session closes after the configured display delay.
        """
        self._ensure_open()
        if self._artifact is None:
            self.notifier.error("No file to upload")
            raise InvalidStateError("No artifact to upload")
        if self.negotiator.busy:
            raise UploadInProgressError("An upload is already in progress")
        if self.status != SessionStatus.READY:
            raise InvalidStateError(f"Cannot upload while {self.status.value}")

        self._set_status(SessionStatus.UPLOADING)
        try:
            result = await self.negotiator.submit(self._artifact, self.session.subject_id)
        except ProtocolError as e:
            self.session.last_error = str(e)
            self._set_status(SessionStatus.READY)
            self.notifier.error("Unexpected response from server")
            raise
        except NetworkError as e:
            self.session.last_error = str(e)
            self._set_status(SessionStatus.READY)
            self.notifier.error("Upload failed")
            raise

        self.upload_result = result
        self.session.last_error = None
        self._set_status(SessionStatus.UPLOADED)
        self.notifier.success(result.message or "Upload successful")

        self._close_task = asyncio.create_task(self._close_later(), name="session-close")
        return result

    async def _close_later(self) -> None:
        await asyncio.sleep(self.settings.upload.close_delay_seconds)
        await self.close()

    async def close(self) -> None:
        """Release every resource and close the session. Idempotent."""
        if self.session.is_closed:
            return
        if self.status == SessionStatus.UPLOADING:
            raise InvalidStateError("Cannot close while an upload is in flight")

        close_task, self._close_task = self._close_task, None
        if close_task is not None and close_task is not asyncio.current_task():
            close_task.cancel()

        # A pending timeout-forced stop would otherwise finish after close
        auto_stop = self.recorder.auto_stop_task
        if auto_stop is not None and auto_stop is not asyncio.current_task():
            auto_stop.cancel()
            try:
                await auto_stop
            except asyncio.CancelledError:
                pass

        try:
            await self._stop_camera()
        except CaptureError as e:
            logger.warning(f"Error stopping camera on close: {e}")
        await self.negotiator.close()

        self._artifact = None
        self._set_status(SessionStatus.CLOSED)
        self.closed.set()
        logger.info(f"Session {self.session.id} closed")
