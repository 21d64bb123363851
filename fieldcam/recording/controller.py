# =============================================================================
# DISCLAIMER: This software is a proof of concept for educational purposes
# only. It records and uploads photos and video of people; obtain consent
# before capturing anyone and protect the upload credentials.
# =============================================================================
"""Recording state machine.

State Flow:
    IDLE -> ARMED        (live camera and running frame transform)
    ARMED -> RECORDING   (encoder opened on the canonical frame buffer)
    RECORDING -> FINALIZING -> READY   (manual stop or max-duration timeout)
    RECORDING -> IDLE    (cancel, everything recorded is dropped)

The max-duration countdown is a one-shot loop.call_later() handle. A manual
stop cancels it, so a recording is finalized exactly once.
"""

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Callable, List, Optional

import numpy as np

from fieldcam.capture.frame_transform import FrameTransformPipeline, render_canonical
from fieldcam.capture.microphone import pcm_to_wav
from fieldcam.config import Settings, get_settings
from fieldcam.errors import EncodingError, InvalidStateError
from fieldcam.models.media import ArtifactKind, RecordedArtifact
from fieldcam.recording.codecs import (
    CodecOption,
    VideoEncoder,
    WriterFactory,
    codec_chain,
    encode_jpeg,
    open_encoder,
)
from fieldcam.recording.muxer import AudioMuxer

logger = logging.getLogger(__name__)


class RecordingState(Enum):
    """Recording controller states."""

    IDLE = "idle"
    ARMED = "armed"
    RECORDING = "recording"
    FINALIZING = "finalizing"
    READY = "ready"


class RecordingController:
    """Records the canonical frame buffer into a bounded-length video.

    Attributes:
        state: Current RecordingState
        artifact: Last finalized RecordedArtifact (READY only)
        codec: Codec selected at start() for the current/last recording
    """

    def __init__(
        self,
        pipeline: FrameTransformPipeline,
        settings: Optional[Settings] = None,
        muxer: Optional[AudioMuxer] = None,
        writer_factory: Optional[WriterFactory] = None,
    ):
        """Initialize recording controller.

        Args:
            pipeline: Frame transform pipeline whose buffer is recorded
            settings: Client settings (uses global if not provided)
            muxer: Audio muxer (built from settings if not provided)
            writer_factory: cv2.VideoWriter replacement, used by tests
        """
        self.settings = settings or get_settings()
        self.pipeline = pipeline
        rec = self.settings.recording
        self.muxer = muxer or AudioMuxer(rec.ffmpeg_path, rec.mux_timeout_seconds)
        self._writer_factory = writer_factory

        self._state = RecordingState.IDLE
        self._handle = None
        self._encoder: Optional[VideoEncoder] = None
        self._artifact: Optional[RecordedArtifact] = None
        self.codec: Optional[CodecOption] = None

        # Countdown
        self._deadline: Optional[asyncio.TimerHandle] = None
        self._auto_stop_task: Optional[asyncio.Task] = None
        self._auto_stop_callbacks: List[Callable[[RecordedArtifact], Any]] = []
        self._auto_stop_error_callbacks: List[Callable[[EncodingError], Any]] = []

        # Timing, in event loop time
        self.started_at: Optional[float] = None
        self.stopped_at: Optional[float] = None
        self.last_stop_manual: Optional[bool] = None

    # ==================== Properties ====================

    @property
    def state(self) -> RecordingState:
        return self._state

    @property
    def artifact(self) -> Optional[RecordedArtifact]:
        return self._artifact

    @property
    def is_recording(self) -> bool:
        return self._state == RecordingState.RECORDING

    @property
    def max_duration_seconds(self) -> float:
        return self.settings.recording.max_duration_ms / 1000.0

    @property
    def deadline_at(self) -> Optional[float]:
        """Loop time at which the countdown forces a stop."""
        if self._deadline is None:
            return None
        return self._deadline.when()

    @property
    def frames_written(self) -> int:
        return self._encoder.frames_written if self._encoder else 0

    def add_auto_stop_callback(self, callback: Callable[[RecordedArtifact], Any]) -> None:
        """Called with the artifact after a timeout-forced stop (may be async)."""
        self._auto_stop_callbacks.append(callback)

    def add_auto_stop_error_callback(self, callback: Callable[[EncodingError], Any]) -> None:
        """Called with the error when a timeout-forced stop fails to finalize."""
        self._auto_stop_error_callbacks.append(callback)

    @property
    def auto_stop_task(self) -> Optional[asyncio.Task]:
        """The pending timeout-forced stop, if one is running."""
        task = self._auto_stop_task
        if task is None or task.done():
            return None
        return task

    # ==================== Transitions ====================

    def arm(self, handle) -> None:
        """Bind to a live camera and a running frame transform."""
        if self._state in (RecordingState.RECORDING, RecordingState.FINALIZING):
            raise InvalidStateError(f"Cannot arm while {self._state.value}")
        if handle is None or not handle.is_live:
            raise InvalidStateError("Cannot arm without a live camera")
        if not self.pipeline.is_running:
            raise InvalidStateError("Cannot arm without an active frame buffer")

        self._handle = handle
        self._state = RecordingState.ARMED
        logger.debug("Recorder armed")

    def start(self) -> None:
        """Start recording the canonical frame buffer.

        Raises:
            InvalidStateError: Not armed, or the camera/frame loop went away
            EncodingError: No codec in the fallback chain is supported
        """
        if self._state != RecordingState.ARMED:
            raise InvalidStateError(f"Cannot start recording while {self._state.value}")
        if self._handle is None or not self._handle.is_live or not self.pipeline.is_running:
            self._state = RecordingState.IDLE
            raise InvalidStateError("Camera or frame buffer no longer active")

        fps = self.pipeline.fps
        max_frames = int(round(self.max_duration_seconds * fps))
        chain = codec_chain(self.settings.recording.codecs)

        # Codec is chosen once here and kept for the whole recording
        self._encoder = open_encoder(
            chain,
            self.pipeline.frame.size,
            fps,
            max_frames=max_frames,
            writer_factory=self._writer_factory,
        )
        self.codec = self._encoder.codec

        # A new recording supersedes the previous artifact
        self._artifact = None

        if self._handle.has_audio:
            self._handle.microphone.begin_capture()
        self.pipeline.add_sink(self._on_frame)

        loop = asyncio.get_running_loop()
        self.started_at = loop.time()
        self.stopped_at = None
        self.last_stop_manual = None
        self._deadline = loop.call_later(self.max_duration_seconds, self._on_deadline)
        self._state = RecordingState.RECORDING

        logger.info(
            f"Recording started ({self.codec.fourcc}, max {self.max_duration_seconds:.0f}s)"
        )

    def _on_frame(self, frame: np.ndarray) -> None:
        if self._state != RecordingState.RECORDING or self._encoder is None:
            return
        self._encoder.write(frame)

    def _on_deadline(self) -> None:
        self._deadline = None
        if self._state != RecordingState.RECORDING:
            return
        logger.info(f"Maximum duration reached ({self.max_duration_seconds:.0f}s), stopping")
        self._auto_stop_task = asyncio.create_task(self._auto_stop(), name="recording-auto-stop")

    async def _auto_stop(self) -> None:
        try:
            artifact = await self.stop(manual=False)
        except InvalidStateError:
            # A manual stop or cancel got there first
            logger.debug("Auto-stop skipped, recording already stopped")
            return
        except EncodingError as e:
            logger.error(f"Auto-stop failed to finalize recording: {e}")
            await self._run_callbacks(self._auto_stop_error_callbacks, e)
            return

        await self._run_callbacks(self._auto_stop_callbacks, artifact)

    async def _run_callbacks(self, callbacks: List[Callable[[Any], Any]], value: Any) -> None:
        for callback in callbacks:
            try:
                result = callback(value)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Auto-stop callback error: {e}")

    def _detach(self) -> bytes:
        """Cancel the countdown, unbind from the frame buffer, collect audio."""
        if self._deadline is not None:
            self._deadline.cancel()
            self._deadline = None

        self.pipeline.remove_sink(self._on_frame)

        if self._handle is not None and self._handle.microphone is not None:
            return self._handle.microphone.end_capture()
        return b""

    async def stop(self, manual: bool = True) -> RecordedArtifact:
        """Finalize the recording.

        Args:
            manual: True for operator action, False for the timeout

        Returns:
            The finalized RecordedArtifact

        Raises:
            InvalidStateError: Not recording
            EncodingError: The encoder produced no usable payload
        """
        if self._state != RecordingState.RECORDING:
            raise InvalidStateError(f"Cannot stop while {self._state.value}")

        self._state = RecordingState.FINALIZING
        self.stopped_at = asyncio.get_running_loop().time()
        self.last_stop_manual = manual
        pcm = self._detach()

        encoder, self._encoder = self._encoder, None
        try:
            # Release flushes the last chunk to disk
            payload = await asyncio.to_thread(encoder.finish)
        except EncodingError:
            self._state = RecordingState.IDLE
            raise

        codec = encoder.codec
        if pcm:
            rec = self.settings.recording
            wav = pcm_to_wav(pcm, rec.audio_sample_rate, rec.audio_channels)
            muxed = await self.muxer.mux(payload, codec.extension, wav)
            if muxed:
                payload = muxed

        width, height = encoder.size
        self._artifact = RecordedArtifact(
            payload=payload,
            mime_type=codec.mime_type,
            kind=ArtifactKind.VIDEO,
            width=width,
            height=height,
            duration_seconds=encoder.duration_seconds,
        )
        self._state = RecordingState.READY

        logger.info(
            f"Recording {'stopped' if manual else 'auto-stopped'}: "
            f"{encoder.frames_written} frames, {encoder.duration_seconds:.1f}s, "
            f"{len(payload) / 1024:.1f} KB"
        )
        return self._artifact

    async def cancel(self) -> None:
        """Drop an in-progress recording and return to IDLE. Idempotent."""
        if self._state == RecordingState.RECORDING:
            self._detach()
            encoder, self._encoder = self._encoder, None
            if encoder is not None:
                encoder.abort()
            logger.info("Recording cancelled")

        if self._state != RecordingState.FINALIZING:
            self._state = RecordingState.IDLE
        self._handle = None

    def reset(self) -> None:
        """Discard the artifact and return to IDLE (not while recording)."""
        if self._state in (RecordingState.RECORDING, RecordingState.FINALIZING):
            raise InvalidStateError(f"Cannot reset while {self._state.value}")
        self._artifact = None
        self._handle = None
        self._state = RecordingState.IDLE

    async def capture_photo(self) -> RecordedArtifact:
        """Encode the current camera frame as a portrait still.

        Uses the last native-resolution frame, cropped to the canonical
        aspect ratio and scaled to the photo size, bypassing the encoder.

        Raises:
            InvalidStateError: Recording in progress or no frame drawn yet
            EncodingError: JPEG encoding failed
        """
        if self._state in (RecordingState.RECORDING, RecordingState.FINALIZING):
            raise InvalidStateError("Cannot capture a photo while recording")

        raw = self.pipeline.last_raw
        if raw is None:
            raise InvalidStateError("No camera frame available yet")

        frame_cfg = self.settings.frame
        size = (frame_cfg.photo_width, frame_cfg.photo_height)
        rotation = self.pipeline.frame.rotation

        def _encode() -> bytes:
            still, _ = render_canonical(raw, size, frame_cfg.aspect, rotation=rotation)
            return encode_jpeg(still, frame_cfg.jpeg_quality)

        payload = await asyncio.to_thread(_encode)

        self._artifact = RecordedArtifact(
            payload=payload,
            mime_type="image/jpeg",
            kind=ArtifactKind.IMAGE,
            width=size[0],
            height=size[1],
        )
        self._state = RecordingState.READY
        logger.info(f"Photo captured ({size[0]}x{size[1]}, {len(payload) / 1024:.1f} KB)")
        return self._artifact
