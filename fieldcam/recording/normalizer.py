# =============================================================================
# DISCLAIMER: This software is a proof of concept for educational purposes
# only. It records and uploads photos and video of people; obtain consent
# before capturing anyone and protect the upload credentials.
# =============================================================================
"""Second-pass portrait normalization.

Some devices deliver frames whose orientation differs from what the live
transform assumed, so the finished payload is not 9:16. This pass decodes
the payload offscreen, center-crops every frame to the canonical aspect,
and re-encodes with the same codec fallback chain. Crop only, no rotation.
"""

import asyncio
import logging
import mimetypes
import shutil
import tempfile
from pathlib import Path
from typing import Callable, Optional, Tuple

import cv2
import numpy as np

from fieldcam.capture.frame_transform import render_canonical
from fieldcam.config import Settings, get_settings
from fieldcam.errors import EncodingError
from fieldcam.models.media import ArtifactKind, RecordedArtifact
from fieldcam.recording.codecs import WriterFactory, codec_chain, encode_jpeg, open_encoder
from fieldcam.recording.muxer import AudioMuxer

logger = logging.getLogger(__name__)


def _extension_for(mime_type: str) -> str:
    return mimetypes.guess_extension(mime_type) or ".bin"


class PortraitNormalizer:
    """Re-crops finished artifacts whose intrinsic aspect is not canonical.

    Usage:
        normalizer = PortraitNormalizer(settings)
        if await normalizer.needs_normalization(artifact):
            artifact = await normalizer.normalize(artifact)
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        muxer: Optional[AudioMuxer] = None,
        writer_factory: Optional[WriterFactory] = None,
        capture_factory: Optional[Callable[[str], cv2.VideoCapture]] = None,
    ):
        self.settings = settings or get_settings()
        rec = self.settings.recording
        self.muxer = muxer or AudioMuxer(rec.ffmpeg_path, rec.mux_timeout_seconds)
        self._writer_factory = writer_factory
        self._capture_factory = capture_factory or cv2.VideoCapture

    @property
    def aspect(self):
        return self.settings.frame.aspect

    def is_canonical(self, width: int, height: int) -> bool:
        """True if width/height is within tolerance of the canonical aspect."""
        if width <= 0 or height <= 0:
            return False
        target = float(self.aspect)
        deviation = abs(width / height - target) / target
        return deviation <= self.settings.recording.normalize_tolerance

    # ==================== Probing ====================

    def probe(self, artifact: RecordedArtifact) -> Tuple[int, int]:
        """Decode the payload's intrinsic (width, height) (blocking).

        Raises:
            EncodingError: Payload could not be decoded
        """
        if artifact.kind == ArtifactKind.IMAGE:
            image = self._decode_image(artifact.payload)
            height, width = image.shape[:2]
            return width, height

        workdir = Path(tempfile.mkdtemp(prefix="fieldcam-probe-"))
        try:
            source = workdir / f"source{_extension_for(artifact.mime_type)}"
            source.write_bytes(artifact.payload)
            cap = self._capture_factory(str(source))
            try:
                if not cap.isOpened():
                    raise EncodingError("Recorded video could not be opened for decoding")
                width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))
                height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
                if width <= 0 or height <= 0:
                    ret, frame = cap.read()
                    if not ret or frame is None:
                        raise EncodingError("Recorded video has no decodable frames")
                    height, width = frame.shape[:2]
                return width, height
            finally:
                cap.release()
        finally:
            shutil.rmtree(workdir, ignore_errors=True)

    async def needs_normalization(self, artifact: RecordedArtifact) -> bool:
        """Compare the payload's intrinsic dimensions with the canonical target."""
        width, height = await asyncio.to_thread(self.probe, artifact)
        canonical = self.is_canonical(width, height)
        if not canonical:
            logger.info(
                f"Artifact is {width}x{height}, not {self.settings.frame.aspect_width}:"
                f"{self.settings.frame.aspect_height}; normalization needed"
            )
        return not canonical

    # ==================== Normalization ====================

    @staticmethod
    def _decode_image(payload: bytes) -> np.ndarray:
        image = cv2.imdecode(np.frombuffer(payload, dtype=np.uint8), cv2.IMREAD_COLOR)
        if image is None:
            raise EncodingError("Image payload could not be decoded")
        return image

    def _normalize_image(self, artifact: RecordedArtifact) -> RecordedArtifact:
        frame_cfg = self.settings.frame
        image = self._decode_image(artifact.payload)
        size = (frame_cfg.photo_width, frame_cfg.photo_height)
        still, crop = render_canonical(image, size, self.aspect)
        logger.debug(f"Image crop {crop.as_tuple()} -> {size[0]}x{size[1]}")
        return RecordedArtifact(
            payload=encode_jpeg(still, frame_cfg.jpeg_quality),
            mime_type="image/jpeg",
            kind=ArtifactKind.IMAGE,
            width=size[0],
            height=size[1],
            normalized=True,
        )

    def _reencode_video(self, artifact: RecordedArtifact) -> RecordedArtifact:
        frame_cfg = self.settings.frame
        size = (frame_cfg.width, frame_cfg.height)

        workdir = Path(tempfile.mkdtemp(prefix="fieldcam-normalize-"))
        encoder = None
        try:
            source = workdir / f"source{_extension_for(artifact.mime_type)}"
            source.write_bytes(artifact.payload)

            cap = self._capture_factory(str(source))
            try:
                if not cap.isOpened():
                    raise EncodingError("Recorded video could not be opened for decoding")

                fps = cap.get(cv2.CAP_PROP_FPS) or self.settings.camera.fps
                encoder = open_encoder(
                    codec_chain(self.settings.recording.codecs),
                    size,
                    fps,
                    writer_factory=self._writer_factory,
                )

                while True:
                    ret, frame = cap.read()
                    if not ret or frame is None:
                        break
                    canonical, _ = render_canonical(frame, size, self.aspect)
                    encoder.write(canonical)
            finally:
                cap.release()

            if encoder.frames_written == 0:
                encoder.abort()
                raise EncodingError("Recorded video has no decodable frames")

            frames = encoder.frames_written
            duration = encoder.duration_seconds
            codec = encoder.codec
            payload = encoder.finish()
            encoder = None
        finally:
            if encoder is not None:
                encoder.abort()
            shutil.rmtree(workdir, ignore_errors=True)

        logger.info(f"Re-encoded {frames} frames to {size[0]}x{size[1]} ({codec.fourcc})")
        return RecordedArtifact(
            payload=payload,
            mime_type=codec.mime_type,
            kind=ArtifactKind.VIDEO,
            width=size[0],
            height=size[1],
            duration_seconds=duration,
            normalized=True,
        )

    async def normalize(self, artifact: RecordedArtifact) -> RecordedArtifact:
        """Return a center-cropped, canonical-size copy of the artifact.

        The source audio track, if any, is carried over into the result.

        Raises:
            EncodingError: Payload could not be decoded or re-encoded
        """
        if artifact.kind == ArtifactKind.IMAGE:
            return await asyncio.to_thread(self._normalize_image, artifact)

        normalized = await asyncio.to_thread(self._reencode_video, artifact)
        if not self.muxer.available:
            return normalized

        muxed = await self.muxer.mux(
            normalized.payload,
            _extension_for(normalized.mime_type),
            artifact.payload,
            audio_ext=_extension_for(artifact.mime_type),
        )
        if muxed:
            normalized.payload = muxed
        return normalized
