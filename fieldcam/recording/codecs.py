# =============================================================================
# DISCLAIMER: This software is a proof of concept for educational purposes
# only. It records and uploads photos and video of people; obtain consent
# before capturing anyone and protect the upload credentials.
# =============================================================================
"""Codec fallback chain and the OpenCV-backed video encoder.

OpenCV builds differ wildly in which FourCCs they can write, so codecs are
tried in preference order until one opens. MJPG in an AVI container is the
generic fallback that every build supports and is always appended last.
"""

import logging
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple

import cv2
import numpy as np

from fieldcam.errors import EncodingError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CodecOption:
    """A FourCC with the container and MIME type it is written to."""

    fourcc: str
    extension: str
    mime_type: str


CODECS = {
    "VP90": CodecOption("VP90", ".webm", "video/webm"),
    "VP80": CodecOption("VP80", ".webm", "video/webm"),
    "avc1": CodecOption("avc1", ".mp4", "video/mp4"),
    "H264": CodecOption("H264", ".mp4", "video/mp4"),
    "mp4v": CodecOption("mp4v", ".mp4", "video/mp4"),
    "XVID": CodecOption("XVID", ".avi", "video/x-msvideo"),
    "MJPG": CodecOption("MJPG", ".avi", "video/x-msvideo"),
}

GENERIC_FALLBACK = CODECS["MJPG"]

WriterFactory = Callable[[str, int, float, Tuple[int, int]], cv2.VideoWriter]


def codec_chain(names: Iterable[str]) -> List[CodecOption]:
    """Resolve configured codec names into the ordered fallback chain.

    Unknown names are skipped; the generic fallback is always last.
    """
    chain: List[CodecOption] = []
    for name in names:
        option = CODECS.get(name)
        if option is None:
            logger.warning(f"Unknown codec '{name}' in fallback chain, skipping")
            continue
        if option not in chain:
            chain.append(option)

    if GENERIC_FALLBACK not in chain:
        chain.append(GENERIC_FALLBACK)
    return chain


class VideoEncoder:
    """Writes canonical frames through cv2.VideoWriter into a temporary file.

    The file only lives until finish() or abort(); the payload is returned
    as bytes.
    """

    def __init__(
        self,
        codec: CodecOption,
        size: Tuple[int, int],
        fps: float,
        max_frames: Optional[int] = None,
        writer_factory: Optional[WriterFactory] = None,
    ):
        self.codec = codec
        self.size = size
        self.fps = fps
        self.max_frames = max_frames
        self.frames_written = 0

        self._writer_factory = writer_factory or cv2.VideoWriter
        self._writer = None
        self._workdir: Optional[Path] = None

    @property
    def path(self) -> Optional[Path]:
        if self._workdir is None:
            return None
        return self._workdir / f"recording{self.codec.extension}"

    @property
    def is_open(self) -> bool:
        return self._writer is not None

    @property
    def is_full(self) -> bool:
        return self.max_frames is not None and self.frames_written >= self.max_frames

    @property
    def duration_seconds(self) -> float:
        return self.frames_written / self.fps if self.fps else 0.0

    def open(self) -> None:
        """Open the writer.

        Raises:
            EncodingError: The codec is not supported by this OpenCV build
        """
        self._workdir = Path(tempfile.mkdtemp(prefix="fieldcam-"))
        writer = None
        try:
            fourcc = cv2.VideoWriter_fourcc(*self.codec.fourcc)
            writer = self._writer_factory(str(self.path), fourcc, self.fps, self.size)
        except cv2.error as e:
            self._cleanup()
            raise EncodingError(f"Codec {self.codec.fourcc} raised: {e}") from e

        if writer is None or not writer.isOpened():
            if writer is not None:
                writer.release()
            self._cleanup()
            raise EncodingError(f"Codec {self.codec.fourcc} is not supported")

        self._writer = writer

    def write(self, frame: np.ndarray) -> bool:
        """Append a frame. Returns False once closed or at the frame cap."""
        if self._writer is None or self.is_full:
            return False
        self._writer.write(frame)
        self.frames_written += 1
        return True

    def finish(self) -> bytes:
        """Flush and close the writer and return the encoded payload (blocking)."""
        writer, self._writer = self._writer, None
        if writer is None:
            raise EncodingError("Encoder is not open")

        try:
            writer.release()
            path = self.path
            if path is None or not path.exists():
                raise EncodingError("Encoder produced no output file")
            payload = path.read_bytes()
        finally:
            self._cleanup()

        if not payload:
            raise EncodingError("Encoder produced an empty payload")

        logger.debug(
            f"Encoded {self.frames_written} frames "
            f"({len(payload) / 1024:.1f} KB, {self.codec.fourcc})"
        )
        return payload

    def abort(self) -> None:
        """Close the writer and drop everything written so far."""
        writer, self._writer = self._writer, None
        if writer is not None:
            try:
                writer.release()
            except cv2.error as e:
                logger.debug(f"Error releasing aborted writer: {e}")
        self._cleanup()

    def _cleanup(self) -> None:
        workdir, self._workdir = self._workdir, None
        if workdir is not None:
            shutil.rmtree(workdir, ignore_errors=True)


def open_encoder(
    chain: List[CodecOption],
    size: Tuple[int, int],
    fps: float,
    max_frames: Optional[int] = None,
    writer_factory: Optional[WriterFactory] = None,
) -> VideoEncoder:
    """Open the first codec in the chain that the runtime supports.

    Raises:
        EncodingError: Every codec in the chain failed
    """
    for codec in chain:
        encoder = VideoEncoder(
            codec, size, fps, max_frames=max_frames, writer_factory=writer_factory
        )
        try:
            encoder.open()
        except EncodingError as e:
            logger.warning(f"{e}, trying next codec")
            continue

        logger.info(
            f"Video encoder opened with codec={codec.fourcc} "
            f"size={size[0]}x{size[1]} fps={fps:.0f}"
        )
        return encoder

    tried = ", ".join(c.fourcc for c in chain)
    raise EncodingError(f"No working video codec found (tried {tried})")


def encode_jpeg(frame: np.ndarray, quality: int = 92) -> bytes:
    """Encode a frame as JPEG bytes.

    Raises:
        EncodingError: OpenCV could not encode the frame
    """
    try:
        success, encoded = cv2.imencode(".jpg", frame, [cv2.IMWRITE_JPEG_QUALITY, quality])
    except cv2.error as e:
        raise EncodingError(f"JPEG encoding failed: {e}") from e

    if not success:
        raise EncodingError("JPEG encoding failed")
    return encoded.tobytes()
