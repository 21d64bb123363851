# =============================================================================
# DISCLAIMER: This software is a proof of concept for educational purposes
# only. It records and uploads photos and video of people; obtain consent
# before capturing anyone and protect the upload credentials.
# =============================================================================
"""Microphone track for the camera handle.

The track is opened together with the camera and runs for the lifetime of
the handle; samples are only kept between begin_capture() and end_capture().
"""

import io
import logging
import threading
import wave
from typing import List, Optional

import numpy as np

logger = logging.getLogger(__name__)


class MicrophoneTrack:
    """Audio input stream backed by sounddevice (PortAudio).

    Usage:
        track = MicrophoneTrack(sample_rate=48000, channels=1)
        track.open()
        track.begin_capture()
        ...
        pcm = track.end_capture()
        track.stop()
    """

    def __init__(
        self,
        sample_rate: int = 48_000,
        channels: int = 1,
        device: Optional[int] = None,
    ):
        self.sample_rate = sample_rate
        self.channels = channels
        self.device = device

        self._stream = None
        self._blocks: List[np.ndarray] = []
        self._capturing = False
        self._lock = threading.Lock()

    @property
    def is_live(self) -> bool:
        return self._stream is not None

    def open(self) -> None:
        """Open and start the input stream.

        Raises:
            OSError: PortAudio is not available on this system
            sounddevice.PortAudioError: No usable input device
        """
        # Imported here so a host without PortAudio can still record video only;
        # the camera session treats a failed open as no audio track.
        import sounddevice as sd

        stream = sd.InputStream(
            samplerate=self.sample_rate,
            channels=self.channels,
            dtype="int16",
            device=self.device,
            callback=self._on_audio,
        )
        stream.start()
        self._stream = stream
        logger.debug(f"Microphone opened ({self.sample_rate} Hz, {self.channels} ch)")

    def _on_audio(self, indata, frames, time_info, status) -> None:
        """PortAudio callback (runs on the audio thread)."""
        if status:
            logger.debug(f"Microphone status: {status}")
        with self._lock:
            if self._capturing:
                self._blocks.append(indata.copy())

    def begin_capture(self) -> None:
        """Start keeping samples, discarding anything buffered before."""
        with self._lock:
            self._blocks = []
            self._capturing = True

    def end_capture(self) -> bytes:
        """Stop keeping samples and return them as interleaved int16 PCM."""
        with self._lock:
            self._capturing = False
            blocks, self._blocks = self._blocks, []

        if not blocks:
            return b""
        return np.concatenate(blocks).astype(np.int16).tobytes()

    def stop(self) -> None:
        """Stop and close the stream. Safe to call more than once."""
        stream, self._stream = self._stream, None
        with self._lock:
            self._capturing = False
            self._blocks = []
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except Exception as e:
            logger.warning(f"Error closing microphone: {e}")


def pcm_to_wav(pcm: bytes, sample_rate: int, channels: int) -> bytes:
    """Wrap raw int16 PCM in a WAV container."""
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wav:
        wav.setnchannels(channels)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(pcm)
    return buf.getvalue()
