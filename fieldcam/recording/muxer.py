# =============================================================================
# DISCLAIMER: This software is a proof of concept for educational purposes
# only. It records and uploads photos and video of people; obtain consent
# before capturing anyone and protect the upload credentials.
# =============================================================================
"""Audio/video muxing with ffmpeg.

OpenCV writes video only, so the microphone track is added afterwards by
stream-copying the video and encoding the audio into the same container.
"""

import asyncio
import logging
import shutil
import tempfile
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Audio codec that the container accepts
_AUDIO_CODECS = {
    ".webm": "libopus",
    ".mp4": "aac",
    ".avi": "pcm_s16le",
}


class AudioMuxer:
    """Adds an audio track to an encoded video payload.

    Failures never raise: the caller keeps the video-only payload.
    """

    def __init__(self, ffmpeg_path: str = "ffmpeg", timeout_seconds: float = 60.0):
        self.ffmpeg_path = ffmpeg_path
        self.timeout_seconds = timeout_seconds

    @property
    def available(self) -> bool:
        return shutil.which(self.ffmpeg_path) is not None

    def build_command(self, video_path: Path, audio_path: Path, output_path: Path) -> list:
        audio_codec = _AUDIO_CODECS.get(output_path.suffix, "aac")
        return [
            self.ffmpeg_path, "-y", "-loglevel", "error",
            "-i", str(video_path),
            "-i", str(audio_path),
            "-map", "0:v:0",
            "-map", "1:a:0?",
            "-c:v", "copy",
            "-c:a", audio_codec,
            "-shortest",
            str(output_path),
        ]

    async def mux(
        self,
        video: bytes,
        video_ext: str,
        audio: bytes,
        audio_ext: str = ".wav",
    ) -> Optional[bytes]:
        """Mux audio into a video payload.

        Args:
            video: Encoded video payload
            video_ext: Container extension of the video (.webm, .mp4, .avi)
            audio: Audio payload (WAV, or any container holding an audio stream)
            audio_ext: Extension of the audio payload

        Returns:
            Muxed payload, or None if muxing was not possible
        """
        if not audio:
            return None

        if not self.available:
            logger.warning(f"{self.ffmpeg_path} not found, keeping video without audio")
            return None

        workdir = Path(tempfile.mkdtemp(prefix="fieldcam-mux-"))
        try:
            video_path = workdir / f"video{video_ext}"
            audio_path = workdir / f"audio{audio_ext}"
            output_path = workdir / f"muxed{video_ext}"
            video_path.write_bytes(video)
            audio_path.write_bytes(audio)

            cmd = self.build_command(video_path, audio_path, output_path)
            logger.debug(f"Starting A/V mux: {' '.join(cmd)}")

            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )

            try:
                _, stderr = await asyncio.wait_for(
                    process.communicate(),
                    timeout=self.timeout_seconds,
                )
            except asyncio.TimeoutError:
                logger.error(f"ffmpeg mux timed out after {self.timeout_seconds:.0f} seconds")
                process.kill()
                await process.wait()
                return None

            if process.returncode != 0:
                stderr_str = stderr.decode("utf-8", errors="ignore")
                logger.warning(
                    f"ffmpeg mux failed (exit code {process.returncode}): {stderr_str[:500]}"
                )
                return None

            if not output_path.exists():
                logger.warning("ffmpeg completed but output file not found")
                return None

            muxed = output_path.read_bytes()
            logger.info(f"A/V mux successful ({len(muxed) / 1024:.1f} KB)")
            return muxed

        except OSError as e:
            logger.warning(f"Failed to mux audio/video: {e}")
            return None

        finally:
            shutil.rmtree(workdir, ignore_errors=True)
