# =============================================================================
# DISCLAIMER: This software is a proof of concept for educational purposes
# only. It records and uploads photos and video of people; obtain consent
# before capturing anyone and protect the upload credentials.
# =============================================================================
"""Tests for audio muxing and the WAV wrapper."""

import io
import wave
from pathlib import Path

from fieldcam.capture.microphone import pcm_to_wav
from fieldcam.recording.muxer import AudioMuxer


def test_command_matches_container():
    muxer = AudioMuxer("ffmpeg")
    cmd = muxer.build_command(Path("v.webm"), Path("a.wav"), Path("out.webm"))

    assert cmd[0] == "ffmpeg"
    assert cmd[cmd.index("-c:v") + 1] == "copy"
    assert cmd[cmd.index("-c:a") + 1] == "libopus"
    assert cmd[-1] == "out.webm"

    mp4 = muxer.build_command(Path("v.mp4"), Path("a.wav"), Path("out.mp4"))
    assert mp4[mp4.index("-c:a") + 1] == "aac"


async def test_missing_ffmpeg_keeps_video_only():
    muxer = AudioMuxer("ffmpeg-that-does-not-exist")
    assert not muxer.available
    assert await muxer.mux(b"video", ".webm", b"audio") is None


async def test_no_audio_is_noop():
    assert await AudioMuxer().mux(b"video", ".webm", b"") is None


def test_pcm_to_wav():
    pcm = b"\x00\x01" * 4800
    data = pcm_to_wav(pcm, sample_rate=48_000, channels=1)

    with wave.open(io.BytesIO(data), "rb") as wav:
        assert wav.getframerate() == 48_000
        assert wav.getnchannels() == 1
        assert wav.getsampwidth() == 2
        assert wav.getnframes() == 4800
