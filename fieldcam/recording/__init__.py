# =============================================================================
# DISCLAIMER: This software is a proof of concept for educational purposes
# only. It records and uploads photos and video of people; obtain consent
# before capturing anyone and protect the upload credentials.
# =============================================================================
"""Recording, encoding and portrait normalization."""

from fieldcam.recording.codecs import CodecOption, VideoEncoder, codec_chain, open_encoder
from fieldcam.recording.controller import RecordingController, RecordingState
from fieldcam.recording.muxer import AudioMuxer
from fieldcam.recording.normalizer import PortraitNormalizer

__all__ = [
    "AudioMuxer",
    "CodecOption",
    "PortraitNormalizer",
    "RecordingController",
    "RecordingState",
    "VideoEncoder",
    "codec_chain",
    "open_encoder",
]
