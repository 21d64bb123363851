# =============================================================================
# DISCLAIMER: This software is a proof of concept for educational purposes
# only. It records and uploads photos and video of people; obtain consent
# before capturing anyone and protect the upload credentials.
# =============================================================================
"""Tests for second-pass portrait normalization."""

import cv2
import numpy as np
import pytest

from conftest import FakeCameraFactory, FakeWriterFactory, UnavailableMuxer
from fieldcam.errors import EncodingError
from fieldcam.models.media import ArtifactKind, RecordedArtifact
from fieldcam.recording.normalizer import PortraitNormalizer


def jpeg(width, height) -> RecordedArtifact:
    ok, encoded = cv2.imencode(".jpg", np.full((height, width, 3), 90, dtype=np.uint8))
    assert ok
    return RecordedArtifact(
        payload=encoded.tobytes(),
        mime_type="image/jpeg",
        kind=ArtifactKind.IMAGE,
    )


def video() -> RecordedArtifact:
    return RecordedArtifact(
        payload=b"not decoded by the fake capture",
        mime_type="video/webm",
        kind=ArtifactKind.VIDEO,
    )


def make_normalizer(settings, capture_factory=None, writer_factory=None):
    return PortraitNormalizer(
        settings,
        muxer=UnavailableMuxer(),
        writer_factory=writer_factory or FakeWriterFactory(),
        capture_factory=capture_factory or FakeCameraFactory(),
    )


def test_canonical_tolerance(settings):
    normalizer = make_normalizer(settings)
    assert normalizer.is_canonical(480, 848)
    assert normalizer.is_canonical(720, 1280)
    assert not normalizer.is_canonical(1920, 1080)
    assert not normalizer.is_canonical(848, 480)
    assert not normalizer.is_canonical(0, 0)


async def test_portrait_image_needs_nothing(settings):
    normalizer = make_normalizer(settings)
    assert not await normalizer.needs_normalization(jpeg(720, 1280))


async def test_landscape_image_is_cropped(settings):
    normalizer = make_normalizer(settings)
    artifact = jpeg(1920, 1080)

    assert await normalizer.needs_normalization(artifact)
    result = await normalizer.normalize(artifact)

    assert result.normalized
    assert result.kind == ArtifactKind.IMAGE
    assert (result.width, result.height) == (720, 1280)
    decoded = cv2.imdecode(np.frombuffer(result.payload, dtype=np.uint8), cv2.IMREAD_COLOR)
    assert decoded.shape == (1280, 720, 3)


async def test_undecodable_image(settings):
    normalizer = make_normalizer(settings)
    broken = RecordedArtifact(payload=b"xx", mime_type="image/jpeg", kind=ArtifactKind.IMAGE)
    with pytest.raises(EncodingError):
        await normalizer.needs_normalization(broken)


async def test_landscape_video_is_reencoded(settings):
    captures = FakeCameraFactory(width=1920, height=1080, frame_count=6)
    writers = FakeWriterFactory()
    normalizer = make_normalizer(settings, capture_factory=captures, writer_factory=writers)

    artifact = video()
    assert await normalizer.needs_normalization(artifact)

    result = await normalizer.normalize(artifact)

    assert result.normalized
    assert result.kind == ArtifactKind.VIDEO
    assert (result.width, result.height) == (480, 848)
    assert result.payload == b"VP90:6"
    assert set(writers.writers[-1].frame_shapes) == {(848, 480, 3)}
    assert all(c.released for c in captures.created)


async def test_portrait_video_needs_nothing(settings):
    captures = FakeCameraFactory(width=480, height=848, frame_count=3)
    normalizer = make_normalizer(settings, capture_factory=captures)
    assert not await normalizer.needs_normalization(video())


async def test_video_without_frames(settings):
    captures = FakeCameraFactory(width=1920, height=1080, frame_count=0)
    normalizer = make_normalizer(settings, capture_factory=captures)
    with pytest.raises(EncodingError, match="no decodable frames"):
        await normalizer.normalize(video())


async def test_unopenable_video(settings):
    captures = FakeCameraFactory(opened=False)
    normalizer = make_normalizer(settings, capture_factory=captures)
    with pytest.raises(EncodingError):
        await normalizer.needs_normalization(video())
