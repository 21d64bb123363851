# =============================================================================
# DISCLAIMER: This software is a proof of concept for educational purposes
# only. It records and uploads photos and video of people; obtain consent
# before capturing anyone and protect the upload credentials.
# =============================================================================
"""Tests for camera acquisition, switching and release."""

import pytest

from conftest import FakeCameraFactory, RecordingPreview
from fieldcam.capture.camera_session import CameraSessionManager
from fieldcam.config import Settings
from fieldcam.errors import CameraPermissionError, DeviceError
from fieldcam.models.capture import FacingMode


class FailingMicrophone:
    def __init__(self):
        self.stopped = False

    def open(self):
        raise OSError("PortAudio library not found")

    def stop(self):
        self.stopped = True

    @property
    def is_live(self):
        return False


class LiveMicrophone:
    def __init__(self):
        self.opened = False
        self.stopped = False

    def open(self):
        self.opened = True

    def stop(self):
        self.stopped = True

    @property
    def is_live(self):
        return self.opened and not self.stopped


def make_manager(settings, factory, probe=None, microphone_factory=None, preview=None):
    return CameraSessionManager(
        settings,
        preview=preview or RecordingPreview(),
        capture_factory=factory,
        microphone_factory=microphone_factory or (lambda: None),
        device_probe=probe or (lambda index: None),
    )


async def test_acquire_front_camera(camera_manager, camera_factory, preview):
    handle = await camera_manager.acquire(FacingMode.FRONT)

    assert handle.is_live
    assert handle.facing_mode == FacingMode.FRONT
    assert handle.device_index == 0
    assert (handle.width, handle.height) == (1920, 1080)
    assert camera_manager.handle is handle
    assert preview.attached == 1
    assert camera_factory.created[0].source == 0


async def test_switch_leaves_exactly_one_live_handle(camera_manager, camera_factory):
    first = await camera_manager.acquire(FacingMode.FRONT)
    second = await camera_manager.switch()

    assert not first.is_live
    assert second.is_live
    assert second.facing_mode == FacingMode.BACK
    assert second.device_index == 1
    assert len(camera_factory.live) == 1

    third = await camera_manager.switch()
    assert third.facing_mode == FacingMode.FRONT
    assert len(camera_factory.live) == 1


async def test_acquire_releases_previous_handle(camera_manager, camera_factory):
    await camera_manager.acquire(FacingMode.FRONT)
    await camera_manager.acquire(FacingMode.FRONT)

    assert len(camera_factory.created) == 2
    assert len(camera_factory.live) == 1


async def test_permission_denied_leaves_no_handle(settings):
    factory = FakeCameraFactory()

    def deny(index):
        raise CameraPermissionError(f"Access to /dev/video{index} denied")

    manager = make_manager(settings, factory, probe=deny)

    with pytest.raises(CameraPermissionError):
        await manager.acquire(FacingMode.FRONT)

    assert manager.handle is None
    assert factory.created == []


async def test_unopened_device_is_device_error(settings):
    factory = FakeCameraFactory(opened=False)
    manager = make_manager(settings, factory)

    with pytest.raises(DeviceError):
        await manager.acquire(FacingMode.BACK)

    assert manager.handle is None
    assert factory.created[0].released


async def test_release_is_idempotent(camera_manager, camera_factory, preview):
    handle = await camera_manager.acquire(FacingMode.FRONT)

    camera_manager.release()
    camera_manager.release()

    assert not handle.is_live
    assert camera_manager.handle is None
    assert camera_factory.live == []
    assert preview.detached == 1


async def test_read_after_release_returns_none(camera_manager):
    handle = await camera_manager.acquire(FacingMode.FRONT)
    assert handle.read() is not None

    handle.stop()
    assert handle.read() is None


async def test_microphone_failure_is_not_fatal(settings):
    microphone = FailingMicrophone()
    manager = make_manager(settings, FakeCameraFactory(), microphone_factory=lambda: microphone)

    handle = await manager.acquire(FacingMode.FRONT)

    assert handle.is_live
    assert not handle.has_audio
    assert handle.microphone is None
    assert microphone.stopped
    manager.release()


async def test_microphone_stopped_with_handle(settings):
    microphone = LiveMicrophone()
    manager = make_manager(settings, FakeCameraFactory(), microphone_factory=lambda: microphone)

    handle = await manager.acquire(FacingMode.FRONT)
    assert handle.has_audio

    manager.release()
    assert microphone.stopped
    assert not handle.has_audio


@pytest.mark.hardware
async def test_real_camera_opens():
    manager = CameraSessionManager(Settings())
    handle = await manager.acquire(FacingMode.FRONT)
    try:
        assert handle.is_live
        assert handle.read() is not None
    finally:
        manager.release()
