# =============================================================================
# DISCLAIMER: This software is a proof of concept for educational purposes
# only. It records and uploads photos and video of people; obtain consent
# before capturing anyone and protect the upload credentials.
# =============================================================================
"""Shared fixtures: fake camera, fake video writer and a fake media backend."""

import asyncio
import time
from pathlib import Path
from typing import Dict, List, Optional

import cv2
import numpy as np
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from fieldcam.capture.camera_session import CameraSessionManager
from fieldcam.capture.frame_transform import FrameTransformPipeline
from fieldcam.capture.preview import PreviewSurface
from fieldcam.config import (
    CameraSettings,
    RecordingSettings,
    Settings,
    UploadSettings,
)
from fieldcam.session import Notifier


def pytest_addoption(parser):
    parser.addoption(
        "--run-hardware",
        action="store_true",
        default=False,
        help="Run tests that need a real camera",
    )


def pytest_collection_modifyitems(config, items):
    if config.getoption("--run-hardware"):
        return
    skip_hardware = pytest.mark.skip(reason="needs --run-hardware")
    for item in items:
        if "hardware" in item.keywords:
            item.add_marker(skip_hardware)


# ==================== Camera ====================


class FakeCapture:
    """Stands in for cv2.VideoCapture.

    Property writes are accepted and ignored, like a device that only
    offers its native resolution.
    """

    def __init__(
        self,
        width: int = 1920,
        height: int = 1080,
        fps: float = 30.0,
        orientation: int = 0,
        opened: bool = True,
        frame_count: Optional[int] = None,
    ):
        self.frame = np.full((height, width, 3), 128, dtype=np.uint8)
        self.props = {
            cv2.CAP_PROP_FRAME_WIDTH: float(width),
            cv2.CAP_PROP_FRAME_HEIGHT: float(height),
            cv2.CAP_PROP_FPS: float(fps),
            cv2.CAP_PROP_ORIENTATION_META: float(orientation),
        }
        self.opened = opened
        self.frame_count = frame_count
        self.reads = 0
        self.released = False
        self.source = None

    def isOpened(self) -> bool:
        return self.opened and not self.released

    def read(self):
        if self.released or not self.opened:
            return False, None
        if self.frame_count is not None and self.reads >= self.frame_count:
            return False, None
        self.reads += 1
        return True, self.frame.copy()

    def get(self, prop) -> float:
        return self.props.get(prop, 0.0)

    def set(self, prop, value) -> bool:
        return True

    def release(self) -> None:
        self.released = True


class FakeCameraFactory:
    """capture_factory that records every capture it opens."""

    def __init__(self, **capture_kwargs):
        self.capture_kwargs = capture_kwargs
        self.created: List[FakeCapture] = []

    def __call__(self, source) -> FakeCapture:
        capture = FakeCapture(**self.capture_kwargs)
        capture.source = source
        self.created.append(capture)
        return capture

    @property
    def live(self) -> List[FakeCapture]:
        return [c for c in self.created if not c.released]


class RecordingPreview(PreviewSurface):
    def __init__(self):
        self.attached = 0
        self.detached = 0
        self.frames_shown = 0

    def attach(self, handle) -> None:
        self.attached += 1

    def show(self, frame) -> None:
        self.frames_shown += 1

    def detach(self) -> None:
        self.detached += 1


# ==================== Encoding ====================


def fourcc_name(fourcc: int) -> str:
    return "".join(chr((fourcc >> 8 * i) & 0xFF) for i in range(4))


class FakeWriter:
    """Stands in for cv2.VideoWriter, writes a small marker file on release."""

    def __init__(
        self,
        path: str,
        fourcc: int,
        fps: float,
        size,
        opened: bool = True,
        produce_output: bool = True,
        release_delay: float = 0.0,
    ):
        self.path = Path(path)
        self.codec = fourcc_name(fourcc)
        self.fps = fps
        self.size = size
        self.opened = opened
        self.produce_output = produce_output
        self.release_delay = release_delay
        self.frame_shapes: List[tuple] = []
        self.released = False

    def isOpened(self) -> bool:
        return self.opened

    def write(self, frame) -> None:
        self.frame_shapes.append(frame.shape)

    def release(self) -> None:
        # Runs on a worker thread via encoder.finish()
        if self.release_delay:
            time.sleep(self.release_delay)
        if self.opened and self.produce_output and not self.released:
            self.path.write_bytes(
                f"{self.codec}:{len(self.frame_shapes)}".encode("ascii")
            )
        self.released = True


class FakeWriterFactory:
    """writer_factory accepting only the given FourCCs (all when None).

    produce_output=False makes every writer release without a file, which
    the encoder reports as a failed finalize.
    """

    def __init__(
        self,
        supported: Optional[set] = None,
        produce_output: bool = True,
        release_delay: float = 0.0,
    ):
        self.supported = supported
        self.produce_output = produce_output
        self.release_delay = release_delay
        self.attempts: List[str] = []
        self.writers: List[FakeWriter] = []

    def __call__(self, path, fourcc, fps, size) -> FakeWriter:
        name = fourcc_name(fourcc)
        self.attempts.append(name)
        opened = self.supported is None or name in self.supported
        writer = FakeWriter(
            path,
            fourcc,
            fps,
            size,
            opened=opened,
            produce_output=self.produce_output,
            release_delay=self.release_delay,
        )
        self.writers.append(writer)
        return writer


class UnavailableMuxer:
    """AudioMuxer without ffmpeg."""

    available = False

    async def mux(self, video, video_ext, audio, audio_ext=".wav"):
        return None


class RecordingNotifier(Notifier):
    def __init__(self):
        self.successes: List[str] = []
        self.errors: List[str] = []

    def success(self, message: str) -> None:
        self.successes.append(message)

    def error(self, message: str) -> None:
        self.errors.append(message)


# ==================== Backend ====================


class FakeBackend:
    """In-process media backend serving both upload endpoints."""

    def __init__(self):
        self.requests: List[Dict] = []
        self.reply = None
        self.delay = 0.0

        self.app = web.Application()
        self.app.router.add_post("/api/capture-image", self._handle)
        self.app.router.add_post("/api/merge-with-intro-outro", self._handle)
        self.server = TestServer(self.app)

    async def _handle(self, request: web.Request) -> web.StreamResponse:
        form = await request.post()
        fields = {}
        files = {}
        for name, value in form.items():
            if isinstance(value, web.FileField):
                files[name] = {
                    "filename": value.filename,
                    "content_type": value.content_type,
                    "data": value.file.read(),
                }
            else:
                fields[name] = value

        self.requests.append({
            "path": request.path,
            "authorization": request.headers.get("Authorization"),
            "fields": fields,
            "files": files,
        })

        if self.delay:
            await asyncio.sleep(self.delay)
        if self.reply is not None:
            return self.reply(request)

        name = "abc.jpg" if request.path.endswith("capture-image") else "abc.mp4"
        return web.json_response({"fileName": name, "message": "Uploaded"})

    @property
    def base_url(self) -> str:
        return str(self.server.make_url("/api"))


# ==================== Fixtures ====================


@pytest.fixture
async def backend():
    fake = FakeBackend()
    await fake.server.start_server()
    yield fake
    await fake.server.close()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        camera=CameraSettings(fps=30.0, rotation_policy="metadata"),
        recording=RecordingSettings(
            max_duration_ms=300,
            audio_enabled=False,
            auto_normalize=False,
        ),
        upload=UploadSettings(close_delay_seconds=0.05, timeout_seconds=5.0),
    )


@pytest.fixture
def camera_factory() -> FakeCameraFactory:
    return FakeCameraFactory()


@pytest.fixture
def preview() -> RecordingPreview:
    return RecordingPreview()


@pytest.fixture
def camera_manager(settings, camera_factory, preview) -> CameraSessionManager:
    manager = CameraSessionManager(
        settings,
        preview=preview,
        capture_factory=camera_factory,
        microphone_factory=lambda: None,
        device_probe=lambda index: None,
    )
    yield manager
    manager.release()


@pytest.fixture
async def pipeline(settings):
    pipeline = FrameTransformPipeline(settings)
    yield pipeline
    await pipeline.stop()


@pytest.fixture
def writer_factory() -> FakeWriterFactory:
    return FakeWriterFactory()


async def wait_for(predicate, timeout: float = 2.0, interval: float = 0.01) -> None:
    """Poll until predicate() is true."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)
