# =============================================================================
# DISCLAIMER: This software is a proof of concept for educational purposes
# only. It records and uploads photos and video of people; obtain consent
# before capturing anyone and protect the upload credentials.
# =============================================================================
"""Capture client entry point.

Runs an operator console over an OpenCV preview window, or uploads an
existing file headlessly.

Usage:
    python -m fieldcam.main --subject 42 --mode video
    python -m fieldcam.main --subject 42 --file portrait.mp4 --token $TOKEN

Console keys:
    c  capture photo (photo mode)
    r  start / stop recording (video mode)
    s  switch front / back camera
    u  upload the current artifact
    q  quit
"""

import argparse
import asyncio
import logging
import os
import sys
from typing import Optional

import cv2
from pydantic import ValidationError

from fieldcam.capture.preview import WindowPreview
from fieldcam.config import ClientContext, Settings, load_settings
from fieldcam.errors import CaptureError
from fieldcam.models.capture import CaptureMode, FacingMode, SessionStatus
from fieldcam.session import CaptureSessionController

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the capture client."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )

    # Reduce noise from third-party libraries
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


class OperatorConsole:
    """Keyboard-driven capture loop over the preview window."""

    POLL_INTERVAL = 0.02

    def __init__(self, controller: CaptureSessionController, preview: WindowPreview):
        self.controller = controller
        self.preview = preview

    def _update_overlay(self) -> None:
        controller = self.controller
        text = f"{controller.mode.value} | {controller.status.value}"
        if controller.status == SessionStatus.RECORDING:
            recorder = controller.recorder
            loop = asyncio.get_running_loop()
            remaining = max(0.0, (recorder.deadline_at or loop.time()) - loop.time())
            text += f" | {remaining:.0f}s left"
        self.preview.status_text = text

    async def _handle_key(self, key: str) -> bool:
        """Run the action bound to a key. Returns False to quit."""
        controller = self.controller

        if key == "q":
            return False
        if key == "c":
            artifact = await controller.capture_photo()
            logger.info(f"Captured {artifact.filename}")
        elif key == "r":
            if controller.recorder.is_recording:
                await controller.stop_recording()
            else:
                await controller.start_recording()
        elif key == "s":
            await controller.switch_camera()
        elif key == "u":
            result = await controller.submit()
            logger.info(f"Uploaded: {result.resolved}")
        return True

    async def run(self) -> None:
        controller = self.controller
        while not controller.closed.is_set():
            self._update_overlay()
            code = cv2.waitKey(1) & 0xFF
            if code != 0xFF:
                try:
                    if not await self._handle_key(chr(code).lower()):
                        break
                except CaptureError as e:
                    logger.error(f"{type(e).__name__}: {e}")
            await asyncio.sleep(self.POLL_INTERVAL)


async def run_headless(controller: CaptureSessionController, path: str) -> int:
    """Upload a file without a preview window."""
    await controller.open(CaptureMode.UPLOAD)
    try:
        await controller.load_file(path)
        result = await controller.submit()
    except (CaptureError, OSError) as e:
        logger.error(f"Upload failed: {e}")
        await controller.close()
        return 1

    print(result.resolved)
    await controller.closed.wait()
    return 0


async def run_console(
    controller: CaptureSessionController,
    preview: WindowPreview,
    mode: CaptureMode,
    facing_mode: FacingMode,
) -> int:
    try:
        await controller.open(mode, facing_mode)
    except CaptureError as e:
        logger.error(f"Could not start {mode.value} mode: {e}")
        await controller.close()
        return 1

    try:
        await OperatorConsole(controller, preview).run()
    finally:
        await controller.close()
        cv2.destroyAllWindows()

    if controller.upload_result is not None:
        print(controller.upload_result.resolved)
    return 0


async def run(args: argparse.Namespace, settings: Settings) -> int:
    context = ClientContext(
        auth_token=args.token or os.environ.get("FIELDCAM_AUTH_TOKEN", ""),
        uploaded_by=args.uploaded_by,
    )
    if not context.auth_token:
        logger.warning("No auth token provided, uploads will be unauthenticated")

    preview: Optional[WindowPreview] = None if args.file else WindowPreview()
    controller = CaptureSessionController(
        args.subject,
        context,
        settings=settings,
        preview=preview,
    )
    facing_mode = FacingMode[args.facing.upper()]

    if args.file:
        return await run_headless(controller, args.file)
    return await run_console(controller, preview, CaptureMode(args.mode), facing_mode)


def main():
    """Main entry point for the capture client."""
    parser = argparse.ArgumentParser(
        description="fieldcam - portrait photo/video capture and upload",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--subject",
        type=str,
        required=True,
        help="Subject (doctor) id the media is uploaded for",
    )
    parser.add_argument(
        "--mode",
        type=str,
        default="video",
        choices=[m.value for m in CaptureMode],
        help="Capture mode (default: video)",
    )
    parser.add_argument(
        "--facing",
        type=str,
        default="front",
        choices=["front", "back"],
        help="Initial camera (default: front)",
    )
    parser.add_argument(
        "--file",
        type=str,
        default=None,
        help="Upload this file headlessly instead of capturing",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to YAML config file (default: fieldcam.local.yaml or fieldcam.yaml)",
    )
    parser.add_argument(
        "--token",
        type=str,
        default=None,
        help="Auth token (default: $FIELDCAM_AUTH_TOKEN)",
    )
    parser.add_argument(
        "--uploaded-by",
        type=str,
        default=None,
        help="Uploader id sent with the upload",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: from settings)",
    )

    args = parser.parse_args()

    try:
        settings = load_settings(args.config)
    except (FileNotFoundError, ValidationError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(args.log_level or settings.log.level)

    try:
        exit_code = asyncio.run(run(args, settings))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        exit_code = 130
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
