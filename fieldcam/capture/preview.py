# =============================================================================
# DISCLAIMER: This software is a proof of concept for educational purposes
# only. It records and uploads photos and video of people; obtain consent
# before capturing anyone and protect the upload credentials.
# =============================================================================
"""Preview surfaces for operator feedback."""

import logging
from typing import Optional

import cv2
import numpy as np

logger = logging.getLogger(__name__)


class PreviewSurface:
    """Receives the live handle and canonical frames. Does nothing by default."""

    def attach(self, handle) -> None:
        pass

    def show(self, frame: np.ndarray) -> None:
        pass

    def detach(self) -> None:
        pass


class WindowPreview(PreviewSurface):
    """OpenCV window showing the canonical portrait frame.

    cv2.waitKey() must be pumped by the caller (the operator console does
    this once per loop iteration).
    """

    def __init__(self, title: str = "fieldcam", overlay: bool = True):
        self.title = title
        self.overlay = overlay
        self._label: Optional[str] = None
        self._open = False
        self.status_text = ""

    def attach(self, handle) -> None:
        self._label = f"{handle.facing_mode.value} {handle.width}x{handle.height}"
        cv2.namedWindow(self.title, cv2.WINDOW_NORMAL)
        self._open = True
        logger.debug(f"Preview attached ({self._label})")

    def show(self, frame: np.ndarray) -> None:
        if not self._open:
            return
        if self.overlay:
            frame = frame.copy()
            text = self.status_text or self._label or ""
            cv2.putText(
                frame, text, (10, 24), cv2.FONT_HERSHEY_SIMPLEX,
                0.6, (255, 255, 255), 1, cv2.LINE_AA,
            )
        cv2.imshow(self.title, frame)

    def detach(self) -> None:
        if not self._open:
            return
        self._open = False
        self._label = None
        try:
            cv2.destroyWindow(self.title)
        except cv2.error as e:
            logger.debug(f"Preview window already gone: {e}")
