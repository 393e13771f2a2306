"""Camera sessions for still capture and the periodic recognition stream."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

import cv2

from facecapture.errors import CameraError

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path
    from types import TracebackType

    import numpy as np
    from numpy.typing import NDArray

    from facecapture.config import Settings

logger = logging.getLogger(__name__)

MAX_CONSECUTIVE_FAILURES: int = 5


class Camera(Protocol):
    """A live camera session. ``open`` and ``release`` bracket its use."""

    def open(self) -> None: ...

    def capture_still(self, path: Path) -> None:
        """Grab the current frame and write it to ``path`` as JPEG."""
        ...

    def release(self) -> None: ...


class OpenCVCamera:
    """OpenCV VideoCapture wrapper usable as a context manager."""

    def __init__(self, camera_index: int = 0, jpeg_quality: int = 95) -> None:
        self.camera_index = camera_index
        self.jpeg_quality = jpeg_quality
        self._capture: cv2.VideoCapture | None = None
        self._consecutive_failures = 0

    def __enter__(self) -> OpenCVCamera:
        self.open()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.release()

    @property
    def is_open(self) -> bool:
        return self._capture is not None

    def open(self) -> None:
        if self._capture is not None:
            return
        capture = cv2.VideoCapture(self.camera_index)
        if not capture.isOpened():
            capture.release()
            raise CameraError(f"Unable to open camera {self.camera_index}.")
        self._capture = capture
        logger.info("Opened camera %d", self.camera_index)

    def release(self) -> None:
        if self._capture is not None:
            self._capture.release()
            self._capture = None
            logger.info("Released camera %d", self.camera_index)

    def read_frame(self) -> NDArray[np.uint8]:
        """Read one BGR frame, tolerating a few dropped frames in a row."""
        if self._capture is None:
            raise CameraError("Camera is not open.")
        while True:
            ok, frame = self._capture.read()
            if ok:
                self._consecutive_failures = 0
                return frame
            self._consecutive_failures += 1
            if self._consecutive_failures > MAX_CONSECUTIVE_FAILURES:
                self._consecutive_failures = 0
                raise CameraError(f"Camera {self.camera_index} stopped delivering frames.")
            logger.debug("Dropped frame from camera %d", self.camera_index)

    def capture_still(self, path: Path) -> None:
        frame = self.read_frame()
        if not cv2.imwrite(str(path), frame, [cv2.IMWRITE_JPEG_QUALITY, self.jpeg_quality]):
            raise CameraError(f"Could not write camera frame to {path.name}.")


def opencv_camera_factory(settings: Settings) -> Callable[[], Camera]:
    def factory() -> Camera:
        return OpenCVCamera(settings.camera_index, settings.jpeg_quality)

    return factory
