"""Face locators: turn detector output into pixel bounding boxes."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Protocol

from facecapture.capture.models import FaceBoundingBox

if TYPE_CHECKING:
    from PIL import Image

    from facecapture.ml.face_detector import FaceDetector


class FaceLocator(Protocol):
    """Finds faces in an image, best match first."""

    def locate(self, image: Image.Image) -> list[FaceBoundingBox]: ...


class OnnxFaceLocator:
    """FaceLocator backed by an on-device ONNX face detector."""

    def __init__(self, detector: FaceDetector) -> None:
        self._detector = detector

    def locate(self, image: Image.Image) -> list[FaceBoundingBox]:
        boxes = []
        for detection in self._detector.detect(image):
            x1, y1, x2, y2 = (float(v) for v in detection.bbox)
            left, top = math.floor(x1), math.floor(y1)
            boxes.append(
                FaceBoundingBox(
                    left=left,
                    top=top,
                    width=max(1, math.ceil(x2) - left),
                    height=max(1, math.ceil(y2) - top),
                )
            )
        return boxes
