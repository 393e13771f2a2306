"""Face detection models.

Implementations: RetinaFace (ResNet34, MobileNetV2) exported to ONNX.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import numpy as np

from facecapture.ml.preprocessing import build_priors, decode_boxes, decode_landmarks, letterbox, nms

if TYPE_CHECKING:
    from numpy.typing import NDArray
    from PIL import Image

    from facecapture.config import Settings
    from facecapture.ml.model_manager import ModelManager

logger = logging.getLogger(__name__)

MAX_DETECTIONS: int = 50


@dataclass(frozen=True)
class RawDetection:
    """Face detection result in pixel space of the original image.

    ``bbox`` is (x1, y1, x2, y2); ``landmarks`` is 5x2 (eyes, nose, mouth corners).
    """

    bbox: NDArray[np.float32]
    score: float
    landmarks: NDArray[np.float32]


class FaceDetector(Protocol):
    """Protocol for face detection models."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    def detect(self, image: Image.Image) -> list[RawDetection]:
        """Detect faces in an image.

        Returns:
            Detections sorted by descending score.
        """
        ...


class RetinaFaceDetector:
    """RetinaFace ONNX detector.

    The session is fetched from the model manager on every call so idle
    eviction can release it between captures.
    """

    def __init__(self, model_manager: ModelManager, settings: Settings) -> None:
        self._model_manager = model_manager
        self._model_name = settings.face_detection_model
        self._size = settings.det_size
        self._score_threshold = settings.score_threshold
        self._nms_threshold = settings.nms_threshold
        self._priors: NDArray[np.float32] | None = None
        self._priors_lock = threading.Lock()

    @property
    def model_name(self) -> str:
        return self._model_name

    def detect(self, image: Image.Image) -> list[RawDetection]:
        boxed = letterbox(image, self._size)
        session = self._model_manager.get_session(self._model_name)
        input_name = session.get_inputs()[0].name
        loc, conf, landms = session.run(None, {input_name: boxed.tensor})

        priors = self._get_priors()
        scores = np.asarray(conf, dtype=np.float32)[0][:, 1]
        mask = scores > self._score_threshold
        if not mask.any():
            return []

        scale = np.float32(self._size / boxed.scale)
        boxes = decode_boxes(np.asarray(loc, dtype=np.float32)[0][mask], priors[mask]) * scale
        points = decode_landmarks(np.asarray(landms, dtype=np.float32)[0][mask], priors[mask]) * scale
        scores = scores[mask]

        keep = nms(boxes, scores, self._nms_threshold)[:MAX_DETECTIONS]
        detections = [
            RawDetection(bbox=boxes[i], score=float(scores[i]), landmarks=points[i]) for i in keep
        ]
        logger.debug("%s found %d face(s)", self._model_name, len(detections))
        return detections

    def _get_priors(self) -> NDArray[np.float32]:
        with self._priors_lock:
            if self._priors is None:
                self._priors = build_priors(self._size)
            return self._priors
