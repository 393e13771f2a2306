"""Capture pipeline: acquire, orient, detect, crop, submit.

    Idle -> Capturing -> Detecting -> Submitting -> Idle

Any failure ends the run and is raised with the stage it happened in.
Blocking steps run on the worker pool; the network call runs on the loop.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from facecapture.capture import imaging
from facecapture.capture.models import CapturedImage, CropResult, ImageSource, PipelineState
from facecapture.errors import CaptureError, NoFaceDetected, NoSelectionError, PipelineError

if TYPE_CHECKING:
    from facecapture.capture.models import FaceBoundingBox, NormalizedImage
    from facecapture.capture.picker import ImagePicker
    from facecapture.client.transport import RecognitionResult, RecognitionTransport
    from facecapture.config import Settings
    from facecapture.ml.face_locator import FaceLocator
    from facecapture.ml.inference import InferencePool

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineOutcome:
    face: FaceBoundingBox
    result: RecognitionResult


def _unexpected(exc: Exception, stage: PipelineState) -> PipelineError:
    logger.exception("Unexpected failure while %s", stage)
    error = PipelineError(f"An unexpected error occurred while {stage} ({type(exc).__name__}).")
    error.stage = stage
    return error


class ImageCaptureNormalizer:
    """Turns a picked photo into a face crop and sends it for recognition."""

    def __init__(
        self,
        settings: Settings,
        locator: FaceLocator,
        transport: RecognitionTransport,
        pool: InferencePool,
    ) -> None:
        self._settings = settings
        self._locator = locator
        self._transport = transport
        self._pool = pool

    def acquire(self, source: ImageSource, picker: ImagePicker) -> CapturedImage:
        return self.load(self._pick(source, picker))

    def load(self, path: Path) -> CapturedImage:
        return imaging.decode_file(
            path,
            max_pixels=self._settings.max_image_pixels,
            max_file_size=self._settings.max_file_size,
        )

    def normalize_orientation(self, img: CapturedImage) -> CapturedImage:
        """Rewrites ``img.path`` in place when the photo carries a rotation."""
        return imaging.normalize_orientation(img, quality=self._settings.jpeg_quality)

    def detect_and_crop(self, img: CapturedImage, locator: FaceLocator | None = None) -> CropResult:
        """Crop to the first detected face.

        With no faces the original bytes come back unchanged and ``face`` is None.
        """
        faces = (locator or self._locator).locate(img.image)
        if not faces:
            return CropResult(image=imaging.read_normalized(img), face=None)

        if len(faces) > 1:
            logger.debug("Found %d faces in %s, using the first", len(faces), img.path.name)
        box = imaging.clamp_box(faces[0], img.width, img.height)
        cropped = imaging.crop(img, box, quality=self._settings.jpeg_quality)
        return CropResult(image=cropped, face=box)

    async def submit(
        self, img: NormalizedImage, transport: RecognitionTransport | None = None
    ) -> RecognitionResult:
        return await (transport or self._transport).recognize(img.data)

    async def run(self, source: ImageSource, picker: ImagePicker) -> PipelineOutcome:
        """Run one user-triggered capture from picking to recognition."""
        state = PipelineState.CAPTURING
        logger.info("Capture from %s started", source)
        try:
            path = await self._pool.run(self._pick, source, picker)
        except CaptureError as exc:
            exc.stage = state
            raise
        except Exception as exc:
            raise _unexpected(exc, state) from exc
        return await self.process(path)

    async def process(self, path: Path) -> PipelineOutcome:
        """Run the pipeline on a file that was already captured.

        The file is consumed: it and its crop are deleted once the run ends,
        successfully or not, unless ``keep_captures`` is set.
        """
        try:
            captured = await self._pool.run(self.load, path)
        except Exception as exc:
            self._discard(path)
            if not isinstance(exc, CaptureError):
                raise _unexpected(exc, PipelineState.CAPTURING) from exc
            exc.stage = PipelineState.CAPTURING
            raise
        return await self._process(captured)

    async def _process(self, captured: CapturedImage) -> PipelineOutcome:
        state = PipelineState.CAPTURING
        created = [captured.path, imaging.cropped_path(captured.path)]
        try:
            captured = await self._pool.run(self.normalize_orientation, captured)

            state = PipelineState.DETECTING
            crop = await self._pool.run(self.detect_and_crop, captured)
            if crop.face is None:
                raise NoFaceDetected()

            state = PipelineState.SUBMITTING
            result = await self.submit(crop.image)
        except CaptureError as exc:
            exc.stage = state
            logger.info("Capture %s failed while %s: %s", captured.path.name, state, exc.message)
            raise
        except Exception as exc:
            raise _unexpected(exc, state) from exc
        finally:
            self._discard(*created)
            logger.debug("Pipeline back to %s", PipelineState.IDLE)

        logger.info("Recognition result for %s: %s", captured.path.name, result.message)
        return PipelineOutcome(face=crop.face, result=result)

    @staticmethod
    def _pick(source: ImageSource, picker: ImagePicker) -> Path:
        path = picker.pick(source)
        if path is None:
            raise NoSelectionError()
        return Path(path)

    def _discard(self, *paths: Path) -> None:
        if self._settings.keep_captures:
            return
        for path in paths:
            path.unlink(missing_ok=True)
