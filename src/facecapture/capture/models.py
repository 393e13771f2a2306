"""Data types flowing through the capture pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

    from PIL import Image


class ImageSource(StrEnum):
    CAMERA = "camera"
    GALLERY = "gallery"


class PipelineState(StrEnum):
    IDLE = "idle"
    CAPTURING = "capturing"
    DETECTING = "detecting"
    SUBMITTING = "submitting"


@dataclass
class CapturedImage:
    """A decoded image together with the file it was read from."""

    path: Path
    image: Image.Image
    orientation: int = 1

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height


@dataclass(frozen=True)
class FaceBoundingBox:
    """Face rectangle in pixel coordinates of a CapturedImage."""

    left: int
    top: int
    width: int
    height: int

    @property
    def right(self) -> int:
        return self.left + self.width

    @property
    def bottom(self) -> int:
        return self.top + self.height


@dataclass(frozen=True)
class NormalizedImage:
    """Final encoded bytes ready to be sent to the recognition backend."""

    path: Path
    data: bytes
    width: int
    height: int


@dataclass(frozen=True)
class CropResult:
    """Outcome of face detection. ``face`` is None when nothing was found."""

    image: NormalizedImage
    face: FaceBoundingBox | None
