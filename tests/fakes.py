"""Test doubles for the capture pipeline collaborators."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from PIL import ExifTags, Image

from facecapture.capture.models import FaceBoundingBox, ImageSource
from facecapture.client.transport import RecognitionResult, StreamStartResponse
from facecapture.errors import CameraError

if TYPE_CHECKING:
    from pathlib import Path


def write_jpeg(path: Path, size: tuple[int, int] = (64, 48), orientation: int | None = None) -> Path:
    """Write a two-tone JPEG so rotations are visible in the pixels."""
    image = Image.new("RGB", size, (200, 30, 30))
    image.paste((30, 30, 200), (0, 0, size[0] // 2, size[1] // 2))
    if orientation is None:
        image.save(path, format="JPEG", quality=95)
    else:
        exif = Image.Exif()
        exif[ExifTags.Base.Orientation] = orientation
        image.save(path, format="JPEG", quality=95, exif=exif)
    return path


def box(left: int, top: int, width: int, height: int) -> FaceBoundingBox:
    return FaceBoundingBox(left=left, top=top, width=width, height=height)


class FakeLocator:
    def __init__(self, *boxes: FaceBoundingBox) -> None:
        self.boxes = list(boxes)
        self.calls = 0

    def locate(self, image: Image.Image) -> list[FaceBoundingBox]:
        self.calls += 1
        return list(self.boxes)


class FailingLocator:
    def __init__(self, error: Exception) -> None:
        self.error = error

    def locate(self, image: Image.Image) -> list[FaceBoundingBox]:
        raise self.error


class FakeTransport:
    def __init__(
        self,
        message: str = "Alice",
        error: Exception | None = None,
        start_error: Exception | None = None,
        start_message: str | None = "stream started",
        delay: float = 0.0,
    ) -> None:
        self.delay = delay
        self.message = message
        self.error = error
        self.start_error = start_error
        self.start_message = start_message
        self.recognized: list[bytes] = []
        self.stream_starts = 0

    async def start_stream(self) -> StreamStartResponse:
        self.stream_starts += 1
        if self.start_error is not None:
            raise self.start_error
        return StreamStartResponse(message=self.start_message)

    async def recognize(self, data: bytes) -> RecognitionResult:
        self.recognized.append(data)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return RecognitionResult(message=self.message, raw=self.message)


class FakeCamera:
    def __init__(self, size: tuple[int, int] = (160, 120), fail_open: bool = False) -> None:
        self.size = size
        self.fail_open = fail_open
        self.is_open = False
        self.opens = 0
        self.releases = 0
        self.stills = 0

    def open(self) -> None:
        self.opens += 1
        if self.fail_open:
            raise CameraError("Unable to open camera 0.")
        self.is_open = True

    def capture_still(self, path: Path) -> None:
        if not self.is_open:
            raise CameraError("Camera is not open.")
        self.stills += 1
        write_jpeg(path, self.size)

    def release(self) -> None:
        self.releases += 1
        self.is_open = False


class CameraFactory:
    """Hands out one shared FakeCamera and counts how often it was asked."""

    def __init__(self, camera: FakeCamera | None = None) -> None:
        self.camera = camera or FakeCamera()
        self.created = 0

    def __call__(self) -> FakeCamera:
        self.created += 1
        return self.camera


class StaticPicker:
    def __init__(self, path: Path | None) -> None:
        self.path = path
        self.sources: list[ImageSource] = []

    def pick(self, source: ImageSource) -> Path | None:
        self.sources.append(source)
        return self.path
