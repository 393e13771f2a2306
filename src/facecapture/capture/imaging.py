"""Image decoding, orientation and cropping helpers built on Pillow."""

from __future__ import annotations

import io
import logging
from typing import TYPE_CHECKING

from PIL import ExifTags, Image, ImageOps, UnidentifiedImageError

from facecapture.capture.models import CapturedImage, FaceBoundingBox, NormalizedImage
from facecapture.errors import DecodeError

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

_JPEG_MODES = {"RGB", "L", "CMYK"}


def decode_file(path: Path, *, max_pixels: int, max_file_size: int) -> CapturedImage:
    """Read and decode an image file.

    Raises:
        DecodeError: If the file is missing, too large, or not a decodable image.
    """
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise DecodeError(f"Cannot read image file '{path.name}'.") from exc

    if len(data) > max_file_size:
        raise DecodeError(f"Image file is too large ({len(data)} bytes, limit {max_file_size}).")

    try:
        image = Image.open(io.BytesIO(data))
        if image.width * image.height > max_pixels:
            raise DecodeError(f"Image is too large ({image.width}x{image.height}, limit {max_pixels} pixels).")
        image.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        raise DecodeError(f"Cannot decode image file '{path.name}'.") from exc

    orientation = image.getexif().get(ExifTags.Base.Orientation, 1)
    return CapturedImage(path=path, image=image, orientation=orientation)


def write_jpeg(image: Image.Image, path: Path, quality: int) -> None:
    if image.mode not in _JPEG_MODES:
        image = image.convert("RGB")
    image.save(path, format="JPEG", quality=quality)


def normalize_orientation(captured: CapturedImage, *, quality: int) -> CapturedImage:
    """Bake EXIF orientation into pixel order and rewrite the file in place.

    Images that are already upright are returned as-is and their file is left
    untouched, so applying this twice is the same as applying it once.
    """
    if captured.orientation in (0, 1):
        return captured

    oriented = ImageOps.exif_transpose(captured.image)
    write_jpeg(oriented, captured.path, quality)
    logger.debug("Applied EXIF orientation %s to %s", captured.orientation, captured.path)
    return CapturedImage(path=captured.path, image=oriented, orientation=1)


def clamp_box(box: FaceBoundingBox, width: int, height: int) -> FaceBoundingBox:
    """Clamp a face rectangle to ``[0, width) x [0, height)``.

    The result always covers at least one pixel.
    """
    left = min(max(box.left, 0), width - 1)
    top = min(max(box.top, 0), height - 1)
    right = min(max(box.right, left + 1), width)
    bottom = min(max(box.bottom, top + 1), height)
    return FaceBoundingBox(left=left, top=top, width=right - left, height=bottom - top)


def cropped_path(path: Path) -> Path:
    return path.with_name(f"{path.stem}_cropped.jpg")


def crop(captured: CapturedImage, box: FaceBoundingBox, *, quality: int) -> NormalizedImage:
    """Crop to an already clamped box and write the result beside the original."""
    face = captured.image.crop((box.left, box.top, box.right, box.bottom))
    target = cropped_path(captured.path)
    write_jpeg(face, target, quality)
    return NormalizedImage(path=target, data=target.read_bytes(), width=face.width, height=face.height)


def read_normalized(captured: CapturedImage) -> NormalizedImage:
    """Wrap the on-disk bytes of an image that needs no further changes."""
    try:
        data = captured.path.read_bytes()
    except OSError as exc:
        raise DecodeError(f"Cannot read image file '{captured.path.name}'.") from exc
    return NormalizedImage(path=captured.path, data=data, width=captured.width, height=captured.height)
