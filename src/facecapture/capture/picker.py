"""Image pickers: where a capture's source file comes from."""

from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from facecapture.capture.models import ImageSource

if TYPE_CHECKING:
    from collections.abc import Callable

    from facecapture.capture.camera import Camera

logger = logging.getLogger(__name__)

_KNOWN_SUFFIXES = {".jpg", ".jpeg", ".png", ".webp", ".bmp", ".gif", ".tif", ".tiff"}


class ImagePicker(Protocol):
    def pick(self, source: ImageSource) -> Path | None:
        """Return the path of the chosen image, or None if the user cancelled."""
        ...


def new_capture_path(work_dir: Path, suffix: str = ".jpg") -> Path:
    work_dir.mkdir(parents=True, exist_ok=True)
    return work_dir / f"capture_{uuid.uuid4().hex}{suffix}"


class LocalImagePicker:
    """Picker for the local facade.

    Gallery picks come from an uploaded file; camera picks take a single
    still from a freshly opened camera session.
    """

    def __init__(
        self,
        work_dir: Path,
        camera_factory: Callable[[], Camera],
        upload: bytes | None = None,
        filename: str | None = None,
    ) -> None:
        self._work_dir = work_dir
        self._camera_factory = camera_factory
        self._upload = upload
        self._filename = filename

    def pick(self, source: ImageSource) -> Path | None:
        if source is ImageSource.GALLERY:
            return self._save_upload()
        return self._take_still()

    def _save_upload(self) -> Path | None:
        if not self._upload:
            return None
        suffix = Path(self._filename or "").suffix.lower()
        path = new_capture_path(self._work_dir, suffix if suffix in _KNOWN_SUFFIXES else ".jpg")
        path.write_bytes(self._upload)
        logger.debug("Saved %d uploaded bytes to %s", len(self._upload), path)
        return path

    def _take_still(self) -> Path:
        camera = self._camera_factory()
        camera.open()
        try:
            path = new_capture_path(self._work_dir)
            camera.capture_still(path)
        finally:
            camera.release()
        return path
