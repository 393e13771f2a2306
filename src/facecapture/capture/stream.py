"""Periodic recognition stream.

Once started, a still is taken from the live camera at a fixed rate and
pushed through the same pipeline as user captures. Submissions may overlap.
A failed frame is logged and skipped; only ``stop()`` ends the loop.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from facecapture.capture.picker import new_capture_path
from facecapture.errors import CaptureError, DecodeError, NoFaceDetected, TransportError

if TYPE_CHECKING:
    from collections.abc import Callable

    from facecapture.capture.camera import Camera
    from facecapture.capture.normalizer import ImageCaptureNormalizer
    from facecapture.client.transport import RecognitionTransport
    from facecapture.config import Settings
    from facecapture.ml.inference import InferencePool

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StreamStatus:
    active: bool
    frames_submitted: int
    frames_skipped: int
    last_result: str | None
    message: str | None = None


class RecognitionStream:
    """Owns the camera handle for as long as the stream runs."""

    def __init__(
        self,
        settings: Settings,
        normalizer: ImageCaptureNormalizer,
        transport: RecognitionTransport,
        camera_factory: Callable[[], Camera],
        pool: InferencePool,
    ) -> None:
        self._interval = settings.stream_interval
        self._work_dir = Path(settings.work_dir)
        self._keep_captures = settings.keep_captures
        self._normalizer = normalizer
        self._transport = transport
        self._camera_factory = camera_factory
        self._pool = pool

        self._camera: Camera | None = None
        self._task: asyncio.Task[None] | None = None
        self._in_flight: set[asyncio.Task[None]] = set()
        self._stopping = asyncio.Event()
        self._lock = asyncio.Lock()
        self._frames_submitted = 0
        self._frames_skipped = 0
        self._last_result: str | None = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def status(self, message: str | None = None) -> StreamStatus:
        return StreamStatus(
            active=self.active,
            frames_submitted=self._frames_submitted,
            frames_skipped=self._frames_skipped,
            last_result=self._last_result,
            message=message,
        )

    async def start(self) -> StreamStatus:
        """Announce the stream to the backend, open the camera and start the timer.

        Raises:
            TransportError, ConfigurationError: If the backend refuses the stream.
            CameraError: If the camera cannot be opened.
        """
        async with self._lock:
            if self.active:
                return self.status()

            started = await self._transport.start_stream()
            camera = self._camera_factory()
            try:
                await self._pool.run(camera.open)
            except BaseException:
                camera.release()
                raise
            self._camera = camera
            self._frames_submitted = 0
            self._frames_skipped = 0
            self._last_result = None
            self._stopping.clear()
            self._task = asyncio.create_task(self._loop(camera), name="recognition-stream")
            logger.info("Recognition stream started (interval=%.2fs)", self._interval)
            return self.status(started.message)

    async def stop(self) -> StreamStatus:
        async with self._lock:
            task, self._task = self._task, None
            if task is not None:
                self._stopping.set()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
            self._release_camera()
            return self.status()

    async def _loop(self, camera: Camera) -> None:
        """Take a still every ``interval`` seconds, measured from the start.

        Stills are taken one at a time; their submissions run as separate
        tasks so a slow backend does not stretch the period. Slots missed
        while a capture overran are skipped, not made up.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time()
        try:
            while not self._stopping.is_set():
                deadline += self._interval
                behind = loop.time() - deadline
                if behind > 0:
                    deadline += (behind // self._interval + 1) * self._interval
                try:
                    await asyncio.wait_for(self._stopping.wait(), timeout=deadline - loop.time())
                except TimeoutError:
                    path = await self._capture(camera)
                    if path is not None:
                        task = asyncio.create_task(self._submit(path))
                        self._in_flight.add(task)
                        task.add_done_callback(self._in_flight.discard)
        finally:
            self._release_camera()
            if self._in_flight:
                await asyncio.gather(*self._in_flight, return_exceptions=True)
            logger.info("Recognition stream stopped")

    async def _capture(self, camera: Camera) -> Path | None:
        path = new_capture_path(self._work_dir)
        try:
            await self._pool.run(camera.capture_still, path)
        except Exception as exc:
            self._frames_skipped += 1
            if isinstance(exc, CaptureError):
                logger.warning("Skipped stream frame: %s", exc.message)
            else:
                logger.exception("Unexpected error capturing stream frame")
            path.unlink(missing_ok=True)
            return None
        return path

    async def _submit(self, path: Path) -> None:
        try:
            outcome = await self._normalizer.process(path)
        except (TransportError, DecodeError, NoFaceDetected) as exc:
            self._frames_skipped += 1
            logger.debug("Skipped stream frame: %s", exc.message)
        except CaptureError as exc:
            self._frames_skipped += 1
            logger.warning("Skipped stream frame: %s", exc.message)
        except Exception:
            self._frames_skipped += 1
            logger.exception("Unexpected error in stream frame")
        else:
            self._frames_submitted += 1
            self._last_result = outcome.result.message
        finally:
            if not self._keep_captures:
                path.unlink(missing_ok=True)

    def _release_camera(self) -> None:
        camera, self._camera = self._camera, None
        if camera is not None:
            camera.release()
