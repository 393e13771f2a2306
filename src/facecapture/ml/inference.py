"""Bounded worker pool for blocking capture work.

    request / stream tick -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> decode, ONNX, camera

Image decoding, face detection and camera reads block, so they never run on
the event loop. A caller that waits longer than ``SLOT_TIMEOUT_SECONDS`` for
a slot gets DetectorBusyError instead of queueing forever.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, TypeVar

from facecapture.errors import DetectorBusyError

if TYPE_CHECKING:
    from collections.abc import Callable

    from facecapture.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

SLOT_TIMEOUT_SECONDS: float = 5.0


class InferencePool:
    """Semaphore-bounded thread pool. Counters are only touched from the event loop thread."""

    def __init__(self, settings: Settings) -> None:
        self._slots = asyncio.Semaphore(settings.max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent,
            thread_name_prefix="capture-worker",
        )
        self._workers = settings.max_concurrent
        self._running = 0
        self._waiting = 0

    @property
    def active_count(self) -> int:
        return self._running

    @property
    def queue_depth(self) -> int:
        return self._waiting

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Run ``func(*args)`` on a worker thread once a slot is free.

        Raises:
            DetectorBusyError: If every slot stays busy for the whole timeout.
        """
        self._waiting += 1
        try:
            async with asyncio.timeout(SLOT_TIMEOUT_SECONDS):
                await self._slots.acquire()
        except TimeoutError:
            logger.warning("All %d workers busy for %.0fs, rejecting call", self._workers, SLOT_TIMEOUT_SECONDS)
            raise DetectorBusyError("The face detector is busy. Please try again.") from None
        finally:
            self._waiting -= 1

        self._running += 1
        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, functools.partial(func, *args))
        finally:
            self._running -= 1
            self._slots.release()

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)
