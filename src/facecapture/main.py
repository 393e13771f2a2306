"""FastAPI application entry point."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from facecapture.capture.camera import Camera
    from facecapture.client.transport import RecognitionTransport
    from facecapture.config import Settings
    from facecapture.ml.face_locator import FaceLocator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from facecapture.api.middleware import capture_error_handler
from facecapture.api.routes import router
from facecapture.capture.camera import opencv_camera_factory
from facecapture.capture.normalizer import ImageCaptureNormalizer
from facecapture.capture.stream import RecognitionStream
from facecapture.client.transport import HttpRecognitionTransport
from facecapture.config import get_settings
from facecapture.errors import CaptureError
from facecapture.ml.face_detector import RetinaFaceDetector
from facecapture.ml.face_locator import OnnxFaceLocator
from facecapture.ml.inference import InferencePool
from facecapture.ml.model_manager import OnnxModelManager

logger = logging.getLogger(__name__)

EVICTION_INTERVAL_SECONDS: float = 60.0


def init_app_state(
    app: FastAPI,
    settings: Settings,
    *,
    locator: FaceLocator | None = None,
    transport: RecognitionTransport | None = None,
    camera_factory: Callable[[], Camera] | None = None,
) -> None:
    """Wire the capture pipeline onto ``app.state``.

    Collaborators left as None get their production implementations.
    """
    Path(settings.work_dir).mkdir(parents=True, exist_ok=True)

    model_manager = OnnxModelManager(settings)
    pool = InferencePool(settings)
    if locator is None:
        locator = OnnxFaceLocator(RetinaFaceDetector(model_manager, settings))
    if transport is None:
        transport = HttpRecognitionTransport(settings)
    if camera_factory is None:
        camera_factory = opencv_camera_factory(settings)

    normalizer = ImageCaptureNormalizer(settings, locator, transport, pool)

    app.state.settings = settings
    app.state.model_manager = model_manager
    app.state.inference_pool = pool
    app.state.transport = transport
    app.state.camera_factory = camera_factory
    app.state.normalizer = normalizer
    app.state.stream = RecognitionStream(settings, normalizer, transport, camera_factory, pool)


async def shutdown_app_state(app: FastAPI) -> None:
    """Stop the stream (releasing the camera) and close every shared resource."""
    await app.state.stream.stop()
    close = getattr(app.state.transport, "aclose", None)
    if close is not None:
        await close()
    app.state.inference_pool.shutdown()
    app.state.model_manager.shutdown()


async def _evict_idle_models(app: FastAPI) -> None:
    while True:
        await asyncio.sleep(EVICTION_INTERVAL_SECONDS)
        app.state.model_manager.unload_idle_models()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting FaceCapture (device=%s, detection=%s, api_configured=%s)",
        settings.device,
        settings.face_detection_model,
        settings.api_url is not None,
    )
    if settings.api_url is None:
        logger.warning("API_URL is not set; recognition requests will fail until it is configured")

    init_app_state(app, settings)
    eviction = asyncio.create_task(_evict_idle_models(app), name="model-eviction")

    logger.info("FaceCapture ready")
    try:
        yield
    finally:
        logger.info("Shutting down FaceCapture")
        eviction.cancel()
        await shutdown_app_state(app)
        logger.info("FaceCapture shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="FaceCapture",
        description="Capture, orient and crop faces on-device, then forward them for recognition",
        version="0.1.0",
        lifespan=lifespan,
    )
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.add_exception_handler(CaptureError, capture_error_handler)
    application.include_router(router)
    return application


app = create_app()
