"""API route definitions."""

from __future__ import annotations

from dataclasses import asdict
from pathlib import Path
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, Request, UploadFile, status

from facecapture.api.middleware import verify_api_key
from facecapture.api.schemas import (
    ErrorResponse,
    FaceBox,
    HealthResponse,
    ModelInfo,
    ModelsResponse,
    RecognizeResponse,
    StreamStatusResponse,
)
from facecapture.capture.models import ImageSource, PipelineState
from facecapture.capture.picker import LocalImagePicker
from facecapture.errors import DecodeError
from facecapture.ml.model_manager import MODEL_REGISTRY

if TYPE_CHECKING:
    from facecapture.capture.normalizer import ImageCaptureNormalizer, PipelineOutcome
    from facecapture.capture.stream import RecognitionStream
    from facecapture.config import Settings
    from facecapture.ml.inference import InferencePool
    from facecapture.ml.model_manager import ModelManager

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

UPLOAD_CHUNK_SIZE: int = 1024 * 1024

_CAPTURE_ERRORS: dict[int | str, dict[str, object]] = {
    status.HTTP_204_NO_CONTENT: {"description": "Picker cancelled, nothing to do"},
    status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
    status.HTTP_422_UNPROCESSABLE_CONTENT: {"model": ErrorResponse},
    status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
    status.HTTP_502_BAD_GATEWAY: {"model": ErrorResponse},
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
}


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_normalizer(request: Request) -> ImageCaptureNormalizer:
    normalizer: ImageCaptureNormalizer = request.app.state.normalizer
    return normalizer


def _get_stream(request: Request) -> RecognitionStream:
    stream: RecognitionStream = request.app.state.stream
    return stream


async def _read_upload(file: UploadFile, limit: int) -> bytes:
    """Read an upload, giving up as soon as it grows past ``limit`` bytes."""
    chunks: list[bytes] = []
    size = 0
    while chunk := await file.read(UPLOAD_CHUNK_SIZE):
        size += len(chunk)
        if size > limit:
            error = DecodeError(f"Image file is too large (over {limit} bytes).")
            error.stage = PipelineState.CAPTURING
            raise error
        chunks.append(chunk)
    return b"".join(chunks)


def _to_response(outcome: PipelineOutcome) -> RecognizeResponse:
    face = outcome.face
    return RecognizeResponse(
        message=outcome.result.message,
        identity=outcome.result.identity,
        score=outcome.result.score,
        face=FaceBox(left=face.left, top=face.top, width=face.width, height=face.height),
    )


@router.post(
    "/recognize/gallery",
    response_model=RecognizeResponse,
    responses=_CAPTURE_ERRORS,
    summary="Recognize the face in an uploaded photo",
)
async def recognize_gallery(request: Request, file: UploadFile | None = None) -> RecognizeResponse:
    """Orient, crop and submit an uploaded photo. A missing or empty upload is a cancelled pick."""
    settings = _get_settings(request)
    upload = await _read_upload(file, settings.max_file_size) if file is not None else None
    picker = LocalImagePicker(
        Path(settings.work_dir),
        request.app.state.camera_factory,
        upload=upload,
        filename=file.filename if file is not None else None,
    )
    outcome = await _get_normalizer(request).run(ImageSource.GALLERY, picker)
    return _to_response(outcome)


@router.post(
    "/recognize/camera",
    response_model=RecognizeResponse,
    responses=_CAPTURE_ERRORS,
    summary="Recognize the face in a camera still",
)
async def recognize_camera(request: Request) -> RecognizeResponse:
    """Take one still from the local camera and run it through the pipeline."""
    settings = _get_settings(request)
    picker = LocalImagePicker(Path(settings.work_dir), request.app.state.camera_factory)
    outcome = await _get_normalizer(request).run(ImageSource.CAMERA, picker)
    return _to_response(outcome)


@router.post(
    "/stream/start",
    response_model=StreamStatusResponse,
    responses={
        status.HTTP_502_BAD_GATEWAY: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Start periodic recognition from the camera",
)
async def start_stream(request: Request) -> StreamStatusResponse:
    stream_status = await _get_stream(request).start()
    return StreamStatusResponse(**asdict(stream_status))


@router.post("/stream/stop", response_model=StreamStatusResponse, summary="Stop periodic recognition")
async def stop_stream(request: Request) -> StreamStatusResponse:
    stream_status = await _get_stream(request).stop()
    return StreamStatusResponse(**asdict(stream_status))


@router.get("/stream", response_model=StreamStatusResponse, summary="Periodic recognition status")
async def stream_status(request: Request) -> StreamStatusResponse:
    return StreamStatusResponse(**asdict(_get_stream(request).status()))


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    pool: InferencePool = request.app.state.inference_pool
    model_manager: ModelManager = request.app.state.model_manager
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        api_configured=settings.api_url is not None,
        models_loaded=model_manager.get_loaded_models(),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
        stream_active=_get_stream(request).active,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available face detection models",
)
async def list_models(request: Request) -> ModelsResponse:
    settings = _get_settings(request)
    models = [
        ModelInfo(
            name=spec.name,
            status="active" if spec.name == settings.face_detection_model else "available",
            license=spec.license,
        )
        for spec in MODEL_REGISTRY.values()
    ]
    return ModelsResponse(models=models)
