"""Pydantic request/response schemas for the FaceCapture API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class FaceBox(BaseModel):
    """Face rectangle in pixels of the oriented source image."""

    left: int
    top: int
    width: int
    height: int


class RecognizeResponse(BaseModel):
    """Result dialog for a completed capture."""

    title: str = "Recognition result"
    message: str = Field(description="Backend response, shown to the user verbatim")
    identity: str | None = None
    score: float | None = None
    face: FaceBox


class StreamStatusResponse(BaseModel):
    active: bool
    frames_submitted: int
    frames_skipped: int
    last_result: str | None = None
    message: str | None = Field(default=None, description="Message returned by the backend on start")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    api_configured: bool
    models_loaded: list[str]
    concurrent_requests: int
    queue_depth: int
    stream_active: bool


class ModelInfo(BaseModel):
    """Information about an available detection model."""

    name: str
    status: str = Field(description="Model status: 'active' or 'available'")
    license: str


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Error dialog: a title, a message, and the pipeline stage that failed."""

    title: str
    message: str
    stage: str | None = None
