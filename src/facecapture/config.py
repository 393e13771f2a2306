"""Environment-based configuration for FaceCapture."""

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from FACECAPTURE_* environment variables.

    The recognition backend URL is read from ``API_URL`` so the same ``.env``
    file can be shared with other clients of the backend.
    """

    model_config = SettingsConfigDict(
        env_prefix="FACECAPTURE_",
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
    )

    # Recognition backend (None = not configured, reported per call)
    api_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("API_URL", "FACECAPTURE_API_URL"),
    )
    request_timeout: float = Field(default=30.0, gt=0)

    # Local facade
    host: str = "127.0.0.1"
    port: int = 8083
    api_key: str | None = None
    log_level: str = "INFO"

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Face detection
    face_detection_model: str = "retinaface_mobilenetv2"
    models_dir: str = str(Path.home() / ".cache" / "facecapture" / "models")
    det_size: int = Field(default=640, ge=32)
    score_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    nms_threshold: float = Field(default=0.4, ge=0.0, le=1.0)

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=52_428_800, ge=1)

    # Model management
    model_ttl: int = Field(default=300, ge=0)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Capture
    jpeg_quality: int = Field(default=95, ge=1, le=100)
    work_dir: str = str(Path(tempfile.gettempdir()) / "facecapture")
    keep_captures: bool = False
    camera_index: int = Field(default=0, ge=0)
    stream_interval: float = Field(default=1.0, gt=0)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
