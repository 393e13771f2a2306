"""Capture pipeline errors.

Every error carries a user-facing title and message so any front end can show
it as a dialog. None of them is retried automatically.
"""

from __future__ import annotations

from fastapi import status


class CaptureError(Exception):
    """Base class for failures that end the current pipeline run."""

    title: str = "Something went wrong"
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, *, title: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if title is not None:
            self.title = title
        self.stage: str | None = None


class NoSelectionError(CaptureError):
    """The user cancelled the picker. Callers treat this as a no-op."""

    title = "No image selected"
    status_code = status.HTTP_204_NO_CONTENT

    def __init__(self, message: str = "No image was selected.") -> None:
        super().__init__(message)


class DecodeError(CaptureError):
    title = "Unreadable image"
    status_code = status.HTTP_400_BAD_REQUEST


class NoFaceDetected(CaptureError):
    title = "No face detected"
    status_code = status.HTTP_422_UNPROCESSABLE_CONTENT

    def __init__(self, message: str = "No face was found in the image. Try another photo.") -> None:
        super().__init__(message)


class ConfigurationError(CaptureError):
    title = "Not configured"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class TransportError(CaptureError):
    """Non-200 response or network failure talking to the recognition backend."""

    title = "Recognition failed"
    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str, *, http_status: int | None = None) -> None:
        super().__init__(message)
        self.http_status = http_status


class CameraError(CaptureError):
    title = "Camera unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class DetectorBusyError(CaptureError):
    title = "Detector busy"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class PipelineError(CaptureError):
    """Any other failure inside a pipeline stage, wrapped so it still renders as a dialog."""

    title = "Capture failed"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
