"""Middleware: API key authentication and error rendering."""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from facecapture.api.schemas import ErrorResponse

if TYPE_CHECKING:
    from facecapture.config import Settings
    from facecapture.errors import CaptureError

_bearer_scheme = HTTPBearer(auto_error=False)


async def verify_api_key(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
) -> None:
    """Check the Bearer token against the configured API key.

    If no API key is configured (FACECAPTURE_API_KEY not set), all requests pass.
    """
    settings: Settings = request.app.state.settings
    if settings.api_key is None:
        return

    if credentials is None or not secrets.compare_digest(credentials.credentials.encode(), settings.api_key.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def capture_error_handler(request: Request, exc: Exception) -> Response:
    """Render a CaptureError as a title/message dialog.

    A cancelled pick renders as an empty 204 so the caller does nothing.
    """
    error: CaptureError = exc  # type: ignore[assignment]
    if error.status_code == status.HTTP_204_NO_CONTENT:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    body = ErrorResponse(title=error.title, message=error.message, stage=error.stage)
    return JSONResponse(status_code=error.status_code, content=body.model_dump(mode="json"))
