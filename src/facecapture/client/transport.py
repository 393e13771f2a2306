"""HTTP client for the remote recognition backend.

Endpoints:
    POST {API_URL}/start_stream   no body, JSON {"message": str | None}
    POST {API_URL}/main           raw image bytes, application/octet-stream
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Protocol

import httpx
from pydantic import BaseModel, ValidationError

from facecapture.errors import ConfigurationError, TransportError

if TYPE_CHECKING:
    from facecapture.config import Settings

logger = logging.getLogger(__name__)


class StreamStartResponse(BaseModel):
    message: str | None = None


class RecognitionResult(BaseModel):
    """Response of the ``/main`` endpoint.

    JSON objects are read field by field; any other body is kept verbatim
    as ``message``.
    """

    message: str
    identity: str | None = None
    score: float | None = None
    raw: str


def parse_recognition(text: str) -> RecognitionResult:
    try:
        payload: Any = json.loads(text)
    except ValueError:
        return RecognitionResult(message=text, raw=text)

    if isinstance(payload, str):
        return RecognitionResult(message=payload, raw=text)
    if not isinstance(payload, dict):
        return RecognitionResult(message=text, raw=text)

    identity = payload.get("identity", payload.get("name"))
    score = payload.get("score", payload.get("confidence"))
    message = payload.get("message") or identity or text
    try:
        return RecognitionResult(message=message, identity=identity, score=score, raw=text)
    except ValidationError:
        logger.debug("Unexpected recognition payload shape, keeping raw text")
        return RecognitionResult(message=text, raw=text)


class RecognitionTransport(Protocol):
    """Sends captures to the recognition backend."""

    async def start_stream(self) -> StreamStartResponse: ...

    async def recognize(self, data: bytes) -> RecognitionResult: ...


class HttpRecognitionTransport:
    """RecognitionTransport over httpx. One request per call, never retried."""

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        self._api_url = settings.api_url.rstrip("/") if settings.api_url else None
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=settings.request_timeout)

    @property
    def configured(self) -> bool:
        return self._api_url is not None

    async def start_stream(self) -> StreamStartResponse:
        response = await self._post("start_stream")
        try:
            return StreamStartResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise TransportError("The recognition service sent an unreadable response.") from exc

    async def recognize(self, data: bytes) -> RecognitionResult:
        response = await self._post(
            "main",
            content=data,
            headers={"Content-Type": "application/octet-stream"},
        )
        return parse_recognition(response.text)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _post(self, endpoint: str, **kwargs: Any) -> httpx.Response:
        if self._api_url is None:
            raise ConfigurationError("API_URL is not set, so the recognition service cannot be reached.")

        url = f"{self._api_url}/{endpoint}"
        try:
            response = await self._client.post(url, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("POST %s failed: %s", url, exc)
            raise TransportError(f"Could not reach the recognition service: {exc}") from exc

        if response.status_code != httpx.codes.OK:
            logger.warning("POST %s returned %d", url, response.status_code)
            raise TransportError(
                f"The recognition service returned HTTP {response.status_code}.",
                http_status=response.status_code,
            )
        return response
