"""Tests for the recognition backend HTTP client."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import pytest

from facecapture.client.transport import HttpRecognitionTransport, parse_recognition
from facecapture.errors import ConfigurationError, TransportError

if TYPE_CHECKING:
    from collections.abc import Callable

    from facecapture.config import Settings


def _transport(
    make_settings: Callable[..., Settings],
    handler: Callable[[httpx.Request], httpx.Response],
    **overrides: object,
) -> tuple[HttpRecognitionTransport, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def recording(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(recording))
    return HttpRecognitionTransport(make_settings(**overrides), client=client), seen


class TestRecognize:
    async def test_posts_raw_bytes_to_main(self, make_settings: Callable[..., Settings]) -> None:
        transport, seen = _transport(make_settings, lambda _: httpx.Response(200, text="Alice"))

        result = await transport.recognize(b"\xff\xd8jpeg-bytes")

        assert len(seen) == 1
        request = seen[0]
        assert request.method == "POST"
        assert str(request.url) == "http://backend.test/main"
        assert request.headers["content-type"] == "application/octet-stream"
        assert request.content == b"\xff\xd8jpeg-bytes"
        assert result.message == "Alice"
        assert result.raw == "Alice"

    async def test_trailing_slash_in_api_url(self, make_settings: Callable[..., Settings]) -> None:
        transport, seen = _transport(
            make_settings, lambda _: httpx.Response(200, text="ok"), api_url="http://backend.test/api/"
        )

        await transport.recognize(b"x")

        assert str(seen[0].url) == "http://backend.test/api/main"

    async def test_json_response_is_parsed(self, make_settings: Callable[..., Settings]) -> None:
        transport, _ = _transport(
            make_settings, lambda _: httpx.Response(200, json={"identity": "Bob", "score": 0.87})
        )

        result = await transport.recognize(b"x")

        assert result.identity == "Bob"
        assert result.score == pytest.approx(0.87)
        assert result.message == "Bob"

    async def test_non_200_is_transport_error(self, make_settings: Callable[..., Settings]) -> None:
        transport, seen = _transport(make_settings, lambda _: httpx.Response(500, text="boom"))

        with pytest.raises(TransportError) as excinfo:
            await transport.recognize(b"x")

        assert excinfo.value.http_status == 500
        assert "HTTP 500" in excinfo.value.message
        assert len(seen) == 1

    async def test_network_failure_is_transport_error(self, make_settings: Callable[..., Settings]) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        transport, seen = _transport(make_settings, refuse)

        with pytest.raises(TransportError, match="Could not reach"):
            await transport.recognize(b"x")
        assert len(seen) == 1

    async def test_missing_api_url_is_configuration_error(self, make_settings: Callable[..., Settings]) -> None:
        transport, seen = _transport(make_settings, lambda _: httpx.Response(200), api_url=None)

        assert transport.configured is False
        with pytest.raises(ConfigurationError, match="API_URL"):
            await transport.recognize(b"x")
        assert seen == []


class TestStartStream:
    async def test_message_is_returned(self, make_settings: Callable[..., Settings]) -> None:
        transport, seen = _transport(make_settings, lambda _: httpx.Response(200, json={"message": "started"}))

        response = await transport.start_stream()

        assert response.message == "started"
        assert str(seen[0].url) == "http://backend.test/start_stream"
        assert seen[0].content == b""

    async def test_message_is_optional(self, make_settings: Callable[..., Settings]) -> None:
        transport, _ = _transport(make_settings, lambda _: httpx.Response(200, json={}))
        assert (await transport.start_stream()).message is None

    async def test_malformed_json_is_transport_error(self, make_settings: Callable[..., Settings]) -> None:
        transport, _ = _transport(make_settings, lambda _: httpx.Response(200, text="<html>"))
        with pytest.raises(TransportError, match="unreadable"):
            await transport.start_stream()

    async def test_non_200_is_transport_error(self, make_settings: Callable[..., Settings]) -> None:
        transport, _ = _transport(make_settings, lambda _: httpx.Response(404, json={"message": "nope"}))
        with pytest.raises(TransportError) as excinfo:
            await transport.start_stream()
        assert excinfo.value.http_status == 404


class TestParseRecognition:
    def test_plain_text_is_kept_verbatim(self) -> None:
        result = parse_recognition("  Unknown person\n")
        assert result.message == "  Unknown person\n"
        assert result.identity is None

    def test_json_string(self) -> None:
        assert parse_recognition('"Carol"').message == "Carol"

    def test_name_and_confidence_aliases(self) -> None:
        result = parse_recognition('{"name": "Dana", "confidence": 0.5}')
        assert result.identity == "Dana"
        assert result.score == pytest.approx(0.5)

    def test_explicit_message_wins(self) -> None:
        result = parse_recognition('{"message": "Welcome back", "identity": "Eve"}')
        assert result.message == "Welcome back"
        assert result.identity == "Eve"

    def test_json_without_known_fields_falls_back_to_raw(self) -> None:
        text = '{"matches": []}'
        assert parse_recognition(text).message == text

    def test_json_array_falls_back_to_raw(self) -> None:
        assert parse_recognition("[1, 2]").message == "[1, 2]"

    def test_unexpected_types_fall_back_to_raw(self) -> None:
        text = '{"identity": 42}'
        result = parse_recognition(text)
        assert result.message == text
        assert result.identity is None
