from __future__ import annotations

import httpx
import pytest

from common import http


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class Sequence:
    """Handler returning queued responses (or raising queued exceptions)."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = 0

    def __call__(self, request):
        response = self.responses[self.calls]
        self.calls += 1
        if isinstance(response, Exception):
            raise response
        return response


def test_build_timeout_caps_connect_and_pool() -> None:
    timeout = http.build_timeout(60.0)
    assert timeout.connect == 10.0
    assert timeout.pool == 5.0
    assert timeout.read == 60.0

    short = http.build_timeout(2.0)
    assert short.connect == 2.0
    assert short.pool == 2.0


def test_build_headers() -> None:
    headers = http.build_headers(http.ACCEPT_JSON)
    assert headers["Accept"] == "application/json"
    assert "PaperPulse" in headers["User-Agent"]


def test_download_content_type_detection() -> None:
    assert http.Download("u", b"%PDF-1.4", "", 200).is_pdf
    assert http.Download("u", b"...", "application/pdf", 200).is_pdf
    assert not http.Download("u", b"<html>", "text/html; charset=utf-8", 200).is_pdf
    assert http.Download("u", b"<html>", "text/html; charset=utf-8", 200).is_html


@pytest.mark.asyncio
async def test_get_bytes_success() -> None:
    handler = Sequence(httpx.Response(200, content=b"ok"))
    async with _client(handler) as client:
        assert await http.get_bytes(client, "http://example.com") == b"ok"
    assert handler.calls == 1


@pytest.mark.asyncio
async def test_get_bytes_no_retry_by_default() -> None:
    handler = Sequence(httpx.Response(503), httpx.Response(200, content=b"ok"))
    async with _client(handler) as client:
        with pytest.raises(httpx.HTTPStatusError):
            await http.get_bytes(client, "http://example.com")
    assert handler.calls == 1


@pytest.mark.asyncio
async def test_get_bytes_retries_server_errors() -> None:
    handler = Sequence(
        httpx.ConnectError("refused"),
        httpx.Response(502),
        httpx.Response(200, content=b"ok"),
    )
    async with _client(handler) as client:
        body = await http.get_bytes(client, "http://example.com", retries=2, backoff=0)
    assert body == b"ok"
    assert handler.calls == 3


@pytest.mark.asyncio
async def test_get_bytes_does_not_retry_client_errors() -> None:
    handler = Sequence(httpx.Response(404), httpx.Response(200, content=b"ok"))
    async with _client(handler) as client:
        with pytest.raises(httpx.HTTPStatusError) as exc_info:
            await http.get_bytes(client, "http://example.com", retries=3, backoff=0)
    assert exc_info.value.response.status_code == 404
    assert handler.calls == 1


@pytest.mark.asyncio
async def test_get_bytes_gives_up_with_last_status_error() -> None:
    handler = Sequence(httpx.Response(500), httpx.Response(500))
    async with _client(handler) as client:
        with pytest.raises(httpx.HTTPStatusError) as exc_info:
            await http.get_bytes(client, "http://example.com", retries=1, backoff=0)
    assert exc_info.value.response.status_code == 500
    assert handler.calls == 2


@pytest.mark.asyncio
async def test_download_limited_returns_body() -> None:
    handler = Sequence(httpx.Response(200, content=b"%PDF-1.7 body", headers={"Content-Type": "Application/PDF"}))
    async with _client(handler) as client:
        download = await http.download_limited(client, "http://example.com/a.pdf", max_bytes=100)
    assert download.content == b"%PDF-1.7 body"
    assert download.content_type == "application/pdf"
    assert download.status_code == 200


@pytest.mark.asyncio
async def test_download_limited_rejects_declared_size() -> None:
    handler = Sequence(httpx.Response(200, content=b"x" * 200))
    async with _client(handler) as client:
        with pytest.raises(http.PayloadTooLargeError) as exc_info:
            await http.download_limited(client, "http://example.com/big", max_bytes=100)
    assert exc_info.value.limit == 100


@pytest.mark.asyncio
async def test_download_limited_rejects_streamed_size() -> None:
    async def _chunks():
        for _ in range(5):
            yield b"y" * 50

    handler = Sequence(httpx.Response(200, content=_chunks()))
    async with _client(handler) as client:
        with pytest.raises(http.PayloadTooLargeError):
            await http.download_limited(client, "http://example.com/stream", max_bytes=100)


@pytest.mark.asyncio
async def test_download_limited_raises_on_error_status() -> None:
    handler = Sequence(httpx.Response(403))
    async with _client(handler) as client:
        with pytest.raises(httpx.HTTPStatusError):
            await http.download_limited(client, "http://example.com/paywalled", max_bytes=100)
