from pathlib import Path

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from aurora_sync.audio.loader import fetch_audio, is_remote, load_audio
from aurora_sync.core.config import AudioConfig
from aurora_sync.core.exceptions import AudioTooLargeError, UpstreamError


def _app() -> web.Application:
    async def chunked(request: web.Request) -> web.StreamResponse:
        resp = web.StreamResponse()
        resp.enable_chunked_encoding()
        await resp.prepare(request)
        for _ in range(32):
            await resp.write(b"\x00" * 1024)
        await resp.write_eof()
        return resp

    async def declared(request: web.Request) -> web.Response:
        return web.Response(body=b"\x00" * 10_000)

    async def small(request: web.Request) -> web.Response:
        return web.Response(body=b"RIFF" + b"\x00" * 60)

    async def missing(request: web.Request) -> web.Response:
        raise web.HTTPNotFound()

    app = web.Application()
    app.router.add_get("/chunked.wav", chunked)
    app.router.add_get("/declared.wav", declared)
    app.router.add_get("/small.wav", small)
    app.router.add_get("/missing.wav", missing)
    return app


@pytest.mark.asyncio
async def test_stream_without_content_length_is_aborted_at_ceiling() -> None:
    async with TestServer(_app()) as server:
        with pytest.raises(AudioTooLargeError) as excinfo:
            await fetch_audio(str(server.make_url("/chunked.wav")), max_bytes=4096, chunk_bytes=1024)

    assert excinfo.value.limit_bytes == 4096
    assert 4096 < excinfo.value.observed_bytes < 32 * 1024


@pytest.mark.asyncio
async def test_declared_length_over_ceiling_is_rejected() -> None:
    async with TestServer(_app()) as server:
        with pytest.raises(AudioTooLargeError) as excinfo:
            await fetch_audio(str(server.make_url("/declared.wav")), max_bytes=4096)

    assert excinfo.value.observed_bytes == 10_000


@pytest.mark.asyncio
async def test_download_within_ceiling_returns_bytes() -> None:
    async with TestServer(_app()) as server:
        data = await load_audio(str(server.make_url("/small.wav")), AudioConfig(max_bytes=4096))

    assert data.startswith(b"RIFF")
    assert len(data) == 64


@pytest.mark.asyncio
async def test_http_error_becomes_upstream_error() -> None:
    async with TestServer(_app()) as server:
        with pytest.raises(UpstreamError) as excinfo:
            await fetch_audio(str(server.make_url("/missing.wav")), max_bytes=4096)

    assert excinfo.value.status == 404


@pytest.mark.asyncio
async def test_local_file_over_ceiling_is_rejected(tmp_path: Path) -> None:
    path = tmp_path / "big.wav"
    path.write_bytes(b"\x00" * 200)

    with pytest.raises(AudioTooLargeError):
        await load_audio(str(path), AudioConfig(max_bytes=100))

    assert await load_audio(str(path), AudioConfig(max_bytes=200)) == b"\x00" * 200


def test_is_remote() -> None:
    assert is_remote("https://example.com/song.mp3")
    assert not is_remote("/music/song.mp3")
