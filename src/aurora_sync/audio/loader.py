"""
Audio Loading: bounded reads from local files or URLs, plus decoding.

Every source is held to the same byte ceiling. Remote transfers are
streamed in chunks and aborted as soon as the ceiling is crossed, whether
or not the server sent (or understated) Content-Length.
"""

from __future__ import annotations

import asyncio
import io
from pathlib import Path
from typing import Optional

import aiohttp
import numpy as np
import soundfile as sf
import structlog
from numpy.typing import NDArray

from aurora_sync.core.config import AudioConfig
from aurora_sync.core.exceptions import AudioDecodeError, AudioTooLargeError, UpstreamError

logger = structlog.get_logger()


def sniff_format(data: bytes) -> Optional[str]:
    """Identify a container from its magic bytes."""
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WAVE":
        return "wav"
    if data[:4] == b"fLaC":
        return "flac"
    if data[:4] == b"OggS":
        return "ogg"
    if data[:3] == b"ID3":
        return "mp3"
    if len(data) >= 2 and data[0] == 0xFF and (data[1] & 0xE0) == 0xE0:
        return "mp3"
    if len(data) >= 12 and data[4:8] == b"ftyp":
        return "m4a"
    return None


def is_remote(source: str) -> bool:
    return source.startswith(("http://", "https://"))


def read_local_audio(path: Path, max_bytes: int) -> bytes:
    """Read a local audio file, refusing anything above max_bytes."""
    size = path.stat().st_size
    if size > max_bytes:
        raise AudioTooLargeError(str(path), max_bytes, size)
    data = path.read_bytes()
    if len(data) > max_bytes:
        # file grew between stat and read
        raise AudioTooLargeError(str(path), max_bytes, len(data))
    return data


async def fetch_audio(
    url: str,
    max_bytes: int,
    chunk_bytes: int = 256 * 1024,
    timeout_s: float = 60.0,
    session: Optional[aiohttp.ClientSession] = None,
) -> bytes:
    """Download audio from url, aborting once more than max_bytes arrive."""
    logger.info("Downloading audio", url=url)
    owns_session = session is None
    if session is None:
        session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout_s))

    try:
        async with session.get(url, headers={"User-Agent": "aurora-sync/0.1"}) as resp:
            if resp.status >= 400:
                raise UpstreamError("download", resp.reason or "request failed", status=resp.status)

            declared = resp.content_length
            if declared is not None and declared > max_bytes:
                raise AudioTooLargeError(url, max_bytes, declared)

            buffer = bytearray()
            async for chunk in resp.content.iter_chunked(chunk_bytes):
                buffer.extend(chunk)
                if len(buffer) > max_bytes:
                    # closing the response drops the connection mid-transfer
                    resp.close()
                    raise AudioTooLargeError(url, max_bytes, len(buffer))
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise UpstreamError("download", str(e) or type(e).__name__) from e
    finally:
        if owns_session:
            await session.close()

    logger.info("Download complete", url=url, mb=round(len(buffer) / 1024 / 1024, 2))
    return bytes(buffer)


async def load_audio(
    source: str,
    config: Optional[AudioConfig] = None,
    session: Optional[aiohttp.ClientSession] = None,
) -> bytes:
    """Read audio bytes from a path or URL under the configured ceiling."""
    config = config or AudioConfig()
    if is_remote(source):
        return await fetch_audio(
            source,
            max_bytes=config.max_bytes,
            chunk_bytes=config.download_chunk_bytes,
            timeout_s=config.download_timeout_s,
            session=session,
        )
    return read_local_audio(Path(source), config.max_bytes)


def decode_audio(data: bytes, source: str = "<bytes>") -> tuple[NDArray[np.float32], int]:
    """
    Decode an audio container into mono float32 samples.

    Multi-channel audio is averaged into a single channel.
    """
    if not data:
        raise AudioDecodeError(source, "empty payload")

    try:
        samples, sample_rate = sf.read(io.BytesIO(data), dtype="float32", always_2d=True)
    except (RuntimeError, ValueError, TypeError) as e:
        fmt = sniff_format(data)
        hint = f"detected {fmt}" if fmt else "unrecognized container"
        raise AudioDecodeError(source, f"{e} ({hint})") from e

    if samples.shape[0] == 0:
        raise AudioDecodeError(source, "no audio frames")

    mono = samples.mean(axis=1) if samples.shape[1] > 1 else samples[:, 0]
    if not np.all(np.isfinite(mono)):
        raise AudioDecodeError(source, "non-finite samples")
    return mono.astype(np.float32, copy=False), int(sample_rate)


def resample_linear(x: NDArray[np.float32], src: int, dst: int) -> NDArray[np.float32]:
    """Naive linear resampling; adequate for band-energy analysis."""
    if src == dst or x.size == 0:
        return x
    n = x.shape[0]
    t_src = np.linspace(0.0, 1.0, n, endpoint=False)
    m = int(round(n * (dst / src)))
    t_dst = np.linspace(0.0, 1.0, m, endpoint=False)
    return np.interp(t_dst, t_src, x).astype(np.float32)
