"""Media download and transcoding for the model request."""

from __future__ import annotations

import asyncio
import base64
from collections.abc import Awaitable, Callable
from typing import Protocol, runtime_checkable

import structlog

from parley.models.config import MediaConfig


class MediaError(Exception):
    """Base class for media resolution failures."""


class MediaDownloadError(MediaError):
    """The platform file could not be downloaded."""


class TranscodeError(MediaError):
    """ffmpeg failed or timed out converting audio."""


@runtime_checkable
class MediaFetcher(Protocol):
    """Turns platform file handles into bytes the model can read."""

    async def fetch_bytes(self, file_id: str) -> bytes: ...

    async def fetch_as_inline_image(self, file_id: str, mime_type: str | None = None) -> str:
        """Return a ``data:<mime>;base64,...`` URI."""
        ...

    async def fetch_as_inline_audio(self, file_id: str) -> str:
        """Return bare base64 of a mono 16-bit PCM WAV rendition."""
        ...

    async def fetch_as_wav(self, file_id: str) -> bytes: ...


Downloader = Callable[[str], Awaitable[bytes]]


class PlatformMediaFetcher:
    """
    :class:`MediaFetcher` over any ``file_id -> bytes`` downloader.

    Audio is transcoded with ffmpeg through pipes (no temp files). Download
    and transcode are each bounded by their own timeout.

    Example::

        fetcher = PlatformMediaFetcher(messenger.download_file, MediaConfig())
        data_uri = await fetcher.fetch_as_inline_image(file_id)
    """

    def __init__(self, downloader: Downloader, config: MediaConfig | None = None) -> None:
        self._download = downloader
        self._config = config or MediaConfig()
        self._logger = structlog.get_logger("parley.media")

    async def fetch_bytes(self, file_id: str) -> bytes:
        try:
            return await asyncio.wait_for(
                self._download(file_id), timeout=self._config.download_timeout_secs
            )
        except TimeoutError as exc:
            raise MediaDownloadError(
                f"Download of {file_id!r} exceeded {self._config.download_timeout_secs}s"
            ) from exc
        except MediaError:
            raise
        except Exception as exc:
            raise MediaDownloadError(f"Download of {file_id!r} failed: {exc}") from exc

    async def fetch_as_inline_image(self, file_id: str, mime_type: str | None = None) -> str:
        data = await self.fetch_bytes(file_id)
        mime = mime_type or self._config.default_image_mime
        return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"

    async def fetch_as_inline_audio(self, file_id: str) -> str:
        wav = await self.fetch_as_wav(file_id)
        return base64.b64encode(wav).decode("ascii")

    async def fetch_as_wav(self, file_id: str) -> bytes:
        source = await self.fetch_bytes(file_id)
        return await self.transcode_to_wav(source)

    async def transcode_to_wav(self, source: bytes) -> bytes:
        """
        Convert any ffmpeg-readable audio (Telegram voice is OGG/Opus) to WAV.

        Raises:
            TranscodeError: ffmpeg is missing, exits non-zero, or times out.
        """
        cfg = self._config
        try:
            proc = await asyncio.create_subprocess_exec(
                cfg.ffmpeg_binary,
                "-hide_banner",
                "-loglevel", "error",
                "-i", "pipe:0",
                "-ar", str(cfg.audio_sample_rate),
                "-ac", "1",
                "-c:a", "pcm_s16le",
                "-f", "wav",
                "pipe:1",
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise TranscodeError(f"Cannot start {cfg.ffmpeg_binary!r}: {exc}") from exc

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(source), timeout=cfg.transcode_timeout_secs
            )
        except TimeoutError as exc:
            proc.kill()
            await proc.wait()
            raise TranscodeError(
                f"Transcoding exceeded {cfg.transcode_timeout_secs}s"
            ) from exc

        if proc.returncode != 0:
            detail = stderr.decode(errors="replace").strip()[:500]
            self._logger.warning("transcode_failed", returncode=proc.returncode, stderr=detail)
            raise TranscodeError(f"ffmpeg exited with {proc.returncode}: {detail}")
        return stdout
