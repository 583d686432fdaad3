"""
HTTP media streaming server.

Serves exactly one playlist entry to the renderer:

    GET|HEAD /video     the media file, with byte-range support
    GET|HEAD /subtitle  the subtitle (offset-shifted if an offset is set)

Renderers seek by issuing Range requests, so /video answers
``Range: bytes=a-b`` with 206 Partial Content and a Content-Range header.
Unsatisfiable ranges get 416.

The listening socket is bound before uvicorn starts so that "address in
use" surfaces as StreamingServerError instead of uvicorn exiting the process.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import socket
from enum import Enum
from pathlib import Path
from typing import AsyncIterator, Iterator

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import Response, StreamingResponse

from dlnacast.core import DlnaCastError
from dlnacast.streaming.subtitles import (
    SubtitleCue,
    SubtitleFormat,
    SubtitleParseError,
    load_cues,
    load_shifted_subtitle,
)

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 65536  # 64KB chunks

MIME_TYPES = {
    "mp4": "video/mp4",
    "avi": "video/x-msvideo",
    "mkv": "video/x-matroska",
    "mov": "video/quicktime",
    "wmv": "video/x-ms-wmv",
    "flv": "video/x-flv",
    "webm": "video/webm",
    "m4v": "video/x-m4v",
    "3gp": "video/3gpp",
    "ogv": "video/ogg",
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "flac": "audio/flac",
    "aac": "audio/aac",
    "ogg": "audio/ogg",
    "wma": "audio/x-ms-wma",
    "m4a": "audio/mp4",
    "opus": "audio/opus",
}

DLNA_CONTENT_FEATURES = "DLNA.ORG_OP=01;DLNA.ORG_CI=0;DLNA.ORG_FLAGS=01700000000000000000000000000000"


class StreamingServerErrorKind(Enum):
    BIND_FAILED = "bind_failed"
    FILE_UNREADABLE = "file_unreadable"


class StreamingServerError(DlnaCastError):
    """Raised when the streaming server cannot start."""

    def __init__(self, kind: StreamingServerErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind


class RangeNotSatisfiable(ValueError):
    """The requested range starts beyond the end of the file."""


def get_content_type(path: Path) -> str:
    """Get MIME type from the file extension."""
    return MIME_TYPES.get(path.suffix.lower().lstrip("."), "application/octet-stream")


def detect_local_ip(target: str = "8.8.8.8") -> str:
    """
    Detect the LAN address renderers should use to reach us.

    Uses the UDP socket trick: connecting a datagram socket sends nothing
    but selects the outbound interface.
    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect((target, 80))
            return s.getsockname()[0]
    except OSError:
        return "127.0.0.1"


def parse_range_header(range_header: str, file_size: int) -> tuple[int, int] | None:
    """
    Parse an HTTP Range header.

    Args:
        range_header: The Range header value (e.g., "bytes=0-1023").
        file_size: Total file size.

    Returns:
        (start, end) inclusive, or None if the header is malformed or uses
        several ranges (the caller then serves the whole file).

    Raises:
        RangeNotSatisfiable: If the range starts at or beyond the end.
    """
    if not range_header.startswith("bytes=") or "," in range_header:
        return None

    range_spec = range_header[6:].strip()  # Remove "bytes="
    first, sep, last = range_spec.partition("-")
    if not sep:
        return None

    try:
        if not first:
            # Suffix range: "-500" means last 500 bytes
            suffix_len = int(last)
            if suffix_len <= 0 or file_size == 0:
                raise RangeNotSatisfiable(range_header)
            return max(0, file_size - suffix_len), file_size - 1

        start = int(first)
        end = int(last) if last else file_size - 1
    except ValueError:
        return None

    if start >= file_size:
        raise RangeNotSatisfiable(range_header)
    if end < start:
        return None

    return start, min(end, file_size - 1)


def _read_span(path: Path, start: int, length: int, chunk_size: int) -> Iterator[bytes]:
    with path.open("rb") as f:
        f.seek(start)
        remaining = length
        while remaining > 0:
            chunk = f.read(min(chunk_size, remaining))
            if not chunk:
                break
            remaining -= len(chunk)
            yield chunk


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the application."""

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield

    def install_signal_handlers(self) -> None:
        pass


class MediaStreamingServer:
    """
    Serves one video (and optional subtitle) over HTTP.

    One instance per playlist entry. The session controller creates a new one
    whenever it moves to another entry.
    """

    def __init__(
        self,
        video: Path,
        subtitle: Path | None = None,
        *,
        host: str = "0.0.0.0",
        port: int = 9000,
        advertise_host: str | None = None,
        subtitle_offset_ms: int = 0,
        stop_grace: float = 2.0,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        """
        Initialize the streaming server.

        Args:
            video: Media file to serve at /video.
            subtitle: Optional subtitle file to serve at /subtitle.
            host: Address to bind to.
            port: Port to bind to (0 picks a free port).
            advertise_host: Address put into URLs given to the renderer.
                Defaults to the detected LAN address.
            subtitle_offset_ms: Shift applied to every subtitle cue.
            stop_grace: Seconds open connections get when stopping.
            chunk_size: Read size for streamed responses.
        """
        self.video = Path(video)
        self.subtitle = Path(subtitle) if subtitle is not None else None
        self.host = host
        self.port = port
        self.advertise_host = advertise_host or detect_local_ip()
        self.subtitle_offset_ms = subtitle_offset_ms
        self.stop_grace = stop_grace
        self.chunk_size = chunk_size

        self._subtitle_content: bytes | None = None
        # Cues as the renderer sees them, offset included
        self.cues: list[SubtitleCue] = []
        self._server: uvicorn.Server | None = None
        self._task: asyncio.Task[None] | None = None

        self.app = FastAPI(title="dlnacast", docs_url=None, redoc_url=None, openapi_url=None)
        self._register_routes()

    @property
    def video_url(self) -> str:
        return f"http://{self.advertise_host}:{self.port}/video"

    @property
    def subtitle_url(self) -> str | None:
        if self.subtitle is None:
            return None
        return f"http://{self.advertise_host}:{self.port}/subtitle"

    @property
    def subtitle_format(self) -> SubtitleFormat | None:
        if self.subtitle is None:
            return None
        return SubtitleFormat.from_path(self.subtitle)

    @property
    def content_type(self) -> str:
        return get_content_type(self.video)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def prepare(self) -> None:
        """
        Check the files and load the subtitle into memory.

        Called by start(); exposed so the HTTP app can be tested without
        binding a socket.

        Raises:
            StreamingServerError: FILE_UNREADABLE.
        """
        try:
            with self.video.open("rb"):
                pass
        except OSError as e:
            raise StreamingServerError(
                StreamingServerErrorKind.FILE_UNREADABLE, f"Cannot open video {self.video}: {e}"
            ) from e

        if self.subtitle is None:
            return

        try:
            if self.subtitle_offset_ms:
                self._subtitle_content = load_shifted_subtitle(self.subtitle, self.subtitle_offset_ms)
            else:
                self._subtitle_content = self.subtitle.read_bytes()
            self.cues = load_cues(self.subtitle, self.subtitle_offset_ms)
        except (OSError, SubtitleParseError) as e:
            raise StreamingServerError(
                StreamingServerErrorKind.FILE_UNREADABLE,
                f"Cannot load subtitle {self.subtitle}: {e}",
            ) from e

    def _bind(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.host, self.port))
        except OSError as e:
            sock.close()
            raise StreamingServerError(
                StreamingServerErrorKind.BIND_FAILED,
                f"Cannot bind streaming server to {self.host}:{self.port}: {e}",
            ) from e
        return sock

    async def start(self) -> None:
        """
        Bind and start serving in a background task.

        Raises:
            StreamingServerError: BIND_FAILED or FILE_UNREADABLE.
        """
        if self.is_running:
            logger.warning("Streaming server already running")
            return

        self.prepare()
        sock = self._bind()
        self.port = sock.getsockname()[1]

        config = uvicorn.Config(
            self.app,
            log_config=None,
            log_level="warning",
            access_log=False,
            lifespan="off",
            timeout_graceful_shutdown=max(1, int(self.stop_grace)),
        )
        self._server = _EmbeddedServer(config)
        self._task = asyncio.create_task(self._server.serve(sockets=[sock]))

        while not self._server.started:
            if self._task.done():
                sock.close()
                exc = None if self._task.cancelled() else self._task.exception()
                raise StreamingServerError(
                    StreamingServerErrorKind.BIND_FAILED,
                    f"Streaming server failed to start: {exc}",
                )
            await asyncio.sleep(0.01)

        logger.info("Streaming %s at %s", self.video.name, self.video_url)
        if self.subtitle_url:
            logger.info("Streaming subtitle %s at %s", self.subtitle.name, self.subtitle_url)

    async def stop(self) -> None:
        """
        Stop serving. Never waits more than about `stop_grace` + 1 seconds.
        """
        if self._server is None or self._task is None:
            return

        self._server.should_exit = True
        done, _ = await asyncio.wait({self._task}, timeout=self.stop_grace + 1.0)
        if not done:
            logger.warning("Streaming server did not stop within %.1fs, forcing", self.stop_grace)
            self._server.force_exit = True
            self._task.cancel()
            await asyncio.wait({self._task}, timeout=1.0)
        elif not self._task.cancelled() and self._task.exception() is not None:
            logger.warning("Streaming server exited with error: %s", self._task.exception())

        self._server = None
        self._task = None
        logger.debug("Streaming server on port %d stopped", self.port)

    async def __aenter__(self) -> MediaStreamingServer:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    def _base_headers(self) -> dict[str, str]:
        headers = {
            "Accept-Ranges": "bytes",
            "transferMode.dlna.org": "Streaming",
            "contentFeatures.dlna.org": DLNA_CONTENT_FEATURES,
        }
        if self.subtitle_url:
            headers["CaptionInfo.sec"] = self.subtitle_url
        return headers

    def _register_routes(self) -> None:
        """Register the /video and /subtitle routes."""

        @self.app.api_route("/video", methods=["GET", "HEAD"])
        async def video(request: Request) -> Response:
            return self._serve_video(request)

        @self.app.api_route("/subtitle", methods=["GET", "HEAD"])
        async def subtitle(request: Request) -> Response:
            if self.subtitle is None:
                raise HTTPException(status_code=404, detail="No subtitle")
            if self._subtitle_content is None:
                raise HTTPException(status_code=503, detail="Subtitle not loaded")

            fmt = SubtitleFormat.from_path(self.subtitle)
            content = b"" if request.method == "HEAD" else self._subtitle_content
            return Response(
                content=content,
                media_type=f"{fmt.media_type}; charset=utf-8",
                headers={"Content-Length": str(len(self._subtitle_content))},
            )

    def _serve_video(self, request: Request) -> Response:
        try:
            file_size = self.video.stat().st_size
        except OSError as e:
            logger.warning("Cannot stat %s: %s", self.video, e)
            raise HTTPException(status_code=404, detail="Video not available") from e

        headers = self._base_headers()
        status_code = 200
        start, end = 0, file_size - 1

        range_header = request.headers.get("range")
        if range_header:
            try:
                span = parse_range_header(range_header, file_size)
            except RangeNotSatisfiable:
                logger.debug("Unsatisfiable range %r for %d bytes", range_header, file_size)
                return Response(
                    status_code=416,
                    headers={**headers, "Content-Range": f"bytes */{file_size}"},
                )
            if span is not None:
                start, end = span
                status_code = 206
                headers["Content-Range"] = f"bytes {start}-{end}/{file_size}"

        content_length = max(0, end - start + 1)
        headers["Content-Length"] = str(content_length)

        if request.method == "HEAD":
            return Response(status_code=status_code, headers=headers, media_type=self.content_type)

        logger.debug(
            "Serving %s bytes %d-%d/%d to %s",
            self.video.name,
            start,
            end,
            file_size,
            request.client.host if request.client else "?",
        )

        async def generate() -> AsyncIterator[bytes]:
            """Generate file chunks from the requested byte range."""
            try:
                for chunk in _read_span(self.video, start, content_length, self.chunk_size):
                    yield chunk
            except OSError as e:
                logger.warning("Streaming error for %s: %s", self.video, e)

        return StreamingResponse(
            generate(),
            status_code=status_code,
            media_type=self.content_type,
            headers=headers,
        )
