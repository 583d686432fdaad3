"""
dlnacast orchestration.

Wires the pieces together for one `play` invocation:

    resolve renderer -> AVTransport client -> PlaybackController
                                                 |-- keyboard reader (interactive)
                                                 |-- Textual app (TUI)

and provides the `list` operation.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable

from dlnacast.config import Config, get_config
from dlnacast.core.commands import Quit
from dlnacast.core.playlist import Playlist, PlaylistEntry
from dlnacast.core.session import PlaybackController, SessionSnapshot, SessionState
from dlnacast.player.render import All, ExplicitAddress, First, NameQuery, Render, RenderSpec
from dlnacast.player.resolver import resolve, resolve_all
from dlnacast.protocol.avtransport import AVTransportClient
from dlnacast.streaming.server import MediaStreamingServer, detect_local_ip

logger = logging.getLogger(__name__)


class UiMode(Enum):
    """How the session is presented."""

    PLAIN = "plain"
    INTERACTIVE = "interactive"
    TUI = "tui"


@dataclass
class PlayOptions:
    """Options for one `play` run, as given on the command line."""

    path: Path
    device_url: str | None = None
    device_query: str | None = None
    timeout: float | None = None
    host: str | None = None
    port: int | None = None
    subtitle: Path | None = None
    infer_subtitle: bool = True
    subtitle_offset_ms: int = 0
    subtitle_sync: bool = False
    subtitle_sync_interval: float | None = None
    loop: bool = False
    ui: UiMode = UiMode.PLAIN


def build_render_spec(device_url: str | None, device_query: str | None, timeout: float) -> RenderSpec:
    if device_url:
        return ExplicitAddress(device_url)
    if device_query:
        return NameQuery(timeout=timeout, query=device_query)
    return First(timeout=timeout)


async def list_renders(timeout: float | None = None) -> list[Render]:
    """Discover and return every renderer (used by `dlnacast list`)."""
    if timeout is None:
        timeout = get_config().discovery.timeout
    logger.info("Searching for renderers (%.1fs)...", timeout)
    return await resolve_all(All(timeout=timeout))


class Caster:
    """
    Runs one playback session to completion.

    Lifecycle:
        caster = Caster(options)
        await caster.run()   # returns when the session is over
    """

    def __init__(self, options: PlayOptions, config: Config | None = None) -> None:
        self.options = options
        self.config = config or get_config()
        self.controller: PlaybackController | None = None

    def build_playlist(self) -> Playlist:
        opts = self.options
        return Playlist.from_path(
            opts.path,
            subtitle=opts.subtitle,
            infer_subtitle=opts.infer_subtitle,
            loop=opts.loop,
        )

    def server_factory(self, render: Render) -> Callable[[PlaylistEntry], MediaStreamingServer]:
        streaming = self.config.streaming
        bind_host = self.options.host or streaming.host or "0.0.0.0"
        advertise_host = self.options.host or streaming.host or detect_local_ip(render.host)
        port = self.options.port if self.options.port is not None else streaming.port

        def create(entry: PlaylistEntry) -> MediaStreamingServer:
            return MediaStreamingServer(
                entry.video,
                entry.subtitle,
                host=bind_host,
                port=port,
                advertise_host=advertise_host,
                subtitle_offset_ms=self.options.subtitle_offset_ms,
                stop_grace=streaming.stop_grace,
                chunk_size=streaming.chunk_size,
            )

        return create

    async def run(self) -> SessionState:
        """
        Resolve the renderer and play the playlist.

        Raises:
            DlnaCastError: On any startup failure or a failed session.
        """
        opts = self.options
        playlist = self.build_playlist()

        timeout = opts.timeout if opts.timeout is not None else self.config.discovery.timeout
        spec = build_render_spec(opts.device_url, opts.device_query, timeout)
        render = await resolve(spec)
        logger.info("Renderer: %s", render)

        async with AVTransportClient(
            render,
            timeout=self.config.control.timeout,
            status_retries=self.config.control.status_retries,
        ) as client:
            session = self.config.session
            self.controller = PlaybackController(
                client,
                playlist,
                self.server_factory(render),
                poll_interval=self.poll_interval(),
                max_poll_failures=session.max_poll_failures,
                settle_polls=session.settle_polls,
            )

            clipboard = self._start_subtitle_sync(self.controller)
            try:
                if opts.ui is UiMode.TUI:
                    return await self._run_tui(self.controller)

                self._install_signal_handlers(self.controller)
                if opts.ui is UiMode.INTERACTIVE:
                    return await self._run_interactive(self.controller)
                return await self._run_plain(self.controller)
            finally:
                if clipboard is not None:
                    clipboard.cancel()
                    await asyncio.gather(clipboard, return_exceptions=True)

    def subtitle_sync_interval(self) -> float:
        if self.options.subtitle_sync_interval is not None:
            return self.options.subtitle_sync_interval
        return self.config.session.subtitle_sync_interval

    def poll_interval(self) -> float:
        """Status poll period; subtitle sync needs positions at least as often as it copies."""
        interval = self.config.session.poll_interval
        if self.options.subtitle_sync:
            interval = min(interval, self.subtitle_sync_interval())
        return interval

    def _start_subtitle_sync(self, controller: PlaybackController) -> asyncio.Task[None] | None:
        if not self.options.subtitle_sync:
            return None
        from dlnacast.ui.clipboard import SubtitleClipboard

        interval = self.subtitle_sync_interval()
        logger.info("Mirroring subtitles to the clipboard every %.2fs", interval)
        clipboard = SubtitleClipboard(interval)
        return asyncio.create_task(clipboard.run(controller.subscribe()), name="dlnacast-subtitle-sync")

    def _install_signal_handlers(self, controller: PlaybackController) -> None:
        loop = asyncio.get_running_loop()

        def handle_signal() -> None:
            logger.info("Received shutdown signal")
            controller.post(Quit())

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, handle_signal)
            except NotImplementedError:
                # Signal handlers not supported on Windows
                pass

    async def _run_plain(self, controller: PlaybackController) -> SessionState:
        updates = controller.subscribe()
        reporter = asyncio.create_task(_log_status_changes(updates))
        try:
            return await controller.run()
        finally:
            reporter.cancel()
            await asyncio.gather(reporter, return_exceptions=True)

    async def _run_interactive(self, controller: PlaybackController) -> SessionState:
        from dlnacast.ui.keyboard import InteractiveController

        keyboard = InteractiveController(controller.post)
        updates = controller.subscribe()
        reader = asyncio.create_task(keyboard.run())
        reporter = asyncio.create_task(_log_status_changes(updates))
        try:
            return await controller.run()
        finally:
            keyboard.stop()
            reporter.cancel()
            await asyncio.gather(reader, reporter, return_exceptions=True)

    async def _run_tui(self, controller: PlaybackController) -> SessionState:
        from dlnacast.ui.tui import DlnaCastApp

        app = DlnaCastApp(controller.post, controller.subscribe())
        session = asyncio.create_task(controller.run())
        try:
            await app.run_async()
        finally:
            # The app may have been closed with Ctrl+C before the session ended
            if not session.done():
                controller.post(Quit())
        return await session


async def _log_status_changes(updates: asyncio.Queue[SessionSnapshot]) -> None:
    """Log the session status line whenever it changes."""
    last = ""
    while True:
        snapshot = await updates.get()
        line = snapshot.error or snapshot.status
        if line and line != last:
            logger.info("%s", line)
            last = line
