"""
Playback session controller.

One PlaybackController drives one renderer through a playlist. It is the
only component that starts/stops the streaming server or sends AVTransport
actions, so requests to a device are never interleaved.

State machine:

    IDLE -> PREPARING -> LOADING -> PLAYING <-> PAUSED
                ^                      |          |
                |                      v          v
                +------------------ ADVANCING ----+--> STOPPED

    STOPPED and FAILED are terminal. Stop/Quit from any active state goes to
    STOPPED; an unrecoverable error goes to FAILED.

Concurrency:
    - Keyboard/TUI producers call `post()`; commands are handled strictly in
      queue order by `run()`
    - A ticker task posts PollTick every `poll_interval` seconds, so status
      polls are serialized with user commands by arrival order
    - State leaves the controller only as immutable SessionSnapshot values
      pushed to subscriber queues
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable

from dlnacast.core import DlnaCastError
from dlnacast.core.commands import (
    Command,
    Next,
    PollTick,
    Previous,
    Quit,
    RefreshStatus,
    SelectEntry,
    Stop,
    ToggleLoop,
    TogglePlayPause,
)
from dlnacast.core.playlist import Playlist, PlaylistEntry, PlaylistError
from dlnacast.protocol.avtransport import ControlCommandError, TransportState, build_didl_lite
from dlnacast.streaming.subtitles import SubtitleCue, current_cue

if TYPE_CHECKING:
    from dlnacast.player.render import Render, RendererControl
    from dlnacast.streaming.server import MediaStreamingServer

logger = logging.getLogger(__name__)

ServerFactory = Callable[[PlaylistEntry], "MediaStreamingServer"]


class SessionState(Enum):
    """Playback session state."""

    IDLE = "idle"
    PREPARING = "preparing"
    LOADING = "loading"
    PLAYING = "playing"
    PAUSED = "paused"
    ADVANCING = "advancing"
    STOPPED = "stopped"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.STOPPED, SessionState.FAILED)


class SessionError(DlnaCastError):
    """Raised by `run()` when the session ends in FAILED."""


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    """Read-only view of the session for presenters."""

    state: SessionState
    transport_state: TransportState | None
    elapsed: float
    duration: float
    entries: tuple[str, ...]
    current_index: int
    loop: bool
    status: str = ""
    error: str = ""
    render: Render | None = None
    # Text of the subtitle cue at `elapsed`, empty between cues
    subtitle: str = ""

    @property
    def progress(self) -> float:
        if self.duration <= 0:
            return 0.0
        return max(0.0, min(1.0, self.elapsed / self.duration))

    @property
    def current_title(self) -> str:
        if not self.entries:
            return ""
        return self.entries[self.current_index]


class PlaybackController:
    """
    State machine for one playback session.

    Args:
        renderer: AVTransport control for the target device.
        playlist: What to play; the controller owns its index from now on.
        server_factory: Builds the streaming server for a playlist entry.
        poll_interval: Seconds between status polls.
        max_poll_failures: Consecutive poll failures tolerated before FAILED.
        settle_polls: Polls during which an early STOPPED report right after
            loading is ignored (some renderers report STOPPED while buffering).
    """

    def __init__(
        self,
        renderer: RendererControl,
        playlist: Playlist,
        server_factory: ServerFactory,
        *,
        poll_interval: float = 1.0,
        max_poll_failures: int = 3,
        settle_polls: int = 5,
    ) -> None:
        self.renderer = renderer
        self.playlist = playlist
        self.server_factory = server_factory
        self.poll_interval = poll_interval
        self.max_poll_failures = max_poll_failures
        self.settle_polls = settle_polls

        self._commands: asyncio.Queue[Command] = asyncio.Queue()
        self._subscribers: list[asyncio.Queue[SessionSnapshot]] = []

        self._state = SessionState.IDLE
        self._server: MediaStreamingServer | None = None
        self._transport_state: TransportState | None = None
        self._elapsed = 0.0
        self._duration = 0.0
        self._status = ""
        self._error = ""
        self._cues: list[SubtitleCue] = []

        self._poll_failures = 0
        self._settle_count = 0
        self._seen_active = False
        self._last_poll = 0.0

    # -- public surface ---------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    def post(self, command: Command) -> None:
        """Queue a command for the controller. Safe from any task."""
        self._commands.put_nowait(command)

    def subscribe(self, maxsize: int = 1) -> asyncio.Queue[SessionSnapshot]:
        """
        Get a queue that receives snapshots.

        With the default maxsize of 1 the queue only ever holds the latest
        snapshot. Pass 0 to receive every snapshot.
        """
        queue: asyncio.Queue[SessionSnapshot] = asyncio.Queue(maxsize=maxsize)
        self._subscribers.append(queue)
        queue.put_nowait(self.snapshot())
        return queue

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            state=self._state,
            transport_state=self._transport_state,
            elapsed=self._elapsed,
            duration=self._duration,
            entries=tuple(entry.title for entry in self.playlist),
            current_index=self.playlist.current_index,
            loop=self.playlist.loop,
            status=self._status,
            error=self._error,
            render=self.renderer.render,
            subtitle=self._current_subtitle(),
        )

    def _current_subtitle(self) -> str:
        if not self._cues or self._state not in (SessionState.PLAYING, SessionState.PAUSED):
            return ""
        cue = current_cue(self._cues, int(self._elapsed * 1000))
        return cue.text if cue else ""

    async def start(self) -> None:
        """
        IDLE -> PLAYING for the current playlist entry.

        Raises:
            StreamingServerError: If the server cannot bind or read the file.
            ControlCommandError: If SetAVTransportURI or Play fails.
        """
        if self._state is not SessionState.IDLE:
            raise RuntimeError(f"Session already started ({self._state.value})")

        try:
            await self._play_current()
        except DlnaCastError as e:
            self._error = str(e)
            self._set_state(SessionState.FAILED)
            await self._stop_server()
            raise

    async def run(self) -> SessionState:
        """
        Start playback and handle commands until the session ends.

        Returns:
            The terminal state (STOPPED).

        Raises:
            The startup error if the first entry cannot be played, or
            SessionError if the session later ends in FAILED.
        """
        await self.start()

        ticker = asyncio.create_task(self._ticker(), name="dlnacast-poller")
        try:
            while not self._state.is_terminal:
                command = await self._commands.get()
                await self.handle(command)
        finally:
            ticker.cancel()
            await asyncio.gather(ticker, return_exceptions=True)
            await self._stop_server()
            self._publish()

        if self._state is SessionState.FAILED:
            raise SessionError(self._error or "Playback session failed")
        return self._state

    async def handle(self, command: Command) -> None:
        """Process one command. Called by `run()` in queue order."""
        if self._state.is_terminal:
            logger.debug("Ignoring %s in terminal state %s", command.name, self._state.value)
            return

        if isinstance(command, PollTick):
            loop = asyncio.get_running_loop()
            if loop.time() - self._last_poll < self.poll_interval / 2:
                return
            await self._poll()
        elif isinstance(command, RefreshStatus):
            await self._poll()
        elif isinstance(command, TogglePlayPause):
            await self._toggle()
        elif isinstance(command, (Stop, Quit)):
            await self._stop(command)
        elif isinstance(command, Next):
            await self._navigate(self.playlist.next, "last")
        elif isinstance(command, Previous):
            await self._navigate(self.playlist.previous, "first")
        elif isinstance(command, SelectEntry):
            await self._select(command.index)
        elif isinstance(command, ToggleLoop):
            loop_enabled = self.playlist.toggle_loop()
            self._status = f"Loop {'on' if loop_enabled else 'off'}"
        else:
            logger.warning("Unknown command %r", command)

        self._publish()

    # -- state machine ----------------------------------------------------

    def _set_state(self, state: SessionState) -> None:
        if state is self._state:
            return
        logger.debug("Session %s -> %s", self._state.value, state.value)
        self._state = state
        self._publish()

    def _publish(self) -> None:
        snapshot = self.snapshot()
        for queue in self._subscribers:
            if queue.maxsize and queue.full():
                queue.get_nowait()
            queue.put_nowait(snapshot)

    async def _stop_server(self) -> None:
        if self._server is not None:
            server, self._server = self._server, None
            await server.stop()

    async def _play_current(self) -> None:
        """PREPARING -> LOADING -> PLAYING for `playlist.current`."""
        entry = self.playlist.current
        self._set_state(SessionState.PREPARING)
        self._status = f"Preparing {entry.title}"
        self._transport_state = None
        self._elapsed = 0.0
        self._duration = 0.0
        self._cues = []

        await self._stop_server()
        server = self.server_factory(entry)
        await server.start()
        self._server = server
        self._cues = server.cues

        self._set_state(SessionState.LOADING)
        is_audio = server.content_type.startswith("audio/")
        subtitle_format = server.subtitle_format
        metadata = build_didl_lite(
            entry.title,
            server.video_url,
            server.content_type,
            subtitle_url=server.subtitle_url,
            subtitle_type=subtitle_format.value if subtitle_format else "srt",
            upnp_class="object.item.audioItem.musicTrack" if is_audio else "object.item.videoItem.movie",
        )
        await self.renderer.set_uri(server.video_url, metadata)
        await self.renderer.play()

        self._poll_failures = 0
        self._settle_count = 0
        self._seen_active = False
        self._error = ""
        self._status = f"Playing {entry.title}"
        self._set_state(SessionState.PLAYING)
        logger.info(
            "Playing %s (%d/%d) on %s",
            entry.video.name,
            self.playlist.current_index + 1,
            len(self.playlist),
            self.renderer.render.friendly_name,
        )

    async def _switch_entry(self) -> None:
        """Start the (already selected) current entry mid-session."""
        try:
            await self._play_current()
        except DlnaCastError as e:
            logger.error("Cannot play %s: %s", self.playlist.current.video.name, e)
            self._error = str(e)
            self._set_state(SessionState.FAILED)

    async def _advance_or_stop(self) -> None:
        if not self.playlist.has_next:
            self._status = "Playback finished"
            self._set_state(SessionState.STOPPED)
            logger.info("Playlist finished")
            return

        self._set_state(SessionState.ADVANCING)
        self.playlist.next()
        await self._switch_entry()

    async def _poll(self) -> None:
        if self._state not in (SessionState.PLAYING, SessionState.PAUSED):
            return

        self._last_poll = asyncio.get_running_loop().time()
        try:
            info = await self.renderer.get_transport_info()
            position = await self.renderer.get_position_info()
        except ControlCommandError as e:
            self._poll_failures += 1
            self._status = f"Status poll failed ({self._poll_failures}): {e}"
            logger.warning("Status poll failed (%d in a row): %s", self._poll_failures, e)
            if self._poll_failures > self.max_poll_failures:
                self._error = f"Lost contact with {self.renderer.render.friendly_name}: {e}"
                self._set_state(SessionState.FAILED)
            return

        self._poll_failures = 0
        self._transport_state = info.state
        self._elapsed = position.elapsed
        self._duration = position.duration

        if info.state in (TransportState.PLAYING, TransportState.TRANSITIONING):
            self._seen_active = True

        if info.state.is_finished:
            if not self._seen_active and self._settle_count < self.settle_polls:
                self._settle_count += 1
                logger.debug("Ignoring early %s after load (%d)", info.state.value, self._settle_count)
                return
            await self._advance_or_stop()
        elif info.state is TransportState.PAUSED and self._state is SessionState.PLAYING:
            self._set_state(SessionState.PAUSED)
        elif info.state is TransportState.PLAYING and self._state is SessionState.PAUSED:
            self._set_state(SessionState.PLAYING)

    async def _toggle(self) -> None:
        if self._state not in (SessionState.PLAYING, SessionState.PAUSED):
            logger.debug("Toggle ignored in state %s", self._state.value)
            return

        # The device's own report wins over our idea of the state
        device = self._transport_state
        if device in (TransportState.PAUSED, TransportState.STOPPED):
            resume = True
        elif device is TransportState.PLAYING:
            resume = False
        else:
            resume = self._state is SessionState.PAUSED

        try:
            if resume:
                await self.renderer.play()
                self._transport_state = TransportState.PLAYING
                self._status = f"Playing {self.playlist.current.title}"
                self._set_state(SessionState.PLAYING)
            else:
                await self.renderer.pause()
                self._transport_state = TransportState.PAUSED
                self._status = "Paused"
                self._set_state(SessionState.PAUSED)
        except ControlCommandError as e:
            self._status = f"Play/pause failed: {e}"
            logger.warning("Play/pause failed: %s", e)

    async def _stop_renderer(self) -> None:
        try:
            await self.renderer.stop()
        except ControlCommandError as e:
            logger.warning("Stop failed: %s", e)

    async def _stop(self, command: Command) -> None:
        await self._stop_renderer()
        self._status = "Quit" if isinstance(command, Quit) else "Stopped"
        self._set_state(SessionState.STOPPED)

    async def _navigate(self, move: Callable[[], PlaylistEntry | None], boundary: str) -> None:
        if move() is None:
            self._status = f"Already at the {boundary} entry"
            return
        await self._stop_renderer()
        await self._switch_entry()

    async def _select(self, index: int) -> None:
        try:
            self.playlist.select(index)
        except PlaylistError as e:
            self._status = str(e)
            return
        await self._stop_renderer()
        await self._switch_entry()

    async def _ticker(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            self.post(PollTick())
