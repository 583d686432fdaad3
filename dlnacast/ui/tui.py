"""
Full-screen status view built on Textual.

The TuiPresenter holds presentation state only (selected row, open dialog)
and turns keys into either session commands, which are posted to the
controller, or dialog actions, which never leave the UI. DlnaCastApp draws
whatever the latest SessionSnapshot says.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from rich.text import Text
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Vertical
from textual.screen import ModalScreen
from textual.widgets import Footer, Header, Static

from dlnacast.core.commands import (
    Command,
    Next,
    Previous,
    Quit,
    RefreshStatus,
    SelectEntry,
    Stop,
    ToggleLoop,
    TogglePlayPause,
)
from dlnacast.core.session import SessionSnapshot, SessionState
from dlnacast.protocol.avtransport import TransportState, format_duration

logger = logging.getLogger(__name__)


class Dialog(Enum):
    NONE = "none"
    HELP = "help"
    DEVICE_INFO = "device_info"


# Presentation-only commands


@dataclass(frozen=True, slots=True)
class ShowHelp:
    pass


@dataclass(frozen=True, slots=True)
class ShowDeviceInfo:
    pass


@dataclass(frozen=True, slots=True)
class MoveSelection:
    delta: int


@dataclass(frozen=True, slots=True)
class PlaySelected:
    pass


UiAction = Command | ShowHelp | ShowDeviceInfo | MoveSelection | PlaySelected

KEY_ACTIONS: dict[str, Callable[[], UiAction]] = {
    "space": TogglePlayPause,
    "p": TogglePlayPause,
    "s": Stop,
    "n": Next,
    "b": Previous,
    "r": RefreshStatus,
    "l": ToggleLoop,
    "q": Quit,
    "escape": Quit,
    "h": ShowHelp,
    "f1": ShowHelp,
    "question_mark": ShowHelp,
    "d": ShowDeviceInfo,
    "up": lambda: MoveSelection(-1),
    "k": lambda: MoveSelection(-1),
    "down": lambda: MoveSelection(1),
    "j": lambda: MoveSelection(1),
    "enter": PlaySelected,
}

DIALOG_CLOSE_KEYS = frozenset({"escape", "enter", "space", "q"})

HELP_TEXT = """\
[b]Playback[/b]
  Space / p     play / pause
  s             stop and exit
  n / b         next / previous entry
  r             refresh status now
  l             toggle loop

[b]Playlist[/b]
  Up / k        move selection up
  Down / j      move selection down
  Enter         play selected entry

[b]Other[/b]
  h / F1        this help
  d             device info
  q / Esc       quit

Esc, Enter or Space closes this dialog."""

STATE_LABELS = {
    TransportState.PLAYING: "▶ Playing",
    TransportState.PAUSED: "⏸ Paused",
    TransportState.STOPPED: "⏹ Stopped",
    TransportState.TRANSITIONING: "… Loading",
    TransportState.NO_MEDIA_PRESENT: "⏹ No media",
    TransportState.ERROR: "⚠ Error",
}

SESSION_LABELS = {
    SessionState.IDLE: "… Idle",
    SessionState.PREPARING: "… Preparing",
    SessionState.LOADING: "… Loading",
    SessionState.PLAYING: "▶ Playing",
    SessionState.PAUSED: "⏸ Paused",
    SessionState.ADVANCING: "… Next entry",
    SessionState.STOPPED: "⏹ Stopped",
    SessionState.FAILED: "⚠ Failed",
}


def state_label(snapshot: SessionSnapshot) -> str:
    """Device-reported state when known, otherwise the session state."""
    if snapshot.state in (SessionState.PLAYING, SessionState.PAUSED) and snapshot.transport_state:
        return STATE_LABELS[snapshot.transport_state]
    return SESSION_LABELS[snapshot.state]


def position_text(snapshot: SessionSnapshot) -> str:
    """``elapsed / duration (NN%)``"""
    elapsed = format_duration(snapshot.elapsed)
    if snapshot.duration <= 0:
        return f"{elapsed} / --:--"
    return f"{elapsed} / {format_duration(snapshot.duration)} ({snapshot.progress:.0%})"


def progress_bar(progress: float, width: int) -> str:
    width = max(1, width)
    filled = int(round(progress * width))
    return "█" * filled + "░" * (width - filled)


class TuiPresenter:
    """
    Presentation state plus key handling for the TUI.

    Session commands go to `post`; dialog and selection actions stay here.
    """

    def __init__(self, post: Callable[[Command], None]) -> None:
        self._post = post
        self.snapshot: SessionSnapshot | None = None
        self.selected = 0
        self.dialog = Dialog.NONE

    def on_snapshot(self, snapshot: SessionSnapshot) -> None:
        previous = self.snapshot
        self.snapshot = snapshot
        # Follow the playing entry unless the user has moved the cursor elsewhere
        if previous is None or self.selected == previous.current_index:
            self.selected = snapshot.current_index
        self.selected = max(0, min(self.selected, len(snapshot.entries) - 1))

    def close_dialog(self) -> None:
        self.dialog = Dialog.NONE

    def press(self, key: str) -> bool:
        """
        Handle a key name as reported by Textual.

        Returns:
            True if the key was used.
        """
        if self.dialog is not Dialog.NONE:
            if key in DIALOG_CLOSE_KEYS:
                self.close_dialog()
                return True
            return False

        factory = KEY_ACTIONS.get(key)
        if factory is None:
            return False
        self.apply(factory())
        return True

    def apply(self, action: UiAction) -> None:
        if isinstance(action, ShowHelp):
            self.dialog = Dialog.HELP
        elif isinstance(action, ShowDeviceInfo):
            self.dialog = Dialog.DEVICE_INFO
        elif isinstance(action, MoveSelection):
            count = len(self.snapshot.entries) if self.snapshot else 0
            if count:
                self.selected = max(0, min(self.selected + action.delta, count - 1))
        elif isinstance(action, PlaySelected):
            self._post(SelectEntry(index=self.selected))
        else:
            self._post(action)

    # -- views ------------------------------------------------------------

    def title_text(self) -> Text:
        if self.snapshot is None:
            return Text("Connecting…")
        text = Text()
        text.append(self.snapshot.current_title or "-", style="bold")
        if self.snapshot.render is not None:
            text.append(f"  on {self.snapshot.render.friendly_name}", style="dim")
        return text

    def status_text(self, width: int = 40) -> Text:
        if self.snapshot is None:
            return Text("")
        snap = self.snapshot
        text = Text()
        text.append(state_label(snap), style="bold green" if snap.state is SessionState.PLAYING else "bold")
        text.append(f"   {position_text(snap)}")
        if snap.loop:
            text.append("   🔁 loop", style="cyan")
        text.append("\n")
        text.append(progress_bar(snap.progress, width), style="green")
        return text

    def playlist_text(self) -> Text:
        if self.snapshot is None:
            return Text("")
        snap = self.snapshot
        text = Text()
        for index, title in enumerate(snap.entries):
            marker = "▶" if index == snap.current_index else " "
            cursor = ">" if index == self.selected else " "
            style = "reverse" if index == self.selected else ""
            if index == snap.current_index:
                style = f"{style} bold".strip()
            text.append(f"{cursor}{marker} {index + 1:>3}. {title}\n", style=style)
        return text

    def subtitle_text(self) -> Text:
        if self.snapshot is None or not self.snapshot.subtitle:
            return Text("")
        return Text(self.snapshot.subtitle, style="italic", justify="center")

    def message_text(self) -> Text:
        if self.snapshot is None:
            return Text("")
        if self.snapshot.error:
            return Text(self.snapshot.error, style="bold red")
        return Text(self.snapshot.status, style="dim")

    def device_info_text(self) -> str:
        render = self.snapshot.render if self.snapshot else None
        if render is None:
            return "No device"
        lines = [
            f"[b]{render.friendly_name}[/b]",
            "",
            f"Host:          {render.host}",
            f"UDN:           {render.udn}",
            f"Device type:   {render.device_type}",
            f"Service type:  {render.service_type}",
            f"Description:   {render.location}",
            f"Control URL:   {render.control_url}",
        ]
        if render.manufacturer or render.model_name:
            lines.insert(2, f"Model:         {render.manufacturer} {render.model_name}".rstrip())
        return "\n".join(lines)


class InfoDialog(ModalScreen[None]):
    """Modal text dialog closed with Esc, Enter, Space or q."""

    DEFAULT_CSS = """
    InfoDialog {
        align: center middle;
    }
    InfoDialog > Vertical {
        width: 72;
        height: auto;
        border: round $accent;
        padding: 1 2;
        background: $surface;
    }
    """

    BINDINGS = [
        Binding("escape", "close", "Close"),
        Binding("enter", "close", show=False),
        Binding("space", "close", show=False),
        Binding("q", "close", show=False),
    ]

    def __init__(self, title: str, body: str) -> None:
        super().__init__()
        self._title = title
        self._body = body

    def compose(self) -> ComposeResult:
        yield Vertical(
            Static(f"[b]{self._title}[/b]\n"),
            Static(self._body),
        )

    def action_close(self) -> None:
        self.dismiss(None)


class DlnaCastApp(App[None]):
    """Textual application showing one playback session."""

    TITLE = "dlnacast"

    DEFAULT_CSS = """
    #now-playing {
        padding: 1 2 0 2;
    }
    #status {
        padding: 0 2;
        height: 3;
    }
    #playlist {
        padding: 0 2;
        height: 1fr;
        border-top: solid $accent;
    }
    #subtitle {
        padding: 0 2;
        height: 2;
    }
    #message {
        padding: 0 2;
        height: 1;
    }
    """

    BINDINGS = [
        Binding("space", "key('space')", "Play/Pause"),
        Binding("p", "key('p')", show=False),
        Binding("s", "key('s')", "Stop"),
        Binding("n", "key('n')", "Next"),
        Binding("b", "key('b')", "Prev"),
        Binding("up", "key('up')", show=False),
        Binding("k", "key('k')", show=False),
        Binding("down", "key('down')", show=False),
        Binding("j", "key('j')", show=False),
        Binding("enter", "key('enter')", "Play selected"),
        Binding("r", "key('r')", "Refresh"),
        Binding("l", "key('l')", "Loop"),
        Binding("h", "key('h')", "Help"),
        Binding("f1", "key('f1')", show=False),
        Binding("question_mark", "key('question_mark')", show=False),
        Binding("d", "key('d')", "Device"),
        Binding("q", "key('q')", "Quit"),
        Binding("escape", "key('escape')", show=False),
    ]

    def __init__(
        self,
        post: Callable[[Command], None],
        snapshots: asyncio.Queue[SessionSnapshot],
        *,
        refresh_interval: float = 0.5,
    ) -> None:
        super().__init__()
        self.presenter = TuiPresenter(post)
        self._snapshots = snapshots
        self._refresh_interval = refresh_interval

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        yield Static(id="now-playing")
        yield Static(id="status")
        yield Static(id="playlist")
        yield Static(id="subtitle")
        yield Static(id="message")
        yield Footer()

    def on_mount(self) -> None:
        self.run_worker(self._watch_snapshots(), exclusive=True)
        self.set_interval(self._refresh_interval, self._refresh_view)

    async def _watch_snapshots(self) -> None:
        while True:
            snapshot = await self._snapshots.get()
            self.presenter.on_snapshot(snapshot)
            self._refresh_view()
            if snapshot.state.is_terminal:
                logger.debug("Session ended (%s), closing TUI", snapshot.state.value)
                self.exit()
                return

    def _refresh_view(self) -> None:
        presenter = self.presenter
        width = max(10, self.size.width - 4)
        self.query_one("#now-playing", Static).update(presenter.title_text())
        self.query_one("#status", Static).update(presenter.status_text(width))
        self.query_one("#playlist", Static).update(presenter.playlist_text())
        self.query_one("#subtitle", Static).update(presenter.subtitle_text())
        self.query_one("#message", Static).update(presenter.message_text())

    def action_key(self, key: str) -> None:
        before = self.presenter.dialog
        self.presenter.press(key)
        if self.presenter.dialog is not before and self.presenter.dialog is not Dialog.NONE:
            self._open_dialog(self.presenter.dialog)
        self._refresh_view()

    def _open_dialog(self, dialog: Dialog) -> None:
        if dialog is Dialog.HELP:
            screen = InfoDialog("Help", HELP_TEXT)
        else:
            screen = InfoDialog("Device info", self.presenter.device_info_text())
        self.push_screen(screen, lambda _: self.presenter.close_dialog())
