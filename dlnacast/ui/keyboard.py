"""
Interactive keyboard control.

Reads single keystrokes with blessed (in cbreak mode, on a worker thread)
and posts the matching commands to the playback session. The reader keeps
no playback state; it stops when asked or after posting Quit.

Keys:
    Space, p, P  play / pause
    s            stop
    n, Right     next entry
    b, Left      previous entry
    r            refresh status
    l            toggle loop
    h, H, ?      help
    q, Q, Esc    quit
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Callable

from blessed import Terminal

from dlnacast.core.commands import (
    Command,
    Next,
    Previous,
    Quit,
    RefreshStatus,
    Stop,
    ToggleLoop,
    TogglePlayPause,
)

logger = logging.getLogger(__name__)

CHAR_COMMANDS: dict[str, type[Command]] = {
    " ": TogglePlayPause,
    "p": TogglePlayPause,
    "P": TogglePlayPause,
    "s": Stop,
    "n": Next,
    "b": Previous,
    "r": RefreshStatus,
    "l": ToggleLoop,
    "q": Quit,
    "Q": Quit,
}

NAMED_COMMANDS: dict[str, type[Command]] = {
    "KEY_ESCAPE": Quit,
    "KEY_RIGHT": Next,
    "KEY_LEFT": Previous,
}

HELP_KEYS = frozenset({"h", "H", "?"})

HELP_TEXT = """\
Interactive controls:
  Space / p   play / pause (P works too)
  s           stop
  n / Right   next entry
  b / Left    previous entry
  r           refresh status
  l           toggle loop
  h / ?       this help
  q / Esc     quit"""


def command_for_key(name: str | None, char: str) -> Command | None:
    """
    Map a keystroke to a session command.

    Args:
        name: blessed key name (e.g. "KEY_ESCAPE"), or None for plain characters.
        char: The character(s) of the keystroke.
    """
    if name and name in NAMED_COMMANDS:
        return NAMED_COMMANDS[name]()
    command = CHAR_COMMANDS.get(char)
    return command() if command else None


class InteractiveController:
    """
    Keyboard reader that feeds the session command queue.

    Usage:
        keyboard = InteractiveController(controller.post)
        task = asyncio.create_task(keyboard.run())
        ...
        keyboard.stop()
        await task
    """

    def __init__(
        self,
        post: Callable[[Command], None],
        terminal: Terminal | None = None,
        *,
        key_timeout: float = 0.2,
        echo: Callable[[str], None] = print,
    ) -> None:
        self._post = post
        self._terminal = terminal
        self.key_timeout = key_timeout
        self._echo = echo
        self._stop_event = threading.Event()

    def stop(self) -> None:
        """Unblock the reader thread; it exits within `key_timeout`."""
        self._stop_event.set()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def dispatch(self, name: str | None, char: str) -> Command | None:
        """Handle one keystroke: show help, or return the command it maps to."""
        if name is None and char in HELP_KEYS:
            self._echo(HELP_TEXT)
            return None
        return command_for_key(name, char)

    async def run(self) -> None:
        """Read keys until stopped or until Quit has been posted."""
        loop = asyncio.get_running_loop()
        self._echo("Press h for help, q to quit.")
        try:
            await loop.run_in_executor(None, self._read_keys, loop)
        finally:
            self._stop_event.set()

    def _read_keys(self, loop: asyncio.AbstractEventLoop) -> None:
        terminal = self._terminal or Terminal()
        if not terminal.is_a_tty:
            logger.warning("stdin is not a terminal, keyboard control disabled")
            self._stop_event.wait()
            return

        with terminal.cbreak():
            while not self._stop_event.is_set():
                key = terminal.inkey(timeout=self.key_timeout)
                if not key:
                    continue

                command = self.dispatch(key.name if key.is_sequence else None, str(key))
                if command is None:
                    continue

                logger.debug("Key %r -> %s", key.name or str(key), command.name)
                loop.call_soon_threadsafe(self._post, command)
                if isinstance(command, Quit):
                    return
