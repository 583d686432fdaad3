"""
Commands accepted by the playback session.

Input sources (keyboard reader, TUI, status poller) never touch the device
or the streaming server. They put one of these on the session's command
queue and the session handles them one at a time, in arrival order.

Usage:
    controller.post(TogglePlayPause())
    controller.post(SelectEntry(index=2))
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Command:
    """Base class for all session commands."""

    @property
    def name(self) -> str:
        return type(self).__name__


@dataclass(frozen=True, slots=True)
class TogglePlayPause(Command):
    """Pause when playing, resume when paused; ignored otherwise."""


@dataclass(frozen=True, slots=True)
class Stop(Command):
    """Stop the renderer and end the session."""


@dataclass(frozen=True, slots=True)
class Next(Command):
    """Skip to the next playlist entry."""


@dataclass(frozen=True, slots=True)
class Previous(Command):
    """Go back to the previous playlist entry."""


@dataclass(frozen=True, slots=True)
class SelectEntry(Command):
    """Play the playlist entry at `index`."""

    index: int = 0


@dataclass(frozen=True, slots=True)
class ToggleLoop(Command):
    """Flip the playlist loop flag."""


@dataclass(frozen=True, slots=True)
class RefreshStatus(Command):
    """Poll the renderer now instead of waiting for the next tick."""


@dataclass(frozen=True, slots=True)
class Quit(Command):
    """Stop the renderer and end the session (user leaving)."""


@dataclass(frozen=True, slots=True)
class PollTick(Command):
    """Periodic status poll, posted by the session's own ticker task."""
