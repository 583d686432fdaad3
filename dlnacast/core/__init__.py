"""
Core domain package.

This package holds the playlist, the command vocabulary and the playback
session state machine. It talks to devices and the HTTP server only through
the small interfaces defined in `dlnacast.player.render` and
`dlnacast.streaming.server`.
"""

from __future__ import annotations

__all__: list[str] = [
    "DlnaCastError",
]


class DlnaCastError(Exception):
    """Base class for all dlnacast errors."""
