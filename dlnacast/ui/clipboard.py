"""
Subtitle-to-clipboard mirroring (``play --subtitle-sync``).

Watches session snapshots and copies the subtitle line showing on the
renderer to the system clipboard, so it can be pasted into a dictionary or
translator while watching. Each line is copied once, when it first appears.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

import pyperclip

from dlnacast.core.session import SessionSnapshot

logger = logging.getLogger(__name__)


class SubtitleClipboard:
    """
    Copies new subtitle lines to the clipboard, at most once per `interval`.

    If the platform has no usable clipboard the first failed copy is logged
    and mirroring switches itself off; playback is never affected.
    """

    def __init__(self, interval: float = 0.5, copy: Callable[[str], None] | None = None) -> None:
        self.interval = interval
        self._copy = copy or pyperclip.copy
        self.last = ""
        self.disabled = False

    def offer(self, text: str) -> bool:
        """
        Copy `text` if it is a new, non-empty line.

        Returns:
            True if the clipboard was updated.
        """
        if self.disabled or not text or text == self.last:
            return False
        try:
            self._copy(text)
        except pyperclip.PyperclipException as e:
            logger.warning("Clipboard not available, subtitle sync disabled: %s", e)
            self.disabled = True
            return False
        self.last = text
        logger.info("Copied to clipboard: %s", text.replace("\n", " "))
        return True

    async def run(self, updates: asyncio.Queue[SessionSnapshot]) -> None:
        """Follow snapshots until the session ends."""
        while True:
            snapshot = await updates.get()
            if snapshot.state.is_terminal:
                return
            self.offer(snapshot.subtitle)
            await asyncio.sleep(self.interval)
