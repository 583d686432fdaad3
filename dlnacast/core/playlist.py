"""
Playlist management for dlnacast.

A playlist is built once, either from a single media file or from a
recursive directory scan, and is read-only afterwards except for the
current index and the loop flag.

Design decisions:
- Entries are sorted by path so that a directory always plays in the same order
- Each video is paired with a same-named subtitle file when one exists
- Navigation never leaves the index outside [0, len)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterator

from dlnacast.config import MediaSettings, get_config
from dlnacast.core import DlnaCastError

logger = logging.getLogger(__name__)


class PlaylistErrorKind(Enum):
    """Why a playlist operation failed."""

    EMPTY = "empty"
    INDEX_OUT_OF_BOUNDS = "index_out_of_bounds"


class PlaylistError(DlnaCastError):
    """Raised when a playlist cannot be built or navigated."""

    def __init__(self, kind: PlaylistErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind


def find_subtitle_for(video: Path, extensions: list[str] | None = None) -> Path | None:
    """
    Locate a subtitle file next to a video.

    Tries `<stem>.<ext>` for each subtitle extension in order and returns
    the first one that exists.
    """
    if extensions is None:
        extensions = get_config().media.subtitle_extensions

    for ext in extensions:
        candidate = video.with_suffix(f".{ext}")
        if candidate.is_file():
            logger.debug("Found subtitle %s for %s", candidate.name, video.name)
            return candidate
    return None


@dataclass(frozen=True, slots=True)
class PlaylistEntry:
    """A media file plus its optional subtitle."""

    video: Path
    subtitle: Path | None = None

    @property
    def title(self) -> str:
        return self.video.stem

    @classmethod
    def from_path(cls, path: str | Path, *, infer_subtitle: bool = True) -> PlaylistEntry:
        """Create an entry from a media path, pairing a subtitle if present."""
        video = Path(path)
        subtitle = find_subtitle_for(video) if infer_subtitle else None
        return cls(video=video, subtitle=subtitle)


@dataclass
class Playlist:
    """
    Ordered, navigable list of playlist entries.

    With loop disabled, next/previous stop at the boundaries and return None.
    With loop enabled they wrap around.
    """

    entries: list[PlaylistEntry] = field(default_factory=list)
    current_index: int = 0
    loop: bool = False

    def __post_init__(self) -> None:
        if not self.entries:
            raise PlaylistError(PlaylistErrorKind.EMPTY, "Playlist has no entries")
        if not 0 <= self.current_index < len(self.entries):
            raise PlaylistError(
                PlaylistErrorKind.INDEX_OUT_OF_BOUNDS,
                f"Index {self.current_index} out of bounds for {len(self.entries)} entries",
            )

    @classmethod
    def from_file(
        cls,
        path: str | Path,
        *,
        subtitle: str | Path | None = None,
        infer_subtitle: bool = True,
        loop: bool = False,
    ) -> Playlist:
        """
        Build a one-entry playlist.

        Args:
            path: The media file.
            subtitle: Explicit subtitle file; takes precedence over inference.
            infer_subtitle: Look for a same-named subtitle when none is given.
            loop: Initial loop flag.
        """
        if subtitle is not None:
            entry = PlaylistEntry(video=Path(path), subtitle=Path(subtitle))
        else:
            entry = PlaylistEntry.from_path(path, infer_subtitle=infer_subtitle)
        return cls(entries=[entry], loop=loop)

    @classmethod
    def from_directory(
        cls,
        directory: str | Path,
        *,
        infer_subtitle: bool = True,
        loop: bool = False,
        media: MediaSettings | None = None,
    ) -> Playlist:
        """
        Build a playlist from every media file below a directory.

        The scan is recursive and entries are sorted by path.

        Raises:
            PlaylistError: EMPTY if no media file was found.
        """
        if media is None:
            media = get_config().media

        root = Path(directory)
        videos = sorted(p for p in root.rglob("*") if p.is_file() and media.is_media(p))
        if not videos:
            raise PlaylistError(PlaylistErrorKind.EMPTY, f"No media files found in {root}")

        entries = [PlaylistEntry.from_path(p, infer_subtitle=infer_subtitle) for p in videos]
        logger.info("Built playlist with %d entries from %s", len(entries), root)
        return cls(entries=entries, loop=loop)

    @classmethod
    def from_path(
        cls,
        path: str | Path,
        *,
        subtitle: str | Path | None = None,
        infer_subtitle: bool = True,
        loop: bool = False,
    ) -> Playlist:
        """Build from a directory scan or a single file, depending on `path`."""
        p = Path(path)
        if p.is_dir():
            return cls.from_directory(p, infer_subtitle=infer_subtitle, loop=loop)
        return cls.from_file(p, subtitle=subtitle, infer_subtitle=infer_subtitle, loop=loop)

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[PlaylistEntry]:
        return iter(self.entries)

    def __getitem__(self, index: int) -> PlaylistEntry:
        return self.entries[index]

    @property
    def current(self) -> PlaylistEntry:
        """The entry at the current index."""
        return self.entries[self.current_index]

    @property
    def has_next(self) -> bool:
        """Check if advancing would select an entry."""
        return self.loop or self.current_index < len(self.entries) - 1

    @property
    def has_previous(self) -> bool:
        return self.loop or self.current_index > 0

    def next(self) -> PlaylistEntry | None:
        """
        Move to the next entry.

        Returns:
            The new current entry, or None at the end without loop.
        """
        if self.current_index < len(self.entries) - 1:
            self.current_index += 1
        elif self.loop:
            self.current_index = 0
        else:
            return None

        logger.debug("playlist.next: current_index=%d", self.current_index)
        return self.current

    def previous(self) -> PlaylistEntry | None:
        """
        Move to the previous entry.

        Returns:
            The new current entry, or None at the start without loop.
        """
        if self.current_index > 0:
            self.current_index -= 1
        elif self.loop:
            self.current_index = len(self.entries) - 1
        else:
            return None

        logger.debug("playlist.previous: current_index=%d", self.current_index)
        return self.current

    def select(self, index: int) -> PlaylistEntry:
        """
        Jump to an entry.

        Raises:
            PlaylistError: INDEX_OUT_OF_BOUNDS if index is not in [0, len).
        """
        if not 0 <= index < len(self.entries):
            raise PlaylistError(
                PlaylistErrorKind.INDEX_OUT_OF_BOUNDS,
                f"Index {index} out of bounds for {len(self.entries)} entries",
            )
        self.current_index = index
        logger.debug("playlist.select: current_index=%d", self.current_index)
        return self.current

    def toggle_loop(self) -> bool:
        """Flip the loop flag and return the new value."""
        self.loop = not self.loop
        logger.info("Playlist loop %s", "enabled" if self.loop else "disabled")
        return self.loop
