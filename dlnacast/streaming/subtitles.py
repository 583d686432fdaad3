"""
Subtitle cue parsing and timing offsets.

Supported formats:
    - SubRip (.srt): numbered cues, ``HH:MM:SS,mmm --> HH:MM:SS,mmm``
    - WebVTT (.vtt): ``WEBVTT`` header, ``[HH:]MM:SS.mmm --> [HH:]MM:SS.mmm``
      with optional cue identifiers and cue settings

Cue times are kept as integer milliseconds. Shifting is plain integer
addition and is never clamped, so shifting by +O and then -O gives back the
exact original timings. Negative times are only clamped to zero when the
cues are rendered back to text. WebVTT blocks that are not cues (NOTE,
STYLE, REGION) pass through a shift unchanged.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path

logger = logging.getLogger(__name__)

_TIMESTAMP = r"(?:(\d+):)?(\d{1,2}):(\d{2})[,.](\d{1,3})"
_TIMING_LINE = re.compile(rf"^\s*{_TIMESTAMP}\s*-->\s*{_TIMESTAMP}(.*)$")


class SubtitleFormat(Enum):
    """Text subtitle formats we can parse and render."""

    SRT = "srt"
    VTT = "vtt"

    @property
    def media_type(self) -> str:
        return "text/srt" if self is SubtitleFormat.SRT else "text/vtt"

    @classmethod
    def from_path(cls, path: Path) -> SubtitleFormat:
        """Pick the format by file extension (unknown extensions parse as SRT)."""
        if path.suffix.lower() == ".vtt":
            return cls.VTT
        return cls.SRT


class SubtitleParseError(ValueError):
    """Raised when a subtitle file contains no usable cues."""


@dataclass(frozen=True, slots=True)
class SubtitleCue:
    """One timed subtitle cue."""

    start_ms: int
    end_ms: int
    text: str
    # WebVTT cue identifier / settings, preserved on render
    identifier: str = ""
    settings: str = ""

    def shifted(self, offset_ms: int) -> SubtitleCue:
        return replace(self, start_ms=self.start_ms + offset_ms, end_ms=self.end_ms + offset_ms)


def _to_ms(hours: str | None, minutes: str, seconds: str, fraction: str) -> int:
    # "5" in "00:01.5" means 500ms
    millis = int(fraction.ljust(3, "0"))
    return ((int(hours or 0) * 60 + int(minutes)) * 60 + int(seconds)) * 1000 + millis


def _split_blocks(text: str) -> list[list[str]]:
    """Split text into blank-line separated blocks of lines."""
    blocks: list[list[str]] = []
    current: list[str] = []
    for line in text.replace("\r\n", "\n").replace("\r", "\n").split("\n"):
        if line.strip():
            current.append(line.rstrip())
        elif current:
            blocks.append(current)
            current = []
    if current:
        blocks.append(current)
    return blocks


def _parse_blocks(blocks: list[list[str]]) -> list[SubtitleCue]:
    cues: list[SubtitleCue] = []
    for block in blocks:
        timing_index = next(
            (i for i, line in enumerate(block) if _TIMING_LINE.match(line)),
            None,
        )
        if timing_index is None:
            # Header, NOTE, STYLE or a malformed block
            continue

        match = _TIMING_LINE.match(block[timing_index])
        assert match is not None
        groups = match.groups()
        start = _to_ms(*groups[0:4])
        end = _to_ms(*groups[4:8])
        identifier = "\n".join(block[:timing_index])
        cues.append(
            SubtitleCue(
                start_ms=start,
                end_ms=end,
                text="\n".join(block[timing_index + 1 :]),
                identifier=identifier,
                settings=groups[8].strip(),
            )
        )
    return cues


def parse_srt(text: str) -> list[SubtitleCue]:
    """Parse SubRip text into cues."""
    return _parse_blocks(_split_blocks(text.lstrip("\ufeff")))


def parse_vtt(text: str) -> list[SubtitleCue]:
    """Parse WebVTT text into cues. The WEBVTT header block is skipped."""
    text = text.lstrip("\ufeff")
    if not text.startswith("WEBVTT"):
        logger.warning("WebVTT file without WEBVTT header, parsing anyway")
    return _parse_blocks(_split_blocks(text))


def shift_cues(cues: list[SubtitleCue], offset_ms: int) -> list[SubtitleCue]:
    """Return new cues moved by `offset_ms` (positive delays, negative advances)."""
    return [cue.shifted(offset_ms) for cue in cues]


def format_timestamp(ms: int, fmt: SubtitleFormat) -> str:
    """Format milliseconds as a subtitle timestamp, clamping negatives to zero."""
    ms = max(0, ms)
    hours, rest = divmod(ms, 3_600_000)
    minutes, rest = divmod(rest, 60_000)
    seconds, millis = divmod(rest, 1000)
    sep = "," if fmt is SubtitleFormat.SRT else "."
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}{sep}{millis:03d}"


def render_srt(cues: list[SubtitleCue]) -> str:
    """Render cues as SubRip text, renumbering from 1."""
    blocks = []
    for number, cue in enumerate(cues, start=1):
        start = format_timestamp(cue.start_ms, SubtitleFormat.SRT)
        end = format_timestamp(cue.end_ms, SubtitleFormat.SRT)
        blocks.append(f"{number}\n{start} --> {end}\n{cue.text}\n")
    return "\n".join(blocks)


def _vtt_cue_block(cue: SubtitleCue) -> str:
    start = format_timestamp(cue.start_ms, SubtitleFormat.VTT)
    end = format_timestamp(cue.end_ms, SubtitleFormat.VTT)
    timing = f"{start} --> {end}"
    if cue.settings:
        timing = f"{timing} {cue.settings}"
    header = f"{cue.identifier}\n" if cue.identifier else ""
    return f"{header}{timing}\n{cue.text}\n"


def render_vtt(cues: list[SubtitleCue]) -> str:
    """Render cues as WebVTT text."""
    return "\n".join(["WEBVTT\n"] + [_vtt_cue_block(cue) for cue in cues])


def shift_vtt_text(text: str, offset_ms: int) -> tuple[str, int]:
    """
    Shift every cue of a WebVTT document, keeping all other blocks as written.

    The header, NOTE, STYLE and REGION blocks are copied verbatim so that
    styling survives an offset.

    Returns:
        (shifted text, number of cues shifted)
    """
    blocks = _split_blocks(text.lstrip("\ufeff"))
    if not blocks or not blocks[0][0].startswith("WEBVTT"):
        blocks.insert(0, ["WEBVTT"])

    out: list[str] = []
    count = 0
    for block in blocks:
        cues = _parse_blocks([block])
        if cues:
            out.append(_vtt_cue_block(cues[0].shifted(offset_ms)))
            count += 1
        else:
            out.append("\n".join(block) + "\n")
    return "\n".join(out), count


def parse_subtitle(text: str, fmt: SubtitleFormat) -> list[SubtitleCue]:
    if fmt is SubtitleFormat.VTT:
        return parse_vtt(text)
    return parse_srt(text)


def render_subtitle(cues: list[SubtitleCue], fmt: SubtitleFormat) -> str:
    if fmt is SubtitleFormat.VTT:
        return render_vtt(cues)
    return render_srt(cues)


def current_cue(cues: list[SubtitleCue], position_ms: int) -> SubtitleCue | None:
    """
    The cue showing at `position_ms`, or None between cues.

    Both ends of a cue are inclusive. When cues overlap the first one in
    file order wins.
    """
    for cue in cues:
        if cue.start_ms <= position_ms <= cue.end_ms:
            return cue
    return None


def load_cues(path: Path, offset_ms: int = 0) -> list[SubtitleCue]:
    """
    Read a subtitle file and return its cues moved by `offset_ms`.

    Raises:
        OSError: If the file cannot be read.
    """
    fmt = SubtitleFormat.from_path(path)
    text = path.read_text(encoding="utf-8-sig", errors="replace")
    return shift_cues(parse_subtitle(text, fmt), offset_ms)


def load_shifted_subtitle(path: Path, offset_ms: int) -> bytes:
    """
    Read a subtitle file, shift every cue and render it back in its own format.

    Raises:
        OSError: If the file cannot be read.
        SubtitleParseError: If the file has no parsable cues.
    """
    fmt = SubtitleFormat.from_path(path)
    text = path.read_text(encoding="utf-8-sig", errors="replace")
    if fmt is SubtitleFormat.VTT:
        rendered, count = shift_vtt_text(text, offset_ms)
    else:
        cues = parse_srt(text)
        count = len(cues)
        rendered = render_srt(shift_cues(cues, offset_ms))
    if not count:
        raise SubtitleParseError(f"No subtitle cues found in {path}")

    logger.info("Shifting %d subtitle cues in %s by %+d ms", count, path.name, offset_ms)
    return rendered.encode("utf-8")
