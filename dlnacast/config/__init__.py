"""
Configuration management for dlnacast.

Defaults live in a TOML file shipped inside the package and are loaded into
dataclasses. Nothing is ever written back; the command line overrides
individual values for a single run.
"""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

# Path to the config directory
CONFIG_DIR = Path(__file__).parent


@dataclass
class DiscoverySettings:
    """SSDP discovery settings."""

    timeout: float = 5.0
    mx: int = 3
    ttl: int = 3
    attempts: int = 3
    search_target: str = "urn:schemas-upnp-org:service:AVTransport:1"


@dataclass
class ControlSettings:
    """AVTransport control client settings."""

    timeout: float = 5.0
    status_retries: int = 1


@dataclass
class StreamingSettings:
    """HTTP media streaming settings."""

    port: int = 9000
    host: str = ""
    stop_grace: float = 2.0
    chunk_size: int = 65536


@dataclass
class SessionSettings:
    """Playback session settings."""

    poll_interval: float = 1.0
    max_poll_failures: int = 3
    settle_polls: int = 5
    subtitle_sync_interval: float = 0.5


@dataclass
class MediaSettings:
    """Known media file extensions (lowercase, without dot)."""

    video_extensions: list[str] = field(
        default_factory=lambda: ["mp4", "avi", "mkv", "mov", "wmv", "flv", "webm", "m4v", "3gp", "ogv"]
    )
    audio_extensions: list[str] = field(
        default_factory=lambda: ["mp3", "wav", "flac", "aac", "ogg", "wma", "m4a", "opus"]
    )
    subtitle_extensions: list[str] = field(default_factory=lambda: ["srt", "vtt"])

    @property
    def media_extensions(self) -> set[str]:
        return set(self.video_extensions) | set(self.audio_extensions)

    def is_media(self, path: Path) -> bool:
        """Check if a path has a known video or audio extension."""
        return path.suffix.lower().lstrip(".") in self.media_extensions

    def is_audio(self, path: Path) -> bool:
        return path.suffix.lower().lstrip(".") in self.audio_extensions


@dataclass
class Config:
    """Loaded dlnacast configuration."""

    discovery: DiscoverySettings = field(default_factory=DiscoverySettings)
    control: ControlSettings = field(default_factory=ControlSettings)
    streaming: StreamingSettings = field(default_factory=StreamingSettings)
    session: SessionSettings = field(default_factory=SessionSettings)
    media: MediaSettings = field(default_factory=MediaSettings)


def _section(cls: type, data: dict[str, Any]) -> Any:
    """Build a settings dataclass from a TOML table, ignoring unknown keys."""
    known = {name for name in cls.__dataclass_fields__}
    unknown = set(data) - known
    if unknown:
        logger.warning("Ignoring unknown %s settings: %s", cls.__name__, ", ".join(sorted(unknown)))
    return cls(**{key: value for key, value in data.items() if key in known})


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from a TOML file.

    Args:
        config_path: Path to a TOML file. If None, uses the packaged defaults.

    Returns:
        Loaded Config instance.
    """
    if config_path is None:
        config_path = CONFIG_DIR / "defaults.toml"

    logger.debug("Loading config from %s", config_path)

    with config_path.open("rb") as f:
        data = tomllib.load(f)

    return Config(
        discovery=_section(DiscoverySettings, data.get("discovery", {})),
        control=_section(ControlSettings, data.get("control", {})),
        streaming=_section(StreamingSettings, data.get("streaming", {})),
        session=_section(SessionSettings, data.get("session", {})),
        media=_section(MediaSettings, data.get("media", {})),
    )


# Global singleton instance (lazy loaded)
_config: Config | None = None


def get_config() -> Config:
    """
    Get the global configuration (lazy loaded singleton).

    Returns:
        The Config instance.
    """
    global _config

    if _config is None:
        _config = load_config()

    return _config
