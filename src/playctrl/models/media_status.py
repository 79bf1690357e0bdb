"""Playback snapshot pushed by the media-player server."""

import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Any

logger = logging.getLogger(__name__)

# Wire (camelCase) key -> MediaStatus attribute
_WIRE_FIELDS: dict[str, str] = {
    "paused": "paused",
    "timePos": "time_pos",
    "duration": "duration",
    "progress": "progress",
    "hasMedia": "has_media",
    "filename": "filename",
    "title": "title",
    "fileFormat": "file_format",
    "videoCodec": "video_codec",
    "videoWidth": "video_width",
    "videoHeight": "video_height",
    "videoBitrate": "video_bitrate",
    "fps": "fps",
    "audioCodec": "audio_codec",
    "audioBitrate": "audio_bitrate",
    "fullscreen": "fullscreen",
    "volume": "volume",
    "muted": "muted",
    "speed": "speed",
    "timeFormatted": "time_formatted",
    "durationFormatted": "duration_formatted",
    "timestamp": "timestamp",
}


@dataclass(frozen=True)
class MediaStatus:
    """Latest known playback and media state.

    The default instance means "no media". Server pushes are partial and are
    applied with ``merged``; fields absent from a push keep their value.

    Attributes:
        paused: Whether playback is paused.
        time_pos: Playback position in seconds.
        duration: Media duration in seconds.
        progress: Position as a percentage of duration.
        has_media: Whether a file is loaded.
        filename: Loaded file name.
        title: Media title.
        file_format: Container format.
        video_codec: Video codec name.
        video_width: Video width in pixels.
        video_height: Video height in pixels.
        video_bitrate: Video bitrate in bits per second.
        fps: Video frame rate.
        audio_codec: Audio codec name.
        audio_bitrate: Audio bitrate in bits per second.
        fullscreen: Whether the player is fullscreen.
        volume: Volume percentage.
        muted: Whether audio is muted.
        speed: Playback speed multiplier.
        time_formatted: Position as shown by the server ("1:23").
        duration_formatted: Duration as shown by the server.
        timestamp: Server-side timestamp of the snapshot.
        received_at: Local arrival time (epoch seconds), 0 if never updated.
    """

    paused: bool = True
    time_pos: float = 0.0
    duration: float = 0.0
    progress: float = 0.0
    has_media: bool = False
    filename: str = "No media"
    title: str = "No media"
    file_format: str = ""
    video_codec: str = ""
    video_width: int = 0
    video_height: int = 0
    video_bitrate: int = 0
    fps: float = 0.0
    audio_codec: str = ""
    audio_bitrate: int = 0
    fullscreen: bool = False
    volume: int = 100
    muted: bool = False
    speed: float = 1.0
    time_formatted: str = "0:00"
    duration_formatted: str = "0:00"
    timestamp: float = 0.0
    received_at: float = 0.0

    def merged(self, data: Mapping[str, Any], received_at: float | None = None) -> "MediaStatus":
        """Apply a partial server push.

        Args:
            data: Wire fields from a ``status`` frame.
            received_at: Arrival time (default: now).

        Returns:
            New snapshot with the pushed fields overwritten.
        """
        changes: dict[str, Any] = {}
        for key, value in data.items():
            attr = _WIRE_FIELDS.get(key)
            if attr is None:
                logger.debug("Ignoring unknown status field: %s", key)
                continue
            changes[attr] = value
        changes["received_at"] = time.time() if received_at is None else received_at
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Render in the wire layout (camelCase keys)."""
        return {key: getattr(self, attr) for key, attr in _WIRE_FIELDS.items()}

    @property
    def has_video(self) -> bool:
        """Return True if the media has a video track."""
        return self.video_width > 0

    @property
    def resolution(self) -> str:
        """Return ``WIDTHxHEIGHT`` or an empty string without video."""
        if not self.has_video:
            return ""
        return f"{self.video_width}x{self.video_height}"


def format_bitrate(bitrate: float) -> str:
    """Format a bitrate for display.

    Args:
        bitrate: Bits per second.

    Returns:
        Formatted string like "4.2 Mbps", "320 kbps" or "96 bps".
    """
    if bitrate >= 1_000_000:
        return f"{bitrate / 1_000_000:.1f} Mbps"
    if bitrate >= 1000:
        return f"{bitrate / 1000:.0f} kbps"
    return f"{int(bitrate)} bps"
