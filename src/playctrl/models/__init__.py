"""Data models for known servers, playback status and connection state."""

from playctrl.models.connection import ConnectionPhase, ConnectionState
from playctrl.models.media_status import MediaStatus, format_bitrate
from playctrl.models.server import (
    DEFAULT_PORT,
    ServerRecord,
    ServerStatus,
    default_server_name,
    format_last_seen,
)

__all__ = [
    "ConnectionPhase",
    "ConnectionState",
    "DEFAULT_PORT",
    "MediaStatus",
    "ServerRecord",
    "ServerStatus",
    "default_server_name",
    "format_bitrate",
    "format_last_seen",
]
